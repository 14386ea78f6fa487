"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
Money is accepted as Decimal and returned as float.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StrictInt, field_validator

from config.settings import settings
from shared.models.models import UserRole, UserStatus


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# ── Auth ──────────────────────────────────────────────────────

class LoginRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=1)


# ── User ──────────────────────────────────────────────────────

class UserResponse(BaseSchema):
    id: uuid.UUID
    email: str
    full_name: Optional[str]
    role: str
    status: str
    phone_number: Optional[str]
    profile_picture_url: Optional[str]
    last_login_at: Optional[datetime]
    created_at: datetime


class AdminUserCreate(BaseSchema):
    email: EmailStr
    password: str
    display_name: Optional[str] = Field(None, max_length=255)
    role: UserRole


class AdminUserUpdate(BaseSchema):
    full_name: Optional[str] = Field(None, max_length=255)
    role: Optional[UserRole] = None
    status: Optional[UserStatus] = None
    password: Optional[str] = None


# ── Doctor ────────────────────────────────────────────────────

class DoctorProfileResponse(BaseSchema):
    user_id: uuid.UUID
    availability_schedule: Optional[Dict[str, Any]]
    is_available_now: bool
    total_earnings: float
    updated_at: datetime


class AvailabilityUpdate(BaseSchema):
    availability_schedule: Optional[Dict[str, Any]] = None
    is_available_now: Optional[bool] = None


class DoctorStatusUpdate(BaseSchema):
    status: str


class DeclineRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)


class EarningsItem(BaseSchema):
    appointment_id: uuid.UUID
    payment_id: uuid.UUID
    amount: float
    currency: str
    transaction_date: datetime
    service_id: Optional[str]


# ── Address ───────────────────────────────────────────────────

class AddressCreate(BaseSchema):
    address_line_1: str = Field(..., min_length=1, max_length=255)
    address_line_2: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    zip_code: str = Field(..., min_length=1, max_length=20)
    label: str = Field(..., min_length=1, max_length=50)
    is_default: bool = False


class AddressUpdate(BaseSchema):
    address_line_1: Optional[str] = Field(None, min_length=1, max_length=255)
    address_line_2: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, min_length=1, max_length=100)
    state: Optional[str] = Field(None, min_length=1, max_length=100)
    zip_code: Optional[str] = Field(None, min_length=1, max_length=20)
    label: Optional[str] = Field(None, min_length=1, max_length=50)
    is_default: Optional[bool] = None


class AddressResponse(AddressCreate):
    id: uuid.UUID
    owner_id: uuid.UUID
    created_at: datetime


# ── Catalog ───────────────────────────────────────────────────

class ServiceCreate(BaseSchema):
    id: Optional[str] = Field(None, min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    base_price: Decimal = Field(..., ge=0)
    estimated_duration_minutes: int = Field(..., gt=0)
    image: Optional[str] = None


class ServiceUpdate(BaseSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    base_price: Optional[Decimal] = Field(None, ge=0)
    estimated_duration_minutes: Optional[int] = Field(None, gt=0)
    image: Optional[str] = None


class ServiceResponse(BaseSchema):
    id: str
    name: str
    description: Optional[str]
    base_price: float
    estimated_duration_minutes: int
    image: Optional[str]


class OfferCreate(BaseSchema):
    id: Optional[str] = Field(None, min_length=1, max_length=64)
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    image_url: Optional[str] = None
    link_url: Optional[str] = None


class OfferUpdate(BaseSchema):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    image_url: Optional[str] = None
    link_url: Optional[str] = None


class OfferResponse(BaseSchema):
    id: str
    title: str
    description: Optional[str]
    image_url: Optional[str]
    link_url: Optional[str]


# ── Appointment ───────────────────────────────────────────────

class AppointmentCreate(BaseSchema):
    service_id: str = Field(..., min_length=1)
    address_id: uuid.UUID
    requested_date: date
    requested_time_slot: str = Field(..., min_length=1, max_length=50)
    estimated_cost: Decimal = Field(..., ge=0)


class AppointmentPatientUpdate(BaseSchema):
    status: str
    reschedule_date: Optional[date] = None
    reschedule_time_slot: Optional[str] = Field(None, max_length=50)
    reschedule_reason: Optional[str] = Field(None, max_length=500)
    cancellation_reason: Optional[str] = Field(None, max_length=500)


class AppointmentResponse(BaseSchema):
    id: uuid.UUID
    patient_id: uuid.UUID
    service_id: Optional[str]
    address_id: Optional[uuid.UUID]
    doctor_id: Optional[uuid.UUID]
    requested_date: date
    requested_time_slot: str
    estimated_cost: float
    status: str
    payment_status: str
    payment_id: Optional[uuid.UUID]
    assigned_at: Optional[datetime]
    actual_start_time: Optional[datetime]
    actual_end_time: Optional[datetime]
    cancellation_reason: Optional[str]
    declined_reason: Optional[str]
    reschedule_reason: Optional[str]
    created_at: datetime
    updated_at: datetime
    # Joined
    service_name: Optional[str] = None
    address_details: Optional[Dict[str, Any]] = None
    patient_name: Optional[str] = None
    doctor_name: Optional[str] = None


class StatusLogResponse(BaseSchema):
    id: uuid.UUID
    appointment_id: uuid.UUID
    from_status: Optional[str]
    to_status: str
    changed_by_id: Optional[uuid.UUID]
    reason: Optional[str]
    created_at: datetime


# ── Payment ───────────────────────────────────────────────────

class PaymentCreate(BaseSchema):
    appointment_id: uuid.UUID
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    currency: str = Field(default_factory=lambda: settings.DEFAULT_CURRENCY, min_length=3, max_length=3)
    payment_method: str = Field(..., min_length=1, max_length=50)
    payment_gateway_transaction_id: Optional[str] = Field(None, max_length=100)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class PaymentResponse(BaseSchema):
    id: uuid.UUID
    appointment_id: uuid.UUID
    patient_id: uuid.UUID
    amount: float
    currency: str
    payment_method: str
    gateway_transaction_id: str
    status: str
    platform_fee_amount: float
    doctor_fee_amount: float
    admin_fee_amount: float
    transaction_date: datetime


# ── Feedback ──────────────────────────────────────────────────

class FeedbackCreate(BaseSchema):
    appointment_id: uuid.UUID
    rating: StrictInt = Field(..., ge=1, le=5)
    comments: str = Field("", max_length=2000)


class FeedbackResponse(BaseSchema):
    id: uuid.UUID
    appointment_id: uuid.UUID
    patient_id: uuid.UUID
    doctor_id: Optional[uuid.UUID]
    rating: int
    comments: str
    created_at: datetime


# ── Admin ─────────────────────────────────────────────────────

class AuditLogResponse(BaseSchema):
    id: uuid.UUID
    admin_id: uuid.UUID
    action: str
    entity_type: str
    entity_id: Optional[str]
    payload: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    created_at: datetime


# ── Generic ───────────────────────────────────────────────────

class MessageResponse(BaseSchema):
    message: str
    success: bool = True
