"""
shared/models/models.py
All SQLAlchemy ORM models for the Home Dental Care Platform.
UUID primary keys throughout; column types are portable so the same
models run on PostgreSQL (asyncpg) and SQLite (aiosqlite).
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    SmallInteger,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


class UserStatus(str, PyEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class AppointmentStatus(str, PyEnum):
    PENDING_ASSIGNMENT = "pending_assignment"
    ASSIGNED = "assigned"
    ON_THE_WAY = "on_the_way"
    ARRIVED = "arrived"
    SERVICE_STARTED = "service_started"
    COMPLETED = "completed"
    DECLINED_BY_DOCTOR = "declined_by_doctor"
    CANCELLED_BY_PATIENT = "cancelled_by_patient"


class PaymentStatus(str, PyEnum):
    """Payment state as seen on the appointment."""
    PENDING = "pending"
    PROCESSING = "processing"   # claimed by a settlement awaiting the gateway
    PAID = "paid"
    FAILED = "failed"


class TransactionStatus(str, PyEnum):
    """Outcome recorded on an immutable payment record."""
    SUCCESSFUL = "successful"
    FAILED = "failed"


def _enum(enum_cls: type[PyEnum]) -> Enum:
    # Persist the lowercase values, not the member names
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        name=enum_cls.__name__.lower(),
        length=32,
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
        nullable=False,
    )


class SoftDeleteMixin:
    """Adds soft delete capability."""
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


# ── Models ────────────────────────────────────────────────────

class User(TimestampMixin, SoftDeleteMixin, Base):
    """
    Identity record and profile in one row. `role` is the authoritative
    copy of the role claim carried in access tokens.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        _enum(UserRole), nullable=False, default=UserRole.PATIENT
    )
    status: Mapped[UserStatus] = mapped_column(
        _enum(UserStatus), nullable=False, default=UserStatus.ACTIVE
    )
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    phone_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    profile_picture_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    doctor_profile: Mapped[Optional["DoctorProfile"]] = relationship(
        back_populates="user", uselist=False, lazy="selectin"
    )

    __table_args__ = (Index("ix_users_role", "role"),)

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE and not self.is_deleted

    @property
    def display_name(self) -> str:
        return self.full_name or self.email

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class DoctorProfile(TimestampMixin, Base):
    """Doctor-only data. `total_earnings` is a running total kept by settlement."""
    __tablename__ = "doctor_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    availability_schedule: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    # e.g. {"monday": ["09:00-12:00"], "friday": ["14:00-18:00"]}
    is_available_now: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    total_earnings: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0.00"), nullable=False
    )

    user: Mapped["User"] = relationship(back_populates="doctor_profile")


class Address(TimestampMixin, Base):
    """Patient's saved service addresses. At most one default per owner."""
    __tablename__ = "addresses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    label: Mapped[str] = mapped_column(String(50), nullable=False)  # "Home", "Office"
    address_line_1: Mapped[str] = mapped_column(String(255), nullable=False)
    address_line_2: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[str] = mapped_column(String(100), nullable=False)
    zip_code: Mapped[str] = mapped_column(String(20), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_addresses_owner_id", "owner_id"),
        Index(
            "uq_addresses_one_default",
            "owner_id",
            unique=True,
            postgresql_where=text("is_default"),
            sqlite_where=text("is_default"),
        ),
    )

    def as_details(self) -> dict:
        return {
            "address_line_1": self.address_line_1,
            "address_line_2": self.address_line_2,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "label": self.label,
        }


class Service(TimestampMixin, Base):
    """Catalog entry. Ids are fixed external keys ("service1") so seeding is an upsert."""
    __tablename__ = "services"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    base_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    estimated_duration_minutes: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    image: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class Offer(TimestampMixin, Base):
    """Promotional banner shown on the public catalog."""
    __tablename__ = "offers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    link_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class Appointment(TimestampMixin, Base):
    """
    Core appointment entity. Status transitions:
    pending_assignment → assigned → on_the_way → arrived → service_started → completed,
    with exits to declined_by_doctor / cancelled_by_patient and a reschedule
    loop back to pending_assignment.
    """
    __tablename__ = "appointments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    service_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("services.id", ondelete="SET NULL"), nullable=True
    )
    address_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("addresses.id", ondelete="SET NULL"), nullable=True
    )
    doctor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )

    # Schedule
    requested_date: Mapped[date] = mapped_column(Date, nullable=False)
    requested_time_slot: Mapped[str] = mapped_column(String(50), nullable=False)
    estimated_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Status
    status: Mapped[AppointmentStatus] = mapped_column(
        _enum(AppointmentStatus),
        nullable=False,
        default=AppointmentStatus.PENDING_ASSIGNMENT,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING
    )
    # Latest payment record; no FK since payments already reference appointments
    payment_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    actual_start_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    actual_end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    declined_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reschedule_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Eager joins so enrichment never lazy-loads under asyncio
    service: Mapped[Optional["Service"]] = relationship(lazy="joined")
    address: Mapped[Optional["Address"]] = relationship(lazy="joined")
    patient: Mapped["User"] = relationship(foreign_keys=[patient_id], lazy="joined")
    doctor: Mapped[Optional["User"]] = relationship(foreign_keys=[doctor_id], lazy="joined")

    __table_args__ = (
        Index("ix_appointments_patient_id", "patient_id"),
        Index("ix_appointments_doctor_id", "doctor_id"),
        Index("ix_appointments_status", "status"),
    )


class AppointmentStatusLog(Base):
    """Append-only log of every appointment status transition."""
    __tablename__ = "appointment_status_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False
    )
    from_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)
    changed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (Index("ix_status_logs_appointment_id", "appointment_id"),)


class Payment(Base):
    """
    Immutable settlement attempt. Fee shares are fixed at creation and
    always sum to `amount`.
    """
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("appointments.id"), nullable=False
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="INR", nullable=False)
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)
    gateway_transaction_id: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        _enum(TransactionStatus), nullable=False
    )
    platform_fee_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    doctor_fee_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    admin_fee_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    transaction_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_payments_appointment_id", "appointment_id"),
        Index("ix_payments_patient_id", "patient_id"),
    )


class Feedback(Base):
    """Post-visit rating. One per appointment (enforced by unique constraint)."""
    __tablename__ = "feedback"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("appointments.id"), unique=True, nullable=False
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    doctor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    rating: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    comments: Mapped[str] = mapped_column(Text, default="", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_feedback_rating_range"),
        Index("ix_feedback_doctor_id", "doctor_id"),
    )


class AdminAuditLog(Base):
    """Immutable log of all admin actions."""
    __tablename__ = "admin_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    admin_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_audit_admin_id", "admin_id"),
        Index("ix_admin_audit_created_at", "created_at"),
    )
