"""
services/doctor/router.py
Doctor endpoints: open request board, accept/decline, visit progress,
availability, profile and earnings.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.appointment import service as appointments
from services.appointment.state import parse_status
from services.doctor.earnings import rollup
from shared.exceptions import InvalidTransition, ValidationError
from shared.middleware.auth import require_doctor
from shared.models.models import DoctorProfile, User
from shared.schemas.schemas import (
    AvailabilityUpdate,
    DeclineRequest,
    DoctorProfileResponse,
    DoctorStatusUpdate,
    UserResponse,
)

router = APIRouter(prefix="/doctor", tags=["Doctor"])


# ── Helpers ───────────────────────────────────────────────────

async def _get_or_create_profile(db: AsyncSession, user_id: UUID) -> DoctorProfile:
    result = await db.execute(
        select(DoctorProfile)
        .where(DoctorProfile.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    profile = result.scalar_one_or_none()
    if not profile:
        profile = DoctorProfile(user_id=user_id)
        db.add(profile)
        await db.flush()
    return profile


# ── Request Board ─────────────────────────────────────────────

@router.get("/requests/available")
async def list_available_requests(
    current_user: User = Depends(require_doctor),
    db: AsyncSession = Depends(get_db),
):
    """Every pending request, with patient name, service name and address."""
    items = await appointments.list_available(db)
    return {
        "message": "Available requests retrieved successfully.",
        "success": True,
        "requests": [appointments.to_response(a) for a in items],
    }


@router.post("/requests/{appointment_id}/accept")
async def accept_request(
    appointment_id: UUID,
    current_user: User = Depends(require_doctor),
    db: AsyncSession = Depends(get_db),
):
    appointment = await appointments.accept(db, appointment_id, current_user.id)
    return {
        "message": "Appointment accepted successfully!",
        "success": True,
        "appointment": appointments.to_response(appointment),
    }


@router.post("/requests/{appointment_id}/decline")
async def decline_request(
    appointment_id: UUID,
    body: Optional[DeclineRequest] = Body(None),
    current_user: User = Depends(require_doctor),
    db: AsyncSession = Depends(get_db),
):
    reason = body.reason if body else None
    appointment = await appointments.decline(db, appointment_id, current_user.id, reason)
    return {
        "message": "Appointment declined.",
        "success": True,
        "appointment": appointments.to_response(appointment),
    }


# ── Assigned Appointments ─────────────────────────────────────

@router.get("/appointments")
async def list_my_appointments(
    status: Optional[str] = Query(None, description="Filter by appointment status"),
    current_user: User = Depends(require_doctor),
    db: AsyncSession = Depends(get_db),
):
    status_filter = None
    if status:
        status_filter = parse_status(status)
        if status_filter is None:
            raise ValidationError(f"Unknown appointment status: {status}")

    items = await appointments.list_for_doctor(db, current_user.id, status_filter)
    return {
        "message": "Appointments retrieved successfully.",
        "success": True,
        "appointments": [appointments.to_response(a) for a in items],
    }


@router.put("/appointments/{appointment_id}/status")
async def update_appointment_status(
    appointment_id: UUID,
    body: DoctorStatusUpdate,
    current_user: User = Depends(require_doctor),
    db: AsyncSession = Depends(get_db),
):
    """Report visit progress: on_the_way, arrived, service_started, completed."""
    target = parse_status(body.status)
    if target is None:
        raise InvalidTransition("Invalid status update for doctor.")

    appointment = await appointments.advance(db, appointment_id, current_user.id, target)
    return {
        "message": f"Appointment status updated to {target.value}.",
        "success": True,
        "appointment": appointments.to_response(appointment),
    }


# ── Profile ───────────────────────────────────────────────────

@router.put("/availability")
async def update_availability(
    body: AvailabilityUpdate,
    current_user: User = Depends(require_doctor),
    db: AsyncSession = Depends(get_db),
):
    if body.availability_schedule is None and body.is_available_now is None:
        raise ValidationError("Provide availability_schedule or is_available_now.")

    profile = await _get_or_create_profile(db, current_user.id)
    if body.availability_schedule is not None:
        profile.availability_schedule = body.availability_schedule
    if body.is_available_now is not None:
        profile.is_available_now = body.is_available_now
    await db.flush()

    return {
        "message": "Availability updated successfully.",
        "success": True,
        "doctor_profile": DoctorProfileResponse.model_validate(profile).model_dump(),
    }


@router.get("/profile")
async def get_profile(
    current_user: User = Depends(require_doctor),
    db: AsyncSession = Depends(get_db),
):
    profile = await _get_or_create_profile(db, current_user.id)
    return {
        "message": "Doctor profile retrieved successfully.",
        "success": True,
        "user": UserResponse.model_validate(current_user).model_dump(),
        "doctor_profile": DoctorProfileResponse.model_validate(profile).model_dump(),
    }


@router.get("/earnings")
async def get_earnings(
    current_user: User = Depends(require_doctor),
    db: AsyncSession = Depends(get_db),
):
    """Total and itemized doctor fee share over all settled appointments."""
    earnings = await rollup(db, current_user.id)
    return {
        "message": "Earnings retrieved successfully.",
        "success": True,
        **earnings,
    }
