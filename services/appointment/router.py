"""
services/appointment/router.py
Patient-facing appointment endpoints: request, list, detail,
reschedule and cancel.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.appointment import service as appointments
from shared.exceptions import ValidationError
from shared.middleware.auth import require_patient
from shared.models.models import User
from shared.schemas.schemas import AppointmentCreate, AppointmentPatientUpdate

router = APIRouter(prefix="/appointments", tags=["Appointments"])

RESCHEDULE = "rescheduled"
CANCEL = "cancelled_by_patient"


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_appointment(
    body: AppointmentCreate,
    current_user: User = Depends(require_patient),
    db: AsyncSession = Depends(get_db),
):
    """Request a home visit. The appointment starts in pending_assignment."""
    appointment = await appointments.create(db, current_user.id, body)
    return {
        "message": "Appointment requested successfully!",
        "success": True,
        "appointment_id": str(appointment.id),
        "appointment": appointments.to_response(appointment),
    }


@router.get("")
async def list_my_appointments(
    current_user: User = Depends(require_patient),
    db: AsyncSession = Depends(get_db),
):
    items = await appointments.list_for_patient(db, current_user.id)
    return {
        "message": "Appointments retrieved successfully.",
        "success": True,
        "appointments": [appointments.to_response(a) for a in items],
    }


@router.get("/{appointment_id}")
async def get_appointment(
    appointment_id: UUID,
    current_user: User = Depends(require_patient),
    db: AsyncSession = Depends(get_db),
):
    appointment = await appointments.get_for_patient(db, appointment_id, current_user.id)
    return {
        "message": "Appointment retrieved successfully.",
        "success": True,
        "appointment": appointments.to_response(appointment),
    }


@router.put("/{appointment_id}")
async def update_appointment(
    appointment_id: UUID,
    body: AppointmentPatientUpdate,
    current_user: User = Depends(require_patient),
    db: AsyncSession = Depends(get_db),
):
    """
    Patients may only reschedule or cancel:
    - {"status": "rescheduled", "reschedule_date": ..., "reschedule_time_slot": ...}
    - {"status": "cancelled_by_patient", "cancellation_reason": ...}
    """
    patient_id = current_user.id

    if body.status == RESCHEDULE:
        appointment = await appointments.reschedule(
            db,
            appointment_id,
            patient_id,
            body.reschedule_date,
            body.reschedule_time_slot,
            body.reschedule_reason,
        )
        message = "Appointment rescheduled successfully."
    elif body.status == CANCEL:
        appointment = await appointments.cancel(
            db, appointment_id, patient_id, body.cancellation_reason
        )
        message = "Appointment cancelled successfully."
    else:
        raise ValidationError("Invalid status update for patient.")

    return {
        "message": message,
        "success": True,
        "appointment": appointments.to_response(appointment),
    }
