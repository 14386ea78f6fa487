"""
services/feedback/router.py
Post-visit feedback. One record per appointment, only after the visit
is completed or paid.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.exceptions import NotFound, ValidationError
from shared.middleware.auth import require_patient
from shared.models.models import (
    Appointment,
    AppointmentStatus,
    Feedback,
    PaymentStatus,
    User,
)
from shared.schemas.schemas import FeedbackCreate, FeedbackResponse

router = APIRouter(prefix="/feedback", tags=["Feedback"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_feedback(
    body: FeedbackCreate,
    current_user: User = Depends(require_patient),
    db: AsyncSession = Depends(get_db),
):
    patient_id = current_user.id
    result = await db.execute(
        select(Appointment.status, Appointment.payment_status, Appointment.doctor_id).where(
            Appointment.id == body.appointment_id,
            Appointment.patient_id == patient_id,
        )
    )
    appointment = result.first()
    if appointment is None:
        raise NotFound("Appointment not found or unauthorized.")

    if (
        appointment.status != AppointmentStatus.COMPLETED
        and appointment.payment_status != PaymentStatus.PAID
    ):
        raise ValidationError("Feedback can only be submitted for completed or paid appointments.")

    existing = await db.scalar(
        select(Feedback.id).where(Feedback.appointment_id == body.appointment_id)
    )
    if existing:
        raise ValidationError("Feedback has already been submitted for this appointment.")

    feedback = Feedback(
        appointment_id=body.appointment_id,
        patient_id=patient_id,
        doctor_id=appointment.doctor_id,
        rating=body.rating,
        comments=body.comments,
    )
    db.add(feedback)
    try:
        await db.commit()
    except IntegrityError:
        # Lost a race with a concurrent submission for the same appointment
        await db.rollback()
        raise ValidationError("Feedback has already been submitted for this appointment.")

    return {
        "message": "Feedback submitted successfully!",
        "success": True,
        "feedback": FeedbackResponse.model_validate(feedback).model_dump(),
    }
