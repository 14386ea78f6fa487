"""
services/appointment/service.py
Appointment lifecycle: creation, patient reschedule/cancel, doctor
accept/decline/advance, and the read-side enrichment shared by the
patient, doctor and admin routers.

Every transition is a compare-and-set: the current status is read, the
precondition is checked, and the UPDATE is conditioned on the status
that was read. A concurrent writer that got there first leaves the
UPDATE matching zero rows, which is reported as InvalidTransition.
The status change and its AppointmentStatusLog row commit together.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import run_in_transaction
from config.settings import settings
from services.appointment.state import (
    ADVANCE_TARGETS,
    CANCELLABLE,
    RESCHEDULABLE,
    TERMINAL,
    advance_sources,
)
from shared.exceptions import InvalidTransition, NotFound, ValidationError
from shared.models.models import (
    Address,
    Appointment,
    AppointmentStatus,
    AppointmentStatusLog,
    PaymentStatus,
    Service,
)
from shared.schemas.schemas import AppointmentCreate, AppointmentResponse

logger = logging.getLogger(__name__)

S = AppointmentStatus


# ── Helpers ───────────────────────────────────────────────────

async def _reload(db: AsyncSession, appointment_id: uuid.UUID) -> Appointment:
    result = await db.execute(
        select(Appointment)
        .where(Appointment.id == appointment_id)
        .execution_options(populate_existing=True)
    )
    return result.unique().scalar_one()


async def _read_state(db: AsyncSession, appointment_id: uuid.UUID):
    result = await db.execute(
        select(
            Appointment.status,
            Appointment.patient_id,
            Appointment.doctor_id,
        ).where(Appointment.id == appointment_id)
    )
    row = result.first()
    if row is None:
        raise NotFound("Appointment not found.")
    return row


async def _compare_and_set(
    db: AsyncSession,
    appointment_id: uuid.UUID,
    expected: AppointmentStatus,
    to_status: AppointmentStatus,
    changed_by_id: uuid.UUID,
    reason: Optional[str] = None,
    **values: Any,
) -> Appointment:
    result = await db.execute(
        update(Appointment)
        .where(Appointment.id == appointment_id, Appointment.status == expected)
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidTransition("Appointment status changed concurrently, please refresh.")

    db.add(AppointmentStatusLog(
        appointment_id=appointment_id,
        from_status=expected.value,
        to_status=to_status.value,
        changed_by_id=changed_by_id,
        reason=reason,
    ))
    await db.flush()
    return await _reload(db, appointment_id)


def to_response(appointment: Appointment) -> dict:
    """Appointment plus the joined service, address, patient and doctor names."""
    data = AppointmentResponse.model_validate(appointment).model_dump()
    data["service_name"] = appointment.service.name if appointment.service else None
    data["address_details"] = appointment.address.as_details() if appointment.address else None
    data["patient_name"] = appointment.patient.display_name if appointment.patient else None
    data["doctor_name"] = appointment.doctor.display_name if appointment.doctor else "Unassigned"
    return data


# ── Reads ─────────────────────────────────────────────────────

async def get_for_patient(
    db: AsyncSession, appointment_id: uuid.UUID, patient_id: uuid.UUID
) -> Appointment:
    result = await db.execute(
        select(Appointment).where(
            Appointment.id == appointment_id,
            Appointment.patient_id == patient_id,
        )
    )
    appointment = result.unique().scalar_one_or_none()
    if not appointment:
        raise NotFound("Appointment not found or unauthorized.")
    return appointment


async def list_for_patient(db: AsyncSession, patient_id: uuid.UUID) -> list[Appointment]:
    result = await db.execute(
        select(Appointment)
        .where(Appointment.patient_id == patient_id)
        .order_by(Appointment.created_at.desc())
    )
    return list(result.unique().scalars())


async def list_for_doctor(
    db: AsyncSession,
    doctor_id: uuid.UUID,
    status: Optional[AppointmentStatus] = None,
) -> list[Appointment]:
    query = select(Appointment).where(Appointment.doctor_id == doctor_id)
    if status is not None:
        query = query.where(Appointment.status == status)
    result = await db.execute(
        query.order_by(Appointment.requested_date.desc(), Appointment.created_at.desc())
    )
    return list(result.unique().scalars())


async def list_available(db: AsyncSession) -> list[Appointment]:
    """
    Every pending request. No zone filtering: all doctors see all of them.
    """
    result = await db.execute(
        select(Appointment)
        .where(Appointment.status == S.PENDING_ASSIGNMENT)
        .order_by(Appointment.requested_date, Appointment.created_at)
    )
    return list(result.unique().scalars())


async def list_all(
    db: AsyncSession, status: Optional[AppointmentStatus] = None
) -> list[Appointment]:
    query = select(Appointment)
    if status is not None:
        query = query.where(Appointment.status == status)
    result = await db.execute(query.order_by(Appointment.created_at.desc()))
    return list(result.unique().scalars())


async def history(db: AsyncSession, appointment_id: uuid.UUID) -> list[AppointmentStatusLog]:
    exists = await db.scalar(select(Appointment.id).where(Appointment.id == appointment_id))
    if not exists:
        raise NotFound("Appointment not found.")
    result = await db.execute(
        select(AppointmentStatusLog)
        .where(AppointmentStatusLog.appointment_id == appointment_id)
        .order_by(AppointmentStatusLog.created_at)
    )
    return list(result.scalars())


# ── Patient Events ────────────────────────────────────────────

async def create(db: AsyncSession, patient_id: uuid.UUID, data: AppointmentCreate) -> Appointment:
    async def work(db: AsyncSession) -> Appointment:
        service = await db.get(Service, data.service_id)
        if not service:
            raise ValidationError("Invalid service selected.")

        address_id = await db.scalar(
            select(Address.id).where(
                Address.id == data.address_id, Address.owner_id == patient_id
            )
        )
        if not address_id:
            raise ValidationError("Invalid address selected or address does not belong to user.")

        appointment = Appointment(
            id=uuid.uuid4(),
            patient_id=patient_id,
            service_id=service.id,
            address_id=address_id,
            requested_date=data.requested_date,
            requested_time_slot=data.requested_time_slot,
            estimated_cost=data.estimated_cost,
            status=S.PENDING_ASSIGNMENT,
            payment_status=PaymentStatus.PENDING,
        )
        db.add(appointment)
        db.add(AppointmentStatusLog(
            appointment_id=appointment.id,
            from_status=None,
            to_status=S.PENDING_ASSIGNMENT.value,
            changed_by_id=patient_id,
        ))
        await db.flush()
        return await _reload(db, appointment.id)

    appointment = await run_in_transaction(db, work)
    logger.info(f"Appointment {appointment.id} requested by patient {patient_id}")
    return appointment


async def reschedule(
    db: AsyncSession,
    appointment_id: uuid.UUID,
    patient_id: uuid.UUID,
    new_date: Optional[date],
    new_time_slot: Optional[str],
    reason: Optional[str] = None,
) -> Appointment:
    """Move the visit to a new slot; any assigned doctor is released."""
    if not new_date or not new_time_slot:
        raise InvalidTransition("Missing reschedule date or time slot.")

    async def work(db: AsyncSession) -> Appointment:
        state = await _read_state(db, appointment_id)
        if state.patient_id != patient_id:
            raise NotFound("Appointment not found or unauthorized.")
        if state.status not in RESCHEDULABLE:
            raise InvalidTransition(
                f"Appointment cannot be rescheduled while {state.status.value}."
            )
        return await _compare_and_set(
            db,
            appointment_id,
            expected=state.status,
            to_status=S.PENDING_ASSIGNMENT,
            changed_by_id=patient_id,
            reason=reason,
            requested_date=new_date,
            requested_time_slot=new_time_slot,
            reschedule_reason=reason,
            doctor_id=None,
            assigned_at=None,
        )

    appointment = await run_in_transaction(db, work)
    logger.info(f"Appointment {appointment_id} rescheduled to {new_date} {new_time_slot}")
    return appointment


async def cancel(
    db: AsyncSession,
    appointment_id: uuid.UUID,
    patient_id: uuid.UUID,
    reason: Optional[str] = None,
) -> Appointment:
    reason = reason or "Patient cancelled."

    async def work(db: AsyncSession) -> Appointment:
        state = await _read_state(db, appointment_id)
        if state.patient_id != patient_id:
            raise NotFound("Appointment not found or unauthorized.")
        if state.status not in CANCELLABLE:
            raise InvalidTransition(
                f"Appointment cannot be cancelled while {state.status.value}."
            )
        return await _compare_and_set(
            db,
            appointment_id,
            expected=state.status,
            to_status=S.CANCELLED_BY_PATIENT,
            changed_by_id=patient_id,
            reason=reason,
            cancellation_reason=reason,
        )

    appointment = await run_in_transaction(db, work)
    logger.info(f"Appointment {appointment_id} cancelled by patient")
    return appointment


# ── Doctor Events ─────────────────────────────────────────────

async def accept(db: AsyncSession, appointment_id: uuid.UUID, doctor_id: uuid.UUID) -> Appointment:
    """
    Claim a pending request. Of any number of concurrent callers exactly
    one wins; the others get InvalidTransition.
    """
    async def work(db: AsyncSession) -> Appointment:
        state = await _read_state(db, appointment_id)
        if state.status != S.PENDING_ASSIGNMENT:
            raise InvalidTransition("Appointment already assigned or not available.")
        try:
            return await _compare_and_set(
                db,
                appointment_id,
                expected=S.PENDING_ASSIGNMENT,
                to_status=S.ASSIGNED,
                changed_by_id=doctor_id,
                doctor_id=doctor_id,
                assigned_at=datetime.now(timezone.utc),
            )
        except InvalidTransition:
            raise InvalidTransition("Appointment already assigned or not available.")

    try:
        appointment = await run_in_transaction(db, work)
    except InvalidTransition:
        logger.info(f"Doctor {doctor_id} lost accept race for appointment {appointment_id}")
        raise
    logger.info(f"Appointment {appointment_id} assigned to doctor {doctor_id}")
    return appointment


async def decline(
    db: AsyncSession,
    appointment_id: uuid.UUID,
    doctor_id: uuid.UUID,
    reason: Optional[str] = None,
) -> Appointment:
    reason = reason or "Doctor declined the request."

    async def work(db: AsyncSession) -> Appointment:
        state = await _read_state(db, appointment_id)
        if state.status != S.PENDING_ASSIGNMENT:
            raise InvalidTransition("Appointment already assigned or not available for decline.")
        return await _compare_and_set(
            db,
            appointment_id,
            expected=S.PENDING_ASSIGNMENT,
            to_status=S.DECLINED_BY_DOCTOR,
            changed_by_id=doctor_id,
            reason=reason,
            declined_reason=reason,
        )

    appointment = await run_in_transaction(db, work)
    logger.info(f"Appointment {appointment_id} declined by doctor {doctor_id}")
    return appointment


async def advance(
    db: AsyncSession,
    appointment_id: uuid.UUID,
    doctor_id: uuid.UUID,
    target: AppointmentStatus,
) -> Appointment:
    """Report visit progress. Only the assigned doctor may advance."""
    if target not in ADVANCE_TARGETS:
        raise InvalidTransition("Invalid status update for doctor.")
    allowed_from = advance_sources(target, settings.ADVANCE_ORDERING)

    async def work(db: AsyncSession) -> Appointment:
        state = await _read_state(db, appointment_id)
        if state.doctor_id != doctor_id:
            raise InvalidTransition("Appointment is not assigned to you.")
        if state.status in TERMINAL:
            raise InvalidTransition(f"Appointment is already {state.status.value}.")
        if state.status not in allowed_from:
            raise InvalidTransition(
                f"Cannot move appointment from {state.status.value} to {target.value}."
            )

        now = datetime.now(timezone.utc)
        values: dict[str, Any] = {}
        if target == S.SERVICE_STARTED:
            values["actual_start_time"] = now
        elif target == S.COMPLETED:
            values["actual_end_time"] = now

        appointment = await _compare_and_set(
            db,
            appointment_id,
            expected=state.status,
            to_status=target,
            changed_by_id=doctor_id,
            **values,
        )
        if target == S.COMPLETED:
            # Open for payment, unless settled or a settlement is in flight
            await db.execute(
                update(Appointment)
                .where(
                    Appointment.id == appointment_id,
                    Appointment.payment_status.notin_(
                        [PaymentStatus.PAID, PaymentStatus.PROCESSING]
                    ),
                )
                .values(payment_status=PaymentStatus.PENDING)
                .execution_options(synchronize_session=False)
            )
            appointment = await _reload(db, appointment_id)
        return appointment

    appointment = await run_in_transaction(db, work)
    logger.info(f"Appointment {appointment_id} advanced to {target.value}")
    return appointment
