"""
services/doctor/earnings.py
Read-side rollup of a doctor's settled fee share.

The exact figure always comes from the successful payment records of
paid appointments. DoctorProfile.total_earnings is a running copy kept
by settlement and reconciled against these queries nightly.
"""

import uuid
from decimal import Decimal

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Appointment, Payment, PaymentStatus, TransactionStatus
from shared.schemas.schemas import EarningsItem

_SETTLED = (
    Appointment.payment_status == PaymentStatus.PAID,
    Payment.status == TransactionStatus.SUCCESSFUL,
)


def history_statement(doctor_id: uuid.UUID) -> Select:
    return (
        select(
            Payment.appointment_id,
            Payment.id.label("payment_id"),
            Payment.doctor_fee_amount.label("amount"),
            Payment.currency,
            Payment.transaction_date,
            Appointment.service_id,
        )
        .join(Appointment, Appointment.id == Payment.appointment_id)
        .where(Appointment.doctor_id == doctor_id, *_SETTLED)
        .order_by(Payment.transaction_date.desc())
    )


def totals_by_doctor_statement() -> Select:
    """(doctor_id, total) for every doctor with settled payments."""
    return (
        select(Appointment.doctor_id, func.sum(Payment.doctor_fee_amount))
        .join(Appointment, Appointment.id == Payment.appointment_id)
        .where(Appointment.doctor_id.is_not(None), *_SETTLED)
        .group_by(Appointment.doctor_id)
    )


async def rollup(db: AsyncSession, doctor_id: uuid.UUID) -> dict:
    rows = (await db.execute(history_statement(doctor_id))).all()
    total = sum((Decimal(row.amount) for row in rows), Decimal("0.00"))
    return {
        "total_earnings": float(total),
        "earnings_history": [EarningsItem.model_validate(row).model_dump() for row in rows],
    }
