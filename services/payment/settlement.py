"""
services/payment/settlement.py
Records a payment attempt against an appointment.

Settlement runs in three steps:

1. Claim: a conditional update moves the appointment's payment_status to
   processing. Only one caller holds the claim; every other settlement of
   the same appointment is rejected before the gateway is called.
2. Authorize: the gateway runs outside any transaction. If it raises, the
   claim is handed back and nothing is recorded.
3. Record: the payment record, the appointment's payment_status/payment_id
   and the doctor's running earnings total are written in one transaction,
   conditioned on the claim still being held.
"""

import logging
import time
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from pybreaker import CircuitBreakerError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from config.database import run_in_transaction
from config.settings import settings
from services.payment.gateway import (
    Charge,
    GatewayError,
    GatewayResult,
    PaymentGateway,
    gateway_breaker,
)
from shared.exceptions import AlreadySettled, GatewayUnavailable, NotFound, StoreConflict
from shared.models.models import (
    Appointment,
    DoctorProfile,
    Payment,
    PaymentStatus,
    TransactionStatus,
)

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def split_fees(amount: Decimal) -> tuple[Decimal, Decimal, Decimal]:
    """
    (platform, doctor, admin) shares of `amount`. The admin share takes
    the rounding remainder so the three always add up to `amount`.
    """
    amount = amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    platform = (amount * settings.PLATFORM_FEE_RATE).quantize(CENTS, rounding=ROUND_HALF_UP)
    doctor = (amount * settings.DOCTOR_FEE_RATE).quantize(CENTS, rounding=ROUND_HALF_UP)
    return platform, doctor, amount - platform - doctor


async def _authorize(gateway: PaymentGateway, charge: Charge) -> GatewayResult:
    try:
        return await run_in_threadpool(gateway_breaker.call, gateway.authorize, charge)
    except CircuitBreakerError:
        logger.error("Payment gateway circuit is open, rejecting settlement")
        raise GatewayUnavailable()
    except GatewayError as e:
        logger.error(f"Payment gateway error: {e}")
        raise GatewayUnavailable()


# ── Claim ─────────────────────────────────────────────────────

async def _claim(
    db: AsyncSession, appointment_id: uuid.UUID, patient_id: uuid.UUID
) -> PaymentStatus:
    """Take the appointment for this settlement. Returns the status it had before."""

    async def work(db: AsyncSession) -> PaymentStatus:
        previous = await db.scalar(
            select(Appointment.payment_status).where(
                Appointment.id == appointment_id,
                Appointment.patient_id == patient_id,
            )
        )
        if previous is None:
            raise NotFound("Appointment not found or unauthorized.")
        if previous == PaymentStatus.PAID:
            raise AlreadySettled("Appointment has already been paid.")
        if previous == PaymentStatus.PROCESSING:
            raise AlreadySettled("A payment for this appointment is already in progress.")

        result = await db.execute(
            update(Appointment)
            .where(Appointment.id == appointment_id, Appointment.payment_status == previous)
            .values(payment_status=PaymentStatus.PROCESSING)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AlreadySettled("A payment for this appointment is already in progress.")
        return previous

    return await run_in_transaction(db, work)


async def _release(db: AsyncSession, appointment_id: uuid.UUID, previous: PaymentStatus) -> None:
    async def work(db: AsyncSession) -> None:
        await db.execute(
            update(Appointment)
            .where(
                Appointment.id == appointment_id,
                Appointment.payment_status == PaymentStatus.PROCESSING,
            )
            .values(payment_status=previous)
            .execution_options(synchronize_session=False)
        )

    await run_in_transaction(db, work)


# ── Settle ────────────────────────────────────────────────────

async def settle(
    db: AsyncSession,
    gateway: PaymentGateway,
    patient_id: uuid.UUID,
    appointment_id: uuid.UUID,
    amount: Decimal,
    currency: str,
    payment_method: str,
    transaction_id: Optional[str] = None,
) -> Payment:
    """
    Returns the new payment record, successful or failed.
    Raises NotFound, AlreadySettled or GatewayUnavailable.
    """
    previous = await _claim(db, appointment_id, patient_id)

    charge = Charge(appointment_id, amount, currency, payment_method)
    try:
        outcome = await _authorize(gateway, charge)
    except Exception:
        await _release(db, appointment_id, previous)
        raise

    platform_fee, doctor_fee, admin_fee = split_fees(amount)
    transaction_id = (
        transaction_id
        or outcome.transaction_id
        or f"TXN_{int(time.time() * 1000)}"
    )
    status = TransactionStatus.SUCCESSFUL if outcome.approved else TransactionStatus.FAILED

    async def work(db: AsyncSession) -> Payment:
        payment_id = uuid.uuid4()
        result = await db.execute(
            update(Appointment)
            .where(
                Appointment.id == appointment_id,
                Appointment.payment_status == PaymentStatus.PROCESSING,
            )
            .values(
                payment_status=PaymentStatus.PAID if outcome.approved else PaymentStatus.FAILED,
                payment_id=payment_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.error(
                f"Settlement claim on appointment {appointment_id} lost after gateway "
                f"{status.value} (transaction {transaction_id})"
            )
            raise StoreConflict("Payment could not be recorded. Please contact support.")

        payment = Payment(
            id=payment_id,
            appointment_id=appointment_id,
            patient_id=patient_id,
            amount=amount.quantize(CENTS, rounding=ROUND_HALF_UP),
            currency=currency,
            payment_method=payment_method,
            gateway_transaction_id=transaction_id,
            status=status,
            platform_fee_amount=platform_fee,
            doctor_fee_amount=doctor_fee,
            admin_fee_amount=admin_fee,
        )
        db.add(payment)

        doctor_id = await db.scalar(
            select(Appointment.doctor_id).where(Appointment.id == appointment_id)
        )
        if outcome.approved and doctor_id is not None:
            await _credit_doctor(db, doctor_id, doctor_fee)

        await db.flush()
        return payment

    payment = await run_in_transaction(db, work)
    logger.info(
        f"Settlement {payment.id} for appointment {appointment_id}: "
        f"{status.value} {amount} {currency}"
    )
    return payment


async def _credit_doctor(db: AsyncSession, doctor_id: uuid.UUID, doctor_fee: Decimal) -> None:
    result = await db.execute(
        update(DoctorProfile)
        .where(DoctorProfile.user_id == doctor_id)
        .values(total_earnings=DoctorProfile.total_earnings + doctor_fee)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.add(DoctorProfile(user_id=doctor_id, total_earnings=doctor_fee))
