"""
services/payment/router.py
Patient payment settlement and payment history.
"""

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.payment.gateway import PaymentGateway, get_payment_gateway
from services.payment.settlement import settle
from shared.middleware.auth import require_patient
from shared.models.models import Payment, TransactionStatus, User
from shared.schemas.schemas import PaymentCreate, PaymentResponse

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("")
async def process_payment(
    body: PaymentCreate,
    current_user: User = Depends(require_patient),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """
    Settle an appointment. A gateway decline is still recorded (payment
    record with status failed, appointment payment_status failed) and
    reported as 400; the patient may retry.
    """
    payment = await settle(
        db,
        gateway,
        patient_id=current_user.id,
        appointment_id=body.appointment_id,
        amount=body.amount,
        currency=body.currency,
        payment_method=body.payment_method,
        transaction_id=body.payment_gateway_transaction_id,
    )

    if payment.status == TransactionStatus.FAILED:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "message": "Payment failed. Please try again.",
                "error": "payment_failed",
                "status": TransactionStatus.FAILED.value,
                "payment_id": str(payment.id),
            },
        )

    return {
        "message": "Payment processed successfully!",
        "success": True,
        "payment_id": str(payment.id),
        "status": TransactionStatus.SUCCESSFUL.value,
        "payment": PaymentResponse.model_validate(payment).model_dump(),
    }


@router.get("")
async def list_my_payments(
    current_user: User = Depends(require_patient),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Payment)
        .where(Payment.patient_id == current_user.id)
        .order_by(Payment.transaction_date.desc())
    )
    return {
        "message": "Payments retrieved successfully.",
        "success": True,
        "payments": [PaymentResponse.model_validate(p).model_dump() for p in result.scalars()],
    }
