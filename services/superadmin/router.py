"""
services/superadmin/router.py
Read-only superadmin views: effective platform configuration, settled
payment totals and the admin audit trail.
"""

from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from shared.middleware.auth import require_superadmin
from shared.models.models import AdminAuditLog, Payment, TransactionStatus, User
from shared.schemas.schemas import AuditLogResponse

router = APIRouter(prefix="/superadmin", tags=["Superadmin"])


def _money(value) -> float:
    return float(value or Decimal("0.00"))


@router.get("/platform-config")
async def platform_config(current_user: User = Depends(require_superadmin)):
    return {
        "message": "Platform configuration retrieved successfully.",
        "success": True,
        "config": {
            "platform_fee_rate": float(settings.PLATFORM_FEE_RATE),
            "doctor_fee_rate": float(settings.DOCTOR_FEE_RATE),
            "admin_fee_rate": float(settings.ADMIN_FEE_RATE),
            "advance_ordering": settings.ADVANCE_ORDERING,
            "currency": settings.DEFAULT_CURRENCY,
            "payment_gateway": settings.PAYMENT_GATEWAY,
        },
    }


@router.get("/financial-oversight")
async def financial_oversight(
    current_user: User = Depends(require_superadmin),
    db: AsyncSession = Depends(get_db),
):
    """Totals over successful payments only. Declined attempts are counted separately."""
    result = await db.execute(
        select(
            func.count(Payment.id),
            func.sum(Payment.amount),
            func.sum(Payment.platform_fee_amount),
            func.sum(Payment.doctor_fee_amount),
            func.sum(Payment.admin_fee_amount),
        ).where(Payment.status == TransactionStatus.SUCCESSFUL)
    )
    count, gross, platform, doctor, admin = result.one()
    failed = await db.scalar(
        select(func.count(Payment.id)).where(Payment.status == TransactionStatus.FAILED)
    )

    return {
        "message": "Financial overview retrieved successfully.",
        "success": True,
        "successful_payments": count or 0,
        "failed_payments": failed or 0,
        "gross_amount": _money(gross),
        "platform_fees": _money(platform),
        "doctor_fees": _money(doctor),
        "admin_fees": _money(admin),
    }


@router.get("/audit-logs")
async def audit_logs(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_superadmin),
    db: AsyncSession = Depends(get_db),
):
    query = select(AdminAuditLog).order_by(AdminAuditLog.created_at.desc())
    total = await db.scalar(select(func.count()).select_from(query.subquery()))

    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))
    return {
        "message": "Audit logs retrieved successfully.",
        "success": True,
        "items": [AuditLogResponse.model_validate(log).model_dump() for log in result.scalars()],
        "total": total,
        "page": page,
        "page_size": page_size,
    }
