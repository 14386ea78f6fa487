"""
tasks/earnings_tasks.py
Nightly reconciliation of the doctors' running earnings totals.

Settlement increments DoctorProfile.total_earnings in the same transaction
that marks an appointment paid. This task recomputes every total from the
successful payment records and overwrites any drift. Idempotent.
"""

import logging
from decimal import Decimal

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker

from config.settings import settings
from services.doctor.earnings import totals_by_doctor_statement
from shared.models.models import DoctorProfile, User, UserRole
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


# ── Helpers ────────────────────────────────────────────────────────────────────

def _sync_url(url: str) -> str:
    return url.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")


def _get_sync_session() -> Session:
    """Create a synchronous SQLAlchemy session (Celery runs sync by default)."""
    engine = create_engine(_sync_url(settings.DATABASE_URL), pool_pre_ping=True)
    SessionLocal = sessionmaker(bind=engine)
    return SessionLocal()


def reconcile(db: Session) -> dict:
    """
    Overwrite each doctor's total_earnings with the settled sum.
    Doctors without settled payments are reset to zero. Returns counts.
    """
    totals = {
        doctor_id: Decimal(total or 0).quantize(Decimal("0.01"))
        for doctor_id, total in db.execute(totals_by_doctor_statement()).all()
    }

    doctor_ids = db.execute(
        select(User.id).where(User.role == UserRole.DOCTOR, User.deleted_at.is_(None))
    ).scalars().all()
    profiles = {
        p.user_id: p
        for p in db.execute(select(DoctorProfile)).scalars().all()
    }

    corrected = created = 0
    for doctor_id in set(doctor_ids) | set(totals):
        expected = totals.get(doctor_id, Decimal("0.00"))
        profile = profiles.get(doctor_id)
        if profile is None:
            db.add(DoctorProfile(user_id=doctor_id, total_earnings=expected))
            created += 1
            continue
        if Decimal(profile.total_earnings) != expected:
            logger.warning(
                f"Earnings drift for doctor {doctor_id}: "
                f"stored {profile.total_earnings}, settled {expected}"
            )
            profile.total_earnings = expected
            corrected += 1

    db.commit()
    return {"checked": len(set(doctor_ids) | set(totals)), "corrected": corrected, "created": created}


# ── Tasks ──────────────────────────────────────────────────────────────────────

@celery_app.task(bind=True, max_retries=3, default_retry_delay=300)
def reconcile_doctor_earnings(self):
    db = _get_sync_session()
    try:
        result = reconcile(db)
        logger.info(f"reconcile_doctor_earnings: {result}")
        return result
    except Exception as e:
        db.rollback()
        logger.exception(f"reconcile_doctor_earnings failed: {e}")
        raise self.retry(exc=e, countdown=300 * (2 ** self.request.retries))
    finally:
        db.close()
