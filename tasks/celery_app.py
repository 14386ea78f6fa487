"""
tasks/celery_app.py
Celery application for background bookkeeping. The only periodic job is the
nightly earnings reconciliation, which runs on its own queue so a slow pass
never delays other work.

    celery -A tasks.celery_app worker -Q earnings --loglevel=info
    celery -A tasks.celery_app beat --loglevel=info
"""

from celery import Celery
from celery.schedules import crontab

from config.settings import settings

EARNINGS_QUEUE = "earnings"

celery_app = Celery(
    "dental_care",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["tasks.earnings_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # A worker lost mid-pass re-queues the task; reconciliation is idempotent
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=settings.EARNINGS_RECONCILE_TIME_LIMIT_SECONDS,
    result_expires=24 * 3600,
    task_routes={"tasks.earnings_tasks.*": {"queue": EARNINGS_QUEUE}},
    worker_prefetch_multiplier=1,
)

celery_app.conf.beat_schedule = {
    "reconcile-doctor-earnings": {
        "task": "tasks.earnings_tasks.reconcile_doctor_earnings",
        "schedule": crontab(
            hour=settings.EARNINGS_RECONCILE_HOUR_UTC,
            minute=settings.EARNINGS_RECONCILE_MINUTE_UTC,
        ),
        "options": {"queue": EARNINGS_QUEUE},
    },
}
