"""
Celery application configuration.
"""

from celery import Celery
from celery.schedules import crontab

from app.config import settings

# Create Celery app
celery_app = Celery(
    "clinic_payments",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "app.workers.payment_reconciliation",
    ],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.default_timezone,
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # Bookings whose appointment saga failed during the webhook
    "relink-unlinked-appointments": {
        "task": "app.workers.payment_reconciliation.reconcile_unlinked_appointments",
        "schedule": crontab(minute="*/15"),
    },
    # Pending payments the provider never confirmed
    "expire-stale-pending-payments": {
        "task": "app.workers.payment_reconciliation.expire_stale_pending_payments",
        "schedule": crontab(minute=5, hour="*"),
    },
}
