"""
Payment Reconciliation Worker.

Scheduled counterpart of the webhook path: retries failed appointment
links and expires payments that were never confirmed.
"""

import asyncio
import logging

from app.config import settings
from app.database import get_db_context
from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


async def run_relink() -> dict:
    from app.services.payment_maintenance_service import PaymentMaintenanceService

    async with get_db_context() as db:
        service = PaymentMaintenanceService(db, booking_fee=settings.appointment_booking_fee)
        return await service.relink_unlinked_appointments(
            grace_minutes=settings.unlinked_appointment_grace_minutes,
        )


async def run_expiry() -> dict:
    from app.services.payment_maintenance_service import PaymentMaintenanceService

    async with get_db_context() as db:
        service = PaymentMaintenanceService(db, booking_fee=settings.appointment_booking_fee)
        return await service.expire_stale_pending_payments(
            expiry_minutes=settings.pending_payment_expiry_minutes,
        )


@celery_app.task(bind=True, max_retries=3)
def reconcile_unlinked_appointments(self):
    """Create and link appointments for completed payments left unlinked."""
    try:
        counts = asyncio.run(run_relink())
        logger.info(f"Relinked appointments: {counts}")
        return {"success": True, **counts}
    except Exception as e:
        logger.error(f"Appointment relink failed: {e}", exc_info=True)
        raise self.retry(exc=e, countdown=60)


@celery_app.task(bind=True, max_retries=3)
def expire_stale_pending_payments(self):
    """Fail pending payments with no provider confirmation."""
    try:
        counts = asyncio.run(run_expiry())
        logger.info(f"Expired pending payments: {counts}")
        return {"success": True, **counts}
    except Exception as e:
        logger.error(f"Pending payment expiry failed: {e}", exc_info=True)
        raise self.retry(exc=e, countdown=60)
