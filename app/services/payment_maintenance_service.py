"""
Payment Maintenance Service - scheduled reconciliation outside the webhook path.

- Retries the appointment saga for completed payments whose booking was
  never linked (saga failure during the webhook).
- Expires payments that stayed pending past the confirmation window.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.fsm.states import PaymentStatus
from app.models.payment import Payment
from app.services.appointment_saga import AppointmentSaga, BOOKING_PAYLOAD_KEY
from app.services.exceptions import PaymentWebhookError
from app.services.payment_ledger_service import PaymentLedgerService
from app.services.payment_service import conditional_status_update, sync_committed

logger = logging.getLogger(__name__)


class PaymentMaintenanceService:
    """Periodic jobs that close gaps the webhook path leaves behind."""

    def __init__(
        self,
        db: AsyncSession,
        booking_fee: Optional[Decimal] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.db = db
        self.clock = clock
        self.ledger = PaymentLedgerService(db)
        self.appointment_saga = AppointmentSaga(db, booking_fee=booking_fee, clock=clock)

    async def relink_unlinked_appointments(self, grace_minutes: int = 10) -> Dict[str, int]:
        """Run the appointment saga for completed, unlinked payments with booking data."""
        cutoff = self.clock() - timedelta(minutes=grace_minutes)

        result = await self.db.execute(
            select(Payment)
            .where(Payment.status == PaymentStatus.COMPLETED.value)
            .where(Payment.appointment_id.is_(None))
            .where(Payment.updated_at < cutoff)
        )
        candidates = [
            p for p in result.scalars().all()
            if isinstance((p.metadata_ or {}).get(BOOKING_PAYLOAD_KEY), dict)
        ]
        payment_ids = [p.id for p in candidates]

        counts = {"checked": len(candidates), "created": 0, "skipped": 0, "failed": 0}
        for payment, payment_id in zip(candidates, payment_ids):
            try:
                appointment = await self.appointment_saga.run(payment)
            except PaymentWebhookError as e:
                counts["failed"] += 1
                logger.error(f"Relink failed for payment {payment_id}: {e}")
                # Rollback inside the saga expired the remaining instances
                await self._refresh_all(candidates)
                continue
            if appointment:
                counts["created"] += 1
            else:
                counts["skipped"] += 1

        logger.info(f"Appointment relink run: {counts}")
        return counts

    async def expire_stale_pending_payments(self, expiry_minutes: int = 60) -> Dict[str, int]:
        """Move pending payments older than the window to failed."""
        now = self.clock()
        cutoff = now - timedelta(minutes=expiry_minutes)

        result = await self.db.execute(
            select(Payment)
            .where(Payment.status == PaymentStatus.PENDING.value)
            .where(Payment.created_at < cutoff)
        )
        stale = list(result.scalars().all())
        snapshots = [
            (p.id, p.version, Decimal(str(p.amount)), dict(p.metadata_ or {}), p)
            for p in stale
        ]

        counts = {"checked": len(stale), "expired": 0, "skipped": 0}
        for payment_id, version, amount, metadata, payment in snapshots:
            metadata.update({
                "expired_at": now.isoformat(),
                "expiration_reason": f"No provider confirmation after {expiry_minutes} minutes",
                "last_known_provider_status": metadata.get("provider_status") or "pending",
            })
            persisted = await conditional_status_update(
                self.db, payment_id, version, PaymentStatus.FAILED.value, metadata, now
            )
            if not persisted:
                # A webhook updated it meanwhile; leave it to that event
                counts["skipped"] += 1
                continue

            sync_committed(
                payment,
                status=PaymentStatus.FAILED.value,
                metadata_=metadata,
                version=version + 1,
                updated_at=now,
            )
            counts["expired"] += 1

            try:
                balance = await self.ledger.current_balance(payment_id)
                await self.ledger.append(
                    payment_id=payment_id,
                    transaction_type=PaymentStatus.FAILED.ledger_transaction_type,
                    amount=amount,
                    balance_after=balance,
                )
            except Exception as e:
                await self.db.rollback()
                logger.error(f"Ledger write failed for expired payment {payment_id}: {e}", exc_info=True)

        logger.info(f"Pending payment expiry run: {counts}")
        return counts

    async def _refresh_all(self, payments) -> None:
        for payment in payments:
            await self.db.refresh(payment)
