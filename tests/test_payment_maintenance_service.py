"""
Tests for scheduled payment maintenance.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from app.models.appointment import Appointment
from app.models.payment_ledger import PaymentLedgerEntry
from app.services.exceptions import SagaStepError
from app.services.payment_maintenance_service import PaymentMaintenanceService

from helpers import BOOKING_PAYLOAD

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def service_for(db, **kwargs) -> PaymentMaintenanceService:
    return PaymentMaintenanceService(db, clock=lambda: NOW, **kwargs)


class TestRelinkUnlinkedAppointments:
    """Tests for the appointment relink job."""

    @pytest.mark.asyncio
    async def test_creates_missing_appointment(self, db, make_payment):
        payment = await make_payment(
            status="completed",
            metadata={"appointment_data": dict(BOOKING_PAYLOAD)},
            updated_at=NOW - timedelta(minutes=30),
        )

        counts = await service_for(db).relink_unlinked_appointments(grace_minutes=10)

        assert counts == {"checked": 1, "created": 1, "skipped": 0, "failed": 0}
        await db.refresh(payment)
        assert payment.appointment_id is not None

    @pytest.mark.asyncio
    async def test_ignores_recent_and_bookingless_payments(self, db, make_payment):
        await make_payment(
            status="completed",
            metadata={"appointment_data": dict(BOOKING_PAYLOAD)},
            updated_at=NOW - timedelta(minutes=2),
        )
        await make_payment(status="completed", updated_at=NOW - timedelta(hours=1))

        counts = await service_for(db).relink_unlinked_appointments(grace_minutes=10)

        assert counts["checked"] == 0
        assert await db.scalar(select(func.count()).select_from(Appointment)) == 0

    @pytest.mark.asyncio
    async def test_saga_failure_is_counted(self, db, make_payment):
        await make_payment(
            status="completed",
            metadata={"appointment_data": dict(BOOKING_PAYLOAD)},
            updated_at=NOW - timedelta(minutes=30),
        )
        service = service_for(db)

        with patch.object(service.appointment_saga, "run", AsyncMock(side_effect=SagaStepError("link failed"))):
            counts = await service.relink_unlinked_appointments()

        assert counts["failed"] == 1
        assert counts["created"] == 0

    @pytest.mark.asyncio
    async def test_booking_fee_mismatch_is_skipped(self, db, make_payment):
        await make_payment(
            status="completed",
            amount=Decimal("55.00"),
            metadata={"appointment_data": dict(BOOKING_PAYLOAD)},
            updated_at=NOW - timedelta(minutes=30),
        )

        counts = await service_for(db, booking_fee=Decimal("100.00")).relink_unlinked_appointments()

        assert counts == {"checked": 1, "created": 0, "skipped": 1, "failed": 0}


class TestExpireStalePendingPayments:
    """Tests for the pending expiry job."""

    @pytest.mark.asyncio
    async def test_expires_old_pending_payment(self, db, make_payment):
        stale = await make_payment(
            created_at=NOW - timedelta(hours=2),
            metadata={"provider_status": "processing"},
        )
        fresh = await make_payment(created_at=NOW - timedelta(minutes=5))

        counts = await service_for(db).expire_stale_pending_payments(expiry_minutes=60)

        assert counts == {"checked": 1, "expired": 1, "skipped": 0}

        await db.refresh(stale)
        assert stale.status == "failed"
        assert stale.version == 2
        assert stale.metadata_["last_known_provider_status"] == "processing"
        assert stale.metadata_["expired_at"] == NOW.isoformat()

        await db.refresh(fresh)
        assert fresh.status == "pending"

        entry = (await db.execute(select(PaymentLedgerEntry))).scalar_one()
        assert entry.payment_id == stale.id
        assert entry.transaction_type == "payment_failed"
        assert entry.balance_after == Decimal("0")

    @pytest.mark.asyncio
    async def test_terminal_payments_are_not_expired(self, db, make_payment):
        await make_payment(status="completed", created_at=NOW - timedelta(days=1))
        await make_payment(status="failed", created_at=NOW - timedelta(days=1))

        counts = await service_for(db).expire_stale_pending_payments()

        assert counts["checked"] == 0
