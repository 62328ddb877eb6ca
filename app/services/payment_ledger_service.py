"""
Payment Ledger Service - append-only audit trail for payment state changes.
"""

import uuid
import logging
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.payment_ledger import PaymentLedgerEntry

logger = logging.getLogger(__name__)


class PaymentLedgerService:
    """Writes and reads payment ledger entries. Never mutates written rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        payment_id: uuid.UUID,
        transaction_type: str,
        amount: Decimal,
        balance_after: Decimal,
    ) -> PaymentLedgerEntry:
        """Append one ledger entry and commit it."""
        entry = PaymentLedgerEntry(
            payment_id=payment_id,
            transaction_type=transaction_type,
            amount=amount,
            balance_after=balance_after,
        )
        self.db.add(entry)
        await self.db.commit()

        logger.info(
            f"Ledger entry {transaction_type} for payment {payment_id}: "
            f"{amount} (balance {balance_after})"
        )
        return entry

    async def current_balance(self, payment_id: uuid.UUID) -> Decimal:
        """Balance after the most recent entry for a payment (0 if none)."""
        result = await self.db.execute(
            select(PaymentLedgerEntry.balance_after)
            .where(PaymentLedgerEntry.payment_id == payment_id)
            .order_by(PaymentLedgerEntry.created_at.desc())
            .limit(1)
        )
        balance = result.scalar_one_or_none()
        return balance if balance is not None else Decimal("0")

    async def list_entries(
        self,
        payment_id: Optional[uuid.UUID] = None,
        limit: int = 100,
    ) -> List[PaymentLedgerEntry]:
        """Newest-first ledger entries, optionally for one payment."""
        query = select(PaymentLedgerEntry).order_by(PaymentLedgerEntry.created_at.desc())
        if payment_id is not None:
            query = query.where(PaymentLedgerEntry.payment_id == payment_id)
        result = await self.db.execute(query.limit(limit))
        return list(result.scalars().all())
