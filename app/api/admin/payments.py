"""
Admin Payment Endpoints.
Read-only payment and ledger views for reporting.
"""

import uuid
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_admin_user
from app.database import get_db
from app.models.payment import Payment
from app.services.payment_ledger_service import PaymentLedgerService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/payments/ledger")
async def list_ledger_entries(
    payment_id: Optional[uuid.UUID] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    _: str = Depends(get_admin_user),
):
    """Newest-first ledger entries, optionally for one payment."""
    service = PaymentLedgerService(db)
    entries = await service.list_entries(payment_id=payment_id, limit=limit)

    return {
        "ledger_entries": [
            {
                "id": str(entry.id),
                "payment_id": str(entry.payment_id),
                "transaction_type": entry.transaction_type,
                "amount": float(entry.amount),
                "balance_after": float(entry.balance_after),
                "created_at": entry.created_at.isoformat(),
            }
            for entry in entries
        ],
        "count": len(entries),
    }


@router.get("/payments/{payment_id}")
async def get_payment(
    payment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _: str = Depends(get_admin_user),
):
    """Payment with its reconciliation bookkeeping."""
    payment = await db.get(Payment, payment_id)
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")

    metadata = payment.metadata_ or {}
    return {
        "id": str(payment.id),
        "user_id": str(payment.user_id),
        "provider": payment.provider,
        "provider_transaction_id": payment.provider_transaction_id,
        "status": payment.status,
        "amount": float(payment.amount),
        "currency": payment.currency,
        "payment_method": payment.payment_method,
        "appointment_id": str(payment.appointment_id) if payment.appointment_id else None,
        "last_webhook_event_id": metadata.get("last_webhook_event_id"),
        "last_webhook_event_type": metadata.get("last_webhook_event_type"),
        "last_webhook_received_at": metadata.get("last_webhook_received_at"),
        "webhook_anomalies": metadata.get("webhook_anomalies", []),
    }
