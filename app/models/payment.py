"""Payment model - provider transactions reconciled from webhooks."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Dict, Any

from sqlalchemy import String, DateTime, Integer, Numeric, JSON, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.fsm.states import PaymentStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Payment(Base):
    """
    One attempted financial transaction.

    Created at payment initiation (elsewhere); mutated only by webhook
    reconciliation. (provider, provider_transaction_id) is unique.
    """

    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint(
            "provider",
            "provider_transaction_id",
            name="uq_payments_provider_transaction",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # Patient who owns the payment (users table lives in the auth service)
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        index=True,
    )

    # Payment rail: flutterwave, paystack, custom
    provider: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    # External reference assigned by the provider
    provider_transaction_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False,
        index=True,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        default="GHS",
        nullable=False,
    )

    # card, mobile_money, bank_transfer
    payment_method: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
    )

    # Set at most once by the appointment saga
    appointment_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
    )

    # Deferred booking payload + webhook idempotency bookkeeping
    metadata_: Mapped[Dict[str, Any]] = mapped_column(
        "metadata",
        JSON,
        default=dict,
        nullable=False,
    )

    # Concurrency token for conditional status writes
    version: Mapped[int] = mapped_column(
        Integer,
        default=1,
        nullable=False,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Payment {self.provider}:{self.provider_transaction_id} {self.status}>"
