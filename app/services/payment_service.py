"""
Payment Service - provider webhook reconciliation.

Applies each provider notification to its payment exactly once:
verify signature -> load payment -> dedupe -> conditional status write ->
appointment saga -> ledger entry.
"""

import json
import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError as PydanticValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from app.config import WebhookConfig
from app.fsm.machine import TransitionDecision, decide_transition
from app.fsm.states import PaymentStatus
from app.models.payment import Payment
from app.services.appointment_saga import AppointmentSaga
from app.services.exceptions import (
    AuthenticationError,
    NotFoundError,
    SagaCompensationError,
    SagaStepError,
    TransientPersistenceError,
    ValidationError,
)
from app.services.payment_ledger_service import PaymentLedgerService
from app.services.webhook_idempotency import (
    is_event_processed,
    record_processed_event,
    resolve_event_identity,
    resolve_event_type,
)
from app.services.webhook_signature import WebhookSignatureVerifier

logger = logging.getLogger(__name__)

MAX_RECORDED_ANOMALIES = 50


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentNotification(BaseModel):
    """Inbound provider notification. Unknown fields are kept."""

    model_config = ConfigDict(extra="allow")

    id: Optional[Union[str, int]] = None
    event_id: Optional[Union[str, int]] = None
    type: Optional[Union[str, int]] = None
    event: Optional[Union[str, int]] = None
    provider: Optional[str] = None
    provider_transaction_id: Optional[Union[str, int]] = None
    status: Optional[Union[str, int]] = None
    data: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None

    def transaction_ref(self) -> Optional[str]:
        """External transaction reference, top-level first."""
        if self.provider_transaction_id not in (None, ""):
            return str(self.provider_transaction_id)
        data = self.data or {}
        for key in ("tx_ref", "reference"):
            if data.get(key) not in (None, ""):
                return str(data[key])
        return None

    def reported_status(self) -> Optional[str]:
        """Provider status as text; numeric status codes are accepted."""
        for status in (self.status, (self.data or {}).get("status")):
            if status not in (None, ""):
                return str(status)
        return None


@dataclass(frozen=True)
class ReconciliationResult:
    """What one webhook delivery did to its payment."""

    payment_id: uuid.UUID
    status: str
    previous_status: str
    duplicate: bool
    event_id: str
    appointment_id: Optional[uuid.UUID] = None


async def conditional_status_update(
    db: AsyncSession,
    payment_id: uuid.UUID,
    expected_version: int,
    status: str,
    metadata: Dict[str, Any],
    now: datetime,
) -> bool:
    """
    Write (status, metadata) only if the payment is still at `expected_version`.

    Commits on success. Returns False (after rollback) when another writer
    got there first. Raises TransientPersistenceError on database errors.
    """
    try:
        result = await db.execute(
            update(Payment)
            .where(Payment.id == payment_id)
            .where(Payment.version == expected_version)
            .values({
                Payment.status: status,
                Payment.metadata_: metadata,
                Payment.version: expected_version + 1,
                Payment.updated_at: now,
            })
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            return False
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Failed to persist payment {payment_id}: {e}", exc_info=True)
        raise TransientPersistenceError("Failed to persist payment update") from e
    return True


def sync_committed(payment: Payment, **values: Any) -> None:
    """Reflect a committed conditional write on the in-memory instance."""
    for key, value in values.items():
        set_committed_value(payment, key, value)


class PaymentService:
    """Reconciles provider webhooks against stored payments."""

    EVENT_CACHE_PREFIX = "clinic:webhook:"

    def __init__(
        self,
        db: AsyncSession,
        config: WebhookConfig,
        clock: Callable[[], datetime] = utcnow,
        verifier: Optional[WebhookSignatureVerifier] = None,
    ):
        self.db = db
        self.config = config
        self.clock = clock
        self.verifier = verifier or WebhookSignatureVerifier(config.signing_secret)
        self.ledger = PaymentLedgerService(db)
        self.appointment_saga = AppointmentSaga(db, booking_fee=config.booking_fee, clock=clock)

    async def reconcile_webhook(
        self,
        provider: str,
        raw_body: bytes,
        signature: Optional[str],
    ) -> ReconciliationResult:
        """
        Apply one provider notification.

        Raises AuthenticationError, ValidationError, NotFoundError or
        TransientPersistenceError. Saga and ledger failures are logged only.
        """
        provider = provider.lower()

        # 1. Authenticity
        if not self.verifier.verify(raw_body, signature):
            raise AuthenticationError("Invalid signature")

        # 2. Required fields
        payload, notification = self._parse_notification(raw_body)
        transaction_ref = notification.transaction_ref()
        reported_status = notification.reported_status()
        if not transaction_ref or not reported_status:
            raise ValidationError("provider_transaction_id and status are required")
        if notification.provider and notification.provider.lower() != provider:
            raise ValidationError("Invalid provider for this webhook")

        # 3. Payment lookup
        payment = await self._load_payment(provider, transaction_ref)

        # 4. Dedupe
        event_type = resolve_event_type(payload)
        identity = resolve_event_identity(provider, payload, event_type, transaction_ref)

        if await self._seen_recently(identity) or is_event_processed(payment.metadata_, identity):
            logger.info(f"Duplicate webhook event {identity} ignored for payment {payment.id}")
            return self._duplicate_result(payment, identity)

        # 5. Transition + conditional write
        decision = decide_transition(payment.status, reported_status)
        now = self.clock()
        metadata = self._build_metadata(payment, identity, event_type, decision, payload, now)

        payment_id = payment.id
        amount = Decimal(str(payment.amount))
        expected_version = payment.version

        persisted = await conditional_status_update(
            self.db, payment_id, expected_version, decision.next.value, metadata, now
        )
        if not persisted:
            return await self._resolve_lost_race(payment_id, identity)

        sync_committed(
            payment,
            status=decision.next.value,
            metadata_=metadata,
            version=expected_version + 1,
            updated_at=now,
        )
        appointment_id = payment.appointment_id

        logger.info(
            f"Payment {payment_id} {decision.previous.value} -> {decision.next.value} "
            f"(event {identity})",
            extra={"payment_id": str(payment_id), "event_id": identity},
        )

        # 6. Appointment saga
        if decision.next == PaymentStatus.COMPLETED:
            appointment_id = await self._run_appointment_saga(payment, payment_id) or appointment_id

        # 7. Ledger
        if decision.changed:
            await self._append_ledger(payment_id, amount, decision.next)

        await self._remember_event(identity)

        return ReconciliationResult(
            payment_id=payment_id,
            status=decision.next.value,
            previous_status=decision.previous.value,
            duplicate=False,
            event_id=identity,
            appointment_id=appointment_id,
        )

    def _parse_notification(self, raw_body: bytes):
        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as e:
            raise ValidationError("Request body is not valid JSON") from e
        if not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object")
        try:
            notification = PaymentNotification.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(f"Malformed notification: {e.errors()[0]['msg']}") from e
        return payload, notification

    async def _load_payment(self, provider: str, transaction_ref: str) -> Payment:
        """Payment for (provider, transaction_ref)."""
        try:
            result = await self.db.execute(
                select(Payment).where(Payment.provider_transaction_id == transaction_ref)
            )
            candidates = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Payment lookup failed for {transaction_ref}: {e}", exc_info=True)
            raise TransientPersistenceError("Payment lookup failed") from e

        if not candidates:
            logger.warning(f"No payment for {provider} transaction {transaction_ref}")
            raise NotFoundError("Payment not found")

        for candidate in candidates:
            if candidate.provider == provider:
                return candidate

        logger.warning(
            f"Provider mismatch for transaction {transaction_ref}: "
            f"webhook {provider}, stored {candidates[0].provider}"
        )
        raise ValidationError("Invalid provider for this webhook")

    def _build_metadata(
        self,
        payment: Payment,
        identity: str,
        event_type: Optional[str],
        decision: TransitionDecision,
        payload: Dict[str, Any],
        now: datetime,
    ) -> Dict[str, Any]:
        extra: Dict[str, Any] = {
            "provider_status": decision.reported,
            "provider_webhook_received_at": now.isoformat(),
            "provider_webhook_payload": payload,
        }
        if decision.anomaly:
            logger.warning(
                f"Payment {payment.id}: {decision.anomaly} (event {identity}); status kept",
                extra={"payment_id": str(payment.id), "event_id": identity},
            )
            anomalies: List[Dict[str, Any]] = list(
                (payment.metadata_ or {}).get("webhook_anomalies") or []
            )
            anomalies.append({
                "event_id": identity,
                "reported_status": decision.reported,
                "status": decision.previous.value,
                "detected_at": now.isoformat(),
            })
            extra["webhook_anomalies"] = anomalies[-MAX_RECORDED_ANOMALIES:]

        return record_processed_event(
            payment.metadata_, identity, event_type, extra, received_at=now
        )

    async def _resolve_lost_race(self, payment_id: uuid.UUID, identity: str) -> ReconciliationResult:
        """Conditional write lost: duplicate if the winner applied this event."""
        try:
            fresh = await self.db.get(Payment, payment_id, populate_existing=True)
        except SQLAlchemyError as e:
            raise TransientPersistenceError("Payment reload failed") from e

        if fresh is not None and is_event_processed(fresh.metadata_, identity):
            logger.info(f"Concurrent delivery of {identity} already applied to payment {payment_id}")
            return self._duplicate_result(fresh, identity)

        logger.warning(f"Concurrent update on payment {payment_id}; event {identity} must be retried")
        raise TransientPersistenceError("Concurrent payment update, retry later")

    async def _run_appointment_saga(self, payment: Payment, payment_id: uuid.UUID) -> Optional[uuid.UUID]:
        try:
            appointment = await self.appointment_saga.run(payment)
        except SagaCompensationError:
            logger.critical(f"Payment {payment_id} may have an orphaned appointment")
            return None
        except SagaStepError as e:
            logger.error(
                f"Appointment creation failed for payment {payment_id}; "
                f"left for scheduled reconciliation: {e}"
            )
            return None
        return appointment.id if appointment else None

    async def _append_ledger(self, payment_id: uuid.UUID, amount: Decimal, status: PaymentStatus) -> None:
        try:
            balance = await self.ledger.current_balance(payment_id)
            delta = amount if status == PaymentStatus.COMPLETED else Decimal("0")
            await self.ledger.append(
                payment_id=payment_id,
                transaction_type=status.ledger_transaction_type,
                amount=amount,
                balance_after=balance + delta,
            )
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Ledger write failed for payment {payment_id}: {e}", exc_info=True)

    def _duplicate_result(self, payment: Payment, identity: str) -> ReconciliationResult:
        return ReconciliationResult(
            payment_id=payment.id,
            status=payment.status,
            previous_status=payment.status,
            duplicate=True,
            event_id=identity,
            appointment_id=payment.appointment_id,
        )

    async def _seen_recently(self, identity: str) -> bool:
        """Redis fast path; the payment metadata stays the source of truth."""
        try:
            from app.redis import get_redis
            redis = await get_redis()
            return bool(await redis.exists(f"{self.EVENT_CACHE_PREFIX}{identity}"))
        except Exception as e:
            logger.debug(f"Redis duplicate check unavailable: {e}")
            return False

    async def _remember_event(self, identity: str) -> None:
        try:
            from app.redis import get_redis
            redis = await get_redis()
            await redis.setex(
                f"{self.EVENT_CACHE_PREFIX}{identity}",
                self.config.event_cache_ttl_seconds,
                "1",
            )
        except Exception as e:
            logger.debug(f"Redis event marker not written: {e}")
