"""
FSM Machine - payment state transitions driven by provider notifications.

Pure functions; persistence happens in PaymentService.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from app.fsm.states import PaymentStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionDecision:
    """Outcome of applying one reported provider status to a payment."""

    previous: PaymentStatus
    next: PaymentStatus
    reported: str
    anomaly: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.previous != self.next


def resolve_payment_status(reported: Optional[str]) -> PaymentStatus:
    """
    Map a provider-reported status onto a payment status.

    completed -> completed, failed -> failed, anything else -> pending.
    """
    normalized = (reported or "").strip().lower()
    if normalized == PaymentStatus.COMPLETED.value:
        return PaymentStatus.COMPLETED
    if normalized == PaymentStatus.FAILED.value:
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING


def decide_transition(current: str, reported: Optional[str]) -> TransitionDecision:
    """
    Decide the next payment status for a newly seen provider event.

    Rules:
    - pending / processing: follow the reported status.
    - completed: never left. A contradicting report is an anomaly.
    - failed: only a completed report moves it (late capture confirmation).
      A pending report never reopens the payment.
    """
    previous = PaymentStatus(current)
    mapped = resolve_payment_status(reported)
    reported_text = reported or ""

    if not previous.is_terminal:
        return TransitionDecision(previous=previous, next=mapped, reported=reported_text)

    if previous == PaymentStatus.COMPLETED:
        if mapped == PaymentStatus.COMPLETED:
            return TransitionDecision(previous=previous, next=previous, reported=reported_text)
        return TransitionDecision(
            previous=previous,
            next=previous,
            reported=reported_text,
            anomaly=f"ignored '{reported_text}' report for completed payment",
        )

    # previous == FAILED
    if mapped == PaymentStatus.COMPLETED:
        logger.warning("Failed payment confirmed as completed by provider")
        return TransitionDecision(previous=previous, next=mapped, reported=reported_text)
    if mapped == PaymentStatus.FAILED:
        return TransitionDecision(previous=previous, next=previous, reported=reported_text)
    return TransitionDecision(
        previous=previous,
        next=previous,
        reported=reported_text,
        anomaly=f"ignored '{reported_text}' report for failed payment",
    )
