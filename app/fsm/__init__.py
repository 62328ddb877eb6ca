"""FSM package for payment state management."""

from app.fsm.states import PaymentStatus, AppointmentStatus
from app.fsm.machine import TransitionDecision, decide_transition, resolve_payment_status

__all__ = [
    "PaymentStatus",
    "AppointmentStatus",
    "TransitionDecision",
    "decide_transition",
    "resolve_payment_status",
]
