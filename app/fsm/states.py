"""
FSM State Definitions.
Payment and appointment statuses used by webhook reconciliation.
"""

from enum import Enum


class PaymentStatus(str, Enum):
    """
    Payment lifecycle states.

    PENDING is the initial state; COMPLETED and FAILED are terminal.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PaymentStatus.COMPLETED, PaymentStatus.FAILED)

    @property
    def ledger_transaction_type(self) -> str:
        """Ledger transaction type recorded when a payment enters this state."""
        return f"payment_{self.value}"


class AppointmentStatus(str, Enum):
    """Appointment states this service writes."""

    PENDING = "pending"
