"""Models package for database models."""

from app.models.payment import Payment
from app.models.appointment import Appointment
from app.models.payment_ledger import PaymentLedgerEntry

__all__ = [
    "Payment",
    "Appointment",
    "PaymentLedgerEntry",
]
