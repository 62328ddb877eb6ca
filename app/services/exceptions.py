"""
Payment reconciliation error taxonomy.

Each error carries the HTTP status the webhook layer answers with.
"""


class PaymentWebhookError(Exception):
    """Base class for reconciliation errors."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(PaymentWebhookError):
    """Signing secret or persistence backend missing."""

    status_code = 500


class AuthenticationError(PaymentWebhookError):
    """Bad bearer credential or signature."""

    status_code = 401


class ValidationError(PaymentWebhookError):
    """Malformed payload or provider mismatch."""

    status_code = 400


class NotFoundError(PaymentWebhookError):
    """No payment matches the notification."""

    status_code = 404


class TransientPersistenceError(PaymentWebhookError):
    """Storage write failed; safe for the provider to retry."""

    status_code = 503


class SagaStepError(PaymentWebhookError):
    """A forward step of the appointment saga failed."""


class SagaCompensationError(PaymentWebhookError):
    """
    A saga step failed and its compensation failed too.

    May leave an orphaned appointment; needs an operator.
    """


class LedgerImmutableError(PaymentWebhookError):
    """Attempt to update or delete a written ledger entry."""
