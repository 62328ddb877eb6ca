"""
Payment Provider Webhook Handler.
Authenticates provider callbacks and reconciles payment state.
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_webhook_config
from app.config import WebhookConfig
from app.database import get_db
from app.services.exceptions import AuthenticationError, ValidationError
from app.services.payment_service import PaymentService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/payments/{provider}")
async def payment_webhook(
    provider: str,
    request: Request,
    config: WebhookConfig = Depends(get_webhook_config),
    db: AsyncSession = Depends(get_db),
):
    """
    Handle payment provider webhook events.

    Responses:
    - 200: applied, or duplicate (`duplicate: true`)
    - 400: malformed payload or provider mismatch
    - 401: bad bearer token or signature
    - 404: no matching payment
    - 500: webhook secret or database not configured
    - 503: payment update failed; safe to retry
    """
    provider = provider.lower()

    # Bearer credential is checked before the body is read
    verify_bearer_token(request.headers.get("Authorization"), config.bearer_token)

    if provider not in config.providers:
        raise ValidationError(f"Unsupported payment provider: {provider}")

    body = await request.body()
    signature = extract_signature(request, config)

    service = PaymentService(db, config)
    result = await service.reconcile_webhook(provider, body, signature)

    if result.duplicate:
        return {
            "status": "duplicate",
            "duplicate": True,
            "payment_id": str(result.payment_id),
            "payment_status": result.status,
        }

    return {
        "status": "ok",
        "duplicate": False,
        "payment_id": str(result.payment_id),
        "payment_status": result.status,
        "appointment_id": str(result.appointment_id) if result.appointment_id else None,
    }


def verify_bearer_token(authorization: Optional[str], expected_token: str) -> None:
    """Constant-time check of `Authorization: Bearer <token>`."""
    if not authorization or not authorization.startswith("Bearer "):
        logger.warning("Payment webhook without bearer credential")
        raise AuthenticationError("Unauthorized")

    presented = authorization[len("Bearer "):].encode("utf-8")
    if not hmac.compare_digest(presented, expected_token.encode("utf-8")):
        logger.warning("Payment webhook with invalid bearer credential")
        raise AuthenticationError("Unauthorized")


def extract_signature(request: Request, config: WebhookConfig) -> Optional[str]:
    """First signature header present, in configured order."""
    for header in config.signature_headers:
        value = request.headers.get(header)
        if value:
            return value
    return None
