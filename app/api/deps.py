from typing import Optional

from fastapi import Header, HTTPException, status

from app.config import settings, WebhookConfig


async def get_admin_user(
    x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key"),
) -> str:
    """
    Validate the Admin Key from header.
    Returns the key if valid, raises 401 otherwise.
    """
    valid_key = getattr(settings, "admin_api_key", None)

    if not x_admin_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Admin Key",
        )

    if not valid_key or x_admin_key != valid_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Admin Key",
        )

    return x_admin_key


def get_webhook_config() -> WebhookConfig:
    """
    Webhook configuration for the current request.
    Raises ConfigurationError (500) when the signing secret is missing.
    """
    return WebhookConfig.from_settings(settings)
