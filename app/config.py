"""
Application configuration using pydantic-settings.
Loads from environment variables / .env file.
"""

from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import List, Literal, Optional, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict

from app.services.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "clinic-payments"
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = False

    # API Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Postgres
    database_url: str = ""

    # Redis (duplicate fast path + Celery broker)
    redis_url: str = "redis://localhost:6379/0"

    # Payment webhooks
    payment_webhook_secret: str = ""
    payment_webhook_bearer_token: str = ""
    payment_providers: List[str] = ["flutterwave", "paystack", "custom"]

    # Only auto-book when the payment equals the booking fee (unset = any amount)
    appointment_booking_fee: Optional[Decimal] = None

    # Scheduled reconciliation
    pending_payment_expiry_minutes: int = 60
    unlinked_appointment_grace_minutes: int = 10

    # Timezone
    default_timezone: str = "Africa/Accra"

    # Admin
    admin_api_key: str = ""

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@dataclass(frozen=True)
class WebhookConfig:
    """
    Explicit webhook configuration injected into the reconciliation core.

    Construction fails when the signing secret is missing so that a
    misconfigured deployment can never accept unsigned traffic.
    """

    signing_secret: str
    bearer_token: str = ""
    providers: Tuple[str, ...] = ("flutterwave", "paystack", "custom")
    booking_fee: Optional[Decimal] = None
    event_cache_ttl_seconds: int = 86400
    signature_headers: Tuple[str, ...] = (
        "X-Webhook-Signature", "verif-hash", "X-Paystack-Signature",
    )

    def __post_init__(self) -> None:
        if not self.signing_secret:
            raise ConfigurationError("Webhook secret not configured")
        if not self.bearer_token:
            # Deployments that share one secret for both checks
            object.__setattr__(self, "bearer_token", self.signing_secret)

    @classmethod
    def from_settings(cls, settings: Settings) -> "WebhookConfig":
        return cls(
            signing_secret=settings.payment_webhook_secret,
            bearer_token=settings.payment_webhook_bearer_token,
            providers=tuple(p.lower() for p in settings.payment_providers),
            booking_fee=settings.appointment_booking_fee,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
