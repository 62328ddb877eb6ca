"""
Pytest configuration and fixtures.
"""

import sys
import os
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Add app to path
sys.path.append(os.getcwd())

from app.config import WebhookConfig
from app.database import Base
from app.models import Payment, Appointment, PaymentLedgerEntry  # noqa: F401

from helpers import WEBHOOK_SECRET

# Use in-memory SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for a test."""
    async_session = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture(autouse=True)
def redis_stub():
    """Redis fast path that never reports a duplicate."""
    mock_redis = AsyncMock()
    mock_redis.exists.return_value = 0

    with patch("app.redis.get_redis", new=AsyncMock(return_value=mock_redis)):
        yield mock_redis


@pytest.fixture
def webhook_config() -> WebhookConfig:
    return WebhookConfig(signing_secret=WEBHOOK_SECRET)


@pytest.fixture
def make_payment(db):
    """Factory persisting a payment."""

    async def _make_payment(
        provider: str = "flutterwave",
        provider_transaction_id: Optional[str] = None,
        status: str = "pending",
        amount: Decimal = Decimal("100.00"),
        metadata: Optional[dict] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        appointment_id: Optional[uuid.UUID] = None,
    ) -> Payment:
        now = datetime.now(timezone.utc)
        payment = Payment(
            user_id=uuid.uuid4(),
            provider=provider,
            provider_transaction_id=provider_transaction_id or f"tx-{uuid.uuid4().hex[:8]}",
            status=status,
            amount=amount,
            currency="GHS",
            payment_method="mobile_money",
            appointment_id=appointment_id,
            metadata_=metadata if metadata is not None else {},
            created_at=created_at or now,
            updated_at=updated_at or now,
        )
        db.add(payment)
        await db.commit()
        return payment

    return _make_payment
