"""Pytest configuration and fixtures for async testing."""
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from metering.database import Base
from metering.exceptions import NotFoundError
from metering.main import app

# Imported for table registration
import metering.models  # noqa: F401

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# 2025-06-15 11:00 in America/Los_Angeles (PDT)
FIXED_NOW = datetime(2025, 6, 15, 18, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable stand-in for ``utcnow``."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeStripeAdapter:
    """In-process replacement for the Stripe adapter that records calls."""

    def __init__(self) -> None:
        self.checkout_calls: list[dict[str, str]] = []
        self.cancel_calls: list[str] = []
        self.subscriptions: dict[str, list[dict[str, Any]]] = {}
        self.checkout_url = "https://checkout.stripe.test/session/cs_test_123"
        self.events: list[dict[str, Any]] = []

    def add_subscription(
        self,
        customer_id: str,
        subscription_id: str = "sub_123",
        status: str = "active",
        cancel_at_period_end: bool = False,
        current_period_end: datetime | None = None,
    ) -> dict[str, Any]:
        subscription = {
            "id": subscription_id,
            "status": status,
            "cancel_at_period_end": cancel_at_period_end,
            "cancel_at": None,
            "current_period_end": current_period_end or FIXED_NOW + timedelta(days=30),
        }
        self.subscriptions.setdefault(customer_id, []).append(subscription)
        return subscription

    async def create_checkout_session(self, user_id: str, email: str) -> str:
        self.checkout_calls.append({"user_id": user_id, "email": email})
        return self.checkout_url

    async def list_subscriptions(self, customer_id: str) -> list[dict[str, Any]]:
        return [dict(sub) for sub in self.subscriptions.get(customer_id, [])]

    async def cancel_at_period_end(self, subscription_id: str) -> dict[str, Any]:
        self.cancel_calls.append(subscription_id)
        for subscriptions in self.subscriptions.values():
            for sub in subscriptions:
                if sub["id"] == subscription_id:
                    sub["cancel_at_period_end"] = True
                    sub["cancel_at"] = sub["current_period_end"]
                    return dict(sub)
        raise NotFoundError(subscription_id=subscription_id)

    async def construct_webhook_event(self, payload: bytes, signature: str) -> dict[str, Any]:
        # Signature checking is covered against the real adapter
        return self.events.pop(0)


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Let SQLAlchemy emit BEGIN itself so SAVEPOINT behaves
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh database session for each test.

    Yields:
        AsyncSession: Database session for testing
    """
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_stripe() -> FakeStripeAdapter:
    return FakeStripeAdapter()


@pytest_asyncio.fixture(scope="function")
async def async_client(
    db_session: AsyncSession,
    clock: FakeClock,
    fake_stripe: FakeStripeAdapter,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client with the store, clock and payment provider overridden.

    Yields:
        AsyncClient: Async HTTP client for API testing
    """
    from metering.api.deps import get_clock, get_db, get_optional_stripe_adapter, get_stripe_adapter

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_stripe_adapter] = lambda: fake_stripe
    app.dependency_overrides[get_optional_stripe_adapter] = lambda: fake_stripe

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
