"""Shared test fixtures for the Agentic Marketplace test suite.

Provides:
    - An in-memory SQLite database (aiosqlite, one shared connection)
    - Fakes for the payment, trust and event publisher ports
    - A running OutboundDispatcher wired to the recording publisher
    - Async test support via pytest-asyncio
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from agentic_marketplace.api.deps import get_app_settings, get_db_session
from agentic_marketplace.config import Settings
from agentic_marketplace.domain.exceptions import PaymentError
from agentic_marketplace.domain.ports import HoldablePayment
from agentic_marketplace.infrastructure.database.engine import create_sqlite_engine
from agentic_marketplace.infrastructure.database.orm_models import Base
from agentic_marketplace.main import create_app
from agentic_marketplace.services.dispatcher import OutboundDispatcher
from agentic_marketplace.services.transaction_service import TransactionService

TEST_DATABASE_URL = "sqlite+aiosqlite://"


# ---------------------------------------------------------------------------
# Port fakes
# ---------------------------------------------------------------------------


class FakePaymentGateway:
    """Records every call; optionally fails captures or refunds."""

    def __init__(self, fail_capture: bool = False, fail_refund: bool = False) -> None:
        self.fail_capture = fail_capture
        self.fail_refund = fail_refund
        self.holds: list[dict[str, Any]] = []
        self.captures: list[str] = []
        self.refunds: list[str] = []

    async def create_holdable_payment(
        self,
        transaction_id: uuid.UUID,
        buyer_id: uuid.UUID,
        seller_id: uuid.UUID,
        amount: Decimal,
        currency: str,
    ) -> HoldablePayment:
        ref = f"pi_test_{len(self.holds) + 1}"
        self.holds.append(
            {
                "transaction_id": transaction_id,
                "buyer_id": buyer_id,
                "seller_id": seller_id,
                "amount": amount,
                "currency": currency,
                "provider_ref": ref,
            }
        )
        return HoldablePayment(provider_ref=ref, client_secret=f"{ref}_secret")

    async def capture(self, provider_ref: str) -> None:
        self.captures.append(provider_ref)
        if self.fail_capture:
            raise PaymentError("card_declined", provider_ref=provider_ref)

    async def refund(self, provider_ref: str) -> None:
        if self.fail_refund:
            raise PaymentError("refund rejected", provider_ref=provider_ref)
        self.refunds.append(provider_ref)


class FakeTrustHandler:
    def __init__(self) -> None:
        self.completed: list[tuple[uuid.UUID, uuid.UUID]] = []
        self.ratings: list[tuple[uuid.UUID, int, uuid.UUID]] = []

    async def on_transaction_completed(self, agent_id: uuid.UUID, transaction_id: uuid.UUID) -> None:
        self.completed.append((agent_id, transaction_id))

    async def on_rating_received(
        self, agent_id: uuid.UUID, score: int, transaction_id: uuid.UUID
    ) -> None:
        self.ratings.append((agent_id, score, transaction_id))


class RecordingPublisher:
    """Event publisher that keeps everything it is given."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        self.events.append((event_type, payload))

    def types(self) -> list[str]:
        return [event_type for event_type, _ in self.events]

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [payload for t, payload in self.events if t == event_type]


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine():
    engine = create_sqlite_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Port Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def trust() -> FakeTrustHandler:
    return FakeTrustHandler()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest_asyncio.fixture
async def dispatcher(publisher):
    dispatcher = OutboundDispatcher(publisher, max_queue_size=100, workers=1)
    await dispatcher.start()
    yield dispatcher
    await dispatcher.stop(drain=False)


@pytest.fixture
def service(session, gateway, trust, dispatcher) -> TransactionService:
    return TransactionService(
        session,
        payment=gateway,
        trust=trust,
        dispatcher=dispatcher,
        platform_fee_percent=Decimal("0.025"),
    )


# ---------------------------------------------------------------------------
# Domain Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def buyer_id() -> uuid.UUID:
    return uuid.UUID("11111111-1111-1111-1111-111111111111")


@pytest.fixture
def seller_id() -> uuid.UUID:
    return uuid.UUID("22222222-2222-2222-2222-222222222222")


@pytest.fixture
def outsider_id() -> uuid.UUID:
    return uuid.UUID("33333333-3333-3333-3333-333333333333")


# ---------------------------------------------------------------------------
# API Fixtures
# ---------------------------------------------------------------------------

OPERATOR_KEY = "test-operator-key"


@pytest.fixture
def api_app(session, gateway, trust, dispatcher):
    """The FastAPI app wired to the test session and port fakes (no lifespan)."""
    app = create_app()
    app.state.payment_gateway = gateway
    app.state.trust_handler = trust
    app.state.dispatcher = dispatcher

    async def _session_override():
        yield session

    settings = Settings(operator_api_key=OPERATOR_KEY, platform_fee_percent=Decimal("0.025"))
    app.dependency_overrides[get_db_session] = _session_override
    app.dependency_overrides[get_app_settings] = lambda: settings
    return app


@pytest_asyncio.fixture
async def client(api_app):
    async with AsyncClient(transport=ASGITransport(app=api_app), base_url="http://test") as client:
        yield client


@pytest.fixture
def operator_headers() -> dict[str, str]:
    return {"X-Operator-Key": OPERATOR_KEY}
