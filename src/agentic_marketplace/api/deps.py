"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
the transaction service, caller identity, and configuration.

Process-wide collaborators (payment gateway, trust handler, outbound
dispatcher) are created in the lifespan and kept on ``app.state``.
"""

from __future__ import annotations

import secrets
import uuid  # noqa: TC003 - resolved at runtime by FastAPI
from collections.abc import AsyncGenerator  # noqa: TC003 - resolved at runtime by FastAPI

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002 - resolved at runtime by FastAPI

from agentic_marketplace.config import Settings, get_settings
from agentic_marketplace.infrastructure.database.engine import get_async_session
from agentic_marketplace.services.payment_service import StripePaymentGateway
from agentic_marketplace.services.transaction_service import TransactionService


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


def get_payment_gateway(request: Request) -> StripePaymentGateway | None:
    """Provide the payment gateway configured at startup, if any."""
    return getattr(request.app.state, "payment_gateway", None)


async def get_transaction_service(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> TransactionService:
    """Provide a TransactionService bound to the current session."""
    state = request.app.state
    return TransactionService(
        session,
        payment=getattr(state, "payment_gateway", None),
        trust=getattr(state, "trust_handler", None),
        dispatcher=getattr(state, "dispatcher", None),
        platform_fee_percent=settings.platform_fee_percent,
    )


def get_agent_id(x_agent_id: uuid.UUID = Header(..., alias="X-Agent-ID")) -> uuid.UUID:
    """Identify the calling agent.

    Authentication happens upstream (API gateway); this layer trusts the header.
    """
    return x_agent_id


def require_operator(
    x_operator_key: str | None = Header(default=None, alias="X-Operator-Key"),
    settings: Settings = Depends(get_app_settings),
) -> None:
    """Reject callers that don't present the operator key.

    Operator endpoints are disabled entirely when no key is configured.
    """
    expected = settings.operator_api_key
    if not expected or not x_operator_key or not secrets.compare_digest(x_operator_key, expected):
        raise HTTPException(status_code=403, detail="Operator key required")
