"""FastAPI application entry point for the Agentic Marketplace.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, the payment gateway and
       the outbound dispatcher (create tables in dev mode).
    2. Running: Serve the transaction REST API and the payment webhook.
    3. Shutdown: Drain the dispatcher, close database and Redis connections.

Run with:
    uvicorn agentic_marketplace.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from redis.exceptions import RedisError

from agentic_marketplace.config import get_settings
from agentic_marketplace.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
    )

    # 2. Initialize database
    from agentic_marketplace.infrastructure.database.engine import close_db, init_db

    await init_db()

    # 3. Initialize Redis (events fall back to the log without it)
    from agentic_marketplace.infrastructure.event_publishers import (
        LoggingEventPublisher,
        RedisEventPublisher,
    )
    from agentic_marketplace.infrastructure.redis_client import close_redis, init_redis

    try:
        redis = await init_redis()
        publisher = RedisEventPublisher(redis, settings.redis_events_channel)
    except (RedisError, OSError) as exc:
        logger.warning("app.redis_unavailable", error=str(exc))
        publisher = LoggingEventPublisher()

    # 4. Collaborators shared by every request
    from agentic_marketplace.services.dispatcher import OutboundDispatcher
    from agentic_marketplace.services.payment_service import StripePaymentGateway

    app.state.payment_gateway = StripePaymentGateway.from_settings(settings)
    app.state.trust_handler = None
    app.state.dispatcher = OutboundDispatcher(
        publisher,
        max_queue_size=settings.dispatcher_queue_size,
        workers=settings.dispatcher_workers,
    )
    await app.state.dispatcher.start()

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    await app.state.dispatcher.stop()
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Agentic Marketplace",
        description=(
            "Transaction and escrow lifecycle engine for agent-to-agent trade."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from agentic_marketplace.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from agentic_marketplace.api.routes.health import router as health_router
    from agentic_marketplace.api.routes.payments import router as payments_router
    from agentic_marketplace.api.routes.transactions import router as transactions_router

    app.include_router(health_router)
    app.include_router(transactions_router)
    app.include_router(payments_router)

    return app


# The app instance used by Uvicorn
app = create_app()
