"""Health check endpoint.

Verifies connectivity to the database and Redis, and reports the outbound
dispatcher's counters. Used by Docker healthchecks, load balancers, and
monitoring systems.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from agentic_marketplace.infrastructure.database.engine import get_engine
from agentic_marketplace.infrastructure.redis_client import get_redis, redis_available
from agentic_marketplace.logging_config import get_logger
from agentic_marketplace.schemas.transaction import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check(request: Request) -> HealthResponse:
    """Check connectivity to the database and Redis."""
    db_status = "unknown"
    redis_status = "not configured"

    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except (SQLAlchemyError, OSError) as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    if redis_available():
        try:
            await get_redis().ping()
            redis_status = "healthy"
        except Exception as exc:
            redis_status = f"unhealthy: {exc}"
            logger.error("health.redis_check_failed", error=str(exc))

    dispatcher = getattr(request.app.state, "dispatcher", None)
    redis_ok = not redis_status.startswith("unhealthy")
    overall = "ok" if db_status == "healthy" and redis_ok else "degraded"

    return HealthResponse(
        status=overall,
        version=request.app.version,
        database=db_status,
        redis=redis_status,
        dispatcher=dispatcher.stats.to_dict() if dispatcher is not None else {},
    )
