"""Event publisher adapters.

    - RedisEventPublisher:   JSON message per event on a Redis pub/sub channel.
    - LoggingEventPublisher: Structured log line per event (no Redis needed).
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from agentic_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    import redis.asyncio as aioredis

logger = get_logger(__name__)


def encode_event(event_type: str, payload: dict[str, Any]) -> str:
    """Serialize an event envelope for the wire."""
    return json.dumps(
        {
            "type": event_type,
            "payload": payload,
            "published_at": datetime.now(UTC).isoformat(),
        },
        default=str,
    )


class RedisEventPublisher:
    """Publishes events to a Redis channel consumed by the notification workers."""

    def __init__(self, redis: aioredis.Redis, channel: str) -> None:
        self._redis = redis
        self._channel = channel

    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        receivers = await self._redis.publish(self._channel, encode_event(event_type, payload))
        logger.debug(
            "events.published",
            event_type=event_type,
            channel=self._channel,
            receivers=receivers,
        )


class LoggingEventPublisher:
    """Writes each event to the log. Used when Redis is unavailable."""

    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        logger.info("events.emitted", event_type=event_type, **payload)
