"""Best-effort analytics sinks.

Tracking never takes part in an integration transaction. Callers invoke a
sink after the data is durable and discard its failures.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

import redis.asyncio

from integrahub.redis import publish_json

logger = logging.getLogger(__name__)


class TrackingSink(ABC):
    """Destination for product analytics events."""

    @abstractmethod
    async def track(self, event: str, properties: dict[str, Any], tenant_id: str) -> None:
        ...


class NullTrackingSink(TrackingSink):
    """Sink used when tracking is disabled."""

    async def track(self, event: str, properties: dict[str, Any], tenant_id: str) -> None:
        logger.debug("Tracking disabled, dropping event '%s'", event)


class RedisTrackingSink(TrackingSink):
    """Publish events on a Redis channel for the analytics forwarder.

    Args:
        redis: The app's async Redis connection.
        channel: Pub/sub channel the forwarder subscribes to.
    """

    def __init__(self, redis: redis.asyncio.Redis, channel: str) -> None:
        self._redis = redis
        self._channel = channel

    async def track(self, event: str, properties: dict[str, Any], tenant_id: str) -> None:
        await publish_json(
            self._redis,
            self._channel,
            {
                "event": event,
                "tenant_id": tenant_id,
                "properties": properties,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )
