"""Redis Pub/Sub push channel for deployments that fan events out through Redis."""
from __future__ import annotations

import logging
from typing import Any, AsyncIterator

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from messageflow_sync.application.exceptions import TransportError

logger = logging.getLogger(__name__)


class RedisPushChannel:
    """Subscribes to one tenant channel and yields its raw message payloads."""

    def __init__(self, redis: aioredis.Redis, channel: str) -> None:
        self._redis = redis
        self._channel = channel
        self._pubsub: Any = None

    async def connect(self) -> None:
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(self._channel)
        except (RedisError, OSError) as exc:
            await pubsub.aclose()
            raise TransportError(f"redis subscribe to {self._channel} failed: {exc}") from exc
        self._pubsub = pubsub
        logger.info("Redis push channel subscribed to %s", self._channel)

    async def frames(self) -> AsyncIterator[str | bytes]:
        if self._pubsub is None:
            raise TransportError("redis push channel is not subscribed")
        try:
            async for message in self._pubsub.listen():
                if message["type"] != "message":
                    continue
                yield message["data"]
        except (RedisError, OSError) as exc:
            raise TransportError(f"redis push channel failed: {exc}") from exc

    async def close(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        try:
            await pubsub.unsubscribe(self._channel)
        except (RedisError, OSError):
            logger.debug("Redis unsubscribe from %s failed", self._channel, exc_info=True)
        finally:
            await pubsub.aclose()
