from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from messageflow_sync.application.exceptions import TransportError
from messageflow_sync.infrastructure.bus.redis_pubsub import RedisPushChannel


@dataclass
class FakePubSub:
    entries: list[Any] = field(default_factory=list)
    subscribe_error: Exception | None = None
    subscribed: list[str] = field(default_factory=list)
    unsubscribed: list[str] = field(default_factory=list)
    closed: bool = False

    async def subscribe(self, channel: str) -> None:
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.subscribed.append(channel)

    async def listen(self):
        for entry in self.entries:
            if isinstance(entry, Exception):
                raise entry
            yield entry

    async def unsubscribe(self, channel: str) -> None:
        self.unsubscribed.append(channel)

    async def aclose(self) -> None:
        self.closed = True


@dataclass
class FakeRedis:
    pubsub_instance: FakePubSub

    def pubsub(self) -> FakePubSub:
        return self.pubsub_instance


@pytest.mark.asyncio
async def test_yields_only_published_payloads():
    pubsub = FakePubSub(entries=[
        {"type": "subscribe", "channel": "messageflow.tenant.7", "data": 1},
        {"type": "message", "channel": "messageflow.tenant.7", "data": '{"type": "typing"}'},
        {"type": "message", "channel": "messageflow.tenant.7", "data": '{"type": "presence.update"}'},
    ])
    channel = RedisPushChannel(FakeRedis(pubsub), "messageflow.tenant.7")

    await channel.connect()
    frames = [raw async for raw in channel.frames()]
    await channel.close()

    assert pubsub.subscribed == ["messageflow.tenant.7"]
    assert frames == ['{"type": "typing"}', '{"type": "presence.update"}']
    assert pubsub.unsubscribed == ["messageflow.tenant.7"]
    assert pubsub.closed is True


@pytest.mark.asyncio
async def test_subscribe_failure_raises_transport_error():
    pubsub = FakePubSub(subscribe_error=RedisConnectionError("connection refused"))
    channel = RedisPushChannel(FakeRedis(pubsub), "messageflow.tenant.7")

    with pytest.raises(TransportError):
        await channel.connect()
    assert pubsub.closed is True


@pytest.mark.asyncio
async def test_dropped_connection_raises_transport_error():
    pubsub = FakePubSub(entries=[
        {"type": "message", "data": '{"type": "typing"}'},
        RedisConnectionError("connection reset by peer"),
    ])
    channel = RedisPushChannel(FakeRedis(pubsub), "messageflow.tenant.7")
    await channel.connect()

    received: list[str] = []
    with pytest.raises(TransportError):
        async for raw in channel.frames():
            received.append(raw)

    assert received == ['{"type": "typing"}']
