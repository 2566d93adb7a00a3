"""Shared test fixtures and in-memory fakes."""
from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator

import pytest

from messageflow_sync.application.dto.message import MessagePage
from messageflow_sync.application.dto.pairing import PairingPoll, PairingStart
from messageflow_sync.application.dto.session import SessionContext
from messageflow_sync.application.exceptions import TransportError
from messageflow_sync.application.ports.clock import TaskFactory
from messageflow_sync.domain.entities.conversation import Conversation
from messageflow_sync.domain.entities.message import Message
from messageflow_sync.domain.value_objects.credential import Credential
from messageflow_sync.domain.value_objects.enums import MessageDirection, PairingStatus

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def at(minutes: float) -> datetime:
    return T0 + timedelta(minutes=minutes)


def make_message(
    message_id: int,
    *,
    conversation_id: int = 1,
    minutes: float | None = None,
    sender: str = "+15550001",
    content: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Message:
    return Message(
        id=message_id,
        conversation_id=conversation_id,
        sender=sender,
        direction=MessageDirection.OUTBOUND if sender in ("agent", "me") else MessageDirection.INBOUND,
        content=content if content is not None else f"message {message_id}",
        created_at=at(message_id if minutes is None else minutes),
        delivery_metadata=metadata,
    )


def make_conversation(
    conversation_id: int,
    *,
    address: str | None = None,
    name: str | None = None,
    minutes: float = 0,
) -> Conversation:
    return Conversation(
        id=conversation_id,
        external_address=address or f"1555000{conversation_id}@s.whatsapp.net",
        display_name=name,
        last_message_preview=None,
        last_message_at=at(minutes),
    )


def ids(messages) -> list[int]:
    return [m.id for m in messages]


# -- scheduling --------------------------------------------------------------


@dataclass
class VirtualHandle:
    due: float
    factory: TaskFactory
    name: str = ""
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class VirtualScheduler:
    """Manual clock: nothing runs until the test advances it."""

    now: float = 0.0
    _handles: list[VirtualHandle] = field(default_factory=list)

    def call_later(self, delay: float, factory: TaskFactory, *, name: str = "") -> VirtualHandle:
        handle = VirtualHandle(self.now + delay, factory, name)
        self._handles.append(handle)
        return handle

    @property
    def pending(self) -> list[VirtualHandle]:
        return [h for h in self._handles if not h.cancelled]

    async def advance(self, seconds: float) -> int:
        """Run every handle due within ``seconds``. Returns how many ran."""
        target = self.now + seconds
        fired = 0
        while True:
            due = [h for h in self.pending if h.due <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.due)
            self._handles.remove(handle)
            self.now = handle.due
            await handle.factory()
            fired += 1
        self.now = target
        return fired


# -- gateways ----------------------------------------------------------------


@dataclass
class FakePairingGateway:
    start_error: Exception | None = None
    poll_script: deque = field(default_factory=deque)
    start_gate: asyncio.Event | None = None
    poll_gate: asyncio.Event | None = None
    qr_payload: str = "2@qr-initial"
    poll_interval_hint: float | None = None
    start_calls: int = 0
    poll_calls: list[str] = field(default_factory=list)

    async def start_pairing(self) -> PairingStart:
        self.start_calls += 1
        number = self.start_calls
        if self.start_gate is not None:
            await self.start_gate.wait()
        if self.start_error is not None:
            raise self.start_error
        return PairingStart(
            session_id=f"srv-{number}",
            qr_payload=self.qr_payload,
            poll_interval_hint=self.poll_interval_hint,
            timeout_seconds=60,
        )

    async def poll_pairing(self, session_id: str) -> PairingPoll:
        self.poll_calls.append(session_id)
        if self.poll_gate is not None:
            await self.poll_gate.wait()
        result = self.poll_script.popleft() if self.poll_script else PairingPoll(PairingStatus.PENDING)
        if isinstance(result, Exception):
            raise result
        return result


def connected_poll(token: str = "tok-1", csrf: str = "csrf-1", tenant_id: int = 7) -> PairingPoll:
    return PairingPoll(
        status=PairingStatus.CONNECTED,
        credential=Credential(token=token, csrf=csrf, tenant_id=tenant_id, role="owner"),
    )


@dataclass
class FakeConversationGateway:
    conversations: list[Conversation] = field(default_factory=list)
    error: Exception | None = None
    gates: deque = field(default_factory=deque)
    calls: int = 0
    sync_calls: int = 0

    async def list_conversations(self, limit: int) -> list[Conversation]:
        self.calls += 1
        snapshot = list(self.conversations)
        if self.gates:
            await self.gates.popleft().wait()
        if self.error is not None:
            raise self.error
        return snapshot[:limit]

    async def sync_contacts(self) -> None:
        self.sync_calls += 1
        if self.error is not None:
            raise self.error


@dataclass
class FakeMessageGateway:
    history: dict[int, list[Message]] = field(default_factory=dict)
    gates: dict[int, asyncio.Event] = field(default_factory=dict)
    errors: dict[int, Exception] = field(default_factory=dict)
    send_error: Exception | None = None
    calls: list[tuple[int, int]] = field(default_factory=list)
    _next_id: int = 10_000

    def add(self, *messages: Message) -> None:
        for message in messages:
            self.history.setdefault(message.conversation_id, []).append(message)

    def hold(self, conversation_id: int) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[conversation_id] = gate
        return gate

    async def fetch_page(self, conversation_id: int, page: int, page_size: int) -> MessagePage:
        self.calls.append((conversation_id, page))
        gate = self.gates.get(conversation_id)
        if gate is not None:
            await gate.wait()
        if conversation_id in self.errors:
            raise self.errors[conversation_id]
        newest_first = sorted(
            self.history.get(conversation_id, []), key=lambda m: m.sort_key, reverse=True,
        )
        start = (page - 1) * page_size
        return MessagePage(conversation_id, page, page_size, newest_first[start:start + page_size])

    async def send_message(self, conversation_id: int, content: str) -> Message:
        if self.send_error is not None:
            raise self.send_error
        self._next_id += 1
        message = make_message(
            self._next_id, conversation_id=conversation_id, minutes=10_000, sender="agent", content=content,
        )
        self.add(message)
        return message

    async def forward_message(self, message_id: int, target_conversation_id: int) -> Message:
        if self.send_error is not None:
            raise self.send_error
        source = next(m for msgs in self.history.values() for m in msgs if m.id == message_id)
        return await self.send_message(target_conversation_id, source.content)


# -- push channel ------------------------------------------------------------

_CLOSE = object()


class FakePushChannel:
    """Queue-backed channel; ``join()`` returns once every queued frame was handled."""

    def __init__(self, *, fail_connect: bool = False) -> None:
        self.fail_connect = fail_connect
        self.connected = False
        self.closed = False
        self._queue: asyncio.Queue[Any] = asyncio.Queue()

    def push(self, *frames: str | bytes) -> None:
        for frame in frames:
            self._queue.put_nowait(frame)

    def fail(self, detail: str = "connection reset") -> None:
        self._queue.put_nowait(TransportError(detail))

    def end(self) -> None:
        self._queue.put_nowait(_CLOSE)

    async def join(self) -> None:
        await self._queue.join()
        for _ in range(3):
            await asyncio.sleep(0)

    async def connect(self) -> None:
        if self.fail_connect:
            raise TransportError("connection refused")
        self.connected = True

    async def frames(self) -> AsyncIterator[str | bytes]:
        while True:
            item = await self._queue.get()
            try:
                if item is _CLOSE:
                    return
                if isinstance(item, Exception):
                    raise item
                yield item
            finally:
                self._queue.task_done()

    async def close(self) -> None:
        self.closed = True


@dataclass
class ChannelFactoryStub:
    channels: deque = field(default_factory=deque)
    contexts: list[SessionContext] = field(default_factory=list)
    issued: list[FakePushChannel] = field(default_factory=list)

    def __call__(self, context: SessionContext) -> FakePushChannel:
        self.contexts.append(context)
        channel = self.channels.popleft() if self.channels else FakePushChannel()
        self.issued.append(channel)
        return channel


@pytest.fixture
def scheduler() -> VirtualScheduler:
    return VirtualScheduler()


@pytest.fixture
def session_context() -> SessionContext:
    return SessionContext(
        tenant_id=7,
        credential=Credential(token="tok-1", csrf="csrf-1", tenant_id=7),
    )
