"""Owns the push-channel subscription and routes its events.

Frames are handled strictly in delivery order by a single consumer task.
REST refreshes triggered by events run as independent tasks and may finish
in any order; the directory's sequence check and the message store's merge
make that safe.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from messageflow_sync.application.dto.events import SyncEvent
from messageflow_sync.application.dto.session import SessionContext
from messageflow_sync.application.exceptions import ProtocolError, TransportError
from messageflow_sync.application.ports.clock import ScheduledHandle, Scheduler
from messageflow_sync.application.ports.transport import PushChannel
from messageflow_sync.domain.value_objects.enums import ConnectionState, SyncEventType
from messageflow_sync.services.conversation_directory import ConversationDirectory
from messageflow_sync.services.message_store import MessageStore

logger = logging.getLogger(__name__)

ChannelFactory = Callable[[SessionContext], PushChannel]
EventDecoder = Callable[[str | bytes], SyncEvent]
EventListener = Callable[[SyncEvent], None]

DEFAULT_RECONNECT_DELAY = 3.0


class SyncCoordinator:
    def __init__(
        self,
        channel_factory: ChannelFactory,
        decoder: EventDecoder,
        directory: ConversationDirectory,
        store: MessageStore,
        scheduler: Scheduler,
        *,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
    ) -> None:
        self._channel_factory = channel_factory
        self._decode = decoder
        self._directory = directory
        self._store = store
        self._scheduler = scheduler
        self._reconnect_delay = reconnect_delay

        self._context: SessionContext | None = None
        self._channel: PushChannel | None = None
        self._task: asyncio.Task[None] | None = None
        self._reconnect: ScheduledHandle | None = None
        self._refreshes: set[asyncio.Task[Any]] = set()
        self._listeners: list[EventListener] = []
        self._state = ConnectionState.IDLE
        self._stopping = False

        self.events_handled = 0
        self.events_dropped = 0
        self.events_failed = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect is not None and not self._reconnect.cancelled

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def start(self, context: SessionContext) -> None:
        """Open the subscription for ``context``. No-op while one is running."""
        if self.running or self.reconnect_pending:
            return
        self._context = context
        self._stopping = False
        self._open(resync=False)

    async def stop(self) -> None:
        self._stopping = True
        if self._reconnect is not None:
            self._reconnect.cancel()
            self._reconnect = None
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        for task in list(self._refreshes):
            task.cancel()
        if self._refreshes:
            await asyncio.gather(*self._refreshes, return_exceptions=True)
        self._refreshes.clear()
        self._state = ConnectionState.STOPPED
        logger.info("Sync coordinator stopped")

    async def settle(self) -> None:
        """Wait for every refresh spawned so far (and any they spawn) to finish."""
        while self._refreshes:
            await asyncio.gather(*list(self._refreshes), return_exceptions=True)

    # -- subscription ----------------------------------------------------

    def _open(self, *, resync: bool) -> None:
        assert self._context is not None
        self._state = ConnectionState.RECONNECTING if resync else ConnectionState.CONNECTING
        channel = self._channel_factory(self._context)
        self._channel = channel
        self._task = asyncio.create_task(self._run(channel, resync), name="push-channel-subscriber")

    async def _run(self, channel: PushChannel, resync: bool) -> None:
        try:
            await channel.connect()
            self._state = ConnectionState.LIVE
            logger.info("Push channel live")
            if resync:
                self._resync()
            async for raw in channel.frames():
                self._handle_frame(raw)
            logger.info("Push channel closed by server")
        except TransportError as exc:
            logger.warning("Push channel error: %s", exc.detail)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Push channel subscriber crashed")
        finally:
            self._channel = None
            try:
                await channel.close()
            except Exception:
                logger.debug("Closing push channel failed", exc_info=True)

        if not self._stopping:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        self._state = ConnectionState.RECONNECTING
        if self.reconnect_pending:
            return
        logger.info("Reconnecting push channel in %.1fs", self._reconnect_delay)
        self._reconnect = self._scheduler.call_later(
            self._reconnect_delay, self._reconnect_now, name="push-channel-reconnect",
        )

    async def _reconnect_now(self) -> None:
        self._reconnect = None
        if self._stopping or self.running:
            return
        self._open(resync=True)

    def _resync(self) -> None:
        """Catch up on whatever was missed while disconnected."""
        self._spawn(self._directory.refresh())
        open_id = self._directory.selected_id
        if open_id is not None:
            self._spawn(self._store.refresh_latest(open_id))

    # -- routing ---------------------------------------------------------

    def _handle_frame(self, raw: str | bytes) -> None:
        try:
            event = self._decode(raw)
        except ProtocolError as exc:
            self.events_dropped += 1
            logger.warning("Dropping push frame: %s", exc.detail)
            return

        try:
            self._route(event)
        except Exception:
            self.events_failed += 1
            logger.exception("Failed to route %s event", event.type)
        else:
            self.events_handled += 1

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Sync event listener failed")

    def _route(self, event: SyncEvent) -> None:
        if event.type == SyncEventType.MESSAGE_RECEIVED:
            self._on_message_received(event)
        elif event.is_message_event:
            self._spawn(self._directory.refresh())
            open_id = self._directory.selected_id
            if open_id is not None:
                self._spawn(self._store.refresh_latest(open_id))
        else:
            logger.debug("No core handler for %s event", event.type)

    def _on_message_received(self, event: SyncEvent) -> None:
        self._spawn(self._directory.refresh())
        open_id = self._directory.selected_id
        if event.conversation_id is None or event.conversation_id != open_id:
            logger.debug("message.received for non-open conversation %s", event.conversation_id)
            return
        if event.message is not None:
            self._store.apply_delivery(event.message)
        else:
            self._spawn(self._store.refresh_latest(open_id))

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._refreshes.add(task)
        task.add_done_callback(self._on_refresh_done)

    def _on_refresh_done(self, task: asyncio.Task[Any]) -> None:
        self._refreshes.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background refresh failed", exc_info=exc)
