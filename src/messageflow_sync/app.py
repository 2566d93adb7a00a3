from __future__ import annotations

import asyncio
import logging
from typing import Callable

import httpx
import redis.asyncio as aioredis

from messageflow_sync.application.dto.message import ConversationSnapshot
from messageflow_sync.application.dto.session import SessionContext
from messageflow_sync.application.ports.clock import Scheduler
from messageflow_sync.application.ports.transport import PushChannel
from messageflow_sync.config import Settings, settings as default_settings
from messageflow_sync.domain.entities.message import Message
from messageflow_sync.domain.entities.pairing_session import PairingSession
from messageflow_sync.domain.value_objects.enums import PairingStatus
from messageflow_sync.infrastructure.bus.redis_pubsub import RedisPushChannel
from messageflow_sync.infrastructure.http.rest_gateway import RestGateway
from messageflow_sync.infrastructure.scheduling import AsyncioScheduler
from messageflow_sync.infrastructure.ws.protocol import parse_sync_event
from messageflow_sync.infrastructure.ws.push_channel import WebSocketPushChannel
from messageflow_sync.services.conversation_directory import ConversationDirectory
from messageflow_sync.services.message_store import MessageStore
from messageflow_sync.services.pairing_controller import PairingController
from messageflow_sync.services.sync_coordinator import ChannelFactory, SyncCoordinator

logger = logging.getLogger(__name__)


class MessageFlowClient:
    """Composition root: one pairing controller, one session context, one sync engine.

    When pairing reaches ``connected`` the credential is bound to the
    session context and the push subscription is started.
    """

    def __init__(
        self,
        config: Settings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        scheduler: Scheduler | None = None,
        channel_factory: ChannelFactory | None = None,
    ) -> None:
        self.settings = config or default_settings
        self.context = SessionContext(tenant_id=self.settings.TENANT_ID)

        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=self.settings.API_BASE,
            timeout=self.settings.REQUEST_TIMEOUT_SECONDS,
        )
        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler or AsyncioScheduler()
        self._redis: aioredis.Redis | None = None

        gateway = RestGateway(self._http, self.context)
        self.pairing = PairingController(
            gateway,
            self._scheduler,
            max_attempts=self.settings.PAIRING_MAX_ATTEMPTS,
            poll_interval=self.settings.PAIRING_POLL_INTERVAL_SECONDS,
        )
        self.directory = ConversationDirectory(gateway, limit=self.settings.CONVERSATIONS_LIMIT)
        self.store = MessageStore(
            gateway,
            page_size=self.settings.MESSAGES_PAGE_SIZE,
            resort_threshold=self.settings.MERGE_RESORT_THRESHOLD,
        )
        self.sync = SyncCoordinator(
            channel_factory or self._default_channel_factory(),
            parse_sync_event,
            self.directory,
            self.store,
            self._scheduler,
            reconnect_delay=self.settings.PUSH_RECONNECT_DELAY_SECONDS,
        )
        self._pairing_settled = asyncio.Event()
        self._activation: asyncio.Task[bool] | None = None
        self.pairing.subscribe(self._on_pairing_change)

    # -- pairing ---------------------------------------------------------

    async def connect_device(self) -> None:
        await self.pairing.start()

    async def cancel_pairing(self) -> None:
        self.pairing.cancel()
        await self._sign_out()

    def _on_pairing_change(self, session: PairingSession) -> None:
        if session.status == PairingStatus.CONNECTED and session.credential is not None:
            self.context.bind(session.credential)
            logger.info("Device paired for tenant %s", self.context.tenant_id)
            self._activation = asyncio.create_task(self.activate(), name="messageflow-activate")
        if session.status.is_terminal or session.status == PairingStatus.IDLE:
            self._pairing_settled.set()

    async def activate(self) -> bool:
        """Start syncing once pairing has produced a credential."""
        if not self.context.is_authenticated:
            return False
        await self.sync.start(self.context)
        await self.directory.refresh()
        return True

    async def wait_for_pairing(self) -> PairingStatus:
        """Wait until the running pairing session settles and, if paired, until sync is up."""
        while self.pairing.status in (PairingStatus.GENERATING, PairingStatus.PENDING):
            self._pairing_settled.clear()
            await self._pairing_settled.wait()
        if self.pairing.status == PairingStatus.CONNECTED and self._activation is not None:
            await self._activation
        return self.pairing.status

    async def _cancel_activation(self) -> None:
        task, self._activation = self._activation, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # -- conversations ---------------------------------------------------

    async def open_conversation(self, conversation_id: int) -> ConversationSnapshot:
        self.directory.select(conversation_id)
        await self.store.load_initial(conversation_id)
        return self.store.snapshot(conversation_id)

    async def load_older(self) -> ConversationSnapshot | None:
        conversation_id = self.directory.selected_id
        if conversation_id is None:
            return None
        await self.store.load_older(conversation_id)
        return self.store.snapshot(conversation_id)

    async def send(self, content: str) -> Message | None:
        conversation_id = self.directory.selected_id
        if conversation_id is None or not content.strip():
            return None
        return await self.store.send(conversation_id, content.strip())

    async def forward(self, message_id: int, target_conversation_id: int) -> Message | None:
        return await self.store.forward(message_id, target_conversation_id)

    # -- lifecycle -------------------------------------------------------

    async def _sign_out(self) -> None:
        await self._cancel_activation()
        await self.sync.stop()
        self.context.clear()
        self.directory.clear()
        self.store.clear()

    async def aclose(self) -> None:
        self.pairing.cancel()
        await self._sign_out()
        if self._owns_scheduler and isinstance(self._scheduler, AsyncioScheduler):
            await self._scheduler.aclose()
        if self._redis is not None:
            await self._redis.aclose()
        if self._owns_http:
            await self._http.aclose()

    def _default_channel_factory(self) -> Callable[[SessionContext], PushChannel]:
        cfg = self.settings

        def _websocket(context: SessionContext) -> PushChannel:
            assert context.credential is not None
            return WebSocketPushChannel(
                cfg.ws_base, context.credential.token, ping_interval=cfg.WS_PING_INTERVAL_SECONDS,
            )

        def _redis(context: SessionContext) -> PushChannel:
            if self._redis is None:
                self._redis = aioredis.from_url(cfg.REDIS_URL, decode_responses=True)
            return RedisPushChannel(self._redis, cfg.redis_channel(context.tenant_id))

        return _redis if cfg.PUSH_TRANSPORT == "redis" else _websocket
