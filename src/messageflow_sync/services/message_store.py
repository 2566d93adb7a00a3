"""Per-conversation materialized message logs.

Every source (initial page, backfill, push delivery, user action) lands in
a log through ``merge()``, which is idempotent on message id and restores
(created_at, id) ordering no matter in which order responses complete.
"""
from __future__ import annotations

import bisect
import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Iterable

from messageflow_sync.application.dto.message import ConversationSnapshot
from messageflow_sync.application.exceptions import ProtocolError, TransportError
from messageflow_sync.application.ports.transport import MessageGateway
from messageflow_sync.domain.entities.message import Message

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
DEFAULT_RESORT_THRESHOLD = 32


@dataclass(slots=True)
class ConversationLog:
    conversation_id: int
    messages: list[Message] = field(default_factory=list)
    index: dict[int, Message] = field(default_factory=dict)
    has_more_older: bool = True
    next_page: int = 1
    loading_initial: bool = False
    loading_older: bool = False
    load_failed: bool = False
    send_failed: bool = False

    @property
    def loading(self) -> bool:
        return self.loading_initial or self.loading_older


class MessageStore:
    def __init__(
        self,
        gateway: MessageGateway,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        resort_threshold: int = DEFAULT_RESORT_THRESHOLD,
    ) -> None:
        self._gateway = gateway
        self._page_size = page_size
        self._resort_threshold = resort_threshold
        self._logs: dict[int, ConversationLog] = {}
        self._active_id: int | None = None

    @property
    def active_conversation_id(self) -> int | None:
        return self._active_id

    def messages(self, conversation_id: int) -> tuple[Message, ...]:
        log = self._logs.get(conversation_id)
        return tuple(log.messages) if log else ()

    def snapshot(self, conversation_id: int) -> ConversationSnapshot:
        log = self._logs.get(conversation_id) or ConversationLog(conversation_id, has_more_older=False)
        return ConversationSnapshot(
            conversation_id=conversation_id,
            messages=tuple(log.messages),
            has_more_older=log.has_more_older,
            loading=log.loading,
            load_failed=log.load_failed,
            send_failed=log.send_failed,
        )

    def has_log(self, conversation_id: int) -> bool:
        return conversation_id in self._logs

    # -- loading ---------------------------------------------------------

    async def load_initial(self, conversation_id: int) -> None:
        """Discard the log for ``conversation_id`` and load its newest page.

        Issuing this makes ``conversation_id`` the active conversation; any
        response still in flight for another conversation is dropped when
        it arrives.
        """
        self._active_id = conversation_id
        log = ConversationLog(conversation_id, loading_initial=True)
        self._logs[conversation_id] = log

        try:
            page = await self._gateway.fetch_page(conversation_id, 1, self._page_size)
        except (TransportError, ProtocolError) as exc:
            if self._logs.get(conversation_id) is log:
                log.loading_initial = False
                if self._is_current(log):
                    log.load_failed = True
                logger.warning("Initial load for conversation %s failed: %s", conversation_id, exc.detail)
            return

        if self._logs.get(conversation_id) is log:
            log.loading_initial = False
        if not self._is_current(log):
            logger.debug("Discarding stale initial page for conversation %s", conversation_id)
            return

        self._merge_into(log, page.items)
        log.has_more_older = page.is_full
        log.next_page = 2

    async def load_older(self, conversation_id: int) -> None:
        """Backfill one page of older history. Single-flight per conversation."""
        log = self._logs.get(conversation_id)
        if log is None or not log.has_more_older or log.loading:
            return

        log.loading_older = True
        page_number = log.next_page
        try:
            page = await self._gateway.fetch_page(conversation_id, page_number, self._page_size)
        except (TransportError, ProtocolError) as exc:
            if self._logs.get(conversation_id) is log:
                log.loading_older = False
                if self._is_current(log):
                    log.load_failed = True
                logger.warning(
                    "Backfill page %d for conversation %s failed: %s",
                    page_number, conversation_id, exc.detail,
                )
            return

        if self._logs.get(conversation_id) is not log:
            logger.debug("Discarding backfill page %d for reset conversation %s", page_number, conversation_id)
            return
        log.loading_older = False
        if not self._is_current(log):
            logger.debug("Discarding backfill page %d for inactive conversation %s", page_number, conversation_id)
            return

        log.load_failed = False
        self._merge_into(log, page.items)
        log.has_more_older = page.is_full
        log.next_page = page_number + 1

    async def refresh_latest(self, conversation_id: int) -> None:
        """Re-fetch the newest page and merge it without touching pagination."""
        log = self._logs.get(conversation_id)
        if log is None:
            return
        try:
            page = await self._gateway.fetch_page(conversation_id, 1, self._page_size)
        except (TransportError, ProtocolError) as exc:
            logger.warning("Refresh of conversation %s failed: %s", conversation_id, exc.detail)
            return
        if self._logs.get(conversation_id) is not log:
            logger.debug("Discarding refresh for reset conversation %s", conversation_id)
            return
        self._merge_into(log, page.items)

    # -- writes ----------------------------------------------------------

    def apply_delivery(self, message: Message) -> bool:
        """Merge one pushed message. Returns True when it was new."""
        log = self._logs.get(message.conversation_id)
        if log is None:
            logger.debug(
                "Ignoring delivery %s for unmaterialized conversation %s",
                message.id, message.conversation_id,
            )
            return False
        return self._merge_into(log, [message]) == 1

    def merge(self, conversation_id: int, candidates: Iterable[Message]) -> int:
        """Merge ``candidates`` into a conversation log, creating it if needed.

        Returns the number of messages actually inserted.
        """
        log = self._logs.get(conversation_id)
        if log is None:
            log = ConversationLog(conversation_id)
            self._logs[conversation_id] = log
        return self._merge_into(log, candidates)

    async def send(self, conversation_id: int, content: str) -> Message | None:
        try:
            message = await self._gateway.send_message(conversation_id, content)
        except (TransportError, ProtocolError) as exc:
            self._flag_send_failure(conversation_id, exc)
            return None
        self._record_sent(conversation_id, message)
        return message

    async def forward(self, message_id: int, target_conversation_id: int) -> Message | None:
        try:
            message = await self._gateway.forward_message(message_id, target_conversation_id)
        except (TransportError, ProtocolError) as exc:
            self._flag_send_failure(target_conversation_id, exc)
            return None
        self._record_sent(target_conversation_id, message)
        return message

    def close(self, conversation_id: int) -> None:
        self._logs.pop(conversation_id, None)
        if self._active_id == conversation_id:
            self._active_id = None

    def clear(self) -> None:
        self._logs.clear()
        self._active_id = None

    # -- internals -------------------------------------------------------

    def _is_current(self, log: ConversationLog) -> bool:
        return self._active_id == log.conversation_id and self._logs.get(log.conversation_id) is log

    def _record_sent(self, conversation_id: int, message: Message) -> None:
        log = self._logs.get(conversation_id)
        if log is None:
            return
        log.send_failed = False
        self._merge_into(log, [message])

    def _flag_send_failure(self, conversation_id: int, exc: TransportError | ProtocolError) -> None:
        logger.warning("Send to conversation %s failed: %s", conversation_id, exc.detail)
        log = self._logs.get(conversation_id)
        if log is not None:
            log.send_failed = True

    def _merge_into(self, log: ConversationLog, candidates: Iterable[Message]) -> int:
        fresh: dict[int, Message] = {}
        for message in candidates:
            if message.conversation_id != log.conversation_id:
                logger.debug(
                    "Dropping message %s for conversation %s from log %s",
                    message.id, message.conversation_id, log.conversation_id,
                )
                continue
            existing = log.index.get(message.id)
            if existing is not None:
                self._enrich(log, existing, message)
                continue
            if message.id in fresh:
                continue
            fresh[message.id] = message

        if not fresh:
            return 0

        batch = sorted(fresh.values(), key=_sort_key)
        if len(batch) <= self._resort_threshold:
            for message in batch:
                bisect.insort(log.messages, message, key=_sort_key)
        else:
            log.messages.extend(batch)
            log.messages.sort(key=_sort_key)
        log.index.update(fresh)
        return len(batch)

    def _enrich(self, log: ConversationLog, existing: Message, candidate: Message) -> None:
        extra = candidate.delivery_metadata
        if not extra:
            return
        current = existing.delivery_metadata or {}
        merged = _join_metadata(current, extra)
        if merged == current:
            return
        enriched = replace(existing, delivery_metadata=merged)
        position = bisect.bisect_left(log.messages, existing.sort_key, key=_sort_key)
        log.messages[position] = enriched
        log.index[existing.id] = enriched
        logger.debug("Enriched metadata of message %s", existing.id)


def _sort_key(message: Message) -> tuple[datetime, int]:
    return message.sort_key


def _join_metadata(current: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    """Union of two metadata dicts that does not depend on arrival order.

    Missing keys are added, nested dicts are joined recursively and a
    conflicting scalar resolves to the greater of the two canonical JSON
    encodings.
    """
    merged = dict(current)
    for key, value in extra.items():
        if key not in merged:
            merged[key] = value
        else:
            merged[key] = _join_value(merged[key], value)
    return merged


def _join_value(stored: Any, incoming: Any) -> Any:
    if stored == incoming:
        return stored
    if isinstance(stored, dict) and isinstance(incoming, dict):
        return _join_metadata(stored, incoming)
    return max(stored, incoming, key=_canonical)


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)
