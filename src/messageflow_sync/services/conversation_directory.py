from __future__ import annotations

import logging

from messageflow_sync.application.exceptions import ProtocolError, TransportError
from messageflow_sync.application.ports.transport import ConversationGateway
from messageflow_sync.domain.entities.conversation import Conversation

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50


class ConversationDirectory:
    """Canonical, recency-ordered conversation list plus the selection pointer.

    Selecting a conversation never loads its messages; the caller does that.
    """

    def __init__(self, gateway: ConversationGateway, *, limit: int = DEFAULT_LIMIT) -> None:
        self._gateway = gateway
        self._limit = limit
        self._conversations: tuple[Conversation, ...] = ()
        self._selected_id: int | None = None
        self._issued = 0
        self._applied = 0
        self.last_error: str | None = None

    @property
    def conversations(self) -> tuple[Conversation, ...]:
        return self._conversations

    @property
    def selected_id(self) -> int | None:
        return self._selected_id

    @property
    def selected(self) -> Conversation | None:
        if self._selected_id is None:
            return None
        return self.get(self._selected_id)

    def get(self, conversation_id: int) -> Conversation | None:
        for conversation in self._conversations:
            if conversation.id == conversation_id:
                return conversation
        return None

    def select(self, conversation_id: int | None) -> None:
        self._selected_id = conversation_id

    async def refresh(self) -> bool:
        """Replace the canonical list wholesale. Returns False if nothing was applied.

        Refreshes may overlap; a response older than the last applied one is
        dropped so late completions cannot roll the list back.
        """
        self._issued += 1
        seq = self._issued
        try:
            conversations = await self._gateway.list_conversations(self._limit)
        except (TransportError, ProtocolError) as exc:
            self.last_error = exc.detail or type(exc).__name__
            logger.warning("Conversation refresh failed: %s", self.last_error)
            return False

        if seq < self._applied:
            logger.debug("Discarding stale conversation list (seq %d < %d)", seq, self._applied)
            return False

        self._applied = seq
        self._conversations = _dedupe(conversations)
        self.last_error = None
        logger.debug("Conversation list refreshed: %d entries", len(self._conversations))
        return True

    async def sync_contacts(self) -> bool:
        try:
            await self._gateway.sync_contacts()
        except (TransportError, ProtocolError) as exc:
            self.last_error = exc.detail or type(exc).__name__
            logger.warning("Contact sync request failed: %s", self.last_error)
            return False
        return await self.refresh()

    def view(self, search: str = "", *, groups: bool | None = None) -> list[Conversation]:
        """Filtered view over the canonical list; never mutates it."""
        term = search.strip().lower()
        result: list[Conversation] = []
        for conversation in self._conversations:
            if groups is not None and conversation.is_group != groups:
                continue
            if term and not _matches(conversation, term):
                continue
            result.append(conversation)
        return result

    def clear(self) -> None:
        self._conversations = ()
        self._selected_id = None


def _matches(conversation: Conversation, term: str) -> bool:
    name = (conversation.display_name or "").lower()
    return term in name or term in conversation.external_address.lower()


def _dedupe(conversations: list[Conversation]) -> tuple[Conversation, ...]:
    seen: set[int] = set()
    unique: list[Conversation] = []
    for conversation in conversations:
        if conversation.id in seen:
            continue
        seen.add(conversation.id)
        unique.append(conversation)
    return tuple(unique)
