from __future__ import annotations

from dataclasses import dataclass, field

from messageflow_sync.domain.entities.message import Message


@dataclass(frozen=True, slots=True)
class MessagePage:
    conversation_id: int
    page: int
    page_size: int
    items: list[Message] = field(default_factory=list)

    @property
    def is_full(self) -> bool:
        return len(self.items) >= self.page_size


@dataclass(frozen=True, slots=True)
class ConversationSnapshot:
    """Read-only view of one materialized conversation log."""

    conversation_id: int
    messages: tuple[Message, ...]
    has_more_older: bool
    loading: bool
    load_failed: bool
    send_failed: bool
