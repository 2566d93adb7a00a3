from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from messageflow_sync.domain.entities.message import Message


@dataclass(frozen=True, slots=True)
class SyncEvent:
    """One decoded push-channel frame. Never persisted."""

    type: str
    conversation_id: int | None = None
    message_id: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    message: Message | None = None

    @property
    def is_message_event(self) -> bool:
        return self.type.startswith("message")
