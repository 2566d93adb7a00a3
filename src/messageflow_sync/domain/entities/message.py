from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from messageflow_sync.domain.value_objects.enums import MessageDirection


@dataclass(frozen=True, slots=True)
class Message:
    id: int
    conversation_id: int
    sender: str
    direction: MessageDirection
    content: str
    created_at: datetime
    delivery_metadata: dict[str, Any] | None = None

    @property
    def sort_key(self) -> tuple[datetime, int]:
        """Materialized logs are ordered by (created_at, id) ascending."""
        return self.created_at, self.id
