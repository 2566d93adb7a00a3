from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

GROUP_ADDRESS_SUFFIX = "@g.us"


@dataclass(frozen=True, slots=True)
class Conversation:
    id: int
    external_address: str
    display_name: str | None
    last_message_preview: str | None
    last_message_at: datetime | None

    @property
    def is_group(self) -> bool:
        return self.external_address.endswith(GROUP_ADDRESS_SUFFIX)

    @property
    def title(self) -> str:
        return self.display_name or self.external_address
