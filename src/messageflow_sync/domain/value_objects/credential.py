from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class Credential:
    """Linked-device credential issued by the backend on a successful pairing.

    Stored and forwarded as-is; this client never inspects or validates it.
    """

    token: str = field(repr=False)
    csrf: str = field(repr=False)
    tenant_id: int | None = None
    role: str | None = None
    user: dict[str, Any] | None = None
