from __future__ import annotations

from dataclasses import dataclass, field, replace

from messageflow_sync.domain.value_objects.credential import Credential
from messageflow_sync.domain.value_objects.enums import PairingStatus


@dataclass(slots=True)
class PairingSession:
    """Mutable state of one QR pairing handshake.

    Owned by the pairing controller; everything outside it only ever sees
    copies handed out through ``snapshot()``.
    """

    session_id: str
    max_attempts: int
    poll_interval: float
    status: PairingStatus = PairingStatus.GENERATING
    qr_payload: str | None = None
    poll_attempt_count: int = 0
    timeout_seconds: int | None = None
    credential: Credential | None = field(default=None, repr=False)
    error: str | None = None

    @property
    def attempts_exhausted(self) -> bool:
        return self.poll_attempt_count >= self.max_attempts

    def snapshot(self) -> PairingSession:
        return replace(self)
