from __future__ import annotations

from dataclasses import dataclass

from messageflow_sync.domain.value_objects.credential import Credential
from messageflow_sync.domain.value_objects.enums import PairingStatus


@dataclass(frozen=True, slots=True)
class PairingStart:
    session_id: str
    qr_payload: str | None
    poll_interval_hint: float | None = None
    timeout_seconds: int | None = None


@dataclass(frozen=True, slots=True)
class PairingPoll:
    status: PairingStatus
    qr_payload: str | None = None
    credential: Credential | None = None
    error: str | None = None
