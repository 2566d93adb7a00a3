from __future__ import annotations

from enum import StrEnum


class PairingStatus(StrEnum):
    IDLE = "idle"
    GENERATING = "generating"
    PENDING = "pending"
    CONNECTED = "connected"
    EXPIRED = "expired"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PairingStatus.CONNECTED, PairingStatus.EXPIRED, PairingStatus.FAILED)


class MessageDirection(StrEnum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class ConnectionState(StrEnum):
    IDLE = "idle"
    CONNECTING = "connecting"
    LIVE = "live"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


class SyncEventType(StrEnum):
    MESSAGE_RECEIVED = "message.received"
    MESSAGE_REPLY = "message.reply"
    MESSAGE_FORWARD = "message.forward"
    PRESENCE_UPDATE = "presence.update"
    TYPING = "typing"
