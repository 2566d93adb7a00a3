from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from messageflow_sync.application.dto.pairing import PairingPoll, PairingStart
from messageflow_sync.application.exceptions import ProtocolError
from messageflow_sync.domain.entities.conversation import Conversation
from messageflow_sync.domain.entities.message import Message
from messageflow_sync.domain.value_objects.credential import Credential
from messageflow_sync.domain.value_objects.enums import MessageDirection, PairingStatus
from messageflow_sync.infrastructure.http.schemas import (
    ConversationOut,
    MessageOut,
    PairingConnectedOut,
    PairingQROut,
)

OUTBOUND_SENDERS = frozenset({"agent", "me"})

_STATUS_ALIASES: dict[str, PairingStatus] = {
    "qr": PairingStatus.PENDING,
    "pending": PairingStatus.PENDING,
    "generating": PairingStatus.PENDING,
    "connected": PairingStatus.CONNECTED,
    "timeout": PairingStatus.EXPIRED,
    "expired": PairingStatus.EXPIRED,
    "error": PairingStatus.FAILED,
    "failed": PairingStatus.FAILED,
}


def normalize_pairing_status(raw: str) -> PairingStatus:
    try:
        return _STATUS_ALIASES[raw.strip().lower()]
    except KeyError as exc:
        raise ProtocolError(f"unknown pairing status {raw!r}") from exc


def _utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def pairing_start_from_wire(out: PairingQROut) -> PairingStart:
    return PairingStart(
        session_id=out.session_id,
        qr_payload=out.qr_code or None,
        poll_interval_hint=out.poll_interval_seconds,
        timeout_seconds=out.timeout_seconds or None,
    )


def pairing_poll_from_wire(out: PairingConnectedOut) -> PairingPoll:
    status = normalize_pairing_status(out.status)
    qr_payload = out.qr_code or (out.session.qr_code if out.session else None)
    credential = None
    if status == PairingStatus.CONNECTED and out.token:
        credential = Credential(
            token=out.token,
            csrf=out.csrf or "",
            tenant_id=out.tenant_id,
            role=out.role,
            user=out.user,
        )
    return PairingPoll(
        status=status,
        qr_payload=qr_payload or None,
        credential=credential,
        error=out.error or None,
    )


def conversation_from_wire(out: ConversationOut) -> Conversation:
    return Conversation(
        id=out.id,
        external_address=out.contact_number,
        display_name=out.contact_name or None,
        last_message_preview=out.last_message_preview,
        last_message_at=_utc(out.last_message_at) if out.last_message_at else None,
    )


def message_from_wire(out: MessageOut) -> Message:
    ts = out.timestamp or out.created_at
    if ts is None:
        raise ProtocolError(f"message {out.id} has no timestamp")
    return Message(
        id=out.id,
        conversation_id=out.conversation_id,
        sender=out.sender,
        direction=(
            MessageDirection.OUTBOUND if out.sender.lower() in OUTBOUND_SENDERS
            else MessageDirection.INBOUND
        ),
        content=out.content,
        created_at=_utc(ts),
        delivery_metadata=_metadata(out.metadata_json),
    )


def _metadata(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None
