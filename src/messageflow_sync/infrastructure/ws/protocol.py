"""Push-channel frame models."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from messageflow_sync.application.dto.events import SyncEvent
from messageflow_sync.application.exceptions import ProtocolError
from messageflow_sync.infrastructure.http.mappers import message_from_wire
from messageflow_sync.infrastructure.http.schemas import MessageOut


class SyncEventFrame(BaseModel):
    """Server -> client. Fields other than the routing keys stay in the payload."""

    model_config = ConfigDict(extra="allow")

    type: str  # message.received | message.reply | message.forward | presence.update | typing
    conversation_id: int | None = None
    message_id: int | None = None
    message: MessageOut | None = None


def parse_sync_event(raw: str | bytes) -> SyncEvent:
    """Decode one frame. Raises ProtocolError for anything malformed."""
    try:
        frame = SyncEventFrame.model_validate_json(raw)
    except ValidationError as exc:
        raise ProtocolError(f"malformed sync event: {exc.error_count()} error(s)") from exc
    if not frame.type:
        raise ProtocolError("sync event without type")

    message = message_from_wire(frame.message) if frame.message else None
    if message is not None and frame.conversation_id not in (None, message.conversation_id):
        raise ProtocolError(
            f"sync event for conversation {frame.conversation_id} "
            f"carries message of conversation {message.conversation_id}"
        )
    payload: dict[str, Any] = dict(frame.model_extra or {})
    return SyncEvent(
        type=frame.type,
        conversation_id=frame.conversation_id if frame.conversation_id is not None else (
            message.conversation_id if message else None
        ),
        message_id=frame.message_id if frame.message_id is not None else (message.id if message else None),
        payload=payload,
        message=message,
    )
