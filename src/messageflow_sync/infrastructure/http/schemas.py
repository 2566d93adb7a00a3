"""Wire models for the MessageFlow REST API."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class _Wire(BaseModel):
    model_config = ConfigDict(extra="ignore")


class PairingQROut(_Wire):
    session_id: str
    qr_code: str | None = None
    timeout_seconds: int | None = None
    poll_interval_seconds: float | None = None
    status: str = "pending"
    error: str | None = None
    tenant_id: int | None = None


class PairingConnectedOut(_Wire):
    status: str
    session: PairingQROut | None = None
    user: dict[str, Any] | None = None
    role: str | None = None
    token: str | None = None
    csrf: str | None = None
    tenant_id: int | None = None
    qr_code: str | None = None
    error: str | None = None


class ConversationOut(_Wire):
    id: int
    contact_number: str
    contact_name: str | None = None
    last_message_at: datetime | None = None
    last_message_preview: str | None = None


class MessageOut(_Wire):
    id: int
    conversation_id: int
    sender: str
    content: str = ""
    timestamp: datetime | None = None
    created_at: datetime | None = None
    metadata_json: str | None = None


class ConversationListOut(_Wire):
    data: list[ConversationOut] = []


class MessageListOut(_Wire):
    data: list[MessageOut] = []
