"""httpx implementation of the pairing, conversation and message gateways."""
from __future__ import annotations

import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from messageflow_sync.application.dto.message import MessagePage
from messageflow_sync.application.dto.pairing import PairingPoll, PairingStart
from messageflow_sync.application.dto.session import SessionContext
from messageflow_sync.application.exceptions import ProtocolError, TransportError
from messageflow_sync.domain.entities.conversation import Conversation
from messageflow_sync.domain.entities.message import Message
from messageflow_sync.infrastructure.http import mappers
from messageflow_sync.infrastructure.http.schemas import (
    ConversationListOut,
    MessageListOut,
    MessageOut,
    PairingConnectedOut,
    PairingQROut,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class RestGateway:
    """Implements the PairingGateway, ConversationGateway and MessageGateway ports.

    The ``httpx.AsyncClient`` is owned by the caller and must carry the API
    base URL and timeout; auth headers come from the session context on
    every request.
    """

    def __init__(self, client: httpx.AsyncClient, context: SessionContext) -> None:
        self._client = client
        self._context = context

    # -- pairing ---------------------------------------------------------

    async def start_pairing(self) -> PairingStart:
        out = await self._get("/auth/whatsapp/qr", PairingQROut)
        return mappers.pairing_start_from_wire(out)

    async def poll_pairing(self, session_id: str) -> PairingPoll:
        out = await self._get(
            "/auth/whatsapp/status", PairingConnectedOut, params={"session_id": session_id},
        )
        return mappers.pairing_poll_from_wire(out)

    # -- conversations ---------------------------------------------------

    async def list_conversations(self, limit: int) -> list[Conversation]:
        out = await self._get("/conversations", ConversationListOut, params={"limit": limit})
        return [mappers.conversation_from_wire(c) for c in out.data]

    async def sync_contacts(self) -> None:
        await self._request("POST", "/auth/whatsapp/sync-contacts", mutating=True)

    # -- messages --------------------------------------------------------

    async def fetch_page(self, conversation_id: int, page: int, page_size: int) -> MessagePage:
        out = await self._get(
            f"/conversations/{conversation_id}/messages",
            MessageListOut,
            params={"page": page, "limit": page_size},
        )
        return MessagePage(
            conversation_id=conversation_id,
            page=page,
            page_size=page_size,
            items=[mappers.message_from_wire(m) for m in out.data],
        )

    async def send_message(self, conversation_id: int, content: str) -> Message:
        data = await self._request(
            "POST",
            "/messages/reply",
            json={"conversation_id": conversation_id, "content": content},
            mutating=True,
        )
        return mappers.message_from_wire(_validate(MessageOut, data))

    async def forward_message(self, message_id: int, target_conversation_id: int) -> Message:
        data = await self._request(
            "POST",
            "/messages/forward",
            json={"message_id": message_id, "target_conversation_id": target_conversation_id},
            mutating=True,
        )
        return mappers.message_from_wire(_validate(MessageOut, data))

    # -- plumbing --------------------------------------------------------

    async def _get(self, path: str, model: type[ModelT], *, params: dict[str, Any] | None = None) -> ModelT:
        data = await self._request("GET", path, params=params)
        return _validate(model, data)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        mutating: bool = False,
    ) -> Any:
        try:
            response = await self._client.request(
                method,
                path,
                params=params,
                json=json,
                headers=self._context.headers(mutating=mutating),
            )
        except httpx.TimeoutException as exc:
            raise TransportError(f"{method} {path} timed out") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        if response.is_error:
            raise TransportError(
                f"{method} {path} returned {response.status_code}: {_error_detail(response)}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ProtocolError(f"{method} {path} returned invalid JSON") from exc


def _validate(model: type[ModelT], data: Any) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ProtocolError(f"unexpected {model.__name__} payload: {exc.error_count()} error(s)") from exc


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or body)
    return str(body)[:200]
