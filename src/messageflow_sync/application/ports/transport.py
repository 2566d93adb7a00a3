from __future__ import annotations

from typing import AsyncIterator, Protocol

from messageflow_sync.application.dto.message import MessagePage
from messageflow_sync.application.dto.pairing import PairingPoll, PairingStart
from messageflow_sync.domain.entities.conversation import Conversation
from messageflow_sync.domain.entities.message import Message


class PairingGateway(Protocol):
    async def start_pairing(self) -> PairingStart: ...

    async def poll_pairing(self, session_id: str) -> PairingPoll: ...


class ConversationGateway(Protocol):
    async def list_conversations(self, limit: int) -> list[Conversation]: ...

    async def sync_contacts(self) -> None: ...


class MessageGateway(Protocol):
    async def fetch_page(
        self,
        conversation_id: int,
        page: int,
        page_size: int,
    ) -> MessagePage:
        """Page 1 is the most recent; higher pages move backward in time."""
        ...

    async def send_message(self, conversation_id: int, content: str) -> Message: ...

    async def forward_message(self, message_id: int, target_conversation_id: int) -> Message: ...


class PushChannel(Protocol):
    """One receive-only push connection.

    ``connect()`` and ``frames()`` raise ``TransportError`` when the
    connection cannot be established or drops; ``frames()`` simply ends
    when the server closes the connection.
    """

    async def connect(self) -> None: ...

    def frames(self) -> AsyncIterator[str | bytes]: ...

    async def close(self) -> None: ...
