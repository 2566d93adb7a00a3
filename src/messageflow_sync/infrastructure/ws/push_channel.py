"""WebSocket push channel."""
from __future__ import annotations

import logging
from typing import AsyncIterator
from urllib.parse import quote

import websockets
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK, WebSocketException

from messageflow_sync.application.exceptions import TransportError

logger = logging.getLogger(__name__)


class WebSocketPushChannel:
    """One receive-only connection to ``<ws_base>/ws?token=...``."""

    def __init__(
        self,
        ws_base: str,
        token: str,
        *,
        ping_interval: float | None = 30.0,
        open_timeout: float = 10.0,
    ) -> None:
        self._url = f"{ws_base.rstrip('/')}/ws?token={quote(token, safe='')}"
        self._ping_interval = ping_interval
        self._open_timeout = open_timeout
        self._connection: websockets.ClientConnection | None = None

    async def connect(self) -> None:
        try:
            self._connection = await websockets.connect(
                self._url,
                ping_interval=self._ping_interval,
                ping_timeout=10.0,
                open_timeout=self._open_timeout,
            )
        except (WebSocketException, OSError, TimeoutError) as exc:
            raise TransportError(f"push channel unavailable: {exc}") from exc
        logger.info("Push channel connected")

    async def frames(self) -> AsyncIterator[str | bytes]:
        if self._connection is None:
            raise TransportError("push channel is not connected")
        try:
            async for frame in self._connection:
                yield frame
        except ConnectionClosedOK:
            return
        except ConnectionClosedError as exc:
            raise TransportError(f"push channel dropped: {exc}") from exc
        except (WebSocketException, OSError) as exc:
            raise TransportError(f"push channel failed: {exc}") from exc

    async def close(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.close()
