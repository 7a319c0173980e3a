"""WebSocket client wrapper for webOS TV channels."""

from __future__ import annotations

import json
import ssl
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed, WebSocketException

from .errors import WebOSConnectionError
from .ws import connect_websocket

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class WebOSWsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    BINARY = "binary"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class WebOSWsMessage:
    """Normalized WebSocket message payload.

    ``data`` holds the frame text for TEXT, the raw bytes for BINARY, and a
    description of the failure for ERROR.
    """

    type: WebOSWsMessageType
    data: str | bytes | None = None


class WebOSWsClient:
    """Wrapper around the websockets library for one device channel."""

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None
        self._closed = False

    @property
    def connected(self) -> bool:
        """True between a successful connect and close or peer disconnect."""
        return self._ws is not None and not self._closed

    async def connect(
        self,
        url: str,
        *,
        ping_interval: int | None = 20,
        timeout: float = 10.0,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        """Connect to the device websocket."""
        self._ws = await connect_websocket(
            url,
            ping_interval=ping_interval,
            timeout=timeout,
            ssl_context=ssl_context,
        )
        self._closed = False

    async def close(self) -> None:
        """Close the websocket connection."""
        self._closed = True
        if self._ws is not None:
            await self._ws.close()

    async def send_text(self, data: str) -> None:
        """Send a text frame."""
        if self._ws is None or self._closed:
            raise WebOSConnectionError("WebSocket is not connected")
        try:
            await self._ws.send(data)
        except (ConnectionClosed, WebSocketException, OSError) as err:
            raise WebOSConnectionError(f"WebSocket send failed: {err}") from err

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Send a JSON payload as a text frame."""
        await self.send_text(json.dumps(payload))

    def __aiter__(self) -> AsyncIterator[WebOSWsMessage]:
        if self._ws is None:
            raise WebOSConnectionError("WebSocket is not connected")
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[WebOSWsMessage]:
        if self._ws is None:
            raise WebOSConnectionError("WebSocket is not connected")

        try:
            async for msg in self._ws:
                yield self._normalize_message(msg)
        except ConnectionClosed:
            self._closed = True
            yield WebOSWsMessage(type=WebOSWsMessageType.CLOSED)
        except (WebSocketException, OSError) as err:
            self._closed = True
            yield WebOSWsMessage(type=WebOSWsMessageType.ERROR, data=str(err))
        else:
            # Normal iteration completion means the peer closed gracefully.
            self._closed = True
            yield WebOSWsMessage(type=WebOSWsMessageType.CLOSED)

    @staticmethod
    def _normalize_message(msg: Any) -> WebOSWsMessage:
        """Normalize library frames into WebOSWsMessage."""
        if isinstance(msg, (bytes, bytearray, memoryview)):
            return WebOSWsMessage(WebOSWsMessageType.BINARY, bytes(msg))
        if isinstance(msg, str):
            return WebOSWsMessage(WebOSWsMessageType.TEXT, msg)
        # Fallback: treat unknown objects as text via their string repr
        return WebOSWsMessage(WebOSWsMessageType.TEXT, str(msg))
