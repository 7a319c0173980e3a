"""Pytest configuration and fixtures for webos_link tests."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from websockets.exceptions import ConnectionClosed

from webos_link import CorrelationIds, WebOSClient
from webos_link.errors import StorageError

TV_URL = "ws://tv.test:3000"

_CLOSE = object()


class FakeWebSocket:
    """In-memory stand-in for a websockets ClientConnection.

    Frames pushed with :meth:`push` are yielded by async iteration; closing
    from either side ends the iteration.
    """

    def __init__(self, url: str) -> None:
        self.url = url
        self.sent: list[str] = []
        self.closed = False
        self._queue: asyncio.Queue[Any] = asyncio.Queue()

    async def send(self, data: str) -> None:
        if self.closed:
            raise ConnectionClosed(None, None)
        self.sent.append(data)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_CLOSE)

    def push(self, message: str | bytes | dict[str, Any]) -> None:
        if isinstance(message, dict):
            message = json.dumps(message)
        self._queue.put_nowait(message)

    def push_error(self, error: BaseException) -> None:
        self._queue.put_nowait(error)

    def sent_json(self) -> list[dict[str, Any]]:
        return [json.loads(frame) for frame in self.sent]

    def __aiter__(self) -> FakeWebSocket:
        return self

    async def __anext__(self) -> str | bytes:
        item = await self._queue.get()
        if item is _CLOSE:
            self.closed = True
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            self.closed = True
            raise item
        return item


class MemoryTokenStorage:
    """Token storage keeping the token in memory."""

    def __init__(self, token: str | None = None) -> None:
        self.token = token
        self.saved: list[str] = []
        self.read_error: Exception | None = None
        self.save_error: StorageError | None = None

    async def read_token(self) -> str | None:
        if self.read_error is not None:
            raise self.read_error
        return self.token

    async def save_token(self, token: str) -> None:
        if self.save_error is not None:
            raise self.save_error
        self.saved.append(token)
        self.token = token


async def settle(rounds: int = 10) -> None:
    """Let queued callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def fake_sockets(monkeypatch: pytest.MonkeyPatch) -> list[FakeWebSocket]:
    """Patch websocket dialing; every dial appends a FakeWebSocket."""
    sockets: list[FakeWebSocket] = []

    async def _connect(url: str, **kwargs: Any) -> FakeWebSocket:
        ws = FakeWebSocket(url)
        sockets.append(ws)
        return ws

    monkeypatch.setattr("webos_link.ws_client.connect_websocket", _connect)
    return sockets


@pytest.fixture
def token_storage() -> MemoryTokenStorage:
    return MemoryTokenStorage()


@pytest.fixture
async def client(token_storage: MemoryTokenStorage, fake_sockets: list[FakeWebSocket]):
    """A client with short timeouts and a fixed id prefix."""
    webos = WebOSClient(
        token_storage,
        url=TV_URL,
        timeout=0.05,
        reconnect_interval=0.05,
        manifest={"forcePairing": False, "pairingType": "PROMPT"},
        call_ids=CorrelationIds("cafe0000"),
    )
    yield webos
    await webos.disconnect()


async def pair(client: WebOSClient, fake_sockets: list[FakeWebSocket], key: str = "KEY") -> FakeWebSocket:
    """Connect ``client`` and answer its registration with ``key``."""
    await client.connect()
    ws = fake_sockets[-1]
    register = ws.sent_json()[-1]
    ws.push({"type": "registered", "id": register["id"], "payload": {"client-key": key}})
    await settle()
    return ws


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    import aiohttp

    return MagicMock(spec=aiohttp.ClientSession)


def create_mock_response(
    status: int = 200,
    json_data: dict[str, Any] | None = None,
    text_data: str | None = None,
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        json_data: Data to return from json() call
        text_data: Data to return from text() call

    Returns:
        Configured AsyncMock response
    """
    response = AsyncMock()
    response.status = status

    if json_data is not None:
        response.json.return_value = json_data
    if text_data is not None:
        response.text.return_value = text_data

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response
