"""Tests for SecondaryChannelManager and InputSocket."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from webos_link import (
    POINTER_INPUT_URI,
    ChannelDescriptorError,
    ProtocolError,
    SecondaryChannelManager,
    WebOSConnectionError,
)

from .conftest import FakeWebSocket, settle

SOCKET_PATH = "ws://tv.test:3000/resources/1234/netinput.pointer.sock"


@pytest.fixture
def request_descriptor() -> AsyncMock:
    return AsyncMock(return_value={"socketPath": SOCKET_PATH})


@pytest.fixture
def on_error() -> MagicMock:
    return MagicMock()


@pytest.fixture
async def manager(request_descriptor, on_error, fake_sockets):
    channels = SecondaryChannelManager(request_descriptor, on_error=on_error)
    yield channels
    await channels.close_all()


class TestGetSocket:
    """Tests for socket caching and eviction."""

    async def test_same_address_returns_cached_socket(
        self, manager, request_descriptor, fake_sockets
    ) -> None:
        """Test two lookups share one socket and one descriptor request."""
        first = await manager.get_socket(POINTER_INPUT_URI)
        second = await manager.get_socket(POINTER_INPUT_URI)

        assert first is second
        request_descriptor.assert_awaited_once_with(POINTER_INPUT_URI)
        assert len(fake_sockets) == 1
        assert fake_sockets[0].url == SOCKET_PATH

    async def test_concurrent_lookups_share_one_open(
        self, manager, request_descriptor, fake_sockets
    ) -> None:
        """Test lookups racing the first open do not open twice."""
        first, second = await asyncio.gather(
            manager.get_socket(POINTER_INPUT_URI),
            manager.get_socket(POINTER_INPUT_URI),
        )

        assert first is second
        assert request_descriptor.await_count == 1
        assert len(fake_sockets) == 1

    @pytest.mark.parametrize(
        "descriptor",
        [None, "ws://not-a-mapping", {}, {"socketPath": 42}, {"socketPath": ""}],
    )
    async def test_malformed_descriptor(
        self, manager, request_descriptor, fake_sockets, descriptor: Any
    ) -> None:
        """Test malformed descriptors raise a type error and cache nothing."""
        request_descriptor.return_value = descriptor

        with pytest.raises(ChannelDescriptorError) as exc_info:
            await manager.get_socket(POINTER_INPUT_URI)

        assert isinstance(exc_info.value, TypeError)
        assert isinstance(exc_info.value, ProtocolError)
        assert fake_sockets == []
        assert manager.cached(POINTER_INPUT_URI) is None

    async def test_closed_socket_is_evicted(
        self, manager, request_descriptor, fake_sockets
    ) -> None:
        """Test a peer close evicts the socket and the next lookup reopens."""
        first = await manager.get_socket(POINTER_INPUT_URI)

        await fake_sockets[0].close()
        await settle()

        assert first.closed
        assert manager.cached(POINTER_INPUT_URI) is None

        second = await manager.get_socket(POINTER_INPUT_URI)

        assert second is not first
        assert request_descriptor.await_count == 2
        assert len(fake_sockets) == 2

    async def test_socket_error_is_reported(self, manager, on_error, fake_sockets) -> None:
        """Test a socket error is reported and evicts the socket."""
        from websockets.exceptions import InvalidState

        await manager.get_socket(POINTER_INPUT_URI)
        fake_sockets[0].push_error(InvalidState("broken"))
        await settle()

        on_error.assert_called_once()
        assert isinstance(on_error.call_args.args[0], WebOSConnectionError)
        assert manager.cached(POINTER_INPUT_URI) is None

    async def test_dial_failure(self, request_descriptor, on_error, monkeypatch) -> None:
        """Test a failed dial is reported, raised and not cached."""
        error = WebOSConnectionError("refused")

        async def _connect(url: str, **kwargs: Any) -> FakeWebSocket:
            raise error

        monkeypatch.setattr("webos_link.ws_client.connect_websocket", _connect)
        channels = SecondaryChannelManager(request_descriptor, on_error=on_error)

        with pytest.raises(WebOSConnectionError, match="refused"):
            await channels.get_socket(POINTER_INPUT_URI)

        on_error.assert_called_once_with(error)
        assert channels.cached(POINTER_INPUT_URI) is None

    async def test_close_all(self, manager, fake_sockets) -> None:
        """Test close_all closes and forgets every socket."""
        socket = await manager.get_socket(POINTER_INPUT_URI)

        await manager.close_all()

        assert fake_sockets[0].closed
        assert socket.closed
        assert manager.cached(POINTER_INPUT_URI) is None


class TestInputSocket:
    """Tests for line framed input events."""

    async def test_send_frames_key_value_lines(self, manager, fake_sockets) -> None:
        """Test events are framed as type line, key lines, blank line."""
        socket = await manager.get_socket(POINTER_INPUT_URI)

        await socket.send("button", {"name": "HOME"})
        await socket.click()
        await socket.move(3, -2, drag=True)
        await socket.scroll(0, 5)

        assert fake_sockets[0].sent == [
            "type:button;\nname:HOME\n\n",
            "type:click;\n\n",
            "type:move;\ndx:3\ndy:-2\ndown:1\n\n",
            "type:scroll;\ndx:0\ndy:5\n\n",
        ]

    async def test_send_after_close_raises(self, manager, fake_sockets) -> None:
        """Test sending on a closed socket raises a connection error."""
        socket = await manager.get_socket(POINTER_INPUT_URI)
        await socket.close()

        with pytest.raises(WebOSConnectionError, match="not connected"):
            await socket.button("BACK")
