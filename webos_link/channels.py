"""Secondary input channels opened on behalf of the control connection."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import ssl
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Final

from .errors import WebOSClientError, WebOSConnectionError
from .protocol import frame_input_event, parse_channel_descriptor
from .ws_client import WebOSWsClient, WebOSWsMessageType

_LOGGER = logging.getLogger(__name__)

POINTER_INPUT_URI: Final = "ssap://com.webos.service.networkinput/getPointerInputSocket"


class InputSocket:
    """Line framed writer over a secondary channel connection."""

    def __init__(self, address: str, connection: WebOSWsClient) -> None:
        self.address = address
        self.connection = connection

    @property
    def closed(self) -> bool:
        return not self.connection.connected

    async def send(
        self, event_type: str, payload: Mapping[str, Any] | None = None
    ) -> None:
        """Send one event as ``type:<event_type>;`` plus ``key:value`` lines."""
        await self.connection.send_text(frame_input_event(event_type, payload))

    async def button(self, name: str) -> None:
        """Press a remote control button, e.g. ``ENTER`` or ``HOME``."""
        await self.send("button", {"name": name.upper()})

    async def click(self) -> None:
        await self.send("click")

    async def move(self, dx: int, dy: int, *, drag: bool = False) -> None:
        await self.send("move", {"dx": dx, "dy": dy, "down": 1 if drag else 0})

    async def scroll(self, dx: int, dy: int) -> None:
        await self.send("scroll", {"dx": dx, "dy": dy})

    async def close(self) -> None:
        await self.connection.close()


class SecondaryChannelManager:
    """Open and cache one input socket per logical address.

    The socket path is obtained by calling ``address`` on the control
    channel. A cached socket is evicted as soon as its connection closes, so
    the next lookup asks the device for a fresh descriptor.
    """

    def __init__(
        self,
        request: Callable[[str], Awaitable[Any]],
        *,
        on_error: Callable[[WebOSClientError], None],
        connect_timeout: float = 10.0,
        ping_interval: int | None = 20,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        self._request = request
        self._on_error = on_error
        self._connect_timeout = connect_timeout
        self._ping_interval = ping_interval
        self._ssl_context = ssl_context

        self._sockets: dict[str, InputSocket] = {}
        self._opening: dict[str, asyncio.Task[InputSocket]] = {}
        self._watchers: dict[InputSocket, asyncio.Task[None]] = {}

    def cached(self, address: str) -> InputSocket | None:
        """Return the live cached socket for ``address``, if any."""
        socket = self._sockets.get(address)
        if socket is not None and socket.closed:
            self._evict(address, socket)
            return None
        return socket

    async def get_socket(self, address: str) -> InputSocket:
        """Return a live socket for ``address``, opening one if needed.

        Concurrent callers for the same address share one open attempt.

        Raises:
            ChannelDescriptorError: If the device returns no usable socket path.
            WebOSConnectionError: If the control channel or the dial fails.
            RequestTimeout: If the descriptor request times out.
        """
        socket = self.cached(address)
        if socket is not None:
            return socket

        task = self._opening.get(address)
        if task is None:
            task = asyncio.create_task(self._open(address))
            self._opening[address] = task
            task.add_done_callback(lambda done: self._opening_done(address, done))
        return await asyncio.shield(task)

    async def close_all(self) -> None:
        """Close every socket and abandon in-flight opens."""
        for task in list(self._opening.values()):
            task.cancel()
        self._opening.clear()

        sockets = list(self._sockets.values())
        self._sockets.clear()
        for socket in sockets:
            try:
                await asyncio.wait_for(socket.close(), timeout=2.0)
            except TimeoutError:
                _LOGGER.warning("Input socket close timed out: %s", socket.address)

        watchers = list(self._watchers.values())
        self._watchers.clear()
        for watcher in watchers:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher

    async def _open(self, address: str) -> InputSocket:
        descriptor = await self._request(address)
        socket_path = parse_channel_descriptor(descriptor)

        connection = WebOSWsClient()
        try:
            await connection.connect(
                socket_path,
                ping_interval=self._ping_interval,
                timeout=self._connect_timeout,
                ssl_context=self._ssl_context,
            )
        except WebOSConnectionError as err:
            self._on_error(err)
            raise

        socket = InputSocket(address, connection)
        self._sockets[address] = socket
        self._watchers[socket] = asyncio.create_task(self._watch(socket))
        _LOGGER.debug("Input socket open for %s at %s", address, socket_path)
        return socket

    def _opening_done(self, address: str, task: asyncio.Task[InputSocket]) -> None:
        if self._opening.get(address) is task:
            del self._opening[address]

    async def _watch(self, socket: InputSocket) -> None:
        """Drain the socket until it closes, then evict it."""
        try:
            async for msg in socket.connection:
                if msg.type is WebOSWsMessageType.ERROR:
                    self._on_error(
                        WebOSConnectionError(f"Input socket error: {msg.data}")
                    )
                    break
                if msg.type is WebOSWsMessageType.CLOSED:
                    break
        finally:
            self._watchers.pop(socket, None)
            self._evict(socket.address, socket)

    def _evict(self, address: str, socket: InputSocket) -> None:
        if self._sockets.get(address) is socket:
            del self._sockets[address]
            _LOGGER.debug("Input socket closed for %s", address)
