"""WebSocket helpers for webOS TV control and input channels."""

from __future__ import annotations

import asyncio
import ssl

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)

from .errors import (
    WebOSConnectionError,
    WebOSHandshakeError,
    WebOSTimeout,
)


def build_ssl_context(*, verify: bool = True, cafile: str | None = None) -> ssl.SSLContext:
    """Create a TLS context for ``wss://`` device URLs.

    TVs present self-signed certificates, so verification can be disabled.
    """
    context = ssl.create_default_context(cafile=cafile)
    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


async def connect_websocket(
    url: str,
    *,
    ping_interval: int | None = 20,
    timeout: float = 10.0,
    ssl_context: ssl.SSLContext | None = None,
) -> ClientConnection:
    """Connect to a device WebSocket endpoint.

    Args:
        url: ``ws://`` or ``wss://`` URL of the endpoint
        ping_interval: Interval for keepalive ping frames, ``None`` to disable
        timeout: Connection timeout in seconds
        ssl_context: TLS context, only used for ``wss://`` URLs
    """
    kwargs: dict[str, ssl.SSLContext] = {}
    if ssl_context is not None and url.startswith("wss://"):
        kwargs["ssl"] = ssl_context

    try:
        return await asyncio.wait_for(
            websockets.connect(
                url,
                ping_interval=ping_interval,
                close_timeout=5,
                max_size=None,
                **kwargs,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise WebOSTimeout(f"WebSocket connection to {url} timed out") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise WebOSHandshakeError(f"WebSocket handshake with {url} failed: {err}") from err
    except (OSError, WebSocketException) as err:
        raise WebOSConnectionError(f"WebSocket connection to {url} failed: {err}") from err
