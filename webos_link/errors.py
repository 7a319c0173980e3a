"""Client error types for webOS TV protocol interactions."""

from __future__ import annotations


class WebOSClientError(Exception):
    """Base error for webOS client failures."""


class WebOSConnectionError(WebOSClientError):
    """Network connection to the device failed or was lost."""


class WebOSTimeout(WebOSConnectionError):
    """Timeout while dialing the device."""


class WebOSHandshakeError(WebOSConnectionError):
    """WebSocket handshake failed."""


class ProtocolError(WebOSClientError):
    """Device sent a frame or payload the client cannot interpret."""


class ChannelDescriptorError(ProtocolError, TypeError):
    """Secondary channel descriptor is missing or malformed."""


class RequestTimeout(WebOSClientError):
    """No response arrived for a request within its timeout."""

    def __init__(self, call_id: str, uri: str | None, timeout: float) -> None:
        super().__init__(f"Request {call_id} ({uri}) timed out after {timeout}s")
        self.call_id = call_id
        self.uri = uri
        self.timeout = timeout


class DeviceError(WebOSClientError):
    """Device answered a call with an error envelope."""

    def __init__(self, message: str, payload: object = None) -> None:
        super().__init__(message)
        self.payload = payload


class PairingError(WebOSClientError):
    """Pairing handshake was rejected or could not be started."""


class StorageError(WebOSClientError):
    """Credential storage backend failure."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ConfigError(WebOSClientError, ValueError):
    """Invalid client configuration."""
