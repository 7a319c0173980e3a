"""Protocol client for LG webOS TVs.

Pairs with the TV over its websocket control channel, correlates requests
and subscriptions, reconnects on loss, and opens input sockets for remote
control button presses.
"""

__version__ = "0.1.0"

from .channels import POINTER_INPUT_URI, InputSocket, SecondaryChannelManager
from .config import VaultConfig, WebOSClientConfig, build_token_storage, load_config
from .errors import (
    ChannelDescriptorError,
    ConfigError,
    DeviceError,
    PairingError,
    ProtocolError,
    RequestTimeout,
    StorageError,
    WebOSClientError,
    WebOSConnectionError,
    WebOSHandshakeError,
    WebOSTimeout,
)
from .events import (
    CloseEvent,
    ConnectingEvent,
    ErrorEvent,
    MessageEvent,
    PromptEvent,
    ReadyEvent,
)
from .protocol import CorrelationIds, Envelope, build_envelope, parse_envelope
from .session import CallKind, CallState, ClientState, PendingCall, WebOSClient
from .storage import FileTokenStorage, TokenStorage, VaultTokenStorage, xdg_path
from .ws import connect_websocket
from .ws_client import WebOSWsClient, WebOSWsMessage, WebOSWsMessageType

__all__ = [
    "POINTER_INPUT_URI",
    "CallKind",
    "CallState",
    "ChannelDescriptorError",
    "ClientState",
    "CloseEvent",
    "ConfigError",
    "ConnectingEvent",
    "CorrelationIds",
    "DeviceError",
    "Envelope",
    "ErrorEvent",
    "FileTokenStorage",
    "InputSocket",
    "MessageEvent",
    "PairingError",
    "PendingCall",
    "PromptEvent",
    "ProtocolError",
    "ReadyEvent",
    "RequestTimeout",
    "SecondaryChannelManager",
    "StorageError",
    "TokenStorage",
    "VaultConfig",
    "VaultTokenStorage",
    "WebOSClient",
    "WebOSClientConfig",
    "WebOSClientError",
    "WebOSConnectionError",
    "WebOSHandshakeError",
    "WebOSTimeout",
    "WebOSWsClient",
    "WebOSWsMessage",
    "WebOSWsMessageType",
    "__version__",
    "build_envelope",
    "build_token_storage",
    "connect_websocket",
    "load_config",
    "parse_envelope",
    "xdg_path",
]
