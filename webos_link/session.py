"""Protocol client for the webOS TV control channel.

This module provides the API the message bus dispatcher talks to. It handles:
- Connection management and the fixed-interval reconnect loop
- The pairing handshake and token persistence
- Correlation of concurrent requests, subscriptions and their responses
- Secondary input channels (via SecondaryChannelManager)

All state is owned by one WebOSClient and mutated only from its event loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import ssl
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from .channels import InputSocket, SecondaryChannelManager
from .config import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_PING_INTERVAL,
    DEFAULT_RECONNECT_INTERVAL,
    DEFAULT_TIMEOUT,
    DEFAULT_URL,
    WebOSClientConfig,
)
from .errors import (
    DeviceError,
    PairingError,
    ProtocolError,
    RequestTimeout,
    StorageError,
    WebOSClientError,
    WebOSConnectionError,
)
from .events import (
    CloseEvent,
    ConnectingEvent,
    ErrorEvent,
    EventSource,
    Listener,
    MessageEvent,
    PromptEvent,
    ReadyEvent,
)
from .pairing import build_register_payload, load_pairing_manifest
from .protocol import (
    CLIENT_KEY_FIELD,
    MESSAGE_TYPE_REGISTER,
    MESSAGE_TYPE_REQUEST,
    MESSAGE_TYPE_SUBSCRIBE,
    MESSAGE_TYPE_UNSUBSCRIBE,
    CorrelationIds,
    Envelope,
    build_envelope,
    parse_envelope,
    synthesize_changed,
)
from .ws import build_ssl_context
from .ws_client import WebOSWsClient, WebOSWsMessageType

if TYPE_CHECKING:
    from .storage import TokenStorage

_LOGGER = logging.getLogger(__name__)

ResponseCallback = Callable[[WebOSClientError | None, Any], Awaitable[None] | None]


class ClientState(Enum):
    """Pairing state of the control connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_PAIRING = "awaiting_pairing"
    PAIRED = "paired"


class CallKind(Enum):
    """How a pending call completes."""

    REQUEST = "request"
    REGISTER = "register"
    SUBSCRIPTION = "subscription"


class CallState(Enum):
    """Terminal outcome of a pending call, written once."""

    PENDING = "pending"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class PendingCall:
    """One outstanding correlated exchange."""

    call_id: str
    kind: CallKind
    uri: str | None = None
    callback: ResponseCallback | None = None
    future: asyncio.Future[Any] | None = None
    state: CallState = CallState.PENDING
    timer: asyncio.TimerHandle | None = None

    def finish(self, state: CallState) -> bool:
        """Move out of PENDING. Returns False if already finished."""
        if self.state is not CallState.PENDING:
            return False
        self.state = state
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None
        if state is CallState.CANCELLED and self.future is not None:
            self.future.cancel()
        return True


class WebOSClient:
    """Protocol client for one webOS TV.

    Usage:
        client = WebOSClient(FileTokenStorage(), url="ws://192.168.1.20:3000")
        client.on_ready(handle_ready)
        await client.connect()
        volume = await client.call("ssap://audio/getVolume")
        await client.subscribe("ssap://audio/getVolume", None, handle_volume)
        socket = await client.get_socket(POINTER_INPUT_URI)
        await socket.button("ENTER")
        await client.disconnect()
    """

    def __init__(
        self,
        token_storage: TokenStorage,
        *,
        url: str = DEFAULT_URL,
        timeout: float = DEFAULT_TIMEOUT,
        reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        ping_interval: int | None = DEFAULT_PING_INTERVAL,
        ssl_context: ssl.SSLContext | None = None,
        manifest: dict[str, Any] | None = None,
        call_ids: CorrelationIds | None = None,
    ) -> None:
        """Initialize client.

        Args:
            token_storage: Backend holding the pairing token
            url: Control channel URL
            timeout: Request response timeout (seconds)
            reconnect_interval: Fixed retry delay (seconds), 0 disables retries
            connect_timeout: Websocket dial timeout (seconds)
            ping_interval: Websocket keepalive interval (seconds)
            ssl_context: TLS context for ``wss://`` URLs
            manifest: Registration payload template, defaults to pairing.yaml
            call_ids: Correlation id generator
        """
        self.url = url
        self._token_storage = token_storage
        self._timeout = timeout
        self._reconnect_interval = reconnect_interval
        self._connect_timeout = connect_timeout
        self._ping_interval = ping_interval
        self._ssl_context = ssl_context
        self._manifest = manifest if manifest is not None else load_pairing_manifest()
        self._ids = call_ids or CorrelationIds()

        # Connection state
        self._ws: WebOSWsClient | None = None
        self._state = ClientState.DISCONNECTED
        self._listen_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._auto_reconnect = False
        self._last_error: str | None = None

        # Call bookkeeping
        self._pending: dict[str, PendingCall] = {}
        self._register_call_id: str | None = None
        self._sent_client_key: str | None = None
        self._client_key: str | None = None
        self._callback_tasks: set[asyncio.Future[Any]] = set()

        self._channels = SecondaryChannelManager(
            self.call,
            on_error=self._report_transport_error,
            connect_timeout=connect_timeout,
            ping_interval=ping_interval,
            ssl_context=ssl_context,
        )

        # Observers
        self._connecting_events: EventSource[ConnectingEvent] = EventSource("connecting")
        self._ready_events: EventSource[ReadyEvent] = EventSource("ready")
        self._close_events: EventSource[CloseEvent] = EventSource("close")
        self._prompt_events: EventSource[PromptEvent] = EventSource("prompt")
        self._error_events: EventSource[ErrorEvent] = EventSource("error")
        self._message_events: EventSource[MessageEvent] = EventSource("message")

    @classmethod
    def from_config(
        cls, config: WebOSClientConfig, token_storage: TokenStorage
    ) -> WebOSClient:
        """Create a client from a loaded config."""
        ssl_context = None
        if config.url.startswith("wss://"):
            ssl_context = build_ssl_context(verify=config.verify_ssl)
        return cls(
            token_storage,
            url=config.url,
            timeout=config.timeout,
            reconnect_interval=config.reconnect_interval,
            connect_timeout=config.connect_timeout,
            ping_interval=config.ping_interval,
            ssl_context=ssl_context,
        )

    # -------------------------------------------------------------------------
    # Public API: Connection Management
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect and pair, or resume pairing on a live connection.

        Safe to call repeatedly. Enables auto-reconnect.
        """
        self._auto_reconnect = self._reconnect_interval > 0

        if self.is_connected:
            if self._state is not ClientState.PAIRED:
                await self.register()
            return

        if self._state is ClientState.CONNECTING:
            _LOGGER.debug("[%s] Connect ignored: dial in progress", self.url)
            return

        self._ws = None
        self._set_state(ClientState.CONNECTING)
        self._connecting_events.emit(ConnectingEvent(self.url))
        _LOGGER.info("[%s] Connecting", self.url)

        ws_client = WebOSWsClient()
        try:
            await ws_client.connect(
                self.url,
                ping_interval=self._ping_interval,
                timeout=self._connect_timeout,
                ssl_context=self._ssl_context,
            )
        except WebOSConnectionError as err:
            if self._state is ClientState.CONNECTING:
                self._set_state(ClientState.DISCONNECTED)
            self._report_transport_error(err)
            self._schedule_reconnect()
            return

        if self._state is not ClientState.CONNECTING:
            # disconnect() ran while the dial was in flight
            await ws_client.close()
            return

        self._ws = ws_client
        self._last_error = None
        self._set_state(ClientState.AWAITING_PAIRING)
        _LOGGER.info("[%s] WebSocket connected, starting listener", self.url)
        self._listen_task = asyncio.create_task(self._listen(ws_client))
        await self.register()

    async def disconnect(self) -> None:
        """Close everything and stop reconnecting.

        Pending calls are dropped without invoking their callbacks.
        """
        _LOGGER.info("[%s] Disconnecting", self.url)
        self._auto_reconnect = False

        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

        self._drop_calls()
        self._register_call_id = None
        await self._channels.close_all()

        listen_task, self._listen_task = self._listen_task, None
        ws, self._ws = self._ws, None

        if listen_task is not None and listen_task is not asyncio.current_task():
            listen_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await listen_task

        if ws is not None:
            try:
                await asyncio.wait_for(ws.close(), timeout=2.0)
            except TimeoutError:
                _LOGGER.warning("[%s] WebSocket close timed out", self.url)

        self._set_state(ClientState.DISCONNECTED)
        if ws is not None:
            self._close_events.emit(CloseEvent(self.url, "disconnect"))

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def is_connected(self) -> bool:
        """True while the primary websocket is open."""
        return self._ws is not None and self._ws.connected

    @property
    def is_paired(self) -> bool:
        return self._state is ClientState.PAIRED

    @property
    def client_key(self) -> str | None:
        """Token granted by the last successful pairing."""
        return self._client_key

    # -------------------------------------------------------------------------
    # Public API: Observers
    # -------------------------------------------------------------------------

    def on_connecting(self, listener: Listener[ConnectingEvent]) -> Callable[[], None]:
        """Register a listener for dial attempts."""
        return self._connecting_events.add(listener)

    def on_ready(self, listener: Listener[ReadyEvent]) -> Callable[[], None]:
        """Register a listener for completed pairing."""
        return self._ready_events.add(listener)

    def on_close(self, listener: Listener[CloseEvent]) -> Callable[[], None]:
        """Register a listener for primary connection loss."""
        return self._close_events.add(listener)

    def on_prompt(self, listener: Listener[PromptEvent]) -> Callable[[], None]:
        """Register a listener for on-screen pairing prompts."""
        return self._prompt_events.add(listener)

    def on_error(self, listener: Listener[ErrorEvent]) -> Callable[[], None]:
        """Register a listener for non-fatal errors."""
        return self._error_events.add(listener)

    def on_message(self, listener: Listener[MessageEvent]) -> Callable[[], None]:
        """Register a listener for every parsed inbound envelope."""
        return self._message_events.add(listener)

    # -------------------------------------------------------------------------
    # Public API: Calls
    # -------------------------------------------------------------------------

    async def request(
        self,
        uri: str,
        payload: Any = None,
        callback: ResponseCallback | None = None,
    ) -> str:
        """Send a one-shot call and return its correlation id.

        ``callback(error, payload)`` runs exactly once: with the response
        payload, a DeviceError, or a RequestTimeout.

        Raises:
            WebOSConnectionError: If there is no live connection.
        """
        return await self._send(CallKind.REQUEST, MESSAGE_TYPE_REQUEST, uri, payload, callback)

    async def call(self, uri: str, payload: Any = None) -> Any:
        """Send a one-shot call and wait for its response payload.

        Raises:
            RequestTimeout: If no response arrives in time.
            DeviceError: If the device answers with an error.
            WebOSConnectionError: If there is no live connection.
            asyncio.CancelledError: If the client disconnects first.
        """
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        await self._send(
            CallKind.REQUEST, MESSAGE_TYPE_REQUEST, uri, payload, None, future=future
        )
        return await future

    async def subscribe(
        self, uri: str, payload: Any, callback: ResponseCallback
    ) -> str:
        """Send a subscription and return its correlation id.

        ``callback`` runs once per pushed update until disconnect, connection
        loss, or :meth:`unsubscribe`.
        """
        return await self._send(
            CallKind.SUBSCRIPTION, MESSAGE_TYPE_SUBSCRIBE, uri, payload, callback
        )

    async def unsubscribe(self, call_id: str) -> None:
        """Stop a subscription and tell the device when connected."""
        call = self._pending.get(call_id)
        if call is None or call.kind is not CallKind.SUBSCRIPTION:
            return
        self._complete(call, CallState.CANCELLED)
        if self._ws is not None and self._ws.connected:
            try:
                await self._ws.send_json(
                    build_envelope(call_id=call_id, msg_type=MESSAGE_TYPE_UNSUBSCRIBE)
                )
            except WebOSConnectionError as err:
                self._report_transport_error(err)

    async def get_socket(self, address: str) -> InputSocket:
        """Return the secondary input channel for ``address``."""
        return await self._channels.get_socket(address)

    # -------------------------------------------------------------------------
    # Pairing
    # -------------------------------------------------------------------------

    async def register(self) -> None:
        """Send the pairing handshake.

        A no-op while a registration is already pending or after pairing.
        """
        ws = self._ws
        if ws is None or not ws.connected:
            _LOGGER.debug("[%s] Register skipped: not connected", self.url)
            return
        if self._register_call_id is not None:
            _LOGGER.debug("[%s] Registration already pending", self.url)
            return
        if self._state is ClientState.PAIRED:
            return

        call_id = next(self._ids)
        self._register_call_id = call_id

        try:
            client_key = await self._token_storage.read_token()
        except StorageError as err:
            self._register_call_id = None
            error = PairingError(f"Failed to read pairing token: {err}")
            error.__cause__ = err
            self._report_error(error)
            return
        except Exception as err:
            self._register_call_id = None
            _LOGGER.exception("[%s] Token storage read failed: %s", self.url, err)
            error = PairingError(f"Failed to read pairing token: {err}")
            error.__cause__ = err
            self._report_error(error)
            return

        if self._ws is not ws or self._register_call_id != call_id:
            # Connection replaced or dropped while reading the token
            return

        self._sent_client_key = client_key
        self._pending[call_id] = PendingCall(call_id, CallKind.REGISTER)
        frame = build_envelope(
            call_id=call_id,
            msg_type=MESSAGE_TYPE_REGISTER,
            payload=build_register_payload(self._manifest, client_key),
        )

        try:
            await ws.send_json(frame)
        except WebOSConnectionError as err:
            self._pending.pop(call_id, None)
            self._register_call_id = None
            self._report_transport_error(err)
            return

        _LOGGER.info(
            "[%s] Registration sent (%s)",
            self.url,
            "stored key" if client_key else "first pairing",
        )

    async def _handle_register_response(
        self, call: PendingCall, envelope: Envelope
    ) -> None:
        if envelope.is_error:
            self._complete(call, CallState.COMPLETED)
            self._register_call_id = None
            self._report_error(
                PairingError(f"Registration rejected: {envelope.error or 'unknown error'}")
            )
            return

        payload = envelope.payload
        if not isinstance(payload, dict):
            self._report_error(
                ProtocolError("Registration response payload is not an object")
            )
            return

        if CLIENT_KEY_FIELD not in payload:
            # Same id stays pending; the device pushes the key after approval
            _LOGGER.info("[%s] Pairing prompt shown on device", self.url)
            self._prompt_events.emit(PromptEvent(self.url))
            return

        client_key = payload[CLIENT_KEY_FIELD]
        if not isinstance(client_key, str) or not client_key:
            self._report_error(
                ProtocolError("Registration response has an invalid client-key")
            )
            return

        self._complete(call, CallState.COMPLETED)
        self._register_call_id = None
        self._client_key = client_key
        self._set_state(ClientState.PAIRED)
        _LOGGER.info("[%s] Paired", self.url)

        if client_key != self._sent_client_key:
            try:
                await self._token_storage.save_token(client_key)
                _LOGGER.debug("[%s] Stored new pairing token", self.url)
            except StorageError as err:
                self._report_error(err)

        if self._state is ClientState.PAIRED:
            self._ready_events.emit(ReadyEvent(self.url, client_key))

    # -------------------------------------------------------------------------
    # Internal: Connection State Machine
    # -------------------------------------------------------------------------

    def _set_state(self, state: ClientState) -> None:
        if self._state is not state:
            _LOGGER.debug("[%s] State: %s -> %s", self.url, self._state.value, state.value)
            self._state = state

    def _schedule_reconnect(self) -> None:
        if not self._auto_reconnect or self._reconnect_task is not None:
            return
        _LOGGER.info(
            "[%s] Reconnecting in %.1fs", self.url, self._reconnect_interval
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay())

    async def _reconnect_after_delay(self) -> None:
        try:
            await asyncio.sleep(self._reconnect_interval)
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Reconnect cancelled", self.url)
            return
        self._reconnect_task = None
        if self._auto_reconnect:
            await self.connect()

    def _handle_connection_lost(self, ws: WebOSWsClient, reason: str | None) -> None:
        if self._ws is not ws:
            return

        _LOGGER.info("[%s] Connection closed", self.url)
        self._ws = None
        self._listen_task = None
        self._register_call_id = None
        # One-shot requests keep their timers and still time out
        self._drop_calls(CallKind.SUBSCRIPTION, CallKind.REGISTER)
        self._set_state(ClientState.DISCONNECTED)
        self._close_events.emit(CloseEvent(self.url, reason))
        self._schedule_reconnect()

    # -------------------------------------------------------------------------
    # Internal: Message Listener
    # -------------------------------------------------------------------------

    async def _listen(self, ws: WebOSWsClient) -> None:
        message_count = 0
        connection_lost = False
        reason: str | None = None

        try:
            async for msg in ws:
                message_count += 1

                if msg.type is WebOSWsMessageType.TEXT and isinstance(msg.data, str):
                    await self._handle_text(msg.data)

                elif msg.type is WebOSWsMessageType.BINARY:
                    size = len(msg.data) if msg.data is not None else 0
                    self._report_error(
                        ProtocolError(f"Received non-text frame ({size} bytes)")
                    )

                elif msg.type is WebOSWsMessageType.CLOSED:
                    connection_lost = True
                    break

                elif msg.type is WebOSWsMessageType.ERROR:
                    reason = str(msg.data)
                    self._report_transport_error(
                        WebOSConnectionError(f"WebSocket error: {reason}")
                    )
                    connection_lost = True
                    break

        except asyncio.CancelledError:
            _LOGGER.debug(
                "[%s] Listener cancelled (%d messages)", self.url, message_count
            )
            raise
        except Exception as err:
            _LOGGER.exception("[%s] Unexpected listener error: %s", self.url, err)
            reason = str(err)
            connection_lost = True
        finally:
            if connection_lost:
                self._handle_connection_lost(ws, reason)

    async def _handle_text(self, data: str) -> None:
        try:
            envelope = parse_envelope(data)
        except ProtocolError as err:
            self._report_error(err)
            return

        self._message_events.emit(MessageEvent(envelope))

        call = self._pending.get(envelope.id)
        if call is None or call.state is not CallState.PENDING:
            _LOGGER.debug("[%s] Dropping message for id %s", self.url, envelope.id)
            return

        if call.kind is CallKind.REGISTER:
            await self._handle_register_response(call, envelope)
        elif call.kind is CallKind.SUBSCRIPTION:
            if envelope.is_error:
                # A failed subscription receives no further pushes
                self._complete(call, CallState.COMPLETED)
                self._deliver(call, self._device_error(envelope), envelope.payload)
            else:
                self._deliver(call, None, synthesize_changed(envelope.payload))
        else:
            self._complete(call, CallState.COMPLETED)
            if envelope.is_error:
                self._deliver(call, self._device_error(envelope), envelope.payload)
            else:
                self._deliver(call, None, envelope.payload)

    @staticmethod
    def _device_error(envelope: Envelope) -> DeviceError:
        return DeviceError(envelope.error or "Device returned an error", envelope.payload)

    # -------------------------------------------------------------------------
    # Internal: Call Bookkeeping
    # -------------------------------------------------------------------------

    async def _send(
        self,
        kind: CallKind,
        msg_type: str,
        uri: str,
        payload: Any,
        callback: ResponseCallback | None,
        *,
        future: asyncio.Future[Any] | None = None,
    ) -> str:
        ws = self._ws
        if ws is None or not ws.connected:
            raise WebOSConnectionError(f"Not connected to {self.url}")

        call_id = next(self._ids)
        if callback is not None or future is not None:
            call = PendingCall(call_id, kind, uri, callback, future)
            if kind is CallKind.REQUEST:
                call.timer = asyncio.get_running_loop().call_later(
                    self._timeout, self._expire, call
                )
            self._pending[call_id] = call

        try:
            await ws.send_json(
                build_envelope(call_id=call_id, msg_type=msg_type, uri=uri, payload=payload)
            )
        except WebOSConnectionError:
            dropped = self._pending.pop(call_id, None)
            if dropped is not None:
                dropped.finish(CallState.CANCELLED)
            raise

        _LOGGER.debug("[%s] Sent %s %s (%s)", self.url, msg_type, uri, call_id)
        return call_id

    def _expire(self, call: PendingCall) -> None:
        call.timer = None
        if not self._complete(call, CallState.TIMED_OUT):
            return
        _LOGGER.debug("[%s] Request %s timed out", self.url, call.call_id)
        self._deliver(call, RequestTimeout(call.call_id, call.uri, self._timeout), None)

    def _complete(self, call: PendingCall, state: CallState) -> bool:
        if not call.finish(state):
            return False
        if self._pending.get(call.call_id) is call:
            del self._pending[call.call_id]
        return True

    def _drop_calls(self, *kinds: CallKind) -> None:
        """Cancel pending calls of ``kinds`` (all when empty) silently."""
        for call in list(self._pending.values()):
            if not kinds or call.kind in kinds:
                self._complete(call, CallState.CANCELLED)

    def _deliver(
        self, call: PendingCall, error: WebOSClientError | None, payload: Any
    ) -> None:
        if call.future is not None:
            if call.future.done():
                return
            if error is not None:
                call.future.set_exception(error)
            else:
                call.future.set_result(payload)
            return

        if call.callback is None:
            return
        try:
            result = call.callback(error, payload)
        except Exception as err:
            _LOGGER.exception(
                "[%s] Callback error for %s: %s", self.url, call.call_id, err
            )
            return
        if inspect.iscoroutine(result):
            task = asyncio.ensure_future(result)
            self._callback_tasks.add(task)
            task.add_done_callback(self._callback_done)

    def _callback_done(self, task: asyncio.Future[Any]) -> None:
        self._callback_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            _LOGGER.error("[%s] Callback error: %s", self.url, task.exception())

    # -------------------------------------------------------------------------
    # Internal: Error Reporting
    # -------------------------------------------------------------------------

    def _report_error(self, err: WebOSClientError) -> None:
        if isinstance(err, PairingError):
            _LOGGER.error("[%s] %s", self.url, err)
        else:
            _LOGGER.warning("[%s] %s", self.url, err)
        self._error_events.emit(ErrorEvent(err))

    def _report_transport_error(self, err: WebOSClientError) -> None:
        """Report a transport error unless it repeats the previous one."""
        message = str(err)
        if message == self._last_error:
            _LOGGER.debug("[%s] Repeated transport error: %s", self.url, message)
            return
        self._last_error = message
        self._report_error(err)
