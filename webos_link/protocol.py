"""Protocol helpers for webOS control and input channel frames.

The control channel carries one JSON envelope per text frame:

    {"id": "<correlation id>", "type": "request", "uri": "ssap://...", "payload": {...}}

The pointer input channel uses a line based ``key:value`` format instead.
"""

from __future__ import annotations

import json
import secrets
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Final

from .errors import ChannelDescriptorError, ProtocolError

MESSAGE_TYPE_REGISTER: Final = "register"
MESSAGE_TYPE_REQUEST: Final = "request"
MESSAGE_TYPE_SUBSCRIBE: Final = "subscribe"
MESSAGE_TYPE_UNSUBSCRIBE: Final = "unsubscribe"

RESPONSE_TYPE_ERROR: Final = "error"

CLIENT_KEY_FIELD: Final = "client-key"
CHANGED_FIELD: Final = "changed"
SOCKET_PATH_FIELD: Final = "socketPath"

# Status fields the device omits from "changed" on the first subscription push
STATUS_FIELDS: Final[tuple[str, ...]] = ("muted", "volume")

_COUNTER_WIDTH: Final = 8


class CorrelationIds:
    """Generate correlation ids unique for the lifetime of one client.

    Ids are a random prefix fixed at construction followed by a counter that
    only ever increases. The counter is zero padded and never truncated, so
    an id is never handed out twice.
    """

    def __init__(self, prefix: str | None = None) -> None:
        self.prefix = prefix if prefix is not None else secrets.token_hex(4)
        self._counter = 0

    def __next__(self) -> str:
        value = self._counter
        self._counter += 1
        return f"{self.prefix}{value:0{_COUNTER_WIDTH}x}"

    def __iter__(self) -> CorrelationIds:
        return self

    @property
    def issued(self) -> int:
        """Number of ids handed out so far."""
        return self._counter


@dataclass(frozen=True, slots=True)
class Envelope:
    """Parsed inbound control channel frame."""

    id: str
    type: str | None
    payload: Any = None
    error: str | None = None

    @property
    def is_error(self) -> bool:
        return self.type == RESPONSE_TYPE_ERROR


def build_envelope(
    *,
    call_id: str,
    msg_type: str,
    uri: str | None = None,
    payload: Any = None,
) -> dict[str, Any]:
    """Build an outbound control channel envelope.

    ``uri`` is omitted when absent (registration carries none) and
    ``payload`` is omitted when ``None``.
    """
    envelope: dict[str, Any] = {"id": call_id, "type": msg_type}
    if uri is not None:
        envelope["uri"] = uri
    if payload is not None:
        envelope["payload"] = payload
    return envelope


def parse_envelope(data: str) -> Envelope:
    """Parse a text frame into an :class:`Envelope`.

    Raises:
        ProtocolError: If the frame is not a JSON object with a string id.
    """
    try:
        decoded = json.loads(data)
    except ValueError as err:
        raise ProtocolError(f"JSON parse error {data!r}") from err

    if not isinstance(decoded, dict):
        raise ProtocolError(f"Envelope is not an object: {data!r}")

    call_id = decoded.get("id")
    if not isinstance(call_id, str):
        raise ProtocolError(f"Envelope has no string id: {data!r}")

    msg_type = decoded.get("type")
    error = decoded.get("error")
    return Envelope(
        id=call_id,
        type=msg_type if isinstance(msg_type, str) else None,
        payload=decoded.get("payload"),
        error=str(error) if error is not None else None,
    )


def synthesize_changed(payload: Any) -> Any:
    """Fill in ``changed`` on subscription pushes that lack it.

    The device leaves ``changed`` out of the first push for status
    subscriptions. When that happens the recognised status fields present in
    the payload are listed instead. Payloads that already carry ``changed``,
    or carry none of the status fields, are returned untouched.
    """
    if not isinstance(payload, dict) or CHANGED_FIELD in payload:
        return payload

    present = [name for name in STATUS_FIELDS if name in payload]
    if not present:
        return payload

    return {**payload, CHANGED_FIELD: present}


def parse_channel_descriptor(data: Any) -> str:
    """Extract the socket path from a secondary channel descriptor.

    Raises:
        ChannelDescriptorError: If ``socketPath`` is missing or not a string.
    """
    if not isinstance(data, Mapping):
        raise ChannelDescriptorError("Channel descriptor was not an object")
    socket_path = data.get(SOCKET_PATH_FIELD)
    if not isinstance(socket_path, str) or not socket_path:
        raise ChannelDescriptorError("Channel descriptor has no socketPath")
    return socket_path


def frame_input_event(event_type: str, payload: Mapping[str, Any] | None = None) -> str:
    """Serialize an input event for the pointer socket.

    The first line is ``type:<event_type>;``, followed by one ``key:value``
    line per payload entry and a terminating blank line.
    """
    lines = [f"type:{event_type};"]
    for key, value in (payload or {}).items():
        lines.append(f"{key}:{_format_value(value)}")
    lines.append("\n")
    return "\n".join(lines)


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
