"""Typed client events and observer registration."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from .errors import WebOSClientError
from .protocol import Envelope

_LOGGER = logging.getLogger(__name__)

EventT = TypeVar("EventT")


@dataclass(frozen=True, slots=True)
class ConnectingEvent:
    """A dial to the device has started."""

    url: str


@dataclass(frozen=True, slots=True)
class ReadyEvent:
    """Pairing completed, the client accepts calls."""

    url: str
    client_key: str


@dataclass(frozen=True, slots=True)
class PromptEvent:
    """The device is showing an on-screen pairing prompt."""

    url: str


@dataclass(frozen=True, slots=True)
class CloseEvent:
    """The primary connection went away."""

    url: str
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    """A non-fatal client error."""

    error: WebOSClientError


@dataclass(frozen=True, slots=True)
class MessageEvent:
    """An inbound control channel envelope, before dispatch."""

    envelope: Envelope


Listener = Callable[[EventT], Awaitable[None] | None]


class EventSource(Generic[EventT]):
    """Ordered set of listeners for one event type.

    Listener exceptions are logged and do not reach the emitter. Coroutine
    listeners are scheduled rather than awaited so emitting never suspends.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[Listener[EventT]] = []
        self._tasks: set[asyncio.Task[Any]] = set()

    def add(self, listener: Listener[EventT]) -> Callable[[], None]:
        """Register ``listener`` and return a callable that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def __len__(self) -> int:
        return len(self._listeners)

    def emit(self, event: EventT) -> None:
        for listener in list(self._listeners):
            try:
                result: Any = listener(event)
            except Exception as err:
                _LOGGER.exception("%s listener error: %s", self.name, err)
                continue
            if inspect.iscoroutine(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._listener_done)

    def _listener_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        err = task.exception()
        if err is not None:
            _LOGGER.error("%s listener error: %s", self.name, err)
