"""Device link message contract.

The engine talks to the lock hardware only through this contract: a
synchronous command enqueue plus asynchronous response events. Whatever
transport sits behind it (a radio link or the simulator) is invisible to the
engine.

Events:
    ``<kind>Result``: Response to a command, payload is a DeviceResponse.
    ``disconnected``: The link was lost, no payload.

Protocols:
    DeviceLink: What the engine consumes.

Classes:
    DeviceResponse: Payload of a result event.
    BaseDeviceLink: Listener registry shared by link implementations.
"""

# pylint: disable=unnecessary-ellipsis  # Ellipsis required for Protocol method stubs

from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

DISCONNECTED = "disconnected"
"""Event emitted when the device link is lost."""

Listener = Callable[..., None]


def result_event(kind: str) -> str:
    """Return the response event name for a command kind.

    Args:
        kind: Command kind (e.g. "unlock").

    Returns:
        The event name (e.g. "unlockResult").
    """
    return f"{kind}Result"


@dataclass(frozen=True)
class DeviceResponse:
    """Response payload emitted by a device link.

    Attributes:
        success: True if the device executed the command.
        timestamp: Unix time in milliseconds when the response was produced.
        error: Device-supplied error description, if any.
    """

    success: bool
    timestamp: float = field(default_factory=lambda: time.time() * 1000)
    error: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> DeviceResponse:
        """Build a response from an event payload.

        Accepts a DeviceResponse or a mapping with ``success``, ``timestamp``
        and optional ``error`` keys.

        Args:
            payload: The raw event payload.

        Returns:
            A DeviceResponse instance.
        """
        if isinstance(payload, DeviceResponse):
            return payload
        if isinstance(payload, dict):
            return cls(
                success=bool(payload.get("success", False)),
                timestamp=payload.get("timestamp", time.time() * 1000),
                error=payload.get("error"),
            )
        return cls(success=False, error=f"malformed response: {payload!r}")


class DeviceLink(Protocol):
    """Protocol for the message-based link to a lock device.

    Implementations enqueue commands synchronously and report responses
    through events. At most one command of a given kind is outstanding at a
    time.
    """

    @property
    def is_connected(self) -> bool:
        """Check if the link is connected.

        Returns:
            True if commands can be sent.
        """
        ...

    def send_command(self, kind: str) -> None:
        """Enqueue a command.

        Args:
            kind: Command kind (e.g. "unlock").

        Raises:
            NotConnectedError: If the link is not connected.
        """
        ...

    def on(self, event: str, callback: Listener) -> None:
        """Register a listener for an event.

        Args:
            event: Event name.
            callback: Called with the event payload (none for disconnected).
        """
        ...

    def off(self, event: str, callback: Listener) -> None:
        """Remove a previously registered listener.

        Safe to call for listeners that are not registered.
        """
        ...


class BaseDeviceLink:
    """Listener registry for device link implementations.

    Subclasses provide is_connected and send_command and call emit() when a
    response or disconnect happens.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def on(self, event: str, callback: Listener) -> None:
        """Register a listener for an event."""
        self._listeners[event].append(callback)

    def off(self, event: str, callback: Listener) -> None:
        """Remove a listener. No-op if it is not registered."""
        callbacks = self._listeners.get(event)
        if not callbacks:
            return
        if callback in callbacks:
            callbacks.remove(callback)
        if not callbacks:
            self._listeners.pop(event, None)

    def listener_count(self, event: str) -> int:
        """Return the number of listeners registered for an event."""
        return len(self._listeners.get(event, ()))

    def emit(self, event: str, *payload: Any) -> None:
        """Dispatch an event to its listeners.

        Listeners are called in registration order over a copy of the list, so
        a listener may deregister itself. A raising listener is logged and the
        remaining listeners still run.

        Args:
            event: Event name.
            *payload: Arguments passed to each listener.
        """
        for callback in list(self._listeners.get(event, ())):
            try:
                callback(*payload)
            except Exception:  # pylint: disable=broad-except
                logger.exception("Listener for %s failed", event)
