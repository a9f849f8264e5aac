"""Test doubles for lockcycle unit tests.

FakeDeviceLink is a scripted DeviceLink: each command kind has a queue of
behaviors (respond after N ms, fail, never answer, drop the link) consumed
one per send_command() call, falling back to a default behavior.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from dataclasses import dataclass

from lockcycle.errors import NotConnectedError
from lockcycle.link import DISCONNECTED, BaseDeviceLink, DeviceResponse, result_event
from lockcycle.types import RetryPolicy, TestConfiguration


@dataclass(frozen=True)
class Respond:
    """Answer after a delay."""

    after_ms: float = 1
    success: bool = True
    error: str | None = None


@dataclass(frozen=True)
class Never:
    """Never answer."""


@dataclass(frozen=True)
class Disconnect:
    """Drop the link after a delay instead of answering."""

    after_ms: float = 1


Behavior = Respond | Never | Disconnect


def respond(after_ms: float = 1) -> Respond:
    """Successful response after after_ms."""
    return Respond(after_ms=after_ms)


def fail(after_ms: float = 1, error: str | None = None) -> Respond:
    """Failed response after after_ms."""
    return Respond(after_ms=after_ms, success=False, error=error)


def never() -> Never:
    """No response at all."""
    return Never()


def disconnect(after_ms: float = 1) -> Disconnect:
    """Link drop after after_ms."""
    return Disconnect(after_ms=after_ms)


class FakeDeviceLink(BaseDeviceLink):
    """Scripted DeviceLink for engine tests.

    Args:
        default: Behavior used when a kind's script is exhausted.
        connected: Initial connection state.
    """

    def __init__(self, default: Behavior | None = None, connected: bool = True) -> None:
        super().__init__()
        self.default: Behavior = default or respond()
        self.connected = connected
        self.sent: list[str] = []
        self._scripts: dict[str, deque[Behavior]] = defaultdict(deque)
        self._refusals: dict[str, Exception] = {}
        self._handles: list[asyncio.TimerHandle] = []

    @property
    def is_connected(self) -> bool:
        return self.connected

    def script(self, kind: str, *behaviors: Behavior) -> None:
        """Queue behaviors for the next sends of kind."""
        self._scripts[kind].extend(behaviors)

    def refuse(self, kind: str, exc: Exception) -> None:
        """Make send_command(kind) raise exc."""
        self._refusals[kind] = exc

    def send_command(self, kind: str) -> None:
        if not self.connected:
            raise NotConnectedError("fake link is not connected")
        if kind in self._refusals:
            raise self._refusals[kind]
        self.sent.append(kind)

        script = self._scripts[kind]
        behavior = script.popleft() if script else self.default
        loop = asyncio.get_running_loop()
        if isinstance(behavior, Respond):
            response = DeviceResponse(success=behavior.success, error=behavior.error)
            self._handles.append(
                loop.call_later(
                    behavior.after_ms / 1000, self.emit, result_event(kind), response
                )
            )
        elif isinstance(behavior, Disconnect):
            self._handles.append(loop.call_later(behavior.after_ms / 1000, self.drop))

    def drop(self) -> None:
        """Lose the connection and emit ``disconnected``."""
        if not self.connected:
            return
        self.connected = False
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()
        self.emit(DISCONNECTED)


def fast_config(target_cycles: int = 5, **kwargs) -> TestConfiguration:
    """TestConfiguration with no delays and a short timeout."""
    kwargs.setdefault("inter_command_delay_ms", 0)
    kwargs.setdefault("response_timeout_ms", 200)
    kwargs.setdefault("retry", RetryPolicy())
    return TestConfiguration(target_cycles=target_cycles, **kwargs)
