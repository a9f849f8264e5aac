"""Typed lifecycle events and the event bus that dispatches them.

Every event is one of a fixed set of frozen dataclasses, tagged by an
EventKind. Listeners receive read-only snapshots and cannot influence engine
control flow: a listener that raises is logged and skipped.

Event variants:
    RunStarted(run)                       testStarted
    RunProgress(run, cycle_result, progress)  testProgress
    RunPaused(run)                        testPaused
    RunResumed(run)                       testResumed
    RunStopped(run)                       testStopped
    RunCompleted(run)                     testCompleted
    RunInterrupted(run_id, reason)        testInterrupted

Example:
    bus = EventBus()
    bus.subscribe(lambda e: print(e.progress), EventKind.TEST_PROGRESS)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, ClassVar, Union

from lockcycle.types import CycleResult, TestRun

logger = logging.getLogger(__name__)


class EventKind(Enum):
    """Tag identifying an event variant."""

    TEST_STARTED = "testStarted"
    TEST_PROGRESS = "testProgress"
    TEST_PAUSED = "testPaused"
    TEST_RESUMED = "testResumed"
    TEST_STOPPED = "testStopped"
    TEST_COMPLETED = "testCompleted"
    TEST_INTERRUPTED = "testInterrupted"


@dataclass(frozen=True)
class RunStarted:
    """A test run was started."""

    kind: ClassVar[EventKind] = EventKind.TEST_STARTED
    run: TestRun

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary."""
        return {"event": self.kind.value, "test": self.run.to_dict()}


@dataclass(frozen=True)
class RunProgress:
    """A cycle finished and was recorded."""

    kind: ClassVar[EventKind] = EventKind.TEST_PROGRESS
    run: TestRun
    cycle_result: CycleResult
    progress: float

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary."""
        return {
            "event": self.kind.value,
            "test": self.run.to_dict(),
            "cycle_result": self.cycle_result.to_dict(),
            "progress": self.progress,
        }


@dataclass(frozen=True)
class RunPaused:
    """The run was paused."""

    kind: ClassVar[EventKind] = EventKind.TEST_PAUSED
    run: TestRun

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary."""
        return {"event": self.kind.value, "test": self.run.to_dict()}


@dataclass(frozen=True)
class RunResumed:
    """The run was resumed."""

    kind: ClassVar[EventKind] = EventKind.TEST_RESUMED
    run: TestRun

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary."""
        return {"event": self.kind.value, "test": self.run.to_dict()}


@dataclass(frozen=True)
class RunStopped:
    """The run ended early, by stop() or a device disconnect."""

    kind: ClassVar[EventKind] = EventKind.TEST_STOPPED
    run: TestRun

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary."""
        return {"event": self.kind.value, "test": self.run.to_dict()}


@dataclass(frozen=True)
class RunCompleted:
    """The run reached its target cycle count."""

    kind: ClassVar[EventKind] = EventKind.TEST_COMPLETED
    run: TestRun

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary."""
        return {"event": self.kind.value, "test": self.run.to_dict()}


@dataclass(frozen=True)
class RunInterrupted:
    """The run was stopped involuntarily."""

    kind: ClassVar[EventKind] = EventKind.TEST_INTERRUPTED
    run_id: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary."""
        return {"event": self.kind.value, "run_id": self.run_id, "reason": self.reason}


RunEvent = Union[
    RunStarted,
    RunProgress,
    RunPaused,
    RunResumed,
    RunStopped,
    RunCompleted,
    RunInterrupted,
]

EventListener = Callable[[RunEvent], None]


class Subscription:
    """Handle returned by EventBus.subscribe()."""

    def __init__(
        self, bus: EventBus, listener: EventListener, kinds: frozenset[EventKind] | None
    ) -> None:
        self._bus = bus
        self.listener = listener
        self.kinds = kinds

    def matches(self, kind: EventKind) -> bool:
        """Return True if this subscription wants events of kind."""
        return self.kinds is None or kind in self.kinds

    def unsubscribe(self) -> None:
        """Stop receiving events. Safe to call more than once."""
        self._bus.unsubscribe(self)


class EventBus:
    """Synchronous dispatcher of run events.

    Listeners are called in subscription order on the publishing task.
    Listener exceptions are logged and never propagate to the publisher.
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def subscribe(self, listener: EventListener, *kinds: EventKind) -> Subscription:
        """Register a listener.

        Args:
            listener: Called with each matching event.
            *kinds: Event kinds to receive. All kinds if omitted.

        Returns:
            A Subscription handle.
        """
        subscription = Subscription(self, listener, frozenset(kinds) if kinds else None)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a subscription. No-op if already removed."""
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def listener_count(self) -> int:
        """Return the number of active subscriptions."""
        return len(self._subscriptions)

    def publish(self, event: RunEvent) -> None:
        """Dispatch an event to every matching listener.

        Args:
            event: The event to publish.
        """
        for subscription in list(self._subscriptions):
            if not subscription.matches(event.kind):
                continue
            try:
                subscription.listener(event)
            except Exception:  # pylint: disable=broad-except
                logger.exception("Listener failed handling %s", event.kind.value)
