"""Response correlation for device commands.

Matches one outstanding command of a given kind to the next response event of
that kind, bounded by a timeout. Each correlation is a PendingCommand, a small
state machine that is resolved exactly once:

    SENT -> RESOLVED   (response event arrived)
    SENT -> TIMED_OUT  (timer fired first)
    SENT -> ABORTED    (link disconnected, or the send itself failed)

Resolution always deregisters the listeners and cancels the timer before the
result is published, so a late event or timer can never resolve twice.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any

from lockcycle.errors import (
    DisconnectedDuringRunError,
    DuplicateCommandError,
    StepFailureError,
    StepTimeoutError,
)
from lockcycle.link import DISCONNECTED, DeviceLink, DeviceResponse, result_event
from lockcycle.timing import elapsed_ms, monotonic_ms
from lockcycle.types import StepResult

logger = logging.getLogger(__name__)


class PendingState(Enum):
    """State of a pending command."""

    SENT = "sent"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"


class PendingCommand:
    """One outstanding command awaiting its response.

    Created by ResponseCorrelator.register(). The listener and timer are armed
    on construction, so the command must be sent after registering to avoid
    missing a fast response.

    Args:
        correlator: Owning correlator.
        link: Device link to listen on.
        kind: Command kind.
        timeout_ms: Response timeout in milliseconds.
    """

    def __init__(
        self,
        correlator: ResponseCorrelator,
        link: DeviceLink,
        kind: str,
        timeout_ms: int,
    ) -> None:
        self._correlator = correlator
        self._link = link
        self.kind = kind
        self.timeout_ms = timeout_ms
        self.state = PendingState.SENT
        self.issued_at = monotonic_ms()

        loop = asyncio.get_running_loop()
        self._future: asyncio.Future[StepResult] = loop.create_future()
        self._event = result_event(kind)
        link.on(self._event, self._on_response)
        link.on(DISCONNECTED, self._on_disconnected)
        self._timer: asyncio.TimerHandle | None = loop.call_later(
            timeout_ms / 1000, self._on_timeout
        )

    @property
    def done(self) -> bool:
        """Return True once the command has been resolved."""
        return self.state is not PendingState.SENT

    async def result(self) -> StepResult:
        """Wait for the resolution of this command.

        Returns:
            StepResult with success flag, response time and error.
        """
        return await asyncio.shield(self._future)

    def abort(self, error: str) -> None:
        """Resolve as a failure without waiting.

        Args:
            error: Error text recorded on the step.
        """
        self._finish(PendingState.ABORTED, False, elapsed_ms(self.issued_at), error)

    def _on_response(self, payload: Any = None) -> None:
        response = DeviceResponse.from_payload(payload)
        error = None
        if not response.success:
            error = response.error or StepFailureError.default_message
        self._finish(PendingState.RESOLVED, response.success, elapsed_ms(self.issued_at), error)

    def _on_timeout(self) -> None:
        self._timer = None
        logger.warning("No %s response within %d ms", self.kind, self.timeout_ms)
        self._finish(
            PendingState.TIMED_OUT, False, self.timeout_ms, StepTimeoutError.default_message
        )

    def _on_disconnected(self, *_: Any) -> None:
        logger.warning("Link disconnected while awaiting %s response", self.kind)
        self._finish(
            PendingState.ABORTED,
            False,
            elapsed_ms(self.issued_at),
            DisconnectedDuringRunError.default_message,
        )

    def _finish(
        self, state: PendingState, success: bool, response_time_ms: int, error: str | None
    ) -> None:
        if self.done:
            return
        self.state = state

        # Deregister before resolving
        self._link.off(self._event, self._on_response)
        self._link.off(DISCONNECTED, self._on_disconnected)
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._correlator._release(self)

        if not self._future.done():
            self._future.set_result(
                StepResult(
                    kind=self.kind,
                    success=success,
                    response_time_ms=response_time_ms,
                    error=error,
                )
            )


class ResponseCorrelator:
    """Correlates commands with their asynchronous responses.

    Enforces that at most one correlation per kind is outstanding.

    Example:
        correlator = ResponseCorrelator(link)
        pending = correlator.register("unlock", timeout_ms=5000)
        link.send_command("unlock")
        step = await pending.result()
    """

    def __init__(self, link: DeviceLink) -> None:
        self._link = link
        self._pending: dict[str, PendingCommand] = {}

    @property
    def pending_kinds(self) -> tuple[str, ...]:
        """Return the kinds with an outstanding correlation."""
        return tuple(self._pending)

    def register(self, kind: str, timeout_ms: int) -> PendingCommand:
        """Arm a correlation for the next response of a kind.

        Args:
            kind: Command kind.
            timeout_ms: Response timeout in milliseconds.

        Returns:
            The armed PendingCommand.

        Raises:
            DuplicateCommandError: If a correlation for kind is already pending.
        """
        if kind in self._pending:
            raise DuplicateCommandError(f"a {kind} command is already pending")
        pending = PendingCommand(self, self._link, kind, timeout_ms)
        self._pending[kind] = pending
        return pending

    async def await_response(self, kind: str, timeout_ms: int) -> StepResult:
        """Wait for the next response of a kind.

        Args:
            kind: Command kind.
            timeout_ms: Response timeout in milliseconds.

        Returns:
            StepResult resolved by response, timeout or disconnect.
        """
        return await self.register(kind, timeout_ms).result()

    def abort_all(self, error: str) -> None:
        """Abort every outstanding correlation."""
        for pending in list(self._pending.values()):
            pending.abort(error)

    def _release(self, pending: PendingCommand) -> None:
        if self._pending.get(pending.kind) is pending:
            del self._pending[pending.kind]
