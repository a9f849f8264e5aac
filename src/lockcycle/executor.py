"""Cycle execution.

Runs one full cycle of the configured command template (by default unlock,
then lock), sequencing correlated command/response pairs with the configured
inter-step delay and retry policy.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone

from lockcycle.correlator import ResponseCorrelator
from lockcycle.errors import CommandSendError
from lockcycle.link import DeviceLink
from lockcycle.timing import Sleeper, elapsed_ms, monotonic_ms
from lockcycle.types import CycleResult, StepResult, TestConfiguration

logger = logging.getLogger(__name__)


class CycleExecutor:
    """Runs one cycle of steps against the device link.

    Steps are strictly sequential. A failed step is retried according to the
    retry policy; only the final attempt is recorded. A command the link
    refuses to send aborts the rest of the cycle with a cycle-level error.

    Args:
        link: Device link to send commands on.
        correlator: Correlator for the same link. Created if omitted.
        sleeper: Cancellable sleep used for all delays. Created if omitted.
    """

    def __init__(
        self,
        link: DeviceLink,
        correlator: ResponseCorrelator | None = None,
        sleeper: Sleeper | None = None,
    ) -> None:
        self._link = link
        self._correlator = correlator or ResponseCorrelator(link)
        self._sleeper = sleeper or Sleeper()

    @property
    def correlator(self) -> ResponseCorrelator:
        """Return the response correlator."""
        return self._correlator

    async def run_cycle(self, config: TestConfiguration, cycle_number: int) -> CycleResult:
        """Execute one cycle.

        Per-step failures are recorded, never raised.

        Args:
            config: Test configuration.
            cycle_number: 1-based number of this cycle.

        Returns:
            The CycleResult.
        """
        started_at = datetime.now(timezone.utc)
        start = monotonic_ms()
        steps: list[StepResult] = []
        error: str | None = None

        for index, kind in enumerate(config.steps):
            step, send_error = await self._run_step(config, kind)
            if step is not None:
                steps.append(step)
            if send_error is not None:
                logger.error("Cycle %d aborted at %s: %s", cycle_number, kind, send_error)
                error = send_error
                break

            if index < len(config.steps) - 1 and config.inter_command_delay_ms > 0:
                await self._sleeper.sleep(config.inter_command_delay_ms)

        result = CycleResult(
            cycle_number=cycle_number,
            steps=tuple(steps),
            duration_ms=elapsed_ms(start),
            error=error,
            started_at=started_at,
        )
        logger.debug(
            "Cycle %d finished in %d ms (%s)",
            cycle_number,
            result.duration_ms,
            "ok" if result.success else "failed",
        )
        return result

    async def _run_step(
        self, config: TestConfiguration, kind: str
    ) -> tuple[StepResult | None, str | None]:
        """Run one step, retrying a failed attempt if the policy allows.

        Returns:
            The final attempt's result (None if no attempt got a response) and
            the send error that aborts the cycle, if any.
        """
        retry = config.retry
        last: StepResult | None = None
        attempt = 0
        while attempt < retry.max_attempts:
            if last is not None:
                logger.warning(
                    "%s attempt %d/%d failed (%s), retrying in %d ms",
                    kind,
                    attempt,
                    retry.max_attempts,
                    last.error,
                    retry.retry_delay_ms,
                )
                await self._sleeper.sleep(retry.retry_delay_ms)
            attempt += 1
            try:
                result = await self._attempt(kind, config.response_timeout_ms)
            except CommandSendError as exc:
                if last is None:
                    return None, str(exc)
                return replace(last, attempts=attempt - 1), str(exc)
            last = result
            if result.success:
                break

        assert last is not None
        return replace(last, attempts=attempt), None

    async def _attempt(self, kind: str, timeout_ms: int) -> StepResult:
        """Send one command and wait for its correlated response.

        Raises:
            CommandSendError: If the link refuses the command.
        """
        pending = self._correlator.register(kind, timeout_ms)
        try:
            self._link.send_command(kind)
        except Exception as exc:
            pending.abort(str(exc))
            raise CommandSendError(f"{kind} command not sent: {exc}") from exc
        return await pending.result()
