"""Test runner state machine.

The runner owns the cooperative loop that executes cycles until the target
count is reached, the run is paused, or it is stopped. Only one cycle is ever
in flight; pause and stop take effect between cycles, never mid-step.

States:
    IDLE -> RUNNING <-> PAUSED
    RUNNING | PAUSED -> STOPPED     (stop() or device disconnect)
    RUNNING -> COMPLETED            (target cycle count reached)

STOPPED and COMPLETED are terminal. reset() returns a drained runner to IDLE
so the same instance can start a new test.

Example:
    runner = TestRunner(link)
    runner.bus.subscribe(print_progress, EventKind.TEST_PROGRESS)
    await runner.start(TestConfiguration(target_cycles=100))
    await runner.wait()
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from lockcycle.errors import (
    AlreadyRunningError,
    ConfigurationError,
    DisconnectedDuringRunError,
    InvalidStateTransitionError,
    NotConnectedError,
)
from lockcycle.events import (
    EventBus,
    RunCompleted,
    RunEvent,
    RunInterrupted,
    RunPaused,
    RunProgress,
    RunResumed,
    RunStarted,
    RunStopped,
)
from lockcycle.executor import CycleExecutor
from lockcycle.link import DISCONNECTED, DeviceLink
from lockcycle.statistics import RunningTotals, compute_statistics
from lockcycle.timing import Sleeper
from lockcycle.types import (
    CycleResult,
    TestConfiguration,
    TestRun,
    TestStatistics,
    TestStatus,
    generate_run_id,
)

logger = logging.getLogger(__name__)


class TestRunner:
    """Drives repeated cycles against one device link.

    Each runner is an explicitly constructed instance with its own link,
    event bus and executor; nothing is shared between runners.

    Args:
        link: Device link to test.
        bus: Event bus for lifecycle events. Created if omitted.
        executor: Cycle executor. Created for link if omitted.
    """

    __test__ = False

    def __init__(
        self,
        link: DeviceLink,
        bus: EventBus | None = None,
        executor: CycleExecutor | None = None,
    ) -> None:
        self._link = link
        self._bus = bus or EventBus()
        self._executor = executor or CycleExecutor(link)
        self._sleeper = Sleeper()

        self._state = TestStatus.IDLE
        self._run: TestRun | None = None
        self._task: asyncio.Task[None] | None = None
        self._totals = RunningTotals()
        self._cycle_in_flight = False
        self._finalized = False
        self._interrupt_reason: str | None = None

    @property
    def state(self) -> TestStatus:
        """Return the current runner state."""
        return self._state

    @property
    def bus(self) -> EventBus:
        """Return the event bus."""
        return self._bus

    @property
    def is_active(self) -> bool:
        """Return True while running or paused."""
        return self._state in (TestStatus.RUNNING, TestStatus.PAUSED)

    @property
    def is_draining(self) -> bool:
        """Return True if the loop task is still finishing a cycle."""
        return self._task is not None and not self._task.done()

    def snapshot(self) -> TestRun | None:
        """Return a read-only copy of the current run, if any."""
        if self._run is None:
            return None
        return self._run.snapshot()

    def live_statistics(self) -> TestStatistics | None:
        """Return statistics computed from the cycles recorded so far.

        For a terminal run this is the final statistics.
        """
        if self._run is None:
            return None
        if self._run.statistics is not None:
            return self._run.statistics
        elapsed = datetime.now(timezone.utc) - self._run.start_time
        return self._totals.to_statistics(int(elapsed.total_seconds() * 1000))

    async def start(self, config: TestConfiguration) -> TestRun:
        """Start a new test run.

        Args:
            config: Test configuration.

        Returns:
            Snapshot of the new run.

        Raises:
            AlreadyRunningError: If the runner is not idle.
            ConfigurationError: If config is not a TestConfiguration.
            NotConnectedError: If the device link is disconnected.
        """
        if self._state is not TestStatus.IDLE:
            raise AlreadyRunningError(f"Cannot start: runner is {self._state.value}")
        if not isinstance(config, TestConfiguration):
            raise ConfigurationError(f"expected TestConfiguration, got {type(config).__name__}")
        if not self._link.is_connected:
            raise NotConnectedError("Cannot start: device link is not connected")

        run = TestRun(id=generate_run_id(), config=config)
        self._run = run
        self._totals = RunningTotals()
        self._cycle_in_flight = False
        self._finalized = False
        self._interrupt_reason = None
        self._sleeper.reset()
        self._link.on(DISCONNECTED, self._on_disconnected)

        self._state = TestStatus.RUNNING
        logger.info(
            "Test %s started: %d cycles of %s",
            run.id,
            config.target_cycles,
            "/".join(config.steps),
        )
        self._publish(RunStarted(run.snapshot()))
        self._task = asyncio.create_task(self._loop(), name=f"lockcycle-{run.id}")
        return run.snapshot()

    def pause(self) -> None:
        """Pause after the in-flight cycle, if any, finishes.

        Raises:
            InvalidStateTransitionError: If the runner is not running.
        """
        run = self._require_state("pause", TestStatus.RUNNING)
        self._set_state(run, TestStatus.PAUSED)
        self._sleeper.cancel()
        logger.info("Test %s paused at cycle %d", run.id, run.current_cycle)
        self._publish(RunPaused(run.snapshot()))

    def resume(self) -> None:
        """Resume a paused run.

        Raises:
            InvalidStateTransitionError: If the runner is not paused.
        """
        run = self._require_state("resume", TestStatus.PAUSED)
        self._set_state(run, TestStatus.RUNNING)
        self._sleeper.reset()
        logger.info("Test %s resumed at cycle %d", run.id, run.current_cycle + 1)
        self._publish(RunResumed(run.snapshot()))

        # A loop still finishing its last cycle picks the RUNNING state back up
        if not self.is_draining:
            self._task = asyncio.create_task(self._loop(), name=f"lockcycle-{run.id}")

    def stop(self) -> None:
        """Stop the run.

        The in-flight cycle, if any, is allowed to finish and is recorded;
        testStopped is published once the loop has drained.

        Raises:
            InvalidStateTransitionError: If the runner is not running or paused.
        """
        run = self._require_state("stop", TestStatus.RUNNING, TestStatus.PAUSED)
        logger.info("Stop requested for test %s", run.id)
        self._begin_stop(run)

    def reset(self) -> None:
        """Return a finished runner to IDLE.

        Raises:
            InvalidStateTransitionError: If the run is not terminal or the loop
                has not drained yet.
        """
        if not self._state.is_terminal or self.is_draining:
            raise InvalidStateTransitionError(f"Cannot reset: runner is {self._state.value}")
        self._state = TestStatus.IDLE
        self._run = None
        self._task = None

    async def wait(self) -> None:
        """Wait until the loop exits (paused, stopped or completed)."""
        if self._task is not None:
            await self._task

    def _require_state(self, action: str, *allowed: TestStatus) -> TestRun:
        if self._state not in allowed or self._run is None:
            raise InvalidStateTransitionError(f"Cannot {action}: runner is {self._state.value}")
        return self._run

    def _set_state(self, run: TestRun, state: TestStatus) -> None:
        self._state = state
        run.status = state

    def _publish(self, event: RunEvent) -> None:
        self._bus.publish(event)

    def _on_disconnected(self, *_: Any) -> None:
        if not self.is_active or self._run is None:
            return
        reason = DisconnectedDuringRunError.default_message
        logger.warning("Test %s interrupted: %s", self._run.id, reason)
        self._interrupt_reason = reason
        self._begin_stop(self._run)

    def _begin_stop(self, run: TestRun) -> None:
        self._set_state(run, TestStatus.STOPPED)
        self._sleeper.cancel()
        if not self._cycle_in_flight:
            self._finalize_stopped(run)

    def _finalize_stopped(self, run: TestRun) -> None:
        if self._finalized:
            return
        self._finish(run)
        logger.info(
            "Test %s stopped after %d/%d cycles",
            run.id,
            run.current_cycle,
            run.target_cycles,
        )
        self._publish(RunStopped(run.snapshot()))
        if self._interrupt_reason is not None:
            self._publish(RunInterrupted(run_id=run.id, reason=self._interrupt_reason))

    def _complete(self, run: TestRun) -> None:
        self._set_state(run, TestStatus.COMPLETED)
        self._finish(run)
        logger.info(
            "Test %s completed: %d/%d cycles passed",
            run.id,
            run.success_count,
            run.current_cycle,
        )
        self._publish(RunCompleted(run.snapshot()))

    def _finish(self, run: TestRun) -> None:
        self._finalized = True
        self._link.off(DISCONNECTED, self._on_disconnected)
        run.end_time = datetime.now(timezone.utc)
        run.statistics = compute_statistics(run)

    async def _loop(self) -> None:
        run = self._run
        assert run is not None
        config = run.config

        while self._state is TestStatus.RUNNING and run.current_cycle < run.target_cycles:
            if run.current_cycle > 0 and config.inter_cycle_delay_ms > 0:
                await self._sleeper.sleep(config.inter_cycle_delay_ms)
                if self._state is not TestStatus.RUNNING:
                    break
            await self._run_cycle(run)

        if self._state is TestStatus.STOPPED:
            self._finalize_stopped(run)
        elif self._state is TestStatus.RUNNING and run.current_cycle >= run.target_cycles:
            self._complete(run)

    async def _run_cycle(self, run: TestRun) -> None:
        cycle_number = run.current_cycle + 1
        self._cycle_in_flight = True
        try:
            result = await self._executor.run_cycle(run.config, cycle_number)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Cycle %d raised unexpectedly", cycle_number)
            result = CycleResult(
                cycle_number=cycle_number,
                steps=(),
                duration_ms=0,
                error=str(exc) or type(exc).__name__,
                started_at=datetime.now(timezone.utc),
            )
        finally:
            self._cycle_in_flight = False

        run.record(result)
        self._totals.add(result)
        if not result.success:
            logger.warning("Cycle %d failed: %s", cycle_number, _describe_failure(result))
        self._publish(RunProgress(run=run.snapshot(), cycle_result=result, progress=run.progress))


def _describe_failure(result: CycleResult) -> str:
    if result.error:
        return result.error
    failed = [f"{s.kind}: {s.error}" for s in result.steps if not s.success]
    return ", ".join(failed) or "incomplete cycle"
