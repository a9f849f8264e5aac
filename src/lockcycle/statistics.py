"""Statistics aggregation over cycle results.

Two views of the same numbers:

- RunningTotals is updated incrementally as each cycle finishes, so live
  statistics are available mid-run without rescanning every result.
- compute_statistics() is a pure function over a TestRun, used once on each
  terminal transition to produce the immutable TestStatistics.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from lockcycle.types import CycleResult, TestRun, TestStatistics


def success_rate(success_count: int, total_cycles: int) -> float:
    """Return the cycle success percentage rounded to two decimals.

    Returns 0.0 when no cycle has run.
    """
    if total_cycles == 0:
        return 0.0
    return round(success_count / total_cycles * 100, 2)


def _duration_ms(start: datetime, end: datetime | None) -> int:
    if end is None:
        return 0
    return max(0, int(round((end - start).total_seconds() * 1000)))


@dataclass
class RunningTotals:
    """Incrementally maintained totals for a run in progress."""

    total_cycles: int = 0
    success_count: int = 0
    failure_count: int = 0
    step_count: int = 0
    response_time_sum_ms: int = 0
    min_response_time_ms: int | None = None
    max_response_time_ms: int | None = None

    def add(self, cycle: CycleResult) -> None:
        """Fold one finished cycle into the totals."""
        self.total_cycles += 1
        if cycle.success:
            self.success_count += 1
        else:
            self.failure_count += 1
        for step in cycle.steps:
            elapsed = step.response_time_ms
            self.step_count += 1
            self.response_time_sum_ms += elapsed
            if self.min_response_time_ms is None or elapsed < self.min_response_time_ms:
                self.min_response_time_ms = elapsed
            if self.max_response_time_ms is None or elapsed > self.max_response_time_ms:
                self.max_response_time_ms = elapsed

    @classmethod
    def from_results(cls, results: Iterable[CycleResult]) -> RunningTotals:
        """Build totals from existing results."""
        totals = cls()
        for cycle in results:
            totals.add(cycle)
        return totals

    @property
    def avg_response_time_ms(self) -> int:
        """Return the mean step response time, rounded to the nearest integer."""
        if self.step_count == 0:
            return 0
        return int(round(self.response_time_sum_ms / self.step_count))

    def to_statistics(self, total_duration_ms: int) -> TestStatistics:
        """Freeze the totals into a TestStatistics value."""
        return TestStatistics(
            success_rate=success_rate(self.success_count, self.total_cycles),
            avg_response_time_ms=self.avg_response_time_ms,
            min_response_time_ms=self.min_response_time_ms or 0,
            max_response_time_ms=self.max_response_time_ms or 0,
            total_duration_ms=total_duration_ms,
            total_cycles=self.total_cycles,
            success_count=self.success_count,
            failure_count=self.failure_count,
        )


def compute_statistics(run: TestRun) -> TestStatistics:
    """Compute the final statistics of a run.

    The success rate uses the run's counters; response times are averaged over
    every recorded step of every cycle, including failed and timed-out ones.

    Args:
        run: The run, normally in a terminal state with end_time set.

    Returns:
        The TestStatistics for the run.
    """
    totals = RunningTotals.from_results(run.results)
    stats = totals.to_statistics(_duration_ms(run.start_time, run.end_time))
    return TestStatistics(
        success_rate=success_rate(run.success_count, run.current_cycle),
        avg_response_time_ms=stats.avg_response_time_ms,
        min_response_time_ms=stats.min_response_time_ms,
        max_response_time_ms=stats.max_response_time_ms,
        total_duration_ms=stats.total_duration_ms,
        total_cycles=run.current_cycle,
        success_count=run.success_count,
        failure_count=run.failure_count,
    )


def summarize(stats: TestStatistics) -> str:
    """Return a one-line summary string."""
    return (
        f"Cycles: {stats.total_cycles}, "
        f"Pass: {stats.success_count}, "
        f"Fail: {stats.failure_count}, "
        f"Success: {stats.success_rate:.2f}%, "
        f"Avg: {stats.avg_response_time_ms} ms, "
        f"Duration: {stats.total_duration_ms / 1000:.1f} s"
    )
