"""Unit tests for statistics aggregation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from lockcycle.statistics import RunningTotals, compute_statistics, success_rate, summarize
from lockcycle.types import CycleResult, StepResult, TestConfiguration, TestRun


def _cycle(number: int, times: tuple[int, ...], ok: bool = True) -> CycleResult:
    steps = tuple(
        StepResult(kind=f"step{i}", success=ok, response_time_ms=t) for i, t in enumerate(times)
    )
    return CycleResult(cycle_number=number, steps=steps, duration_ms=sum(times))


class TestSuccessRate:
    """Tests for success_rate."""

    def test_no_cycles(self) -> None:
        """No cycles yields 0 instead of dividing by zero."""
        assert success_rate(0, 0) == 0.0

    def test_rounds_to_two_decimals(self) -> None:
        """Percentages are rounded to two decimals."""
        assert success_rate(2, 3) == 66.67
        assert success_rate(1, 3) == 33.33

    def test_all_successful(self) -> None:
        """Every cycle passing gives 100%."""
        assert success_rate(5, 5) == 100.0


class TestRunningTotals:
    """Tests for incremental aggregation."""

    def test_empty_totals(self) -> None:
        """Empty totals freeze to all-zero statistics."""
        stats = RunningTotals().to_statistics(0)
        assert stats.total_cycles == 0
        assert stats.avg_response_time_ms == 0
        assert stats.min_response_time_ms == 0
        assert stats.max_response_time_ms == 0
        assert stats.success_rate == 0.0

    def test_accumulates_every_step(self) -> None:
        """Response times of all steps, passed or failed, are aggregated."""
        totals = RunningTotals()
        totals.add(_cycle(1, (100, 300)))
        totals.add(_cycle(2, (200, 5000), ok=False))

        assert totals.total_cycles == 2
        assert totals.success_count == 1
        assert totals.failure_count == 1
        assert totals.min_response_time_ms == 100
        assert totals.max_response_time_ms == 5000
        assert totals.avg_response_time_ms == 1400

    def test_average_is_rounded(self) -> None:
        """The mean response time is rounded to a whole millisecond."""
        totals = RunningTotals.from_results([_cycle(1, (100, 101, 101))])
        assert totals.avg_response_time_ms == 101

    def test_matches_final_computation(self) -> None:
        """Incremental totals agree with the final computation."""
        config = TestConfiguration(target_cycles=3)
        run = TestRun(id="T1", config=config)
        totals = RunningTotals()
        for cycle in (_cycle(1, (120, 80)), _cycle(2, (90, 60), ok=False), _cycle(3, (70, 75))):
            run.record(cycle)
            totals.add(cycle)

        live = totals.to_statistics(0)
        final = compute_statistics(run)
        assert live.success_rate == final.success_rate
        assert live.avg_response_time_ms == final.avg_response_time_ms
        assert live.min_response_time_ms == final.min_response_time_ms
        assert live.max_response_time_ms == final.max_response_time_ms


class TestComputeStatistics:
    """Tests for final statistics."""

    def test_total_duration_from_timestamps(self) -> None:
        """Total duration is end time minus start time."""
        start = datetime(2026, 10, 19, 9, 0, 0, tzinfo=timezone.utc)
        run = TestRun(id="T1", config=TestConfiguration(target_cycles=1), start_time=start)
        run.record(_cycle(1, (10, 20)))
        run.end_time = start + timedelta(seconds=12, milliseconds=345)

        stats = compute_statistics(run)

        assert stats.total_duration_ms == 12345
        assert stats.total_cycles == 1
        assert stats.success_rate == 100.0

    def test_cycle_error_without_steps(self) -> None:
        """A cycle with no steps counts as a failure and adds no response times."""
        run = TestRun(id="T1", config=TestConfiguration(target_cycles=2))
        run.record(_cycle(1, (40, 60)))
        run.record(CycleResult(cycle_number=2, steps=(), duration_ms=0, error="not sent"))

        stats = compute_statistics(run)

        assert stats.failure_count == 1
        assert stats.success_rate == 50.0
        assert stats.avg_response_time_ms == 50

    def test_summary_line(self) -> None:
        """summarize renders the key figures."""
        run = TestRun(id="T1", config=TestConfiguration(target_cycles=1))
        run.record(_cycle(1, (10, 20)))
        text = summarize(compute_statistics(run))
        assert "Cycles: 1" in text
        assert "Success: 100.00%" in text
