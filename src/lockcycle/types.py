"""Core data types for lock endurance test runs.

This module provides the immutable configuration and result types consumed and
produced by the test engine, plus the mutable TestRun root entity owned by the
runner.

Classes:
    TestStatus: Runner / run lifecycle states.
    RetryPolicy: Per-step retry behavior.
    TestConfiguration: Immutable input for one test run.
    StepResult: Outcome of one command/response exchange.
    CycleResult: Outcome of one full cycle of steps.
    TestStatistics: Aggregate statistics attached on terminal states.
    TestRun: The mutable record of one execution.

Example:
    >>> config = TestConfiguration(target_cycles=10, inter_command_delay_ms=0)
    >>> config.steps
    ('unlock', 'lock')
"""

from __future__ import annotations

import random
import string
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from lockcycle.errors import ConfigurationError

DEFAULT_STEPS: tuple[str, ...] = ("unlock", "lock")
"""Default cycle template: unlock, then lock."""

_ID_ALPHABET = string.ascii_lowercase + string.digits


class TestStatus(Enum):
    """Lifecycle state of the runner and of a test run.

    Attributes:
        IDLE: No test has been started (runner only).
        RUNNING: Cycles are being executed.
        PAUSED: The loop has been paused between cycles.
        STOPPED: Ended early by stop() or a device disconnect. Terminal.
        COMPLETED: The target cycle count was reached. Terminal.
    """

    __test__ = False

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        """Return True for states no transition leaves."""
        return self in (TestStatus.STOPPED, TestStatus.COMPLETED)


def _require_int(name: str, value: Any, minimum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")


def _parse_datetime(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def generate_run_id(now: datetime | None = None) -> str:
    """Generate a time-based run identifier with a random suffix.

    Format is ``T`` followed by ``YYMMDDHHMMSS`` and four base-36 characters,
    e.g. ``T240611093015k3x9``.

    Args:
        now: Time to encode. Defaults to the current local time.

    Returns:
        The run identifier.
    """
    now = now or datetime.now()
    suffix = "".join(random.choices(_ID_ALPHABET, k=4))
    return f"T{now:%y%m%d%H%M%S}{suffix}"


@dataclass(frozen=True)
class RetryPolicy:
    """Retry behavior for a failed step.

    Attributes:
        enabled: Whether failed steps are retried.
        max_retries: Number of retries after the first attempt.
        retry_delay_ms: Delay between attempts in milliseconds.
    """

    enabled: bool = False
    max_retries: int = 0
    retry_delay_ms: int = 0

    def __post_init__(self) -> None:
        _require_int("retry.max_retries", self.max_retries, 0)
        _require_int("retry.retry_delay_ms", self.retry_delay_ms, 0)

    @property
    def max_attempts(self) -> int:
        """Return the total number of attempts allowed for one step."""
        return 1 + self.max_retries if self.enabled else 1

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary."""
        return {
            "enabled": self.enabled,
            "max_retries": self.max_retries,
            "retry_delay_ms": self.retry_delay_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetryPolicy:
        """Deserialize from a dictionary."""
        return cls(
            enabled=bool(data.get("enabled", False)),
            max_retries=data.get("max_retries", 0),
            retry_delay_ms=data.get("retry_delay_ms", 0),
        )


@dataclass(frozen=True)
class TestConfiguration:
    """Immutable input for one test run.

    Attributes:
        target_cycles: Number of cycles to run. Must be >= 1.
        inter_command_delay_ms: Delay between steps of a cycle.
        response_timeout_ms: Per-step response timeout. Must be >= 1.
        retry: Retry policy for failed steps.
        steps: Command kinds making up one cycle, in order.
        inter_cycle_delay_ms: Delay between consecutive cycles.

    Raises:
        ConfigurationError: If any value is out of range.
    """

    __test__ = False

    target_cycles: int
    inter_command_delay_ms: int = 1000
    response_timeout_ms: int = 5000
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    steps: tuple[str, ...] = DEFAULT_STEPS
    inter_cycle_delay_ms: int = 0

    def __post_init__(self) -> None:
        _require_int("target_cycles", self.target_cycles, 1)
        _require_int("inter_command_delay_ms", self.inter_command_delay_ms, 0)
        _require_int("response_timeout_ms", self.response_timeout_ms, 1)
        _require_int("inter_cycle_delay_ms", self.inter_cycle_delay_ms, 0)
        if not isinstance(self.retry, RetryPolicy):
            raise ConfigurationError("retry must be a RetryPolicy")

        # Frozen dataclass: normalize lists to tuples in place
        steps = tuple(self.steps)
        object.__setattr__(self, "steps", steps)
        if not steps:
            raise ConfigurationError("a cycle needs at least one step")
        for kind in steps:
            if not isinstance(kind, str) or not kind:
                raise ConfigurationError(f"invalid step kind: {kind!r}")
        if len(set(steps)) != len(steps):
            raise ConfigurationError(f"step kinds must be unique within a cycle: {steps}")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary."""
        return {
            "target_cycles": self.target_cycles,
            "inter_command_delay_ms": self.inter_command_delay_ms,
            "response_timeout_ms": self.response_timeout_ms,
            "retry": self.retry.to_dict(),
            "steps": list(self.steps),
            "inter_cycle_delay_ms": self.inter_cycle_delay_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TestConfiguration:
        """Deserialize from a dictionary.

        Args:
            data: Dictionary with configuration fields. Only target_cycles is
                required.

        Raises:
            ConfigurationError: If a field is missing or invalid.
        """
        if "target_cycles" not in data:
            raise ConfigurationError("missing required field: target_cycles")
        retry_data = data.get("retry") or {}
        if not isinstance(retry_data, dict):
            raise ConfigurationError("retry must be a mapping")
        return cls(
            target_cycles=data["target_cycles"],
            inter_command_delay_ms=data.get("inter_command_delay_ms", 1000),
            response_timeout_ms=data.get("response_timeout_ms", 5000),
            retry=RetryPolicy.from_dict(retry_data),
            steps=tuple(data.get("steps", DEFAULT_STEPS)),
            inter_cycle_delay_ms=data.get("inter_cycle_delay_ms", 0),
        )


@dataclass(frozen=True)
class StepResult:
    """Outcome of a single command/response exchange.

    Only the final attempt of a retried step is recorded; attempts counts how
    many tries were made.

    Attributes:
        kind: Command kind (e.g. "unlock").
        success: True if the device confirmed the command.
        response_time_ms: Elapsed time from issue to response.
        error: Error description for a failed step.
        attempts: Number of attempts made for this step.
    """

    kind: str
    success: bool
    response_time_ms: int
    error: str | None = None
    attempts: int = 1

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary."""
        return {
            "kind": self.kind,
            "success": self.success,
            "response_time_ms": self.response_time_ms,
            "error": self.error,
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StepResult:
        """Deserialize from a dictionary."""
        return cls(
            kind=data["kind"],
            success=data["success"],
            response_time_ms=data["response_time_ms"],
            error=data.get("error"),
            attempts=data.get("attempts", 1),
        )


@dataclass(frozen=True)
class CycleResult:
    """Outcome of one full cycle.

    Attributes:
        cycle_number: 1-based cycle number.
        steps: Results of the steps that were executed, in order.
        duration_ms: Wall-clock duration of the cycle.
        error: Cycle-level error if the cycle aborted before finishing its steps.
        started_at: When the cycle started (UTC).
    """

    cycle_number: int
    steps: tuple[StepResult, ...]
    duration_ms: int
    error: str | None = None
    started_at: datetime | None = None

    @property
    def success(self) -> bool:
        """Return True if the cycle ran to the end and every step succeeded."""
        return self.error is None and bool(self.steps) and all(s.success for s in self.steps)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary."""
        return {
            "cycle_number": self.cycle_number,
            "steps": [s.to_dict() for s in self.steps],
            "duration_ms": self.duration_ms,
            "error": self.error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "success": self.success,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CycleResult:
        """Deserialize from a dictionary."""
        return cls(
            cycle_number=data["cycle_number"],
            steps=tuple(StepResult.from_dict(s) for s in data.get("steps", [])),
            duration_ms=data["duration_ms"],
            error=data.get("error"),
            started_at=_parse_datetime(data.get("started_at")),
        )


@dataclass(frozen=True)
class TestStatistics:
    """Aggregate statistics computed on a terminal transition.

    Attributes:
        success_rate: Percentage of successful cycles (two decimals).
        avg_response_time_ms: Mean step response time, rounded.
        min_response_time_ms: Fastest step response time.
        max_response_time_ms: Slowest step response time.
        total_duration_ms: End time minus start time.
        total_cycles: Number of cycles executed.
        success_count: Number of successful cycles.
        failure_count: Number of failed cycles.
    """

    __test__ = False

    success_rate: float
    avg_response_time_ms: int
    min_response_time_ms: int
    max_response_time_ms: int
    total_duration_ms: int
    total_cycles: int
    success_count: int
    failure_count: int

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary."""
        return {
            "success_rate": self.success_rate,
            "avg_response_time_ms": self.avg_response_time_ms,
            "min_response_time_ms": self.min_response_time_ms,
            "max_response_time_ms": self.max_response_time_ms,
            "total_duration_ms": self.total_duration_ms,
            "total_cycles": self.total_cycles,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TestStatistics:
        """Deserialize from a dictionary."""
        return cls(**data)


@dataclass
class TestRun:
    """The mutable root entity of one test execution.

    Owned by the runner for its lifetime; observers only ever receive
    snapshots.

    Attributes:
        id: Unique run identifier.
        config: The configuration the run was started with.
        start_time: When the run started (UTC).
        status: Current run status.
        end_time: When the run reached a terminal state.
        current_cycle: Number of cycles recorded so far.
        success_count: Number of successful cycles.
        failure_count: Number of failed cycles.
        results: Cycle results in cycle order.
        statistics: Final statistics, populated on terminal states only.
    """

    __test__ = False

    id: str
    config: TestConfiguration
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: TestStatus = TestStatus.RUNNING
    end_time: datetime | None = None
    current_cycle: int = 0
    success_count: int = 0
    failure_count: int = 0
    results: list[CycleResult] = field(default_factory=list)
    statistics: TestStatistics | None = None

    @property
    def target_cycles(self) -> int:
        """Return the configured target cycle count."""
        return self.config.target_cycles

    @property
    def progress(self) -> float:
        """Return the completion percentage."""
        return self.current_cycle / self.config.target_cycles * 100

    def record(self, result: CycleResult) -> None:
        """Append a cycle result and update the counters.

        Args:
            result: The finished cycle.

        Raises:
            ValueError: If the cycle number does not follow the last one.
        """
        expected = self.current_cycle + 1
        if result.cycle_number != expected:
            raise ValueError(f"expected cycle {expected}, got {result.cycle_number}")
        self.results.append(result)
        self.current_cycle = expected
        if result.success:
            self.success_count += 1
        else:
            self.failure_count += 1

    def snapshot(self) -> TestRun:
        """Return an independent read-only copy for observers.

        Result entries, the configuration and the statistics are immutable, so
        copying the results list is enough to avoid aliasing.
        """
        return replace(self, results=list(self.results))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary."""
        return {
            "id": self.id,
            "config": self.config.to_dict(),
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "status": self.status.value,
            "current_cycle": self.current_cycle,
            "target_cycles": self.target_cycles,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "progress": self.progress,
            "results": [r.to_dict() for r in self.results],
            "statistics": self.statistics.to_dict() if self.statistics else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TestRun:
        """Deserialize from a dictionary."""
        statistics = data.get("statistics")
        return cls(
            id=data["id"],
            config=TestConfiguration.from_dict(data["config"]),
            start_time=datetime.fromisoformat(data["start_time"]),
            status=TestStatus(data["status"]),
            end_time=_parse_datetime(data.get("end_time")),
            current_cycle=data.get("current_cycle", 0),
            success_count=data.get("success_count", 0),
            failure_count=data.get("failure_count", 0),
            results=[CycleResult.from_dict(r) for r in data.get("results", [])],
            statistics=TestStatistics.from_dict(statistics) if statistics else None,
        )
