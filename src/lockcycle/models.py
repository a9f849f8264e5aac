"""Pydantic models for the lockcycle REST API.

This module defines request and response models for the control service.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from lockcycle.records import AttemptRecord, SessionRecord
from lockcycle.statistics import summarize
from lockcycle.types import DEFAULT_STEPS, TestStatistics, TestStatus


class RunState(str, Enum):
    """State of the test runner.

    Attributes:
        IDLE: No test has been started since the last reset.
        RUNNING: Cycles are executing.
        PAUSED: The run is paused between cycles.
        STOPPED: The run was stopped or the device disconnected.
        COMPLETED: The target cycle count was reached.
    """

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"


class RetryModel(BaseModel):
    """Retry policy for failed steps."""

    enabled: bool = False
    max_retries: int = 0
    retry_delay_ms: int = 0


class RunRequest(BaseModel):
    """Request to start a test run.

    Range checks happen in TestConfiguration; a rejected value is reported
    as 422 like any other validation error.

    Attributes:
        target_cycles: Number of cycles to run.
        inter_command_delay_ms: Delay between the steps of a cycle.
        response_timeout_ms: Per-step response timeout.
        retry: Retry policy.
        steps: Command kinds making up one cycle.
        inter_cycle_delay_ms: Delay between cycles.
    """

    target_cycles: int
    inter_command_delay_ms: int = 1000
    response_timeout_ms: int = 5000
    retry: RetryModel = Field(default_factory=RetryModel)
    steps: list[str] = Field(default_factory=lambda: list(DEFAULT_STEPS))
    inter_cycle_delay_ms: int = 0


class StatisticsModel(BaseModel):
    """Aggregate statistics of a run."""

    success_rate: float
    avg_response_time_ms: int
    min_response_time_ms: int
    max_response_time_ms: int
    total_duration_ms: int
    total_cycles: int
    success_count: int
    failure_count: int

    @classmethod
    def from_statistics(cls, stats: TestStatistics) -> StatisticsModel:
        """Build from a TestStatistics value."""
        return cls(**stats.to_dict())


class RunStatusModel(BaseModel):
    """Current status of the runner.

    Attributes:
        state: Current runner state.
        run_id: ID of the current run (if any).
        current_cycle: Number of completed cycles.
        target_cycles: Configured cycle count.
        success_count: Number of successful cycles.
        failure_count: Number of failed cycles.
        progress: Percent complete.
        started_at: ISO timestamp when the run started.
        ended_at: ISO timestamp when the run ended.
        statistics: Live or final statistics.
        message: Human-readable status message.
    """

    state: RunState
    run_id: str | None = None
    current_cycle: int = 0
    target_cycles: int = 0
    success_count: int = 0
    failure_count: int = 0
    progress: float = 0.0
    started_at: str | None = None
    ended_at: str | None = None
    statistics: StatisticsModel | None = None
    message: str = ""


class SessionModel(BaseModel):
    """A stored test session."""

    id: str
    name: str = ""
    status: str
    target_cycles: int
    start_time: str | None = None
    end_time: str | None = None
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    average_response_time: float = 0.0
    failure_reason: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_record(cls, record: SessionRecord) -> SessionModel:
        """Build from a SessionRecord."""
        return cls(**record.to_dict())


class AttemptModel(BaseModel):
    """A stored step attempt."""

    session_id: str
    attempt_number: int
    action: str
    result: str
    response_time: int | None = None
    error_message: str | None = None
    retries: int = 0
    timestamp: str | None = None

    @classmethod
    def from_record(cls, record: AttemptRecord) -> AttemptModel:
        """Build from an AttemptRecord."""
        return cls(**record.to_dict())


def status_message(state: TestStatus, stats: TestStatistics | None) -> str:
    """Return the human-readable message shown with a run status."""
    if state is TestStatus.IDLE:
        return "Ready"
    if stats is None:
        return state.value.capitalize()
    return f"{state.value.capitalize()}: {summarize(stats)}"
