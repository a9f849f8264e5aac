"""Lock endurance test engine.

This package drives repeated lock/unlock cycles against a device over an
asynchronous, message-based link, measuring latency and reliability across
thousands of cycles, with pause/resume/stop control and live progress events.

Key components:
    - Correlator: Matches each outstanding command to its response event,
      with a timeout and disconnect handling.
    - Executor: Runs one cycle of correlated steps with retries and
      inter-step delays.
    - Runner: The running/paused/stopped/completed state machine.
    - Statistics: Success rate and response time aggregation.
    - Events: Typed lifecycle events and the bus that dispatches them.
    - Records: Session history persistence on SQLite.

Example:
    >>> from lockcycle import SimulatedDeviceLink, TestConfiguration, TestRunner
    >>> link = SimulatedDeviceLink()
    >>> await link.connect()
    >>> runner = TestRunner(link)
    >>> await runner.start(TestConfiguration(target_cycles=10))
    >>> await runner.wait()
"""

from lockcycle.correlator import PendingCommand, ResponseCorrelator
from lockcycle.errors import (
    AlreadyRunningError,
    CommandSendError,
    ConfigurationError,
    DisconnectedDuringRunError,
    DuplicateCommandError,
    InvalidStateTransitionError,
    LockcycleError,
    NotConnectedError,
    RecordStoreError,
    StepFailureError,
    StepTimeoutError,
)
from lockcycle.events import (
    EventBus,
    EventKind,
    RunCompleted,
    RunEvent,
    RunInterrupted,
    RunPaused,
    RunProgress,
    RunResumed,
    RunStarted,
    RunStopped,
    Subscription,
)
from lockcycle.executor import CycleExecutor
from lockcycle.link import DISCONNECTED, BaseDeviceLink, DeviceLink, DeviceResponse, result_event
from lockcycle.records import (
    AttemptRecord,
    RecordingObserver,
    RecordStore,
    SessionRecord,
    SqliteRecordStore,
)
from lockcycle.runner import TestRunner
from lockcycle.simulator import CommandProfile, SimulatedDeviceLink, SimulatorConfig
from lockcycle.statistics import RunningTotals, compute_statistics
from lockcycle.types import (
    DEFAULT_STEPS,
    CycleResult,
    RetryPolicy,
    StepResult,
    TestConfiguration,
    TestRun,
    TestStatistics,
    TestStatus,
    generate_run_id,
)

__version__ = "0.1.0"

__all__ = [
    # Correlator
    "PendingCommand",
    "ResponseCorrelator",
    # Errors
    "AlreadyRunningError",
    "CommandSendError",
    "ConfigurationError",
    "DisconnectedDuringRunError",
    "DuplicateCommandError",
    "InvalidStateTransitionError",
    "LockcycleError",
    "NotConnectedError",
    "RecordStoreError",
    "StepFailureError",
    "StepTimeoutError",
    # Events
    "EventBus",
    "EventKind",
    "RunCompleted",
    "RunEvent",
    "RunInterrupted",
    "RunPaused",
    "RunProgress",
    "RunResumed",
    "RunStarted",
    "RunStopped",
    "Subscription",
    # Executor
    "CycleExecutor",
    # Link
    "DISCONNECTED",
    "BaseDeviceLink",
    "DeviceLink",
    "DeviceResponse",
    "result_event",
    # Records
    "AttemptRecord",
    "RecordingObserver",
    "RecordStore",
    "SessionRecord",
    "SqliteRecordStore",
    # Runner
    "TestRunner",
    # Simulator
    "CommandProfile",
    "SimulatedDeviceLink",
    "SimulatorConfig",
    # Statistics
    "RunningTotals",
    "compute_statistics",
    # Types
    "DEFAULT_STEPS",
    "CycleResult",
    "RetryPolicy",
    "StepResult",
    "TestConfiguration",
    "TestRun",
    "TestStatistics",
    "TestStatus",
    "generate_run_id",
]
