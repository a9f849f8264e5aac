"""Exception types for lockcycle.

This module defines the exception hierarchy used throughout the test engine.
All lockcycle exceptions inherit from LockcycleError, allowing consumers to
catch all engine-specific errors with a single except clause.

Exception hierarchy:
    LockcycleError (base)
    +-- ConfigurationError: Invalid test configuration (also a ValueError)
    +-- NotConnectedError: Device link unavailable (also a ConnectionError)
    +-- AlreadyRunningError: start() called while a test is active
    +-- InvalidStateTransitionError: Illegal pause/resume/stop/reset call
    +-- DuplicateCommandError: Second pending correlation for the same kind
    +-- CommandSendError: The link refused a command
    +-- StepTimeoutError: A correlation timed out
    +-- StepFailureError: The device reported a failed command
    +-- DisconnectedDuringRunError: The device link dropped during a run
    +-- RecordStoreError: Persistence collaborator failures

StepTimeoutError, StepFailureError and DisconnectedDuringRunError are never
raised out of the execution loop. They are recovered locally and recorded as
data; their default_message is what ends up in result error fields.
"""


class LockcycleError(Exception):
    """Base exception for all lockcycle errors.

    This is the root of the lockcycle exception hierarchy. Catch this to
    handle any engine-specific error.
    """

    default_message = "lockcycle error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class ConfigurationError(LockcycleError, ValueError):
    """Raised when a test configuration is invalid.

    Rejected before any state transition takes place.
    """

    default_message = "invalid test configuration"


class NotConnectedError(LockcycleError, ConnectionError):
    """Raised when the device link is not connected.

    Raised by start() when the link reports disconnected, and by a device
    link's send_command() when it cannot enqueue a command.
    """

    default_message = "device not connected"


class AlreadyRunningError(LockcycleError):
    """Raised when start() is called on a runner that is not idle."""

    default_message = "a test is already active"


class InvalidStateTransitionError(LockcycleError):
    """Raised for illegal runner state transitions.

    The runner performs no mutation when this is raised.
    """

    default_message = "invalid state transition"


class DuplicateCommandError(LockcycleError):
    """Raised when a correlation is registered for a kind already pending.

    At most one command per kind may be outstanding; issuing a second one is
    a programming error.
    """

    default_message = "a command of this kind is already pending"


class CommandSendError(LockcycleError):
    """Raised when the device link refuses to enqueue a command.

    Aborts the remaining steps of the current cycle; recorded as the cycle's
    error rather than raised out of the loop.
    """

    default_message = "command could not be sent"


class StepTimeoutError(LockcycleError):
    """A command response did not arrive within the response timeout."""

    default_message = "timeout"


class StepFailureError(LockcycleError):
    """The device reported that a command failed."""

    default_message = "device reported failure"


class DisconnectedDuringRunError(LockcycleError):
    """The device link was lost while a test was running or paused."""

    default_message = "device disconnected"


class RecordStoreError(LockcycleError):
    """Raised for failures in the record store.

    This includes missing sessions and database errors.
    """

    default_message = "record store error"
