"""
Cadence exception hierarchy.

Every error in the system inherits from CadenceError.
Each subsystem has its own error class for targeted catching.

Usage:
    try:
        task_id = await runner.start_task(mode, instructions)
    except ValidationError as e:
        # Bad mode: abandon this fire
    except RunnerUnavailableError as e:
        # Runner not ready: rearm and try next time
    except CadenceError as e:
        # Handle any Cadence error
"""


class CadenceError(Exception):
    """Base exception for all Cadence errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ━━━ Core Errors ━━━


class ConfigError(CadenceError):
    """Configuration is invalid, missing, or malformed."""

    pass


class ScheduleError(CadenceError):
    """A schedule is malformed or refers to an unknown id."""

    def __init__(
        self,
        message: str,
        schedule_id: str = "",
        details: dict | None = None,
    ):
        self.schedule_id = schedule_id
        super().__init__(message, details)


class PersistenceError(CadenceError):
    """Reading or writing the schedules document failed."""

    pass


# ━━━ Task Runner Errors ━━━


class TaskRunnerError(CadenceError):
    """The external task runner rejected or failed a request."""

    pass


class ValidationError(TaskRunnerError):
    """Unknown or invalid mode — raised before any run attempt."""

    def __init__(
        self,
        message: str,
        mode: str = "",
        details: dict | None = None,
    ):
        self.mode = mode
        super().__init__(message, details)


class RunnerUnavailableError(TaskRunnerError):
    """The external runner is not reachable or not ready."""

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        details: dict | None = None,
    ):
        self.retryable = retryable
        super().__init__(message, details)
