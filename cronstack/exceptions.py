"""Exceptions raised by the job supervisor and its collaborators.

Every error carries an exit code so the CLI can translate it into a
stable process status without knowing about individual error types.
"""

from typing import Any

from cronstack.cli.exit_codes import ExitCode


class CronstackError(Exception):
    """Base exception for Cronstack.

    Attributes:
        message: Error message
        exit_code: Exit code to use when exiting
        details: Optional dictionary of additional error details
    """

    exit_code: int = ExitCode.GENERAL_ERROR

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if exit_code is not None:
            self.exit_code = exit_code
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigurationError(CronstackError):
    """Raised when a configuration file or value is invalid."""

    exit_code = ExitCode.CONFIGURATION_ERROR


class InvalidScheduleError(CronstackError):
    """Raised when a cron expression cannot be parsed."""

    exit_code = ExitCode.SCHEDULE_ERROR

    def __init__(self, schedule: str, reason: str, name: str | None = None) -> None:
        details: dict[str, Any] = {"schedule": schedule}
        if name:
            details["job"] = name
        super().__init__(f"Invalid cron schedule '{schedule}': {reason}", details=details)
        self.schedule = schedule
        self.reason = reason
        self.name = name


class DuplicateNameError(CronstackError):
    """Raised when two jobs in one registration batch share a name."""

    exit_code = ExitCode.DUPLICATE_NAME

    def __init__(self, name: str) -> None:
        super().__init__(
            f'Job "{name}" can not be registered because its name is already in use.'
        )
        self.name = name


class WorkerCrashError(CronstackError):
    """A dispatched occurrence failed or its worker process died."""

    def __init__(self, name: str, detail: str, stack: str | None = None) -> None:
        super().__init__(f'Job "{name}" has crashed: {detail}')
        self.name = name
        self.detail = detail
        self.stack = stack


class JobTimeoutError(CronstackError):
    """An occurrence ran longer than its configured timeout."""

    def __init__(self, name: str, timeout: float) -> None:
        super().__init__(
            f'Job "{name}" timed out! Execution took longer than {timeout:g}s'
        )
        self.name = name
        self.timeout = timeout


class ReloadValidationError(CronstackError):
    """A new descriptor set was rejected; the running registry is unchanged."""

    exit_code = ExitCode.RELOAD_ERROR


class ServiceDiscoveryError(CronstackError):
    """Raised when job files cannot be located or loaded."""

    exit_code = ExitCode.DISCOVERY_ERROR


class JobNotFoundError(CronstackError):
    """Raised when a named job is not registered."""

    exit_code = ExitCode.NOT_FOUND

    def __init__(self, name: str) -> None:
        super().__init__(f'Job "{name}" not found')
        self.name = name


class RegistryCorruptedError(CronstackError):
    """An internal invariant of the job registry no longer holds.

    This is the only fatal condition: the process must stop rather than
    keep scheduling work against state it cannot trust.
    """

    exit_code = ExitCode.INTERNAL_ERROR
