"""Exception hierarchy for Tranga CLI.

Every error raised on purpose by the scheduler, the download layer or the
job stores derives from :class:`TrangaError`, which carries the exit code
the CLI reports when the error reaches a command boundary.
"""

from typing import Any, Optional

from tranga_cli.cli.exit_codes import ExitCode


class TrangaError(Exception):
    """Base exception for Tranga CLI.

    Attributes:
        message: Error message
        exit_code: Exit code to use when a CLI command fails with this error
        details: Optional dictionary of additional error details
    """

    exit_code: int = ExitCode.GENERAL_ERROR

    def __init__(
        self,
        message: str,
        exit_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
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


class ConfigurationError(TrangaError):
    """Invalid or missing configuration."""

    exit_code = ExitCode.CONFIGURATION_ERROR


class ConnectorError(TrangaError):
    """A connector could not be found, loaded or initialized."""

    exit_code = ExitCode.CONNECTOR_ERROR


class SchedulerError(TrangaError):
    """The scheduler refused an operation in its current lifecycle state."""

    exit_code = ExitCode.SCHEDULER_ERROR


class NetworkError(TrangaError):
    """Network-level failure surfaced to a caller."""

    exit_code = ExitCode.NETWORK_ERROR


class StorageError(TrangaError):
    """Local storage failure."""

    exit_code = ExitCode.STORAGE_ERROR


class ValidationError(TrangaError):
    """User input failed validation."""

    exit_code = ExitCode.INVALID_ARGUMENT


class NotFoundError(TrangaError):
    """A requested resource does not exist."""

    exit_code = ExitCode.NOT_FOUND


class InvalidJobSpecError(ValidationError):
    """A job is missing a reference its kind requires.

    Rejected at ``add_job``; such a job never enters the job set.
    """


class DuplicateJobError(TrangaError):
    """A job with the same (kind, connector, publication) key already exists."""

    exit_code = ExitCode.CONFLICT


class JobNotFoundError(NotFoundError):
    """No job matches the given identity key."""


class RateLimitNotConfiguredError(ConfigurationError):
    """A request used an endpoint class without a configured rate limit.

    The request is abandoned, never sent and never retried.
    """

    def __init__(self, endpoint_class: int) -> None:
        super().__init__(
            f"No rate limit configured for endpoint class {endpoint_class}",
            details={"endpoint_class": endpoint_class},
        )
        self.endpoint_class = endpoint_class


class HttpError(NetworkError):
    """A request completed with a non-success HTTP status."""

    def __init__(self, status_code: int, url: str) -> None:
        super().__init__(
            f"Request to {url} failed with status {status_code}",
            details={"status_code": status_code, "url": url},
        )
        self.status_code = status_code
        self.url = url


class PersistenceError(StorageError):
    """The job store could not be read or written.

    The in-memory job set stays authoritative for the current process.
    """
