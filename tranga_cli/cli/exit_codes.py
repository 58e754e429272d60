"""Standard exit codes for Tranga CLI.

Every command reports failures through one of these codes so that
scripts and service managers can tell failure classes apart.
"""


class ExitCode:
    """Exit codes for Tranga CLI.

    Follows common Unix conventions where they exist:
    - 0: Success
    - 1: General error
    - 130: Terminated by Ctrl+C (SIGINT)

    Tranga-specific codes:
    - 2: Configuration error
    - 3: Connector error
    - 4: Scheduler error
    - 5: Network error
    - 6: Storage / persistence error
    - 7: Invalid argument or job specification
    - 8: Not found
    - 9: Permission denied
    - 10: Conflict (duplicate job, daemon already running)
    """

    SUCCESS = 0
    GENERAL_ERROR = 1

    CONFIGURATION_ERROR = 2
    CONNECTOR_ERROR = 3
    SCHEDULER_ERROR = 4
    NETWORK_ERROR = 5
    STORAGE_ERROR = 6
    INVALID_ARGUMENT = 7
    NOT_FOUND = 8
    PERMISSION_DENIED = 9
    CONFLICT = 10

    CANCELLED = 130  # 128 + SIGINT

    _NAMES = {
        SUCCESS: "SUCCESS",
        GENERAL_ERROR: "GENERAL_ERROR",
        CONFIGURATION_ERROR: "CONFIGURATION_ERROR",
        CONNECTOR_ERROR: "CONNECTOR_ERROR",
        SCHEDULER_ERROR: "SCHEDULER_ERROR",
        NETWORK_ERROR: "NETWORK_ERROR",
        STORAGE_ERROR: "STORAGE_ERROR",
        INVALID_ARGUMENT: "INVALID_ARGUMENT",
        NOT_FOUND: "NOT_FOUND",
        PERMISSION_DENIED: "PERMISSION_DENIED",
        CONFLICT: "CONFLICT",
        CANCELLED: "CANCELLED",
    }

    _DESCRIPTIONS = {
        SUCCESS: "Operation completed successfully",
        GENERAL_ERROR: "An unexpected error occurred",
        CONFIGURATION_ERROR: "Configuration error or invalid config file",
        CONNECTOR_ERROR: "Connector lookup or execution error",
        SCHEDULER_ERROR: "Job scheduler error",
        NETWORK_ERROR: "Network or HTTP error",
        STORAGE_ERROR: "Job store read or write failed",
        INVALID_ARGUMENT: "Invalid argument or job specification",
        NOT_FOUND: "Requested job or resource not found",
        PERMISSION_DENIED: "Permission denied",
        CONFLICT: "A job with the same identity exists or a daemon is running",
        CANCELLED: "Operation cancelled by user",
    }

    @classmethod
    def get_name(cls, code: int) -> str:
        """Get the symbolic name of an exit code."""
        return cls._NAMES.get(code, f"UNKNOWN({code})")

    @classmethod
    def get_description(cls, code: int) -> str:
        """Get a human-readable description of an exit code."""
        return cls._DESCRIPTIONS.get(code, f"Unknown exit code: {code}")
