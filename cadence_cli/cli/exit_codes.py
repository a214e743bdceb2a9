"""Standard exit codes for Cadence CLI.

This module defines the exit codes used across the CLI so scripts can
tell failures apart.
"""


class ExitCode:
    """Standard exit codes for Cadence CLI.

    These codes follow common Unix conventions where possible:
    - 0: Success
    - 1: General error
    - 130: Terminated by Ctrl+C (SIGINT)

    Cadence-specific codes:
    - 2: Configuration error
    - 3: Target could not be resolved
    - 4: Job execution failed
    - 5: Job execution timed out
    - 6: Database error
    - 7: Invalid argument
    - 8: Not found
    - 9: Permission denied
    - 10: Daemon already running
    """

    # Standard success
    SUCCESS = 0

    # General errors
    GENERAL_ERROR = 1

    # Cadence-specific errors (2-10)
    CONFIGURATION_ERROR = 2
    TARGET_ERROR = 3
    EXECUTION_ERROR = 4
    TIMEOUT = 5
    DATABASE_ERROR = 6
    INVALID_ARGUMENT = 7
    NOT_FOUND = 8
    PERMISSION_DENIED = 9
    ALREADY_RUNNING = 10

    # Signal-based exits (128 + signal number)
    CANCELLED = 130  # Ctrl+C (SIGINT = 2)

    @classmethod
    def get_name(cls, code: int) -> str:
        """Get the name of an exit code.

        Args:
            code: The exit code value

        Returns:
            Human-readable name for the exit code
        """
        names = {
            cls.SUCCESS: "SUCCESS",
            cls.GENERAL_ERROR: "GENERAL_ERROR",
            cls.CONFIGURATION_ERROR: "CONFIGURATION_ERROR",
            cls.TARGET_ERROR: "TARGET_ERROR",
            cls.EXECUTION_ERROR: "EXECUTION_ERROR",
            cls.TIMEOUT: "TIMEOUT",
            cls.DATABASE_ERROR: "DATABASE_ERROR",
            cls.INVALID_ARGUMENT: "INVALID_ARGUMENT",
            cls.NOT_FOUND: "NOT_FOUND",
            cls.PERMISSION_DENIED: "PERMISSION_DENIED",
            cls.ALREADY_RUNNING: "ALREADY_RUNNING",
            cls.CANCELLED: "CANCELLED",
        }
        return names.get(code, f"UNKNOWN({code})")

    @classmethod
    def get_description(cls, code: int) -> str:
        """Get the description of an exit code.

        Args:
            code: The exit code value

        Returns:
            Human-readable description for the exit code
        """
        descriptions = {
            cls.SUCCESS: "Operation completed successfully",
            cls.GENERAL_ERROR: "An unexpected error occurred",
            cls.CONFIGURATION_ERROR: "Configuration error or invalid config file",
            cls.TARGET_ERROR: "Job target or operation could not be resolved",
            cls.EXECUTION_ERROR: "Job execution failed",
            cls.TIMEOUT: "Job execution timed out",
            cls.DATABASE_ERROR: "Database error",
            cls.INVALID_ARGUMENT: "Invalid command-line argument",
            cls.NOT_FOUND: "Requested resource not found",
            cls.PERMISSION_DENIED: "Permission denied",
            cls.ALREADY_RUNNING: "Daemon is already running",
            cls.CANCELLED: "Operation cancelled by user",
        }
        return descriptions.get(code, f"Unknown exit code: {code}")

    @classmethod
    def for_exception(cls, error: BaseException) -> int:
        """Map an exception to the exit code a command should return."""
        from sqlalchemy.exc import SQLAlchemyError

        from cadence_cli.daemon.pid import PIDFileError
        from cadence_cli.scheduler.exceptions import (
            JobNotFoundError,
            JobTimeoutError,
            TargetResolutionError,
        )

        if isinstance(error, KeyboardInterrupt):
            return cls.CANCELLED
        if isinstance(error, JobNotFoundError):
            return cls.NOT_FOUND
        if isinstance(error, TargetResolutionError):
            return cls.TARGET_ERROR
        if isinstance(error, JobTimeoutError):
            return cls.TIMEOUT
        if isinstance(error, PIDFileError):
            return cls.ALREADY_RUNNING
        if isinstance(error, SQLAlchemyError):
            return cls.DATABASE_ERROR
        if isinstance(error, PermissionError):
            return cls.PERMISSION_DENIED
        if isinstance(error, ValueError):
            return cls.INVALID_ARGUMENT
        return cls.GENERAL_ERROR
