"""Exceptions for job scheduling and execution."""


class SchedulerError(Exception):
    """Base exception for scheduler errors."""

    def __init__(self, message: str, job_id: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.job_id = job_id

    def __str__(self) -> str:
        if self.job_id is not None:
            return f"{self.message} (job: {self.job_id})"
        return self.message


class JobNotFoundError(SchedulerError):
    """Raised when a job id does not exist in the store."""

    def __init__(self, job_id: int) -> None:
        super().__init__(f"Job {job_id} not found", job_id)


class TargetResolutionError(SchedulerError):
    """Raised when a job's target cannot be resolved or invoked."""

    def __init__(
        self,
        message: str,
        service_name: str | None = None,
        service_path: str | None = None,
    ) -> None:
        super().__init__(message)
        self.service_name = service_name
        self.service_path = service_path


class TargetNotFoundError(TargetResolutionError):
    """Raised when no factory can be found for a target name."""
    pass


class OperationNotFoundError(TargetResolutionError):
    """Raised when the resolved target lacks the requested operation."""

    def __init__(self, service_name: str, operation: str) -> None:
        super().__init__(
            f"Method '{operation}' not found on service '{service_name}'",
            service_name=service_name,
        )
        self.operation = operation


class JobTimeoutError(SchedulerError):
    """Raised when an operation does not settle within its timeout."""

    def __init__(self, timeout: float, job_id: int | None = None) -> None:
        super().__init__(f"Job execution timeout after {timeout}s", job_id)
        self.timeout = timeout
