"""Job scheduler for recurring job execution.

The scheduler runs cron-scheduled jobs that invoke an operation on a
named target, with bounded concurrency, retries and stuck-job recovery.
"""

from cadence_cli.scheduler.exceptions import (
    JobNotFoundError,
    JobTimeoutError,
    OperationNotFoundError,
    SchedulerError,
    TargetNotFoundError,
    TargetResolutionError,
)
from cadence_cli.scheduler.job_executor import ExecutionResult, JobExecutor
from cadence_cli.scheduler.job_scheduler import JobScheduler, RunningJobs
from cadence_cli.scheduler.registry import TargetDiscovery, TargetRegistry

__all__ = [
    "ExecutionResult",
    "JobExecutor",
    "JobNotFoundError",
    "JobScheduler",
    "JobTimeoutError",
    "OperationNotFoundError",
    "RunningJobs",
    "SchedulerError",
    "TargetDiscovery",
    "TargetNotFoundError",
    "TargetRegistry",
    "TargetResolutionError",
]
