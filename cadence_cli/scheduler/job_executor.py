"""Job executor for running scheduled jobs.

The JobExecutor resolves a job's target, instantiates it and invokes
the configured operation with the job's parameters under a timeout.
"""

import asyncio
import functools
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Set, Tuple

from cadence_cli.config import LoaderConfig
from cadence_cli.database.models import JobStatus, ScheduledJob
from cadence_cli.scheduler.exceptions import (
    JobTimeoutError,
    OperationNotFoundError,
    TargetNotFoundError,
)
from cadence_cli.scheduler.registry import TargetDiscovery, TargetFactory, TargetRegistry

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """Result of a single execution attempt.

    Attributes:
        success: Whether the operation completed without error
        duration: Wall time of the attempt in milliseconds
        error: Human readable failure message
        result: Value returned by the operation
        status: SUCCESS, ERROR or TIMEOUT
    """

    success: bool
    duration: int = 0
    error: Optional[str] = None
    result: Any = None
    status: JobStatus = JobStatus.SUCCESS

    def __post_init__(self) -> None:
        if not self.success and self.status == JobStatus.SUCCESS:
            self.status = JobStatus.ERROR

    @classmethod
    def failed(cls, error: str, duration: int = 0) -> "ExecutionResult":
        return cls(success=False, duration=duration, error=error, status=JobStatus.ERROR)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "duration": self.duration,
            "error": self.error,
            "result": self.result,
            "status": self.status.value,
        }


class JobExecutor:
    """Executes scheduled jobs by resolving and invoking their targets.

    Resolution order for a job's ``service_name``:
    1. A factory registered on the TargetRegistry
    2. The job's explicit ``service_path`` (dotted module or file path)
    3. The conventional filesystem locations searched by TargetDiscovery

    Factories found on the filesystem are cached by ``(name, path)``.
    ``execute`` never raises; every failure becomes a failed result.

    Example:
        registry = TargetRegistry()
        registry.register("CleanupService", CleanupService)

        executor = JobExecutor(registry=registry)
        result = await executor.execute(job)
    """

    def __init__(
        self,
        registry: Optional[TargetRegistry] = None,
        discovery: Optional[TargetDiscovery] = None,
        loader_config: Optional[LoaderConfig] = None,
    ) -> None:
        """Initialize the job executor.

        Args:
            registry: Registry of explicitly registered targets
            discovery: Filesystem discovery (built from loader_config if omitted)
            loader_config: Configuration for the default discovery
        """
        self.registry = registry or TargetRegistry()
        self.discovery = discovery or TargetDiscovery(loader_config)
        self._factory_cache: Dict[Tuple[str, Optional[str]], TargetFactory] = {}

        # Timed-out work that is still running in the background
        self._abandoned: Set[asyncio.Future] = set()

    @property
    def abandoned_count(self) -> int:
        """Number of timed-out operations that have not settled yet."""
        return len(self._abandoned)

    async def execute(self, job: ScheduledJob) -> ExecutionResult:
        """Execute a scheduled job once.

        Args:
            job: The job to execute

        Returns:
            Execution result; failures are captured, never raised
        """
        started = time.monotonic()
        log_extra = {
            "job_id": job.id,
            "job_name": job.name,
            "service": job.service_name,
            "method": job.service_method,
        }
        logger.info(f"Executing job: {job.name}", extra=log_extra)

        try:
            factory = self.resolve_factory(job.service_name, job.service_path)
            target = factory()

            operation = getattr(target, job.service_method, None)
            if operation is None or not callable(operation):
                raise OperationNotFoundError(job.service_name, job.service_method)

            result = await self._invoke_with_timeout(
                operation, job.params or {}, job.timeout, job
            )

            duration = _elapsed_ms(started)
            logger.info(
                f"Job completed: {job.name} ({duration}ms)",
                extra={**log_extra, "duration": duration},
            )
            return ExecutionResult(success=True, duration=duration, result=result)

        except JobTimeoutError as e:
            duration = _elapsed_ms(started)
            logger.error(
                f"Job timed out: {job.name}: {e}",
                extra={**log_extra, "duration": duration},
            )
            return ExecutionResult(
                success=False,
                duration=duration,
                error=str(e),
                status=JobStatus.TIMEOUT,
            )

        except Exception as e:
            duration = _elapsed_ms(started)
            logger.error(
                f"Job execution failed: {job.name}: {e}",
                extra={**log_extra, "duration": duration},
            )
            return ExecutionResult.failed(str(e) or type(e).__name__, duration)

    def resolve_factory(
        self,
        service_name: str,
        service_path: Optional[str] = None,
    ) -> TargetFactory:
        """Find the factory for a target.

        Args:
            service_name: Target name
            service_path: Optional explicit module or file path

        Returns:
            Zero-argument factory for the target

        Raises:
            TargetNotFoundError: If no source provides the target
        """
        factory = self.registry.get(service_name)
        if factory is not None:
            return factory

        cache_key = (service_name, service_path or None)
        if cache_key in self._factory_cache:
            return self._factory_cache[cache_key]

        try:
            factory = self.discovery.load_factory(service_name, service_path)
        except TargetNotFoundError:
            raise
        except Exception as e:
            raise TargetNotFoundError(
                f"Failed to load target '{service_name}': {e}",
                service_name=service_name,
                service_path=service_path,
            ) from e

        self._factory_cache[cache_key] = factory
        return factory

    def invalidate(self, service_name: str, service_path: Optional[str] = None) -> bool:
        """Drop one cached factory.

        Returns:
            True if an entry was cached
        """
        return self._factory_cache.pop((service_name, service_path or None), None) is not None

    def clear_cache(self) -> None:
        """Drop every cached factory."""
        self._factory_cache.clear()

    async def _invoke_with_timeout(
        self,
        operation: Any,
        params: Dict[str, Any],
        timeout: Optional[float],
        job: ScheduledJob,
    ) -> Any:
        """Run an operation, waiting at most ``timeout`` seconds.

        Coroutine operations run as tasks, synchronous ones in the default
        thread pool. On timeout the work is left running and tracked until
        it settles.

        Raises:
            JobTimeoutError: If the operation does not settle in time
        """
        if inspect.iscoroutinefunction(operation):
            future: asyncio.Future = asyncio.ensure_future(operation(params))
        else:
            loop = asyncio.get_running_loop()
            future = loop.run_in_executor(None, functools.partial(operation, params))

        wait_for = timeout if timeout and timeout > 0 else None
        done, _ = await asyncio.wait({future}, timeout=wait_for)

        if future in done:
            return future.result()

        self._abandon(future, job)
        raise JobTimeoutError(timeout)

    def _abandon(self, future: asyncio.Future, job: ScheduledJob) -> None:
        self._abandoned.add(future)
        logger.warning(
            f"Abandoning timed-out work for job {job.name} "
            f"({len(self._abandoned)} abandoned)"
        )
        future.add_done_callback(functools.partial(self._on_abandoned_settled, job.name))

    def _on_abandoned_settled(self, job_name: str, future: asyncio.Future) -> None:
        self._abandoned.discard(future)

        if future.cancelled():
            logger.info(f"Abandoned work for job {job_name} was cancelled")
            return

        error = future.exception()
        if error is not None:
            logger.warning(f"Abandoned work for job {job_name} failed late: {error}")
        else:
            logger.info(f"Abandoned work for job {job_name} finished late")


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
