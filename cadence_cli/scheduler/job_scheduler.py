"""Job scheduler for cron-like recurring job execution.

The JobScheduler registers one APScheduler cron trigger per enabled job,
runs a periodic sweep for due jobs as a safety net, and reaps executions
that got stuck in the ``running`` state. Executions are bounded by a
concurrency ceiling shared by all dispatch paths.

Job definitions and execution outcomes live in the database and survive
daemon restarts; the running set is process-local.
"""

import asyncio
import logging
import threading
from datetime import datetime
from typing import Any, Coroutine, Dict, List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_MISSED,
)

from cadence_cli.config import SchedulerConfig
from cadence_cli.database.models import JobStatus, ScheduledJob, utcnow
from cadence_cli.database.repositories import JobRepository
from cadence_cli.scheduler.exceptions import JobNotFoundError
from cadence_cli.scheduler.job_executor import ExecutionResult, JobExecutor
from cadence_cli.scheduler.schedule import calculate_next_run, parse_cron_trigger

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "cadence:sweep"
REAPER_JOB_ID = "cadence:reaper"
STUCK_JOB_ERROR = "Job stuck - forced timeout"


class RunningJobs:
    """Set of job ids currently executing in this process.

    Claims are an atomic check-then-add against the concurrency ceiling,
    so two dispatches racing for the last slot cannot both win. Each claim
    carries a token; releasing with a token only drops that same claim, so
    a run that outlives a forced discard cannot free a newer claim.
    """

    def __init__(self, limit: int) -> None:
        self._limit = limit
        self._claims: Dict[int, object] = {}
        self._lock = threading.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    def try_claim(self, job_id: int) -> bool:
        """Add a job id if it is absent and a slot is free.

        Returns:
            True if the caller now owns the slot for this job
        """
        with self._lock:
            if job_id in self._claims or len(self._claims) >= self._limit:
                return False
            self._claims[job_id] = object()
            return True

    def token(self, job_id: int) -> Optional[object]:
        """Token of the current claim on a job id, if any."""
        with self._lock:
            return self._claims.get(job_id)

    def release(self, job_id: int, token: Optional[object] = None) -> None:
        with self._lock:
            if token is None or self._claims.get(job_id) is token:
                self._claims.pop(job_id, None)

    def discard(self, job_id: int) -> bool:
        """Forcibly drop a job id (stuck-job recovery).

        Returns:
            True if the id was present
        """
        with self._lock:
            return self._claims.pop(job_id, None) is not None

    def is_full(self) -> bool:
        with self._lock:
            return len(self._claims) >= self._limit

    def snapshot(self) -> List[int]:
        with self._lock:
            return sorted(self._claims)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._claims

    def __len__(self) -> int:
        with self._lock:
            return len(self._claims)


class JobScheduler:
    """Manages recurring job scheduling and execution.

    Three paths dispatch executions, all guarded by the same running set:
    - A per-job cron trigger fires at each occurrence of the schedule
    - A periodic sweep picks up every job whose next run time has passed
    - ``run_job_now`` executes a job on demand

    Example:
        database = Database("sqlite:///cadence.db")
        scheduler = JobScheduler(
            JobRepository(database),
            JobExecutor(registry=registry),
            SchedulerConfig(max_concurrent=3),
        )

        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        repository: JobRepository,
        executor: JobExecutor,
        config: Optional[SchedulerConfig] = None,
    ) -> None:
        """Initialize the job scheduler.

        When ``config.auto_start`` is set and an event loop is running,
        ``start()`` is scheduled on that loop.

        Args:
            repository: Job repository
            executor: Executor used for each attempt
            config: Scheduler configuration
        """
        self._repository = repository
        self._executor = executor
        self._config = config or SchedulerConfig()
        self._running_jobs = RunningJobs(self._config.max_concurrent)
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._job_timers: Set[int] = set()

        # Strong references to dispatched executions
        self._tasks: Set[asyncio.Task] = set()

        if self._config.auto_start:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning("auto_start requested but no event loop is running")
            else:
                self._spawn(self.start(), loop)

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running

    @property
    def running_jobs(self) -> RunningJobs:
        return self._running_jobs

    @property
    def repository(self) -> JobRepository:
        return self._repository

    @property
    def executor(self) -> JobExecutor:
        return self._executor

    async def start(self) -> None:
        """Start the scheduler.

        Registers a cron trigger for every enabled job plus the periodic
        sweep and stuck-job reaper. Calling it again while running has
        no effect.
        """
        if self._running:
            logger.warning("Scheduler already running")
            return

        if not self._config.enabled:
            logger.warning("Scheduler is disabled by configuration")
            return

        logger.info("Starting job scheduler...")

        self._scheduler = self._create_scheduler()
        self._setup_listeners()
        self._scheduler.start()
        self._running = True

        self._load_and_schedule_jobs()

        self._scheduler.add_job(
            self._sweep,
            trigger=IntervalTrigger(seconds=self._config.check_interval_ms / 1000),
            id=SWEEP_JOB_ID,
            name="Due job sweep",
            replace_existing=True,
        )
        self._scheduler.add_job(
            self.check_stuck_jobs,
            trigger=IntervalTrigger(seconds=self._config.stuck_check_interval),
            id=REAPER_JOB_ID,
            name="Stuck job reaper",
            replace_existing=True,
        )

        logger.info(
            f"Scheduler started with {len(self._job_timers)} jobs "
            f"(check interval {self._config.check_interval_ms}ms, "
            f"max concurrent {self._config.max_concurrent})"
        )

    async def stop(self) -> None:
        """Stop the scheduler.

        Removes every timer. Executions already in flight keep running.
        """
        if not self._running:
            return

        logger.info("Stopping job scheduler...")

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._job_timers.clear()
        self._running = False
        logger.info("Scheduler stopped")

    def _create_scheduler(self) -> AsyncIOScheduler:
        """Create and configure APScheduler instance."""
        jobstores = {"default": MemoryJobStore()}

        executors = {"default": AsyncIOExecutor()}

        job_defaults = {
            "coalesce": True,  # Combine missed runs
            "max_instances": 1,  # One instance per job
            "misfire_grace_time": self._config.misfire_grace_time,
        }

        return AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            event_loop=asyncio.get_running_loop(),
            timezone="UTC",
        )

    def _setup_listeners(self) -> None:
        """Set up APScheduler event listeners."""
        if not self._scheduler:
            return

        def on_job_error(event: Any) -> None:
            exception = getattr(event, "exception", "Unknown error")
            logger.error(f"Timer {event.job_id} failed: {exception}")

        def on_job_missed(event: Any) -> None:
            logger.warning(f"Timer {event.job_id} missed scheduled run")

        self._scheduler.add_listener(on_job_error, EVENT_JOB_ERROR)
        self._scheduler.add_listener(on_job_missed, EVENT_JOB_MISSED)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _load_and_schedule_jobs(self) -> None:
        try:
            jobs = self._repository.find_enabled()
        except Exception as e:
            logger.error(f"Failed to load enabled jobs: {e}")
            return

        logger.info(f"Loading {len(jobs)} enabled jobs")
        for job in jobs:
            self._schedule_job(job)

    def _schedule_job(self, job: ScheduledJob) -> bool:
        """Register (or replace) the cron trigger for a job.

        Disabled jobs and jobs with an invalid schedule lose their trigger.

        Returns:
            True if a trigger is registered for the job afterwards
        """
        if not self._scheduler:
            return False

        if not job.enabled:
            self._unschedule_job(job.id)
            return False

        try:
            trigger = parse_cron_trigger(job.schedule)
        except ValueError as e:
            logger.error(f"Invalid schedule for job {job.name} ({job.id}): {e}")
            self._unschedule_job(job.id)
            return False

        self._scheduler.add_job(
            self._on_cron_tick,
            trigger=trigger,
            args=[job.id],
            id=str(job.id),
            name=job.name or f"Job {job.id}",
            replace_existing=True,
        )
        self._job_timers.add(job.id)
        logger.info(
            f"Job scheduled: {job.name} ({job.id}) - {job.schedule_description()}"
        )
        return True

    def _unschedule_job(self, job_id: int) -> None:
        """Remove a job's cron trigger if present."""
        self._job_timers.discard(job_id)
        if not self._scheduler:
            return

        try:
            self._scheduler.remove_job(str(job_id))
            logger.debug(f"Removed timer for job {job_id}")
        except JobLookupError:
            pass

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> asyncio.Task:
        task = (loop or asyncio.get_running_loop()).create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _on_cron_tick(self, job_id: int) -> None:
        """Run a job when its cron trigger fires."""
        try:
            if not self._running_jobs.try_claim(job_id):
                if job_id in self._running_jobs:
                    logger.warning(f"Job {job_id} is already running, skipping tick")
                else:
                    logger.warning(
                        f"Concurrency limit reached ({self._running_jobs.limit}), "
                        f"skipping tick for job {job_id}"
                    )
                return

            await self._run_claimed(job_id)
        except Exception as e:
            logger.error(f"Error handling cron tick for job {job_id}: {e}")

    async def _sweep(self) -> int:
        """Dispatch every due job that is not already running.

        Stops at the concurrency ceiling; remaining due jobs wait for the
        next sweep.

        Returns:
            Number of jobs dispatched
        """
        if not self._running:
            return 0

        try:
            candidates = self._repository.find_ready_to_run(utcnow())
        except Exception as e:
            logger.error(f"Failed to query due jobs: {e}")
            return 0

        dispatched = 0
        for job in candidates:
            if job.id in self._running_jobs:
                continue

            if self._running_jobs.is_full():
                logger.warning(
                    f"Concurrency limit reached ({len(self._running_jobs)}/"
                    f"{self._running_jobs.limit}), deferring remaining due jobs"
                )
                break

            if not self._running_jobs.try_claim(job.id):
                continue

            self._spawn(self._run_claimed(job.id))
            dispatched += 1

        if dispatched:
            logger.debug(f"Sweep dispatched {dispatched} job(s)")
        return dispatched

    async def _run_claimed(self, job_id: int) -> Optional[ExecutionResult]:
        """Re-read a claimed job and execute it if it is still due.

        The claim is released on every path.
        """
        claim = self._running_jobs.token(job_id)
        try:
            job = self._repository.get_by_id(job_id)
            if job is None:
                logger.error(f"Job not found: {job_id}")
                return None

            if job.is_running():
                logger.warning(f"Job {job.name} ({job_id}) is marked running in the store, skipping")
                return None

            if not job.enabled:
                logger.debug(f"Job {job.name} ({job_id}) is disabled")
                return None

            if not job.is_ready_to_run(utcnow()):
                logger.debug(f"Job {job.name} ({job_id}) is not ready to run")
                return None

            return await self.execute_job(job)
        except Exception as e:
            logger.error(f"Error preparing execution of job {job_id}: {e}")
            return None
        finally:
            self._running_jobs.release(job_id, claim)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_job(self, job: ScheduledJob) -> ExecutionResult:
        """Execute a job with retries and persist the outcome.

        The caller must hold the job's slot in the running set; it is
        released here on every path.

        Args:
            job: The job to execute

        Returns:
            Final execution result
        """
        claim = self._running_jobs.token(job.id)
        try:
            self._repository.mark_as_running(job.id)

            logger.info(
                f"Starting job: {job.name} ({job.id}) "
                f"{job.service_name}.{job.service_method}"
            )

            result = await self.execute_with_retries(job)

            self._repository.mark_as_completed(
                job.id, result.status, result.duration, result.error
            )
            self._update_next_run(job)

            if result.success:
                logger.info(f"Job finished: {job.name} ({job.id}) in {result.duration}ms")
            else:
                logger.error(
                    f"Job failed: {job.name} ({job.id}) "
                    f"[{result.status.value}] {result.error}"
                )
            return result

        except Exception as e:
            logger.error(f"Unexpected error executing job {job.name} ({job.id}): {e}")
            result = ExecutionResult.failed(str(e))
            try:
                self._repository.mark_as_completed(job.id, JobStatus.ERROR, 0, str(e))
                self._update_next_run(job)
            except Exception as persist_error:
                logger.error(f"Failed to record outcome of job {job.id}: {persist_error}")
            return result

        finally:
            self._running_jobs.release(job.id, claim)

    async def execute_with_retries(self, job: ScheduledJob) -> ExecutionResult:
        """Execute a job up to ``max_retries + 1`` times.

        Waits ``retry_delay`` seconds between attempts and returns the
        first successful result or the last failure.

        Args:
            job: The job to execute

        Returns:
            Execution result
        """
        attempts = max(job.max_retries or 0, 0) + 1
        result = ExecutionResult.failed("Job was not attempted")

        for attempt in range(1, attempts + 1):
            result = await self._executor.execute(job)

            if result.success:
                if attempt > 1:
                    logger.info(f"Job {job.name} succeeded on attempt {attempt}/{attempts}")
                return result

            if attempt < attempts:
                logger.warning(
                    f"Job {job.name} attempt {attempt}/{attempts} failed: {result.error}. "
                    f"Retrying in {job.retry_delay}s"
                )
                await asyncio.sleep(job.retry_delay)

        return result

    def _update_next_run(self, job: ScheduledJob) -> datetime:
        next_run = calculate_next_run(job.schedule, utcnow())
        self._repository.update_next_run(job.id, next_run)
        return next_run

    def _refresh_next_run(self, job: ScheduledJob) -> None:
        """Recompute a pending next run time after a schedule change.

        Jobs that are already due, never scheduled, disabled or running are
        left alone; completion recomputes the time for running ones.
        """
        if not job.enabled or job.is_running() or job.next_run_at is None:
            return
        if job.next_run_at <= utcnow():
            return
        job.next_run_at = self._update_next_run(job)

    # ------------------------------------------------------------------
    # Administrative operations
    # ------------------------------------------------------------------

    async def run_job_now(self, job_id: int) -> ExecutionResult:
        """Run a job immediately (outside of schedule).

        Ignores the schedule and a persisted ``running`` status, but is
        refused while this process is already executing the job or the
        concurrency ceiling is reached.

        Args:
            job_id: ID of the job to run

        Returns:
            Execution result

        Raises:
            JobNotFoundError: If the job does not exist
        """
        job = self._repository.get_by_id(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        if not self._running_jobs.try_claim(job_id):
            if job_id in self._running_jobs:
                message = f"Job {job.name} is already running"
            else:
                message = (
                    f"Maximum concurrent jobs reached ({self._running_jobs.limit})"
                )
            logger.warning(message)
            return ExecutionResult.failed(message)

        logger.info(f"Running job now: {job.name} ({job_id})")
        return await self.execute_job(job)

    def reload_job(self, job_id: int) -> ScheduledJob:
        """Re-read a job definition and re-register its trigger.

        Args:
            job_id: ID of the job to reload

        Returns:
            The reloaded job

        Raises:
            JobNotFoundError: If the job does not exist
        """
        job = self._repository.get_by_id(job_id)
        if job is None:
            self._unschedule_job(job_id)
            raise JobNotFoundError(job_id)

        self._executor.invalidate(job.service_name, job.service_path)
        self._refresh_next_run(job)
        if self._running:
            self._schedule_job(job)
        return job

    def reload_all_jobs(self) -> int:
        """Re-read every job definition and re-register triggers.

        Returns:
            Number of jobs with a registered trigger afterwards
        """
        self._executor.clear_cache()
        if not self._running:
            return 0

        jobs = self._repository.find_enabled()
        enabled_ids = {job.id for job in jobs}

        for job_id in list(self._job_timers - enabled_ids):
            self._unschedule_job(job_id)

        for job in jobs:
            self._refresh_next_run(job)
            self._schedule_job(job)

        logger.info(f"Reloaded {len(self._job_timers)} jobs")
        return len(self._job_timers)

    async def check_stuck_jobs(self) -> int:
        """Force-complete jobs stuck in ``running`` past the threshold.

        Stuck jobs get status ``timeout``, count as a failed run and are
        dropped from the running set so the next sweep can pick them up.

        Returns:
            Number of jobs recovered
        """
        try:
            stuck = self._repository.find_stuck_jobs(
                self._config.stuck_job_threshold, utcnow()
            )
        except Exception as e:
            logger.error(f"Failed to query stuck jobs: {e}")
            return 0

        recovered = 0
        for job in stuck:
            logger.warning(
                f"Stuck job detected: {job.name} ({job.id}), "
                f"running since {job.last_run_at}"
            )
            try:
                self._repository.mark_as_completed(
                    job.id, JobStatus.TIMEOUT, 0, STUCK_JOB_ERROR
                )
            except Exception as e:
                logger.error(f"Failed to recover stuck job {job.id}: {e}")
                continue

            self._running_jobs.discard(job.id)
            recovered += 1

        return recovered

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler status.

        Returns:
            Dictionary with scheduler status information
        """
        return {
            "running": self._running,
            "running_job_ids": self._running_jobs.snapshot(),
            "scheduled_job_count": len(self._job_timers),
            "max_concurrent": self._config.max_concurrent,
        }
