"""Tests for the job scheduler."""

import asyncio
import logging
from datetime import timedelta
from typing import List
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cadence_cli.config import SchedulerConfig
from cadence_cli.database.models import JobStatus, utcnow
from cadence_cli.database.repositories import JobRepository
from cadence_cli.scheduler.exceptions import JobNotFoundError
from cadence_cli.scheduler.job_executor import ExecutionResult, JobExecutor
from cadence_cli.scheduler.job_scheduler import (
    REAPER_JOB_ID,
    STUCK_JOB_ERROR,
    SWEEP_JOB_ID,
    JobScheduler,
    RunningJobs,
)


def _config(**overrides) -> SchedulerConfig:
    # Long intervals so background timers never fire during a test
    fields = {
        "check_interval_ms": 3_600_000,
        "stuck_check_interval": 3600,
        "max_concurrent": 5,
    }
    fields.update(overrides)
    return SchedulerConfig(**fields)


@pytest.fixture
def executor() -> MagicMock:
    executor = MagicMock(spec=JobExecutor)
    executor.execute = AsyncMock(return_value=ExecutionResult(success=True, duration=5))
    return executor


@pytest.fixture
def scheduler(repository: JobRepository, executor: MagicMock) -> JobScheduler:
    return JobScheduler(repository, executor, _config())


async def _drain(scheduler: JobScheduler) -> None:
    """Wait for every execution the scheduler dispatched."""
    while scheduler._tasks:
        await asyncio.gather(*list(scheduler._tasks))


def _timer_ids(scheduler: JobScheduler) -> List[str]:
    return sorted(job.id for job in scheduler._scheduler.get_jobs())


class TestRunningJobs:
    """Tests for the bounded running set."""

    def test_claim_and_release(self) -> None:
        running = RunningJobs(2)

        assert running.try_claim(1) is True
        assert 1 in running
        assert len(running) == 1

        running.release(1)
        assert 1 not in running

    def test_same_id_claimed_once(self) -> None:
        running = RunningJobs(5)

        assert running.try_claim(1) is True
        assert running.try_claim(1) is False
        assert len(running) == 1

    def test_ceiling(self) -> None:
        running = RunningJobs(2)

        assert running.try_claim(1) is True
        assert running.try_claim(2) is True
        assert running.is_full() is True
        assert running.try_claim(3) is False
        assert running.snapshot() == [1, 2]

    def test_discard(self) -> None:
        running = RunningJobs(2)
        running.try_claim(7)

        assert running.discard(7) is True
        assert running.discard(7) is False

    def test_release_unknown_is_noop(self) -> None:
        running = RunningJobs(1)
        running.release(99)
        assert len(running) == 0

    def test_release_with_stale_token_keeps_newer_claim(self) -> None:
        running = RunningJobs(2)
        running.try_claim(1)
        stale = running.token(1)

        running.discard(1)
        running.try_claim(1)
        running.release(1, stale)

        assert 1 in running
        running.release(1, running.token(1))
        assert 1 not in running

    def test_token_absent_without_claim(self) -> None:
        assert RunningJobs(1).token(7) is None


class TestExecuteWithRetries:
    """Tests for the retry loop."""

    @pytest.mark.asyncio
    async def test_always_failing_runs_max_retries_plus_one(
        self, scheduler: JobScheduler, executor: MagicMock, make_job
    ) -> None:
        job = make_job(max_retries=2)
        failures = [ExecutionResult.failed(f"attempt {n}") for n in (1, 2, 3)]
        executor.execute.side_effect = failures

        result = await scheduler.execute_with_retries(job)

        assert executor.execute.await_count == 3
        assert result is failures[-1]
        assert result.success is False

    @pytest.mark.asyncio
    async def test_success_on_second_attempt(
        self, scheduler: JobScheduler, executor: MagicMock, make_job
    ) -> None:
        job = make_job(max_retries=2)
        success = ExecutionResult(success=True, duration=1)
        executor.execute.side_effect = [ExecutionResult.failed("first"), success]

        result = await scheduler.execute_with_retries(job)

        assert executor.execute.await_count == 2
        assert result is success

    @pytest.mark.asyncio
    async def test_no_retries(
        self, scheduler: JobScheduler, executor: MagicMock, make_job
    ) -> None:
        job = make_job(max_retries=0)
        executor.execute.return_value = ExecutionResult.failed("nope")

        result = await scheduler.execute_with_retries(job)

        assert executor.execute.await_count == 1
        assert result.error == "nope"

    @pytest.mark.asyncio
    async def test_sleeps_retry_delay_between_attempts(
        self, scheduler: JobScheduler, executor: MagicMock, make_job
    ) -> None:
        job = make_job(max_retries=2, retry_delay=7)
        executor.execute.return_value = ExecutionResult.failed("nope")

        with patch(
            "cadence_cli.scheduler.job_scheduler.asyncio.sleep", new_callable=AsyncMock
        ) as mock_sleep:
            await scheduler.execute_with_retries(job)

        assert mock_sleep.await_count == 2
        mock_sleep.assert_awaited_with(7)


class TestExecuteJob:
    """Tests for execute_job bookkeeping."""

    @pytest.mark.asyncio
    async def test_success_records_outcome(
        self, scheduler: JobScheduler, repository: JobRepository, make_job
    ) -> None:
        job = make_job()
        scheduler.running_jobs.try_claim(job.id)
        before = utcnow()

        result = await scheduler.execute_job(job)

        stored = repository.get_by_id(job.id)
        assert result.success is True
        assert stored.last_run_status == JobStatus.SUCCESS
        assert stored.last_run_duration == 5
        assert stored.last_run_at >= before
        assert stored.run_count == 1
        assert stored.success_count == 1
        assert stored.error_count == 0
        assert stored.next_run_at > before
        assert job.id not in scheduler.running_jobs

    @pytest.mark.asyncio
    async def test_failure_records_error(
        self,
        scheduler: JobScheduler,
        executor: MagicMock,
        repository: JobRepository,
        make_job,
    ) -> None:
        job = make_job(max_retries=1)
        executor.execute.return_value = ExecutionResult.failed("boom")

        result = await scheduler.execute_job(job)

        stored = repository.get_by_id(job.id)
        assert result.success is False
        assert stored.last_run_status == JobStatus.ERROR
        assert stored.last_run_error == "boom"
        # Retries are one execution
        assert stored.run_count == 1
        assert stored.error_count == 1

    @pytest.mark.asyncio
    async def test_timeout_counts_as_error(
        self,
        scheduler: JobScheduler,
        executor: MagicMock,
        repository: JobRepository,
        make_job,
    ) -> None:
        job = make_job()
        executor.execute.return_value = ExecutionResult(
            success=False, error="Job execution timeout after 5s", status=JobStatus.TIMEOUT
        )

        await scheduler.execute_job(job)

        stored = repository.get_by_id(job.id)
        assert stored.last_run_status == JobStatus.TIMEOUT
        assert stored.error_count == 1
        assert stored.run_count == stored.success_count + stored.error_count

    @pytest.mark.asyncio
    async def test_unexpected_error_is_recorded(
        self,
        scheduler: JobScheduler,
        executor: MagicMock,
        repository: JobRepository,
        make_job,
    ) -> None:
        job = make_job()
        scheduler.running_jobs.try_claim(job.id)
        executor.execute.side_effect = RuntimeError("executor broke")

        result = await scheduler.execute_job(job)

        stored = repository.get_by_id(job.id)
        assert result.success is False
        assert result.error == "executor broke"
        assert stored.last_run_status == JobStatus.ERROR
        assert stored.error_count == 1
        assert job.id not in scheduler.running_jobs

    @pytest.mark.asyncio
    async def test_counters_balance_over_many_runs(
        self,
        scheduler: JobScheduler,
        executor: MagicMock,
        repository: JobRepository,
        make_job,
    ) -> None:
        job = make_job()
        executor.execute.side_effect = [
            ExecutionResult(success=True),
            ExecutionResult.failed("x"),
            ExecutionResult(success=False, status=JobStatus.TIMEOUT),
            ExecutionResult(success=True),
        ]

        for _ in range(4):
            await scheduler.execute_job(job)

        stored = repository.get_by_id(job.id)
        assert stored.run_count == 4
        assert stored.success_count == 2
        assert stored.error_count == 2


class TestSweep:
    """Tests for the periodic due-job sweep."""

    @pytest.mark.asyncio
    async def test_sweep_before_start_does_nothing(
        self, scheduler: JobScheduler, executor: MagicMock, make_job
    ) -> None:
        make_job()

        assert await scheduler._sweep() == 0
        executor.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_disabled_jobs_never_dispatched(
        self, scheduler: JobScheduler, executor: MagicMock, make_job
    ) -> None:
        enabled = make_job(name="enabled")
        make_job(name="disabled", enabled=False)

        await scheduler.start()
        try:
            dispatched = await scheduler._sweep()
            await _drain(scheduler)
        finally:
            await scheduler.stop()

        assert dispatched == 1
        executed = [call.args[0].id for call in executor.execute.await_args_list]
        assert executed == [enabled.id]

    @pytest.mark.asyncio
    async def test_null_next_run_due_on_first_sweep(
        self,
        scheduler: JobScheduler,
        executor: MagicMock,
        repository: JobRepository,
        make_job,
    ) -> None:
        job = make_job(schedule="*/5 * * * *", next_run_at=None)

        await scheduler.start()
        try:
            before = utcnow()
            assert await scheduler._sweep() == 1
            await _drain(scheduler)

            stored = repository.get_by_id(job.id)
            assert stored.next_run_at > before
            assert stored.next_run_at <= before + timedelta(minutes=5)
            assert stored.next_run_at.minute % 5 == 0
            assert stored.next_run_at.second == 0

            # Not due again until the next boundary
            assert await scheduler._sweep() == 0
        finally:
            await scheduler.stop()

        assert executor.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_ceiling_limits_dispatch(
        self, repository: JobRepository, executor: MagicMock, make_job
    ) -> None:
        release = asyncio.Event()
        active = 0
        peak = 0

        async def slow_execute(job):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await release.wait()
            active -= 1
            return ExecutionResult(success=True)

        executor.execute.side_effect = slow_execute
        for n in range(5):
            make_job(name=f"job-{n}")

        scheduler = JobScheduler(repository, executor, _config(max_concurrent=2))
        await scheduler.start()
        try:
            assert await scheduler._sweep() == 2
            await asyncio.sleep(0)
            assert len(scheduler.running_jobs) == 2

            # Full: nothing else is dispatched while both slots are held
            assert await scheduler._sweep() == 0

            release.set()
            await _drain(scheduler)
            assert len(scheduler.running_jobs) == 0

            assert await scheduler._sweep() == 2
            await _drain(scheduler)
        finally:
            await scheduler.stop()

        assert peak == 2
        assert executor.execute.await_count == 4

    @pytest.mark.asyncio
    async def test_skips_jobs_in_running_set(
        self, scheduler: JobScheduler, executor: MagicMock, make_job
    ) -> None:
        busy = make_job(name="busy")
        idle = make_job(name="idle")
        scheduler.running_jobs.try_claim(busy.id)

        await scheduler.start()
        try:
            assert await scheduler._sweep() == 1
            await _drain(scheduler)
        finally:
            await scheduler.stop()

        executed = [call.args[0].id for call in executor.execute.await_args_list]
        assert executed == [idle.id]
        assert busy.id in scheduler.running_jobs

    @pytest.mark.asyncio
    async def test_dispatch_rechecks_store(
        self,
        scheduler: JobScheduler,
        executor: MagicMock,
        repository: JobRepository,
        make_job,
    ) -> None:
        job = make_job()

        await scheduler.start()
        try:
            # Disabled between the sweep query and the dispatched task
            with patch.object(
                repository, "find_ready_to_run", return_value=[repository.get_by_id(job.id)]
            ):
                repository.set_enabled(job.id, False)
                assert await scheduler._sweep() == 1
            await _drain(scheduler)
        finally:
            await scheduler.stop()

        executor.execute.assert_not_awaited()
        assert job.id not in scheduler.running_jobs

    @pytest.mark.asyncio
    async def test_query_failure_is_logged(
        self, scheduler: JobScheduler, repository: JobRepository, caplog
    ) -> None:
        await scheduler.start()
        try:
            with patch.object(
                repository, "find_ready_to_run", side_effect=RuntimeError("db down")
            ):
                assert await scheduler._sweep() == 0
        finally:
            await scheduler.stop()

        assert "Failed to query due jobs" in caplog.text


class TestCronTick:
    """Tests for per-job cron trigger callbacks."""

    @pytest.mark.asyncio
    async def test_tick_runs_due_job(
        self, scheduler: JobScheduler, executor: MagicMock, make_job
    ) -> None:
        job = make_job(next_run_at=utcnow() - timedelta(seconds=1))

        await scheduler._on_cron_tick(job.id)

        executor.execute.assert_awaited_once()
        assert job.id not in scheduler.running_jobs

    @pytest.mark.asyncio
    async def test_tick_skips_job_not_yet_due(
        self, scheduler: JobScheduler, executor: MagicMock, make_job
    ) -> None:
        job = make_job(next_run_at=utcnow() + timedelta(hours=1))

        await scheduler._on_cron_tick(job.id)

        executor.execute.assert_not_awaited()
        assert job.id not in scheduler.running_jobs

    @pytest.mark.asyncio
    async def test_tick_skips_running_job(
        self, scheduler: JobScheduler, executor: MagicMock, make_job
    ) -> None:
        job = make_job()
        scheduler.running_jobs.try_claim(job.id)

        await scheduler._on_cron_tick(job.id)

        executor.execute.assert_not_awaited()
        # The other holder keeps its claim
        assert job.id in scheduler.running_jobs

    @pytest.mark.asyncio
    async def test_tick_respects_ceiling(
        self, repository: JobRepository, executor: MagicMock, make_job
    ) -> None:
        job = make_job()
        scheduler = JobScheduler(repository, executor, _config(max_concurrent=1))
        scheduler.running_jobs.try_claim(999)

        await scheduler._on_cron_tick(job.id)

        executor.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tick_for_deleted_job(
        self, scheduler: JobScheduler, executor: MagicMock, caplog
    ) -> None:
        await scheduler._on_cron_tick(12345)

        executor.execute.assert_not_awaited()
        assert "Job not found: 12345" in caplog.text
        assert 12345 not in scheduler.running_jobs


class TestRunJobNow:
    """Tests for manual execution."""

    @pytest.mark.asyncio
    async def test_unknown_job(self, scheduler: JobScheduler) -> None:
        with pytest.raises(JobNotFoundError):
            await scheduler.run_job_now(9999)

    @pytest.mark.asyncio
    async def test_ignores_schedule(
        self, scheduler: JobScheduler, executor: MagicMock, make_job
    ) -> None:
        job = make_job(next_run_at=utcnow() + timedelta(days=1))

        result = await scheduler.run_job_now(job.id)

        assert result.success is True
        executor.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_proceeds_when_persisted_running(
        self,
        scheduler: JobScheduler,
        executor: MagicMock,
        repository: JobRepository,
        make_job,
    ) -> None:
        job = make_job(last_run_status=JobStatus.RUNNING, last_run_at=utcnow())

        result = await scheduler.run_job_now(job.id)

        assert result.success is True
        executor.execute.assert_awaited_once()
        assert repository.get_by_id(job.id).last_run_status == JobStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_blocked_when_in_running_set(
        self, scheduler: JobScheduler, executor: MagicMock, make_job
    ) -> None:
        job = make_job(name="busy")
        scheduler.running_jobs.try_claim(job.id)

        result = await scheduler.run_job_now(job.id)

        assert result.success is False
        assert result.error == "Job busy is already running"
        executor.execute.assert_not_awaited()
        assert job.id in scheduler.running_jobs

    @pytest.mark.asyncio
    async def test_blocked_at_ceiling(
        self, repository: JobRepository, executor: MagicMock, make_job
    ) -> None:
        job = make_job()
        scheduler = JobScheduler(repository, executor, _config(max_concurrent=1))
        scheduler.running_jobs.try_claim(999)

        result = await scheduler.run_job_now(job.id)

        assert result.success is False
        assert "Maximum concurrent jobs reached (1)" in result.error
        executor.execute.assert_not_awaited()


class TestStuckJobs:
    """Tests for the stuck-job reaper."""

    @pytest.mark.asyncio
    async def test_stuck_job_is_timed_out(
        self, scheduler: JobScheduler, repository: JobRepository, make_job
    ) -> None:
        job = make_job(
            last_run_status=JobStatus.RUNNING,
            last_run_at=utcnow() - timedelta(minutes=45),
            next_run_at=utcnow() - timedelta(minutes=50),
        )
        scheduler.running_jobs.try_claim(job.id)

        recovered = await scheduler.check_stuck_jobs()

        stored = repository.get_by_id(job.id)
        assert recovered == 1
        assert stored.last_run_status == JobStatus.TIMEOUT
        assert stored.last_run_error == STUCK_JOB_ERROR
        assert stored.run_count == 1
        assert stored.error_count == 1
        assert job.id not in scheduler.running_jobs

        # Eligible again on the next sweep
        assert [j.id for j in repository.find_ready_to_run()] == [job.id]

    @pytest.mark.asyncio
    async def test_recent_running_job_left_alone(
        self, scheduler: JobScheduler, repository: JobRepository, make_job
    ) -> None:
        job = make_job(
            last_run_status=JobStatus.RUNNING,
            last_run_at=utcnow() - timedelta(minutes=5),
        )

        assert await scheduler.check_stuck_jobs() == 0
        assert repository.get_by_id(job.id).last_run_status == JobStatus.RUNNING

    @pytest.mark.asyncio
    async def test_threshold_from_config(
        self, repository: JobRepository, executor: MagicMock, make_job
    ) -> None:
        make_job(
            last_run_status=JobStatus.RUNNING,
            last_run_at=utcnow() - timedelta(minutes=5),
        )
        scheduler = JobScheduler(repository, executor, _config(stuck_job_threshold=2))

        assert await scheduler.check_stuck_jobs() == 1

    @pytest.mark.asyncio
    async def test_late_finish_keeps_newer_claim(
        self, scheduler: JobScheduler, executor: MagicMock, make_job
    ) -> None:
        job = make_job()
        gate = asyncio.Event()

        async def slow(_job):
            await gate.wait()
            return ExecutionResult(success=True, duration=1)

        executor.execute = AsyncMock(side_effect=slow)
        assert scheduler.running_jobs.try_claim(job.id)
        first = asyncio.ensure_future(scheduler.execute_job(job))
        await asyncio.sleep(0)

        # Reaper drops the claim and a new dispatch takes it
        scheduler.running_jobs.discard(job.id)
        assert scheduler.running_jobs.try_claim(job.id)

        gate.set()
        await first

        assert job.id in scheduler.running_jobs


class TestLifecycle:
    """Tests for start, stop and reload."""

    @pytest.mark.asyncio
    async def test_start_registers_timers(self, scheduler: JobScheduler, make_job) -> None:
        first = make_job()
        second = make_job(schedule="0 0 * * *")
        make_job(enabled=False)

        await scheduler.start()
        try:
            assert scheduler.is_running is True
            assert _timer_ids(scheduler) == sorted(
                [str(first.id), str(second.id), SWEEP_JOB_ID, REAPER_JOB_ID]
            )
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_start_twice_no_duplicate_timers(
        self, scheduler: JobScheduler, make_job, caplog
    ) -> None:
        make_job()
        make_job()

        await scheduler.start()
        try:
            timers = _timer_ids(scheduler)
            with caplog.at_level(logging.WARNING):
                await scheduler.start()

            assert _timer_ids(scheduler) == timers
            assert scheduler.get_status()["scheduled_job_count"] == 2
            assert "Scheduler already running" in caplog.text
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_start_disabled_by_config(
        self, repository: JobRepository, executor: MagicMock
    ) -> None:
        scheduler = JobScheduler(repository, executor, _config(enabled=False))

        await scheduler.start()

        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_invalid_schedule_gets_no_timer(
        self, scheduler: JobScheduler, make_job
    ) -> None:
        good = make_job()
        make_job(schedule="not a cron")

        await scheduler.start()
        try:
            assert scheduler.get_status()["scheduled_job_count"] == 1
            assert str(good.id) in _timer_ids(scheduler)
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_start_does_not_compute_next_run(
        self, scheduler: JobScheduler, repository: JobRepository, make_job
    ) -> None:
        job = make_job(next_run_at=None)

        await scheduler.start()
        await scheduler.stop()

        assert repository.get_by_id(job.id).next_run_at is None

    @pytest.mark.asyncio
    async def test_stop(self, scheduler: JobScheduler, make_job) -> None:
        make_job()
        await scheduler.start()

        await scheduler.stop()
        await scheduler.stop()

        status = scheduler.get_status()
        assert status["running"] is False
        assert status["scheduled_job_count"] == 0

    @pytest.mark.asyncio
    async def test_reload_job_removes_disabled_timer(
        self, scheduler: JobScheduler, repository: JobRepository, make_job
    ) -> None:
        job = make_job()
        await scheduler.start()
        try:
            repository.set_enabled(job.id, False)

            reloaded = scheduler.reload_job(job.id)

            assert reloaded.enabled is False
            assert str(job.id) not in _timer_ids(scheduler)
            assert scheduler.get_status()["scheduled_job_count"] == 0
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_reload_job_picks_up_new_schedule(
        self, scheduler: JobScheduler, repository: JobRepository, make_job
    ) -> None:
        job = make_job(schedule="0 0 * * *")
        await scheduler.start()
        try:
            repository.update(job.id, schedule="*/10 * * * *")

            scheduler.reload_job(job.id)

            trigger = scheduler._scheduler.get_job(str(job.id)).trigger
            fields = {f.name: str(f) for f in trigger.fields}
            assert fields["minute"] == "*/10"
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_reload_job_recomputes_pending_next_run(
        self, scheduler: JobScheduler, repository: JobRepository, make_job
    ) -> None:
        job = make_job(schedule="0 0 * * *", next_run_at=utcnow() + timedelta(hours=20))
        await scheduler.start()
        try:
            repository.update(job.id, schedule="*/5 * * * *")

            reloaded = scheduler.reload_job(job.id)

            stored = repository.get_by_id(job.id).next_run_at
            assert utcnow() < stored <= utcnow() + timedelta(minutes=5)
            assert stored.minute % 5 == 0
            assert reloaded.next_run_at == stored
        finally:
            await scheduler.stop()

    def test_reload_job_keeps_due_next_run(
        self, scheduler: JobScheduler, repository: JobRepository, make_job
    ) -> None:
        due = utcnow() - timedelta(minutes=1)
        job = make_job(next_run_at=due)
        fresh = make_job()

        scheduler.reload_job(job.id)
        scheduler.reload_job(fresh.id)

        assert repository.get_by_id(job.id).next_run_at == due
        assert repository.get_by_id(fresh.id).next_run_at is None

    def test_reload_job_leaves_running_job_alone(
        self, scheduler: JobScheduler, repository: JobRepository, make_job
    ) -> None:
        later = utcnow() + timedelta(hours=20)
        job = make_job(
            schedule="*/5 * * * *",
            next_run_at=later,
            last_run_status=JobStatus.RUNNING,
            last_run_at=utcnow(),
        )

        scheduler.reload_job(job.id)

        assert repository.get_by_id(job.id).next_run_at == later

    def test_reload_job_unknown(self, scheduler: JobScheduler) -> None:
        with pytest.raises(JobNotFoundError):
            scheduler.reload_job(9999)

    def test_reload_job_invalidates_target(
        self, scheduler: JobScheduler, executor: MagicMock, make_job
    ) -> None:
        job = make_job(service_name="ReportService", service_path="reports.py")

        scheduler.reload_job(job.id)

        executor.invalidate.assert_called_once_with("ReportService", "reports.py")

    def test_reload_all_when_stopped(self, scheduler: JobScheduler, executor: MagicMock) -> None:
        assert scheduler.reload_all_jobs() == 0
        executor.clear_cache.assert_called_once()

    @pytest.mark.asyncio
    async def test_reload_all_jobs(
        self, scheduler: JobScheduler, repository: JobRepository, make_job
    ) -> None:
        kept = make_job()
        dropped = make_job()
        await scheduler.start()
        try:
            repository.set_enabled(dropped.id, False)
            added = make_job()

            assert scheduler.reload_all_jobs() == 2

            ids = _timer_ids(scheduler)
            assert str(kept.id) in ids
            assert str(added.id) in ids
            assert str(dropped.id) not in ids
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_reload_all_recomputes_pending_next_run(
        self, scheduler: JobScheduler, repository: JobRepository, make_job
    ) -> None:
        job = make_job(schedule="0 0 * * *", next_run_at=utcnow() + timedelta(hours=20))
        await scheduler.start()
        try:
            repository.update(job.id, schedule="* * * * *")

            scheduler.reload_all_jobs()

            stored = repository.get_by_id(job.id).next_run_at
            assert stored <= utcnow() + timedelta(minutes=1)
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_auto_start(self, repository: JobRepository, executor: MagicMock) -> None:
        scheduler = JobScheduler(repository, executor, _config(auto_start=True))
        await asyncio.sleep(0)

        try:
            assert scheduler.is_running is True
        finally:
            await scheduler.stop()

    def test_auto_start_without_loop(
        self, repository: JobRepository, executor: MagicMock, caplog
    ) -> None:
        with caplog.at_level(logging.WARNING):
            scheduler = JobScheduler(repository, executor, _config(auto_start=True))

        assert scheduler.is_running is False
        assert "no event loop is running" in caplog.text

    def test_get_status(self, repository: JobRepository, executor: MagicMock) -> None:
        scheduler = JobScheduler(repository, executor, _config(max_concurrent=3))
        scheduler.running_jobs.try_claim(4)
        scheduler.running_jobs.try_claim(2)

        assert scheduler.get_status() == {
            "running": False,
            "running_job_ids": [2, 4],
            "scheduled_job_count": 0,
            "max_concurrent": 3,
        }
