"""Tests for the ScheduledJob model."""

from datetime import datetime, timedelta

import pytest

from cadence_cli.database.models import JobStatus, ScheduledJob, utcnow


def _job(**overrides) -> ScheduledJob:
    fields = {
        "name": "Nightly cleanup",
        "service_name": "CleanupService",
        "service_method": "run",
        "schedule": "0 0 * * *",
        "enabled": True,
        "run_count": 0,
        "success_count": 0,
        "error_count": 0,
    }
    fields.update(overrides)
    return ScheduledJob(**fields)


class TestIsReadyToRun:
    """Tests for ScheduledJob.is_ready_to_run."""

    def test_disabled_job_never_ready(self) -> None:
        job = _job(enabled=False, next_run_at=None)
        assert job.is_ready_to_run() is False

    def test_null_next_run_is_ready(self) -> None:
        job = _job(next_run_at=None)
        assert job.is_ready_to_run() is True

    def test_running_job_not_ready(self) -> None:
        job = _job(next_run_at=None, last_run_status=JobStatus.RUNNING)
        assert job.is_ready_to_run() is False

    def test_past_next_run_is_ready(self) -> None:
        now = datetime(2024, 1, 1, 12, 0)
        job = _job(next_run_at=now - timedelta(seconds=1))
        assert job.is_ready_to_run(now) is True

    def test_next_run_equal_to_now_is_ready(self) -> None:
        now = datetime(2024, 1, 1, 12, 0)
        job = _job(next_run_at=now)
        assert job.is_ready_to_run(now) is True

    def test_future_next_run_not_ready(self) -> None:
        now = datetime(2024, 1, 1, 12, 0)
        job = _job(next_run_at=now + timedelta(minutes=5))
        assert job.is_ready_to_run(now) is False

    @pytest.mark.parametrize("status", [JobStatus.SUCCESS, JobStatus.ERROR, JobStatus.TIMEOUT])
    def test_finished_statuses_do_not_block(self, status: JobStatus) -> None:
        job = _job(next_run_at=None, last_run_status=status)
        assert job.is_ready_to_run() is True


class TestJobHelpers:
    """Tests for the statistics and description helpers."""

    def test_is_running(self) -> None:
        assert _job(last_run_status=JobStatus.RUNNING).is_running() is True
        assert _job(last_run_status=JobStatus.SUCCESS).is_running() is False
        assert _job(last_run_status=None).is_running() is False

    def test_success_rate_never_run(self) -> None:
        assert _job().success_rate() == 0.0

    def test_success_rate(self) -> None:
        job = _job(run_count=4, success_count=3, error_count=1)
        assert job.success_rate() == 75.0

    def test_schedule_description(self) -> None:
        assert _job(schedule="0 0 * * *").schedule_description() == "Daily at midnight"
        assert _job(schedule="*/5 * * * *").schedule_description() == "Every 5 minutes"

    def test_to_dict(self) -> None:
        now = utcnow()
        job = _job(
            id=7,
            params={"days": 3},
            last_run_status=JobStatus.ERROR,
            last_run_at=now,
            run_count=2,
            success_count=1,
            error_count=1,
        )

        data = job.to_dict()

        assert data["id"] == 7
        assert data["params"] == {"days": 3}
        assert data["last_run_status"] == "error"
        assert data["last_run_at"] == now.isoformat()
        assert data["next_run_at"] is None
        assert data["success_rate"] == 50.0
        assert data["schedule_description"] == "Daily at midnight"

    def test_repr(self) -> None:
        job = _job(id=3)
        assert repr(job) == "<ScheduledJob id=3 name='Nightly cleanup' schedule='0 0 * * *'>"


def test_utcnow_is_naive() -> None:
    assert utcnow().tzinfo is None
