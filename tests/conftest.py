"""Shared fixtures for Cadence tests."""

from typing import Any, Callable

import pytest

from cadence_cli.database.connection import Database
from cadence_cli.database.models import ScheduledJob
from cadence_cli.database.repositories import JobRepository


@pytest.fixture
def database() -> Database:
    """In-memory database with tables created."""
    db = Database("sqlite://")
    db.create_tables()
    yield db
    db.dispose()


@pytest.fixture
def repository(database: Database) -> JobRepository:
    return JobRepository(database)


@pytest.fixture
def make_job(repository: JobRepository) -> Callable[..., ScheduledJob]:
    """Factory creating persisted jobs with test-friendly defaults."""

    def _make_job(**overrides: Any) -> ScheduledJob:
        fields = {
            "name": "Test Job",
            "service_name": "TestService",
            "service_method": "run",
            "schedule": "*/5 * * * *",
            "max_retries": 0,
            "retry_delay": 0,
            "timeout": 5,
        }
        fields.update(overrides)
        return repository.create(**fields)

    return _make_job
