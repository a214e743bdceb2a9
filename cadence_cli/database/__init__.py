"""Persistence for scheduled jobs."""

from cadence_cli.database.connection import Database, get_database
from cadence_cli.database.models import Base, JobStatus, ScheduledJob, utcnow
from cadence_cli.database.repositories import JobRepository

__all__ = [
    "Base",
    "Database",
    "JobRepository",
    "JobStatus",
    "ScheduledJob",
    "get_database",
    "utcnow",
]
