"""Database repositories for Cadence CLI.

Provides scheduling-specific lookups and status transitions over the
``scheduled_jobs`` table.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any, Union

from sqlalchemy import or_, text

from cadence_cli.database.connection import Database
from cadence_cli.database.models import ScheduledJob, JobStatus, utcnow

logger = logging.getLogger(__name__)


class JobRepository:
    """
    Repository for scheduled job persistence.

    Every method opens its own session and commits it, so each call is an
    independent statement. Counter increments are issued as
    ``column = column + 1`` updates so concurrent completions never lose
    an increment.
    """

    def __init__(self, database: Database):
        """
        Initialize repository with a database handle.

        Args:
            database: Database handle
        """
        self.database = database

    # ------------------------------------------------------------------
    # Generic CRUD
    # ------------------------------------------------------------------

    def create(self, **fields: Any) -> ScheduledJob:
        """
        Create a new job in database.

        Args:
            **fields: ScheduledJob column values

        Returns:
            Created ScheduledJob instance
        """
        unknown = [key for key in fields if not hasattr(ScheduledJob, key)]
        if unknown:
            raise ValueError(f"Unknown job fields: {', '.join(sorted(unknown))}")

        fields.setdefault("params", {})
        with self.database.session() as session:
            db_job = ScheduledJob(**fields)
            session.add(db_job)
            session.flush()
            session.refresh(db_job)
            return db_job

    def get_by_id(self, job_id: int) -> Optional[ScheduledJob]:
        """
        Get a job by its ID.

        Args:
            job_id: Job ID

        Returns:
            ScheduledJob if found, None otherwise
        """
        with self.database.session() as session:
            return session.query(ScheduledJob).filter(ScheduledJob.id == job_id).first()

    def find_all(self) -> List[ScheduledJob]:
        """
        Get all jobs from database, ordered by ID.

        Returns:
            List of all scheduled jobs
        """
        with self.database.session() as session:
            return session.query(ScheduledJob).order_by(ScheduledJob.id).all()

    def find_by(self, **conditions: Any) -> List[ScheduledJob]:
        """
        Find jobs matching all given column values.

        Args:
            **conditions: Column name to value equality conditions

        Returns:
            Matching jobs ordered by ID
        """
        with self.database.session() as session:
            return (
                session.query(ScheduledJob)
                .filter_by(**conditions)
                .order_by(ScheduledJob.id)
                .all()
            )

    def update(self, job_id: int, **fields: Any) -> Optional[ScheduledJob]:
        """
        Update a job.

        Args:
            job_id: ID of the job to update
            **fields: Attributes to update

        Returns:
            Updated ScheduledJob or None if not found
        """
        with self.database.session() as session:
            db_job = session.query(ScheduledJob).filter(ScheduledJob.id == job_id).first()
            if not db_job:
                return None

            for key, value in fields.items():
                if hasattr(db_job, key):
                    setattr(db_job, key, value)
                else:
                    logger.warning(f"Ignoring unknown job field: {key}")

            session.flush()
            session.refresh(db_job)
            return db_job

    def delete(self, job_id: int) -> bool:
        """
        Delete a job.

        Args:
            job_id: ID of the job to delete

        Returns:
            True if deleted, False if not found
        """
        with self.database.session() as session:
            db_job = session.query(ScheduledJob).filter(ScheduledJob.id == job_id).first()
            if not db_job:
                return False

            session.delete(db_job)
            return True

    def execute_raw(
        self,
        sql: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Union[List[Any], int]:
        """
        Execute a raw SQL statement.

        Args:
            sql: SQL text with ``:name`` placeholders
            params: Bound parameter values

        Returns:
            Result rows for queries, affected row count otherwise
        """
        with self.database.session() as session:
            result = session.execute(text(sql), params or {})
            if result.returns_rows:
                return list(result.fetchall())
            return result.rowcount

    # ------------------------------------------------------------------
    # Scheduling lookups
    # ------------------------------------------------------------------

    def find_ready_to_run(self, now: Optional[datetime] = None) -> List[ScheduledJob]:
        """
        Find jobs that are due.

        A job is due when it is enabled, not currently running, and its next
        run time is unset or not in the future. Jobs that were never scheduled
        come first, then by next run time ascending.

        Args:
            now: Reference time (naive UTC, defaults to current time)

        Returns:
            Due jobs in dispatch order
        """
        now = now or utcnow()
        with self.database.session() as session:
            return (
                session.query(ScheduledJob)
                .filter(
                    ScheduledJob.enabled.is_(True),
                    or_(
                        ScheduledJob.next_run_at.is_(None),
                        ScheduledJob.next_run_at <= now,
                    ),
                    or_(
                        ScheduledJob.last_run_status.is_(None),
                        ScheduledJob.last_run_status != JobStatus.RUNNING,
                    ),
                )
                .order_by(ScheduledJob.next_run_at.asc().nulls_first(), ScheduledJob.id)
                .all()
            )

    def find_enabled(self) -> List[ScheduledJob]:
        """
        Get all enabled jobs.

        Returns:
            List of enabled scheduled jobs
        """
        with self.database.session() as session:
            return (
                session.query(ScheduledJob)
                .filter(ScheduledJob.enabled.is_(True))
                .order_by(ScheduledJob.id)
                .all()
            )

    def find_by_service(self, service_name: str) -> List[ScheduledJob]:
        with self.database.session() as session:
            return (
                session.query(ScheduledJob)
                .filter(ScheduledJob.service_name == service_name)
                .order_by(ScheduledJob.id)
                .all()
            )

    def find_by_last_status(self, status: JobStatus) -> List[ScheduledJob]:
        with self.database.session() as session:
            return (
                session.query(ScheduledJob)
                .filter(ScheduledJob.last_run_status == status)
                .order_by(ScheduledJob.id)
                .all()
            )

    def find_stuck_jobs(
        self,
        minutes: int,
        now: Optional[datetime] = None,
    ) -> List[ScheduledJob]:
        """
        Find jobs marked running for longer than a threshold.

        Args:
            minutes: Threshold in minutes
            now: Reference time (naive UTC, defaults to current time)

        Returns:
            Jobs whose running status started before ``now - minutes``
        """
        threshold = (now or utcnow()) - timedelta(minutes=minutes)
        with self.database.session() as session:
            return (
                session.query(ScheduledJob)
                .filter(
                    ScheduledJob.last_run_status == JobStatus.RUNNING,
                    ScheduledJob.last_run_at < threshold,
                )
                .order_by(ScheduledJob.id)
                .all()
            )

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def _update_columns(self, job_id: int, values: Dict[Any, Any]) -> bool:
        values[ScheduledJob.updated_at] = utcnow()
        with self.database.session() as session:
            updated = (
                session.query(ScheduledJob)
                .filter(ScheduledJob.id == job_id)
                .update(values, synchronize_session=False)
            )
            return updated > 0

    def mark_as_running(self, job_id: int) -> bool:
        """
        Mark a job as running and stamp its start time.

        Args:
            job_id: Job ID

        Returns:
            True if the job exists
        """
        return self._update_columns(job_id, {
            ScheduledJob.last_run_status: JobStatus.RUNNING,
            ScheduledJob.last_run_at: utcnow(),
            ScheduledJob.last_run_error: None,
        })

    def mark_as_completed(
        self,
        job_id: int,
        status: JobStatus,
        duration: Optional[int] = None,
        error: Optional[str] = None,
    ) -> bool:
        """
        Record the outcome of an execution and bump the counters.

        ``run_count`` always increments; ``success_count`` for a success,
        ``error_count`` for any other outcome (errors and timeouts alike).

        Args:
            job_id: Job ID
            status: Final status of the execution
            duration: Execution duration in milliseconds
            error: Error message for failed executions

        Returns:
            True if the job exists
        """
        values: Dict[Any, Any] = {
            ScheduledJob.last_run_status: status,
            ScheduledJob.last_run_duration: duration,
            ScheduledJob.last_run_error: error,
            ScheduledJob.run_count: ScheduledJob.run_count + 1,
        }
        if status == JobStatus.SUCCESS:
            values[ScheduledJob.success_count] = ScheduledJob.success_count + 1
        else:
            values[ScheduledJob.error_count] = ScheduledJob.error_count + 1

        return self._update_columns(job_id, values)

    def update_execution_status(
        self,
        job_id: int,
        status: JobStatus,
        error: Optional[str] = None,
        duration: Optional[int] = None,
    ) -> bool:
        """Set the last-run status fields without touching the counters."""
        values: Dict[Any, Any] = {
            ScheduledJob.last_run_status: status,
            ScheduledJob.last_run_error: error,
        }
        if duration is not None:
            values[ScheduledJob.last_run_duration] = duration

        return self._update_columns(job_id, values)

    def update_next_run(self, job_id: int, next_run_at: Optional[datetime]) -> bool:
        return self._update_columns(job_id, {ScheduledJob.next_run_at: next_run_at})

    def set_enabled(self, job_id: int, enabled: bool) -> bool:
        return self._update_columns(job_id, {ScheduledJob.enabled: enabled})

    def reset_statistics(self, job_id: int) -> bool:
        """
        Zero the counters and clear the last-run fields.

        Args:
            job_id: Job ID

        Returns:
            True if the job exists
        """
        return self._update_columns(job_id, {
            ScheduledJob.run_count: 0,
            ScheduledJob.success_count: 0,
            ScheduledJob.error_count: 0,
            ScheduledJob.last_run_at: None,
            ScheduledJob.last_run_status: None,
            ScheduledJob.last_run_error: None,
            ScheduledJob.last_run_duration: None,
        })
