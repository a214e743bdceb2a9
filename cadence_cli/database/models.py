"""
SQLAlchemy models for Cadence CLI database.

A scheduled job carries its own execution record: the last-run fields and
the run/success/error counters are folded into the job row rather than kept
in a separate history table.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Any, Dict

from sqlalchemy import (
    Integer,
    String,
    Boolean,
    DateTime,
    Text,
    JSON,
    Index,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, declarative_base

# Create base class for all models
Base = declarative_base()


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class JobStatus(str, Enum):
    """Outcome of the most recent execution attempt of a job."""

    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"
    RUNNING = "running"
    PENDING = "pending"


class ScheduledJob(Base):
    """
    Scheduled job model.

    Stores:
    - The target to invoke (service name, method, optional explicit path)
    - The cron schedule and retry/timeout policy
    - The outcome of the last execution and lifetime counters
    """

    __tablename__ = "scheduled_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Target
    service_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    service_method: Mapped[str] = mapped_column(String(255), nullable=False)
    service_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    params: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, default=dict)

    # Schedule (cron format: "minute hour day month weekday")
    schedule: Mapped[str] = mapped_column(String(100), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Policy
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    retry_delay: Mapped[int] = mapped_column(Integer, default=60, nullable=False)  # seconds
    timeout: Mapped[int] = mapped_column(Integer, default=300, nullable=False)  # seconds

    # Last execution
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_run_status: Mapped[Optional[JobStatus]] = mapped_column(
        SAEnum(
            JobStatus,
            native_enum=False,
            length=16,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=True,
        index=True,
    )
    last_run_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_run_duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # ms

    # Null means never computed; treated as immediately due
    next_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)

    # Statistics
    run_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    success_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Audit
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    updated_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    def is_ready_to_run(self, now: Optional[datetime] = None) -> bool:
        """
        Check whether the job is due.

        A disabled or running job is never ready. A job whose next run
        was never computed is always ready.

        Args:
            now: Reference time (naive UTC, defaults to current time)
        """
        if not self.enabled:
            return False
        if self.is_running():
            return False
        if self.next_run_at is None:
            return True
        return (now or utcnow()) >= self.next_run_at

    def is_running(self) -> bool:
        return self.last_run_status == JobStatus.RUNNING

    def success_rate(self) -> float:
        """Percentage of runs that succeeded (0 when never run)."""
        if not self.run_count:
            return 0.0
        return (self.success_count / self.run_count) * 100

    def schedule_description(self) -> str:
        """Human readable description of the cron schedule."""
        from cadence_cli.scheduler.schedule import describe_schedule

        return describe_schedule(self.schedule)

    def to_dict(self) -> Dict[str, Any]:
        """Convert job to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "service_name": self.service_name,
            "service_method": self.service_method,
            "service_path": self.service_path,
            "params": self.params or {},
            "schedule": self.schedule,
            "schedule_description": self.schedule_description(),
            "enabled": self.enabled,
            "max_retries": self.max_retries,
            "retry_delay": self.retry_delay,
            "timeout": self.timeout,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run_status": (
                self.last_run_status.value if self.last_run_status else None
            ),
            "last_run_error": self.last_run_error,
            "last_run_duration": self.last_run_duration,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "run_count": self.run_count,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "success_rate": round(self.success_rate(), 2),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
        }

    def __repr__(self) -> str:
        return f"<ScheduledJob id={self.id} name={self.name!r} schedule={self.schedule!r}>"


# Additional indexes for common queries
Index("ix_scheduled_jobs_due", ScheduledJob.enabled, ScheduledJob.next_run_at)
