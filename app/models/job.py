"""
Job model for the background job queue.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import String, Text, Integer, DateTime, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, JSONType, utcnow


class JobStatus(str, Enum):
    """Lifecycle of a queued job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


class JobKind(str, Enum):
    """Job kinds produced or consumed by the Google sync pipeline."""

    GMAIL_SYNC = "google_gmail_sync"
    CALENDAR_SYNC = "google_calendar_sync"
    NORMALIZE_EMAIL = "normalize_google_email"
    NORMALIZE_EVENT = "normalize_google_event"


class Job(Base):
    """
    A unit of background work.

    Sync jobs are consumed by app.tasks.job_runner; normalize jobs are handed
    off to the normalization stage and never run here.
    """

    __tablename__ = "jobs"
    __table_args__ = (
        Index("idx_jobs_status_created", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
    )
    kind: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=JobStatus.QUEUED.value,
    )
    attempts: Mapped[int] = mapped_column(
        Integer,
        default=0,
    )
    batch_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
    )
    last_error: Mapped[str | None] = mapped_column(
        Text,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )

    def __repr__(self) -> str:
        return f"<Job(kind={self.kind!r}, status={self.status!r})>"

    def start(self) -> None:
        """Mark job as being processed."""
        self.status = JobStatus.PROCESSING.value
        self.attempts = (self.attempts or 0) + 1

    def complete(self) -> None:
        """Mark job as finished successfully."""
        self.status = JobStatus.DONE.value
        self.last_error = None

    def fail(self, error: str, max_attempts: int) -> None:
        """Record a failure; re-queue until attempts are exhausted."""
        self.last_error = error
        if (self.attempts or 0) >= max_attempts:
            self.status = JobStatus.ERROR.value
        else:
            self.status = JobStatus.QUEUED.value
