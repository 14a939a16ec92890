"""Crawl job ledger: one row per crawl attempt of a store."""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dealradar.models.base import Base, UUIDPrimaryKeyMixin, UTCDateTime, utcnow

if TYPE_CHECKING:
    from dealradar.models.store import Store


class CrawlJobStatus:
    """Allowed values of CrawlJob.status."""

    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"

    ACTIVE = (QUEUED, RUNNING)
    TERMINAL = (DONE, FAILED)


class WorkflowStep:
    """Last completed step of the crawl workflow for a job."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    INGESTED = "ingested"


class CrawlTrigger:
    """Who created the job."""

    SCHEDULER = "scheduler"
    RETRY = "retry"
    MANUAL = "manual"
    RUN_NOW = "run_now"


class CrawlJob(UUIDPrimaryKeyMixin, Base):
    """Append-only record of one crawl attempt.

    Rows are created by the scheduler, the retry sweep or a manual trigger
    with ``status='queued'`` (manual crawls start as ``running``). Only the
    dispatcher and the crawl workflow move a job through
    ``queued -> running -> done|failed``.
    """

    __tablename__ = "crawl_jobs"

    store_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("stores.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CrawlJobStatus.QUEUED,
        index=True,
        comment="Status: 'queued', 'running', 'done', 'failed'",
    )
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1, comment="1-based attempt number")
    trigger: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CrawlTrigger.SCHEDULER,
        comment="Origin: 'scheduler', 'retry', 'manual', 'run_now'",
    )

    # Timing
    enqueued_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow, index=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    # Results
    result_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, comment="Deal candidates ingested")
    blocked_by_robots: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    blocked_rule: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    error_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Durable workflow cursor
    workflow_step: Mapped[str] = mapped_column(String(20), nullable=False, default=WorkflowStep.PENDING)
    agent_job_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    poll_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("idx_crawl_jobs_store_enqueued", "store_id", "enqueued_at"),
    )

    # Relationships
    store: Mapped["Store"] = relationship(back_populates="crawl_jobs")

    @property
    def last_activity_at(self) -> datetime:
        """finished_at, else started_at, else enqueued_at."""
        return self.finished_at or self.started_at or self.enqueued_at

    def __repr__(self) -> str:
        return f"<CrawlJob(id={self.id}, store_id={self.store_id}, status='{self.status}', attempt={self.attempt})>"
