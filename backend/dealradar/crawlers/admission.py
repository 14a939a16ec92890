"""Admission-control rules for crawl scheduling.

Pure functions over a snapshot of store and job rows. The crawl tick, the
retry sweep and run-now all decide with the same constants and the same
comparisons, so a store that one path considers eligible is eligible for all.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence

from dealradar.models.crawl_job import CrawlJob, CrawlJobStatus
from dealradar.models.store import Store

# Minimum spacing between successful crawls of the same store
CRAWL_INTERVAL = timedelta(hours=6)
# Minimum spacing between enqueue attempts while a job sits in the queue
COOLDOWN = timedelta(minutes=3)
# Trailing window used by the global rate limit
RATE_WINDOW = timedelta(seconds=60)

MAX_CONCURRENT_JOBS = 3
MAX_JOBS_PER_MINUTE = 10

# Indexed by attempt - 1
RETRY_BACKOFF = (
    timedelta(seconds=60),
    timedelta(seconds=240),
    timedelta(seconds=600),
)
MAX_ATTEMPTS = 3


class SkipReason:
    """Why a store was not admitted this tick."""

    STORE_BUSY = "store_busy"
    CRAWLED_RECENTLY = "crawled_recently"
    JOB_RUNNING = "job_running"
    JOB_COOLDOWN = "job_cooldown"
    RATE_LIMITED = "rate_limited"
    RETRIES_EXHAUSTED = "retries_exhausted"
    BACKOFF = "backoff"


@dataclass
class TickBudget:
    """Running totals threaded through one tick's store loop.

    ``recent_active`` is the number of queued/running jobs enqueued inside
    the rate window before the tick started; ``enqueued`` counts this
    tick's insertions.
    """

    recent_active: int
    enqueued: int = 0
    limit: int = MAX_JOBS_PER_MINUTE

    @property
    def exhausted(self) -> bool:
        return self.recent_active + self.enqueued >= self.limit

    def record_enqueue(self) -> None:
        self.enqueued += 1


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of the retry rule for one store."""

    eligible: bool
    attempt: int
    reason: Optional[str] = None
    backoff_remaining: Optional[timedelta] = None


def is_active_recent(job: CrawlJob, now: datetime) -> bool:
    """Queued or running and enqueued inside the rate window."""
    return job.status in CrawlJobStatus.ACTIVE and job.enqueued_at >= now - RATE_WINDOW


def store_block_reason(
    store: Store,
    latest_active_job: Optional[CrawlJob],
    now: datetime,
) -> Optional[str]:
    """Per-store eligibility check, independent of retry history.

    Args:
        store: Store under consideration
        latest_active_job: The store's most recent active-recent job, if any
        now: Tick time

    Returns:
        A SkipReason value, or None if the store may be considered
    """
    if store.is_crawling:
        return SkipReason.STORE_BUSY

    if store.last_crawl_at is not None and now - store.last_crawl_at < CRAWL_INTERVAL:
        return SkipReason.CRAWLED_RECENTLY

    if latest_active_job is not None:
        if latest_active_job.status == CrawlJobStatus.RUNNING:
            return SkipReason.JOB_RUNNING
        if (
            latest_active_job.status == CrawlJobStatus.QUEUED
            and now - latest_active_job.enqueued_at < COOLDOWN
        ):
            return SkipReason.JOB_COOLDOWN

    return None


def pick_max_attempt_job(failed_jobs: Iterable[CrawlJob]) -> Optional[CrawlJob]:
    """Failed job with the highest attempt; ties go to the latest failure."""
    return max(
        failed_jobs,
        key=lambda j: (j.attempt, j.last_activity_at),
        default=None,
    )


def retry_decision(failed_jobs: Sequence[CrawlJob], now: datetime) -> RetryDecision:
    """Decide whether (and with which attempt number) a store may be enqueued.

    No failures -> fresh attempt 1. Otherwise the highest-attempt failure
    governs: ``attempt >= MAX_ATTEMPTS`` is exhausted, and a retry is
    allowed only once ``RETRY_BACKOFF[attempt - 1]`` has fully elapsed since
    that job's last activity.
    """
    max_attempt_job = pick_max_attempt_job(failed_jobs)
    if max_attempt_job is None:
        return RetryDecision(eligible=True, attempt=1)

    attempt = max_attempt_job.attempt
    if attempt >= MAX_ATTEMPTS:
        return RetryDecision(eligible=False, attempt=attempt, reason=SkipReason.RETRIES_EXHAUSTED)

    backoff = RETRY_BACKOFF[attempt - 1]
    elapsed = now - max_attempt_job.last_activity_at
    if elapsed < backoff:
        return RetryDecision(
            eligible=False,
            attempt=attempt,
            reason=SkipReason.BACKOFF,
            backoff_remaining=backoff - elapsed,
        )

    return RetryDecision(eligible=True, attempt=attempt + 1)
