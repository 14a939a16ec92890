"""Crawl scheduling: the periodic tick, the retry sweep, manual triggers
and the job dispatcher.

Every entry point here runs as one transaction against the current store
and job rows. The tick, the retry sweep, run-now and the dispatcher
share a process-wide lock so two of them never interleave their
read-decide-write cycles. Paths that set the busy flag outside the lock
claim the store with a conditional update.
"""

import asyncio
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple
from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dealradar.config import settings
from dealradar.core.exceptions import CrawlInProgressError, NotFoundError
from dealradar.crawlers.admission import (
    COOLDOWN,
    MAX_CONCURRENT_JOBS,
    RATE_WINDOW,
    SkipReason,
    TickBudget,
    is_active_recent,
    retry_decision,
    store_block_reason,
)
from dealradar.models.base import utcnow
from dealradar.models.crawl_job import CrawlJob, CrawlJobStatus, CrawlTrigger
from dealradar.models.store import Store

logger = structlog.get_logger(__name__)

# Serialises tick, retry sweep, run-now and dispatcher within this process
_scheduling_lock = asyncio.Lock()


@dataclass
class TickResult:
    processed: int = 0
    skipped: Dict[str, int] = field(default_factory=dict)


@dataclass
class RetryResult:
    retried_count: int = 0


@dataclass
class RunNowResult:
    success: bool
    cooldown_remaining_seconds: float = 0.0
    message: str = ""


class CrawlService:
    """Service for admitting, retrying and dispatching crawl jobs."""

    def __init__(self, db: AsyncSession):
        """Initialize crawl service.

        Args:
            db: Async database session
        """
        self.db = db
        self.logger = logger.bind(service="crawl_service")

    # ========================================================================
    # Crawl tick
    # ========================================================================

    async def crawl_tick(self, now: Optional[datetime] = None) -> TickResult:
        """Admit eligible stores by enqueueing crawl jobs.

        Stores are walked in creation order. A store is skipped when it is
        busy, was crawled within CRAWL_INTERVAL, has a running job or a job
        queued within COOLDOWN, or when its retry history forbids another
        attempt. Enqueueing stops once MAX_JOBS_PER_MINUTE queued/running
        jobs sit in the trailing rate window.

        Args:
            now: Tick time (defaults to the current UTC time)

        Returns:
            TickResult with the number of jobs enqueued
        """
        now = now or utcnow()
        result = TickResult()

        async with _scheduling_lock:
            recent = await self.recent_jobs(now - RATE_WINDOW)
            active_recent = [j for j in recent if is_active_recent(j, now)]

            latest_active_by_store: Dict[UUID, CrawlJob] = {}
            for job in active_recent:
                current = latest_active_by_store.get(job.store_id)
                if current is None or job.enqueued_at > current.enqueued_at:
                    latest_active_by_store[job.store_id] = job

            budget = TickBudget(recent_active=len(active_recent))
            stores = await self._stores_in_order()

            for index, store in enumerate(stores):
                if budget.exhausted:
                    self.logger.info(
                        "rate_limit_reached",
                        recent_active=budget.recent_active,
                        enqueued=budget.enqueued,
                    )
                    result.skipped[SkipReason.RATE_LIMITED] = len(stores) - index
                    break

                reason = store_block_reason(store, latest_active_by_store.get(store.id), now)
                if reason is not None:
                    result.skipped[reason] = result.skipped.get(reason, 0) + 1
                    self.logger.debug("store_skipped", store_id=str(store.id), reason=reason)
                    continue

                decision = retry_decision(await self.failed_jobs_for_store(store.id), now)
                if not decision.eligible:
                    result.skipped[decision.reason] = result.skipped.get(decision.reason, 0) + 1
                    self.logger.debug(
                        "store_skipped",
                        store_id=str(store.id),
                        reason=decision.reason,
                        attempt=decision.attempt,
                        backoff_remaining=(
                            decision.backoff_remaining.total_seconds()
                            if decision.backoff_remaining
                            else None
                        ),
                    )
                    continue

                self._enqueue(store, decision.attempt, now, CrawlTrigger.SCHEDULER)
                budget.record_enqueue()
                result.processed += 1

            await self.db.commit()

        self.logger.info(
            "crawl_tick_complete",
            processed=result.processed,
            stores=len(stores),
            skipped=result.skipped,
        )
        return result

    # ========================================================================
    # Retry sweep
    # ========================================================================

    async def retry_failed_jobs(self, now: Optional[datetime] = None) -> RetryResult:
        """Enqueue a retry for every idle store whose failures allow one.

        Uses the same attempt and backoff rule as the crawl tick but ignores
        the crawl interval and the rate limit.

        Args:
            now: Sweep time (defaults to the current UTC time)

        Returns:
            RetryResult with the number of retry jobs enqueued
        """
        now = now or utcnow()
        result = RetryResult()

        async with _scheduling_lock:
            failed_store_ids = (
                select(CrawlJob.store_id)
                .where(CrawlJob.status == CrawlJobStatus.FAILED)
                .distinct()
            )
            stores_result = await self.db.execute(
                select(Store)
                .where(Store.id.in_(failed_store_ids))
                .order_by(Store.created_at, Store.id)
            )

            for store in stores_result.scalars().all():
                if store.is_crawling:
                    continue

                decision = retry_decision(await self.failed_jobs_for_store(store.id), now)
                if not decision.eligible:
                    continue

                self._enqueue(store, decision.attempt, now, CrawlTrigger.RETRY)
                result.retried_count += 1
                self.logger.info(
                    "crawl_retry_enqueued",
                    store_id=str(store.id),
                    attempt=decision.attempt,
                )

            await self.db.commit()

        self.logger.info("retry_sweep_complete", retried_count=result.retried_count)
        return result

    # ========================================================================
    # Manual triggers
    # ========================================================================

    async def begin_manual_crawl(self, store_id: UUID, now: Optional[datetime] = None) -> CrawlJob:
        """Claim a store for an immediate crawl.

        Manual crawls skip the rate limit and the concurrency cap but not the
        busy flag. The returned job is already ``running``; the caller starts
        the crawl workflow for it.

        Raises:
            NotFoundError: If the store does not exist
            CrawlInProgressError: If the store is already crawling
        """
        now = now or utcnow()
        store = await self._get_store(store_id)

        # Conditional update so two concurrent triggers cannot both claim the store
        claim = await self.db.execute(
            update(Store)
            .where(Store.id == store_id, Store.is_crawling == False)
            .values(is_crawling=True)
        )
        if claim.rowcount != 1:
            await self.db.rollback()
            raise CrawlInProgressError(str(store_id))

        job = CrawlJob(
            store_id=store.id,
            status=CrawlJobStatus.RUNNING,
            attempt=1,
            trigger=CrawlTrigger.MANUAL,
            enqueued_at=now,
            started_at=now,
        )
        self.db.add(job)
        await self.db.commit()
        await self.db.refresh(store)

        self.logger.info("manual_crawl_started", store_id=str(store_id), job_id=str(job.id))
        return job

    async def run_now(self, store_id: UUID, now: Optional[datetime] = None) -> RunNowResult:
        """Queue an attempt-1 crawl for a store unless one was queued recently.

        Raises:
            NotFoundError: If the store does not exist
        """
        now = now or utcnow()

        async with _scheduling_lock:
            await self._get_store(store_id)

            result = await self.db.execute(
                select(CrawlJob).where(
                    CrawlJob.store_id == store_id,
                    CrawlJob.status.in_(CrawlJobStatus.ACTIVE),
                    CrawlJob.enqueued_at >= now - COOLDOWN,
                )
            )
            recent_active = list(result.scalars().all())
            if recent_active:
                oldest = min(recent_active, key=lambda j: j.enqueued_at)
                remaining = COOLDOWN - (now - oldest.enqueued_at)
                return RunNowResult(
                    success=False,
                    cooldown_remaining_seconds=max(0.0, math.ceil(remaining.total_seconds())),
                    message="Crawl already in progress or recently enqueued",
                )

            # The flag may have been set by another session since the store was read
            claim = await self.db.execute(
                update(Store)
                .where(Store.id == store_id, Store.is_crawling == False)
                .values(is_crawling=True)
            )
            if claim.rowcount != 1:
                await self.db.rollback()
                return RunNowResult(success=False, message="Store is currently crawling")

            self.db.add(
                CrawlJob(
                    store_id=store_id,
                    status=CrawlJobStatus.QUEUED,
                    attempt=1,
                    trigger=CrawlTrigger.RUN_NOW,
                    enqueued_at=now,
                )
            )
            await self.db.commit()

        self.logger.info("run_now_enqueued", store_id=str(store_id))
        return RunNowResult(success=True, message="Crawl job enqueued")

    # ========================================================================
    # Dispatcher
    # ========================================================================

    async def claim_queued_jobs(self, now: Optional[datetime] = None) -> List[CrawlJob]:
        """Move the oldest queued jobs to ``running`` while slots are free.

        At most MAX_CONCURRENT_JOBS jobs are running system-wide after the
        call. The caller runs the crawl workflow for each returned job.
        """
        now = now or utcnow()

        async with _scheduling_lock:
            running_result = await self.db.execute(
                select(func.count(CrawlJob.id)).where(CrawlJob.status == CrawlJobStatus.RUNNING)
            )
            running = running_result.scalar() or 0
            slots = MAX_CONCURRENT_JOBS - running
            if slots <= 0:
                self.logger.debug("dispatch_no_slots", running=running)
                return []

            queued_result = await self.db.execute(
                select(CrawlJob)
                .where(CrawlJob.status == CrawlJobStatus.QUEUED)
                .order_by(CrawlJob.enqueued_at, CrawlJob.id)
                .limit(slots)
            )
            claimed = list(queued_result.scalars().all())
            for job in claimed:
                job.status = CrawlJobStatus.RUNNING
                job.started_at = now

            await self.db.commit()

        if claimed:
            self.logger.info(
                "crawl_jobs_claimed",
                count=len(claimed),
                running=running + len(claimed),
                job_ids=[str(j.id) for j in claimed],
            )
        return claimed

    async def reap_stale_jobs(self, now: Optional[datetime] = None) -> int:
        """Fail running jobs older than STALE_CRAWL_MINUTES and free their stores.

        Returns:
            Number of jobs reaped (0 when reaping is disabled)
        """
        if settings.STALE_CRAWL_MINUTES <= 0:
            return 0

        now = now or utcnow()
        max_age = timedelta(minutes=settings.STALE_CRAWL_MINUTES)
        cutoff = now - max_age

        async with _scheduling_lock:
            result = await self.db.execute(
                select(CrawlJob).where(CrawlJob.status == CrawlJobStatus.RUNNING)
            )
            stale = [
                job
                for job in result.scalars().all()
                if (job.started_at or job.enqueued_at) < cutoff
            ]

            for job in stale:
                job.status = CrawlJobStatus.FAILED
                job.finished_at = now
                job.error_details = (
                    f"Crawl did not finish within {settings.STALE_CRAWL_MINUTES} minutes"
                )
                store = await self.db.get(Store, job.store_id)
                if store is not None:
                    store.is_crawling = False

                self.logger.warning(
                    "stale_crawl_reaped",
                    job_id=str(job.id),
                    store_id=str(job.store_id),
                    started_at=(job.started_at or job.enqueued_at).isoformat(),
                )

            await self.db.commit()

        return len(stale)

    # ========================================================================
    # Job queries
    # ========================================================================

    async def recent_jobs(self, since: datetime) -> List[CrawlJob]:
        """Jobs enqueued at or after ``since``, newest first."""
        result = await self.db.execute(
            select(CrawlJob)
            .where(CrawlJob.enqueued_at >= since)
            .order_by(CrawlJob.enqueued_at.desc())
        )
        return list(result.scalars().all())

    async def failed_jobs_for_store(self, store_id: UUID) -> List[CrawlJob]:
        """Every failed job of a store, whatever came after it."""
        result = await self.db.execute(
            select(CrawlJob).where(
                CrawlJob.store_id == store_id,
                CrawlJob.status == CrawlJobStatus.FAILED,
            )
        )
        return list(result.scalars().all())

    async def latest_job_for_store(self, store_id: UUID) -> Optional[CrawlJob]:
        result = await self.db.execute(
            select(CrawlJob)
            .where(CrawlJob.store_id == store_id)
            .order_by(CrawlJob.enqueued_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_jobs(
        self,
        status: Optional[str] = None,
        store_id: Optional[UUID] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[CrawlJob], int]:
        """Paginated job ledger, newest first.

        Returns:
            Tuple of (jobs list, total count)
        """
        query = select(CrawlJob)
        count_query = select(func.count(CrawlJob.id))

        if status:
            query = query.where(CrawlJob.status == status)
            count_query = count_query.where(CrawlJob.status == status)
        if store_id:
            query = query.where(CrawlJob.store_id == store_id)
            count_query = count_query.where(CrawlJob.store_id == store_id)

        offset = (page - 1) * limit
        query = query.order_by(CrawlJob.enqueued_at.desc()).offset(offset).limit(limit)

        result = await self.db.execute(query)
        jobs = list(result.scalars().all())

        count_result = await self.db.execute(count_query)
        total = count_result.scalar() or 0

        return jobs, total

    async def get_job(self, job_id: UUID) -> CrawlJob:
        """Raises NotFoundError if the job does not exist."""
        job = await self.db.get(CrawlJob, job_id)
        if job is None:
            raise NotFoundError("CrawlJob", str(job_id))
        return job

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _get_store(self, store_id: UUID) -> Store:
        store = await self.db.get(Store, store_id)
        if store is None:
            raise NotFoundError("Store", str(store_id))
        return store

    async def _stores_in_order(self) -> List[Store]:
        result = await self.db.execute(select(Store).order_by(Store.created_at, Store.id))
        return list(result.scalars().all())

    def _enqueue(self, store: Store, attempt: int, now: datetime, trigger: str) -> CrawlJob:
        store.is_crawling = True
        job = CrawlJob(
            store_id=store.id,
            status=CrawlJobStatus.QUEUED,
            attempt=attempt,
            trigger=trigger,
            enqueued_at=now,
        )
        self.db.add(job)
        self.logger.info(
            "crawl_job_enqueued",
            store_id=str(store.id),
            attempt=attempt,
            trigger=trigger,
        )
        return job
