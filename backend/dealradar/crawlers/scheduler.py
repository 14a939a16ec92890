"""APScheduler-based crawl scheduler.

This module provides the background loop that drives crawling: a periodic
crawl tick that admits stores, a retry sweep for failed jobs, and a
dispatcher that starts queued jobs while concurrency slots are free.
"""

import asyncio
from typing import Dict, List, Optional, Set
from uuid import UUID

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dealradar.config import settings
from dealradar.crawlers.extraction import ExtractionAgent
from dealradar.crawlers.workflow import CrawlWorkflow
from dealradar.models.crawl_job import CrawlJob, CrawlJobStatus
from dealradar.services.crawl_service import CrawlService

logger = structlog.get_logger(__name__)


class CrawlScheduler:
    """Runs the crawl tick, retry sweep and dispatcher on fixed intervals.

    Each scheduled function runs with ``max_instances=1`` and catches its own
    exceptions, so one failing pass never stops the scheduler. Crawl
    workflows started by the dispatcher (or by a manual trigger through
    ``launch_workflow``) run as asyncio tasks owned by this object.
    """

    def __init__(
        self,
        db_session_factory: async_sessionmaker[AsyncSession],
        agent: ExtractionAgent,
        workflow: Optional[CrawlWorkflow] = None,
    ):
        """Initialize crawl scheduler.

        Args:
            db_session_factory: Async session factory for database access
            agent: Extraction agent used by crawl workflows
            workflow: Pre-built workflow, mainly for tests
        """
        self.db_session_factory = db_session_factory
        self.agent = agent
        self.workflow = workflow or CrawlWorkflow(db_session_factory, agent)
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.logger = logger.bind(service="crawl_scheduler")
        self._tasks: Set[asyncio.Task] = set()
        self._job_ids: List[str] = []

    def start(self) -> None:
        """Register the periodic jobs and start APScheduler."""
        if self.scheduler.running:
            self.logger.warning("scheduler_already_running")
            return

        self._add_job(self._crawl_tick_wrapper, "crawl_tick", settings.CRAWL_TICK_SECONDS)
        self._add_job(self._retry_sweep_wrapper, "retry_sweep", settings.RETRY_SWEEP_SECONDS)
        self._add_job(self._dispatch_wrapper, "dispatch", settings.DISPATCH_SECONDS)

        self.scheduler.start()
        self.logger.info("scheduler_started", jobs=self._job_ids)

    def stop(self) -> None:
        """Stop the scheduler and cancel in-flight workflows.

        Cancelled jobs stay ``running`` with their workflow cursor intact and
        are resumed by ``resume_running_jobs`` on the next start.
        """
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            self.logger.info("scheduler_stopped")
        else:
            self.logger.warning("scheduler_not_running")

        for task in list(self._tasks):
            task.cancel()

    def _add_job(self, func, job_id: str, interval_seconds: int) -> None:
        job = self.scheduler.add_job(
            func=func,
            trigger=IntervalTrigger(seconds=interval_seconds, timezone="UTC"),
            id=job_id,
            name=job_id.replace("_", " ").title(),
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._job_ids.append(job.id)

    # ========================================================================
    # Scheduled passes
    # ========================================================================

    async def run_crawl_tick(self) -> int:
        async with self.db_session_factory() as db:
            result = await CrawlService(db).crawl_tick()
        return result.processed

    async def run_retry_sweep(self) -> int:
        async with self.db_session_factory() as db:
            result = await CrawlService(db).retry_failed_jobs()
        return result.retried_count

    async def run_dispatch(self) -> Dict[str, object]:
        """Reap stale crawls, then start as many queued jobs as slots allow.

        Returns:
            Dict with the number of reaped jobs and the started job ids
        """
        async with self.db_session_factory() as db:
            service = CrawlService(db)
            reaped = await service.reap_stale_jobs()
            claimed = await service.claim_queued_jobs()

        started = [job.id for job in claimed]
        for job_id in started:
            self.launch_workflow(job_id)

        return {"reaped": reaped, "started": started}

    async def resume_running_jobs(self) -> int:
        """Restart workflows for jobs left ``running`` by a previous process."""
        async with self.db_session_factory() as db:
            result = await db.execute(
                select(CrawlJob.id).where(CrawlJob.status == CrawlJobStatus.RUNNING)
            )
            job_ids = list(result.scalars().all())

        for job_id in job_ids:
            self.launch_workflow(job_id)

        if job_ids:
            self.logger.info("running_jobs_resumed", count=len(job_ids))
        return len(job_ids)

    def launch_workflow(self, job_id: UUID) -> asyncio.Task:
        """Run the crawl workflow for a job in the background."""
        task = asyncio.create_task(self._run_workflow(job_id), name=f"crawl-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_workflow(self, job_id: UUID) -> None:
        try:
            await self.workflow.run(job_id)
        except asyncio.CancelledError:
            self.logger.info("crawl_workflow_cancelled", job_id=str(job_id))
            raise
        except Exception as e:
            self.logger.error(
                "crawl_workflow_crashed",
                job_id=str(job_id),
                error=str(e),
                exc_info=True,
            )

    async def _crawl_tick_wrapper(self) -> None:
        """Wrapper for run_crawl_tick that handles exceptions.

        This is the function that APScheduler calls. It catches all
        exceptions to prevent a failed tick from stopping the scheduler.
        """
        try:
            await self.run_crawl_tick()
        except Exception as e:
            self.logger.error("crawl_tick_failed", error=str(e), exc_info=True)

    async def _retry_sweep_wrapper(self) -> None:
        try:
            await self.run_retry_sweep()
        except Exception as e:
            self.logger.error("retry_sweep_failed", error=str(e), exc_info=True)

    async def _dispatch_wrapper(self) -> None:
        try:
            await self.run_dispatch()
        except Exception as e:
            self.logger.error("dispatch_failed", error=str(e), exc_info=True)

    # ========================================================================
    # Introspection
    # ========================================================================

    def get_jobs_status(self) -> dict:
        """Get status of all scheduled jobs.

        Returns:
            Dict with job information keyed by job id, plus the number of
            in-flight crawl workflows
        """
        jobs = {}
        for job_id in self._job_ids:
            job = self.scheduler.get_job(job_id)
            if job:
                jobs[job_id] = {
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                    "trigger": str(job.trigger),
                }
        return {"jobs": jobs, "active_workflows": len(self._tasks)}

    def is_running(self) -> bool:
        return self.scheduler.running
