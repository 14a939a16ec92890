"""Crawl execution workflow.

Runs one crawl job end to end: robots advisory check, submit the store URL
to the extraction agent, poll until a terminal state, ingest the deals and
release the store. Progress is persisted on the job row after every step,
so running the workflow again for the same job resumes where it stopped
instead of resubmitting or ingesting twice.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional
from urllib.parse import urlsplit
from uuid import UUID

import httpx
import structlog
from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dealradar.config import settings
from dealradar.core.exceptions import (
    AgentStateError,
    DealRadarException,
    ExtractionTimeoutError,
    NotFoundError,
    RobotsFetchError,
    RobotsParseError,
)
from dealradar.crawlers.extraction import (
    AgentStateCompleted,
    AgentStateError as AgentFailedState,
    AgentStatePending,
    ExtractionAgent,
)
from dealradar.crawlers.robots import fetch_and_parse_robots_txt
from dealradar.models.base import utcnow
from dealradar.models.crawl_job import CrawlJob, CrawlJobStatus, WorkflowStep
from dealradar.models.store import Store
from dealradar.schemas.deal import DealCandidate
from dealradar.services.deal_service import DealService

logger = structlog.get_logger(__name__)


class CrawlWorkflow:
    """Drives a crawl job through the extraction agent into ingestion.

    The workflow owns ``Store.is_crawling`` from the moment a job is
    started until it finishes: success and failure both clear the flag.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        agent: ExtractionAgent,
        poll_interval: Optional[float] = None,
        max_polls: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize crawl workflow.

        Args:
            session_factory: Async session factory for database access
            agent: Extraction agent implementation
            poll_interval: Seconds between status polls
            max_polls: Poll budget before the crawl times out
            sleep: Awaitable sleep, replaced in tests
            http_client: Optional client for the robots.txt fetch
        """
        self.session_factory = session_factory
        self.agent = agent
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.AGENT_POLL_INTERVAL_SECONDS
        )
        self.max_polls = max_polls if max_polls is not None else settings.AGENT_MAX_POLLS
        self.sleep = sleep
        self.http_client = http_client
        self.logger = logger.bind(service="crawl_workflow")

    async def run(self, job_id: UUID) -> CrawlJob:
        """Execute (or resume) a crawl job.

        Extraction, URL and validation errors are recorded on the job as a
        ``failed`` status with ``error_details``; they are not raised.

        Args:
            job_id: CrawlJob to execute

        Returns:
            The job in its final state

        Raises:
            NotFoundError: If the job or its store does not exist
        """
        async with self.session_factory() as db:
            job = await db.get(CrawlJob, job_id)
            if job is None:
                raise NotFoundError("CrawlJob", str(job_id))
            if job.status in CrawlJobStatus.TERMINAL:
                self.logger.info("crawl_job_already_finished", job_id=str(job_id), status=job.status)
                return job

            store = await db.get(Store, job.store_id)
            if store is None:
                raise NotFoundError("Store", str(job.store_id))
            store_id = str(store.id)

            try:
                await self._execute(db, job, store)
            except DealRadarException as e:
                self.logger.error(
                    "crawl_job_failed",
                    job_id=str(job_id),
                    store_id=store_id,
                    error=e.message,
                )
                return await self._record_failure(db, job, e.message)
            except ValidationError as e:
                self.logger.error(
                    "crawl_job_failed",
                    job_id=str(job_id),
                    store_id=store_id,
                    error=str(e),
                )
                return await self._record_failure(db, job, f"Invalid deal candidates: {e}")
            except Exception as e:
                self.logger.error(
                    "crawl_job_failed",
                    job_id=str(job_id),
                    store_id=store_id,
                    error=str(e),
                    exc_info=True,
                )
                return await self._record_failure(db, job, f"{type(e).__name__}: {e}")

            return job

    async def _execute(self, db: AsyncSession, job: CrawlJob, store: Store) -> None:
        if job.status == CrawlJobStatus.QUEUED:
            job.status = CrawlJobStatus.RUNNING
            job.started_at = utcnow()
            store.is_crawling = True
            await db.commit()

        self.logger.info(
            "crawl_job_started",
            job_id=str(job.id),
            store_id=str(store.id),
            step=job.workflow_step,
            attempt=job.attempt,
        )

        if job.workflow_step == WorkflowStep.PENDING:
            await self._check_robots(job, store)
            agent_job = await self.agent.start([store.url])
            job.agent_job_id = agent_job.job_id
            job.workflow_step = WorkflowStep.SUBMITTED
            await db.commit()

        deals = await self._poll(db, job)

        now = utcnow()
        deal_service = DealService(db)
        await deal_service.update_deals_for_store(store.id, deals, commit=False)

        job_id = job.id
        store_id = store.id
        finished = await db.execute(
            update(CrawlJob)
            .where(CrawlJob.id == job_id, CrawlJob.status == CrawlJobStatus.RUNNING)
            .values(
                status=CrawlJobStatus.DONE,
                result_count=len(deals),
                finished_at=now,
                workflow_step=WorkflowStep.INGESTED,
            )
        )
        if finished.rowcount != 1:
            # Reaped while the agent ran; the store may already belong to a newer job
            await db.rollback()
            await db.refresh(job)
            self.logger.warning(
                "crawl_job_superseded",
                job_id=str(job_id),
                store_id=str(store_id),
                status=job.status,
            )
            return

        store.last_crawl_at = now
        store.is_crawling = False
        await db.commit()

        self.logger.info(
            "crawl_job_completed",
            job_id=str(job.id),
            store_id=str(store.id),
            result_count=job.result_count,
            polls=job.poll_attempts,
        )

    async def _poll(self, db: AsyncSession, job: CrawlJob) -> List[DealCandidate]:
        """Poll the agent until it completes, fails or the budget runs out."""
        agent_job_id = job.agent_job_id

        while job.poll_attempts < self.max_polls:
            job.poll_attempts += 1
            await db.commit()

            state = await self.agent.status(agent_job_id)

            if isinstance(state, AgentStateCompleted):
                return list(state.data)
            if isinstance(state, AgentFailedState):
                raise AgentStateError(agent_job_id, state.error_message)
            if isinstance(state, AgentStatePending):
                self.logger.debug(
                    "agent_job_pending",
                    job_id=str(job.id),
                    agent_job_id=agent_job_id,
                    poll=job.poll_attempts,
                )
                if job.poll_attempts < self.max_polls:
                    await self.sleep(self.poll_interval)
                continue
            raise TypeError(f"Unexpected agent state: {state!r}")

        raise ExtractionTimeoutError(agent_job_id, job.poll_attempts)

    async def _check_robots(self, job: CrawlJob, store: Store) -> None:
        """Record whether robots.txt disallows the store page. Never blocks."""
        try:
            parsed = await fetch_and_parse_robots_txt(store.url, client=self.http_client)
        except (RobotsFetchError, RobotsParseError) as e:
            self.logger.warning("robots_check_failed", store_id=str(store.id), error=e.message)
            return

        path = urlsplit(store.url).path or "/"
        rule = parsed.blocking_rule(path)
        job.blocked_by_robots = rule is not None
        job.blocked_rule = rule
        store.robots_rules = parsed.format_rules()

        if rule is not None:
            self.logger.warning(
                "robots_advisory_block",
                job_id=str(job.id),
                store_id=str(store.id),
                path=path,
                rule=rule,
            )

    async def _record_failure(
        self,
        db: AsyncSession,
        job: CrawlJob,
        error_details: str,
    ) -> CrawlJob:
        """Mark the job failed and release its store.

        Uncommitted work of the failed step is discarded first. A job that
        was already finished elsewhere (e.g. reaped) is left as it is, and
        so is its store.
        """
        await db.rollback()
        await db.refresh(job)

        job_id = job.id
        store_id = job.store_id
        failed = await db.execute(
            update(CrawlJob)
            .where(CrawlJob.id == job_id, CrawlJob.status.in_(CrawlJobStatus.ACTIVE))
            .values(
                status=CrawlJobStatus.FAILED,
                finished_at=utcnow(),
                error_details=error_details,
            )
        )
        if failed.rowcount == 1:
            await db.execute(update(Store).where(Store.id == store_id).values(is_crawling=False))
        else:
            self.logger.warning("crawl_job_superseded", job_id=str(job_id), status=job.status)

        await db.commit()
        return job

