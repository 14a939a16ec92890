"""Manual crawl runner for operating the scheduler from a shell.

Runs one scheduling pass (or one store's crawl) against the configured
database and prints the outcome.

Usage:
    python scripts/run_crawl.py tick
    python scripts/run_crawl.py retry
    python scripts/run_crawl.py dispatch
    python scripts/run_crawl.py crawl <store_id>
"""

import argparse
import asyncio
import os
import sys
from uuid import UUID

# Add backend to path so we can import dealradar without installing it
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

from dealradar.core.exceptions import DealRadarException
from dealradar.crawlers.extraction import FirecrawlAgentClient
from dealradar.crawlers.workflow import CrawlWorkflow
from dealradar.db.session import async_session_factory
from dealradar.db.utils import create_tables
from dealradar.services.crawl_service import CrawlService


async def run_tick() -> None:
    async with async_session_factory() as db:
        result = await CrawlService(db).crawl_tick()
    print(f"Enqueued {result.processed} crawl job(s)")
    for reason, count in sorted(result.skipped.items()):
        print(f"   skipped ({reason}): {count}")


async def run_retry() -> None:
    async with async_session_factory() as db:
        result = await CrawlService(db).retry_failed_jobs()
    print(f"Enqueued {result.retried_count} retry job(s)")


async def run_dispatch(agent: FirecrawlAgentClient) -> None:
    """Claim queued jobs and run their workflows to completion."""
    async with async_session_factory() as db:
        service = CrawlService(db)
        reaped = await service.reap_stale_jobs()
        claimed = await service.claim_queued_jobs()

    print(f"Reaped {reaped} stale crawl(s), starting {len(claimed)} job(s)")

    workflow = CrawlWorkflow(async_session_factory, agent)
    jobs = await asyncio.gather(*(workflow.run(job.id) for job in claimed))
    for job in jobs:
        print(f"   {job.id}: {job.status} (deals={job.result_count}, error={job.error_details})")


async def run_store_crawl(store_id: UUID, agent: FirecrawlAgentClient) -> None:
    """Start a manual crawl for one store and wait for it to finish."""
    async with async_session_factory() as db:
        job = await CrawlService(db).begin_manual_crawl(store_id)

    print(f"Started crawl job {job.id} for store {store_id}")
    job = await CrawlWorkflow(async_session_factory, agent).run(job.id)

    print(f"Status:  {job.status}")
    print(f"Deals:   {job.result_count}")
    if job.blocked_by_robots:
        print(f"robots.txt disallows this page ({job.blocked_rule}), crawled anyway")
    if job.error_details:
        print(f"Error:   {job.error_details}")


async def main() -> int:
    parser = argparse.ArgumentParser(description="Run crawl scheduling passes manually")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("tick", help="Run one admission tick")
    subparsers.add_parser("retry", help="Run one retry sweep")
    subparsers.add_parser("dispatch", help="Start queued jobs and wait for them")
    crawl_parser = subparsers.add_parser("crawl", help="Crawl one store now")
    crawl_parser.add_argument("store_id", type=UUID)
    args = parser.parse_args()

    await create_tables()

    agent = FirecrawlAgentClient()
    try:
        if args.command == "tick":
            await run_tick()
        elif args.command == "retry":
            await run_retry()
        elif args.command == "dispatch":
            await run_dispatch(agent)
        elif args.command == "crawl":
            await run_store_crawl(args.store_id, agent)
    except DealRadarException as e:
        print(f"Error: {e.message}")
        return 1
    finally:
        await agent.aclose()

    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
