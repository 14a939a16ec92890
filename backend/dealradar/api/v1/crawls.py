"""Crawl scheduling endpoints: tick, retry sweep, dispatcher and job ledger."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dealradar.core.exceptions import NotFoundError
from dealradar.crawlers.scheduler import CrawlScheduler
from dealradar.dependencies import get_crawl_scheduler, get_db
from dealradar.schemas import (
    ApiResponse,
    CrawlJobResponse,
    DispatchResponse,
    PaginationMeta,
    RetryResponse,
    TickResponse,
)
from dealradar.services.crawl_service import CrawlService

router = APIRouter()


@router.post("/tick", response_model=ApiResponse)
async def crawl_tick(db: AsyncSession = Depends(get_db)):
    """Run one admission pass and enqueue crawl jobs for eligible stores."""
    service = CrawlService(db)
    result = await service.crawl_tick()
    return ApiResponse(status="success", data=TickResponse(processed=result.processed))


@router.post("/retry", response_model=ApiResponse)
async def retry_failed_jobs(db: AsyncSession = Depends(get_db)):
    """Enqueue retries for stores whose failed jobs have cooled down."""
    service = CrawlService(db)
    result = await service.retry_failed_jobs()
    return ApiResponse(status="success", data=RetryResponse(retried_count=result.retried_count))


@router.post("/dispatch", response_model=ApiResponse)
async def dispatch(scheduler: CrawlScheduler = Depends(get_crawl_scheduler)):
    """Reap stale crawls and start queued jobs while slots are free."""
    result = await scheduler.run_dispatch()
    return ApiResponse(status="success", data=DispatchResponse(**result))


@router.get("/jobs", response_model=ApiResponse)
async def list_jobs(
    status: Optional[str] = Query(None, pattern="^(queued|running|done|failed)$"),
    store_id: Optional[UUID] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    """Crawl job ledger, newest first."""
    service = CrawlService(db)
    jobs, total = await service.list_jobs(status=status, store_id=store_id, page=page, limit=limit)

    total_pages = (total + limit - 1) // limit if total > 0 else 0

    return ApiResponse(
        status="success",
        data=[CrawlJobResponse.model_validate(j) for j in jobs],
        meta=PaginationMeta(page=page, limit=limit, total=total, total_pages=total_pages),
    )


@router.get("/jobs/{job_id}", response_model=ApiResponse)
async def get_job(job_id: UUID, db: AsyncSession = Depends(get_db)):
    service = CrawlService(db)
    try:
        job = await service.get_job(job_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return ApiResponse(status="success", data=CrawlJobResponse.model_validate(job))
