"""Stores API endpoints (admin)."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from dealradar.core.exceptions import CrawlInProgressError, NotFoundError
from dealradar.crawlers.scheduler import CrawlScheduler
from dealradar.dependencies import get_crawl_scheduler, get_db
from dealradar.schemas import (
    ApiResponse,
    CrawlJobResponse,
    DealResponse,
    RobotsPreviewResponse,
    RunNowResponse,
    StoreCreateRequest,
    StoreDetailResponse,
    StoreResponse,
    StoreUpdateRequest,
    StoreWithStats,
    SuccessResponse,
)
from dealradar.services.crawl_service import CrawlService
from dealradar.services.deal_service import DealService
from dealradar.services.store_service import StoreService

router = APIRouter()


@router.get("", response_model=ApiResponse)
async def list_stores(db: AsyncSession = Depends(get_db)):
    """List all stores with deal counts and their latest crawl job."""
    service = StoreService(db)
    rows = await service.list_stores()
    return ApiResponse(status="success", data=[StoreWithStats(**row) for row in rows])


@router.post("", response_model=ApiResponse, status_code=status.HTTP_201_CREATED)
async def create_store(
    request: StoreCreateRequest,
    db: AsyncSession = Depends(get_db),
):
    """Create a store. robots.txt is fetched for reference only."""
    service = StoreService(db)
    store = await service.create_store(name=request.name, url=request.url)
    return ApiResponse(status="success", data=StoreResponse.model_validate(store))


@router.get("/robots-preview", response_model=ApiResponse)
async def preview_robots(
    url: str = Query(..., description="Site URL"),
    db: AsyncSession = Depends(get_db),
):
    """Fetch robots.txt rules for a URL without saving anything."""
    service = StoreService(db)
    preview = await service.preview_robots(url)
    return ApiResponse(status="success", data=RobotsPreviewResponse(**preview))


@router.get("/{store_id}", response_model=ApiResponse)
async def get_store(
    store_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Get a store with its 10 most recent crawl jobs."""
    service = StoreService(db)
    try:
        store, jobs = await service.get_store(store_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)

    return ApiResponse(
        status="success",
        data=StoreDetailResponse(
            store=StoreResponse.model_validate(store),
            recent_jobs=[CrawlJobResponse.model_validate(j) for j in jobs],
        ),
    )


@router.put("/{store_id}", response_model=ApiResponse)
async def update_store(
    store_id: UUID,
    request: StoreUpdateRequest,
    db: AsyncSession = Depends(get_db),
):
    """Update a store's name and URL."""
    service = StoreService(db)
    try:
        store = await service.update_store(store_id, name=request.name, url=request.url)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)

    return ApiResponse(status="success", data=StoreResponse.model_validate(store))


@router.delete("/{store_id}", response_model=SuccessResponse)
async def delete_store(
    store_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Delete a store with its crawl jobs and deals."""
    service = StoreService(db)
    try:
        await service.delete_store(store_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except CrawlInProgressError as e:
        raise HTTPException(status_code=409, detail=e.message)

    return SuccessResponse(success=True)


@router.get("/{store_id}/deals", response_model=ApiResponse)
async def list_store_deals(
    store_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """All deals of a store, newest first."""
    service = DealService(db)
    deals = await service.get_deals_for_store(store_id)
    return ApiResponse(status="success", data=[DealResponse.model_validate(d) for d in deals])


@router.post("/{store_id}/crawl", response_model=ApiResponse, status_code=status.HTTP_202_ACCEPTED)
async def begin_manual_crawl(
    store_id: UUID,
    db: AsyncSession = Depends(get_db),
    scheduler: CrawlScheduler = Depends(get_crawl_scheduler),
):
    """Start a crawl right away, bypassing rate limits.

    Returns 409 while the store is already crawling.
    """
    service = CrawlService(db)
    try:
        job = await service.begin_manual_crawl(store_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except CrawlInProgressError as e:
        raise HTTPException(status_code=409, detail=e.message)

    scheduler.launch_workflow(job.id)
    return ApiResponse(status="success", data=CrawlJobResponse.model_validate(job))


@router.post("/{store_id}/run-now", response_model=ApiResponse)
async def run_now(
    store_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Queue a crawl for the dispatcher unless one was queued in the last 3 minutes."""
    service = CrawlService(db)
    try:
        result = await service.run_now(store_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)

    return ApiResponse(
        status="success",
        data=RunNowResponse(
            success=result.success,
            cooldown_remaining_seconds=result.cooldown_remaining_seconds,
            message=result.message,
        ),
    )
