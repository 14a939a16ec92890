"""Deals API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dealradar.core.exceptions import NotFoundError
from dealradar.dependencies import get_db
from dealradar.schemas import (
    ApiResponse,
    DealDetailResponse,
    DealResponse,
    PaginationMeta,
    PriceHistoryPoint,
    StoreSummary,
)
from dealradar.services.deal_service import DealService

router = APIRouter()


@router.get("", response_model=ApiResponse)
async def list_deals(
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    limit: int = Query(20, ge=1, le=100, description="Items per page"),
    sort: str = Query("newest", pattern="^(newest|biggest_drop|price|all)$", description="Sort method"),
    db: AsyncSession = Depends(get_db),
):
    """List discounted deals with pagination.

    Sort options:
    - newest: Most recently created deals first (default)
    - biggest_drop: Highest percent off first
    - price: Cheapest first
    - all: Smallest qualifying discount first
    """
    service = DealService(db)
    deals, total = await service.get_deals(sort=sort, page=page, limit=limit)

    total_pages = (total + limit - 1) // limit if total > 0 else 0

    return ApiResponse(
        status="success",
        data=[DealResponse.model_validate(d) for d in deals],
        meta=PaginationMeta(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
        ),
    )


@router.get("/{deal_id}", response_model=ApiResponse)
async def get_deal(
    deal_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Get a deal with a summary of its store."""
    service = DealService(db)
    deal = await service.get_deal(deal_id)

    if not deal:
        raise HTTPException(status_code=404, detail=f"Deal {deal_id} not found")

    return ApiResponse(
        status="success",
        data=DealDetailResponse(
            deal=DealResponse.model_validate(deal),
            store=StoreSummary.model_validate(deal.store) if deal.store else None,
        ),
    )


@router.get("/{deal_id}/price-history", response_model=ApiResponse)
async def get_price_history(
    deal_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Price history of a deal, oldest first."""
    service = DealService(db)
    try:
        history = await service.get_price_history(deal_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)

    return ApiResponse(
        status="success",
        data=[PriceHistoryPoint.model_validate(h) for h in history],
    )
