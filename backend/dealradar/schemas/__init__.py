"""Pydantic schemas for Deal Radar.

All request/response models are defined here for easy import.
"""

from dealradar.schemas.common import ApiResponse, PaginationMeta, SuccessResponse
from dealradar.schemas.deal import (
    DealCandidate,
    DealDetailResponse,
    DealResponse,
    PriceHistoryPoint,
    StoreSummary,
    deal_candidates_adapter,
)
from dealradar.schemas.store import (
    CrawlJobResponse,
    DispatchResponse,
    RetryResponse,
    RobotsPreviewResponse,
    RunNowResponse,
    StoreCreateRequest,
    StoreDetailResponse,
    StoreResponse,
    StoreUpdateRequest,
    StoreWithStats,
    TickResponse,
)
from dealradar.schemas.health import HealthCheckResponse

__all__ = [
    # Common
    "ApiResponse",
    "PaginationMeta",
    "SuccessResponse",
    # Deal
    "DealCandidate",
    "DealDetailResponse",
    "DealResponse",
    "PriceHistoryPoint",
    "StoreSummary",
    "deal_candidates_adapter",
    # Store / crawl
    "CrawlJobResponse",
    "DispatchResponse",
    "RetryResponse",
    "RobotsPreviewResponse",
    "RunNowResponse",
    "StoreCreateRequest",
    "StoreDetailResponse",
    "StoreResponse",
    "StoreUpdateRequest",
    "StoreWithStats",
    "TickResponse",
    # Health
    "HealthCheckResponse",
]
