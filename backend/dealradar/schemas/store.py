"""Store and crawl job Pydantic schemas."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class StoreCreateRequest(BaseModel):
    """Payload for creating a store."""

    name: str = Field(..., min_length=1, max_length=200)
    url: str = Field(..., min_length=1, max_length=2000, pattern=r"^\s*https?://.+")


class StoreUpdateRequest(StoreCreateRequest):
    """Payload for updating a store (full replacement of name and url)."""


class StoreResponse(BaseModel):
    """Store as stored."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    url: str
    last_crawl_at: Optional[datetime] = None
    is_crawling: bool
    robots_rules: Optional[str] = None


class StoreWithStats(StoreResponse):
    """Store row for the admin list."""

    deal_count: int = 0
    last_job_status: Optional[str] = None
    last_job_at: Optional[datetime] = None


class CrawlJobResponse(BaseModel):
    """Crawl job ledger row."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    store_id: UUID
    status: str
    attempt: int
    trigger: str
    enqueued_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    result_count: Optional[int] = None
    blocked_by_robots: Optional[bool] = None
    blocked_rule: Optional[str] = None
    error_details: Optional[str] = None


class StoreDetailResponse(BaseModel):
    """Store plus its most recent crawl jobs."""

    store: StoreResponse
    recent_jobs: List[CrawlJobResponse] = []


class RobotsPreviewResponse(BaseModel):
    """robots.txt rules as text, or the reason they could not be fetched."""

    rules: str = ""
    error: Optional[str] = None


class TickResponse(BaseModel):
    """Result of one crawl tick."""

    processed: int


class RetryResponse(BaseModel):
    """Result of a retry sweep."""

    retried_count: int


class RunNowResponse(BaseModel):
    """Result of an admin run-now request."""

    success: bool
    cooldown_remaining_seconds: float = 0.0
    message: str


class DispatchResponse(BaseModel):
    """Result of a dispatcher pass."""

    reaped: int
    started: List[UUID] = []
