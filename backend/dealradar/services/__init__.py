"""Service classes implementing crawl scheduling, ingestion and store administration."""

from dealradar.services.crawl_service import CrawlService, RetryResult, RunNowResult, TickResult
from dealradar.services.deal_service import DealService, IngestResult
from dealradar.services.store_service import StoreService

__all__ = [
    "CrawlService",
    "DealService",
    "IngestResult",
    "RetryResult",
    "RunNowResult",
    "StoreService",
    "TickResult",
]
