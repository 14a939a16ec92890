"""SQLAlchemy models for Deal Radar.

All models are imported here so metadata.create_all can discover them.
"""

from dealradar.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, UTCDateTime, utcnow
from dealradar.models.store import Store
from dealradar.models.crawl_job import CrawlJob, CrawlJobStatus, CrawlTrigger, WorkflowStep
from dealradar.models.deal import Deal
from dealradar.models.price_history import PriceHistory

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "UTCDateTime",
    "utcnow",
    "Store",
    "CrawlJob",
    "CrawlJobStatus",
    "CrawlTrigger",
    "WorkflowStep",
    "Deal",
    "PriceHistory",
]
