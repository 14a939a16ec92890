"""Store administration: CRUD, listing with crawl stats, robots preview."""

from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

import httpx
import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dealradar.core.exceptions import (
    CrawlInProgressError,
    NotFoundError,
    RobotsFetchError,
    RobotsParseError,
)
from dealradar.crawlers.robots import fetch_and_parse_robots_txt
from dealradar.models.crawl_job import CrawlJob
from dealradar.models.deal import Deal
from dealradar.models.price_history import PriceHistory
from dealradar.models.store import Store

logger = structlog.get_logger(__name__)

RECENT_JOBS_LIMIT = 10


class StoreService:
    """Service for managing stores."""

    def __init__(self, db: AsyncSession, http_client: Optional[httpx.AsyncClient] = None):
        """Initialize store service.

        Args:
            db: Async database session
            http_client: Optional client for robots.txt fetches
        """
        self.db = db
        self.http_client = http_client
        self.logger = logger.bind(service="store_service")

    async def _robots_rules(self, url: str) -> Optional[str]:
        """Formatted robots rules for ``url``, or None when unavailable."""
        try:
            parsed = await fetch_and_parse_robots_txt(url, client=self.http_client)
        except (RobotsFetchError, RobotsParseError) as e:
            self.logger.warning("robots_fetch_failed", url=url, error=e.message)
            return None
        return parsed.format_rules()

    async def create_store(self, name: str, url: str) -> Store:
        """Create a store and record its robots.txt rules.

        A failed robots fetch does not prevent creation.
        """
        url = url.strip()
        store = Store(
            name=name.strip(),
            url=url,
            is_crawling=False,
            robots_rules=await self._robots_rules(url),
        )
        self.db.add(store)
        await self.db.commit()
        await self.db.refresh(store)

        self.logger.info("store_created", store_id=str(store.id), url=url)
        return store

    async def update_store(
        self,
        store_id: UUID,
        name: Optional[str] = None,
        url: Optional[str] = None,
    ) -> Store:
        """Update name and/or URL. A changed URL refreshes robots rules.

        Raises:
            NotFoundError: If the store does not exist
        """
        store = await self._get(store_id)

        if name is not None:
            store.name = name.strip()
        if url is not None and url.strip() != store.url:
            store.url = url.strip()
            store.robots_rules = await self._robots_rules(store.url)

        await self.db.commit()
        await self.db.refresh(store)

        self.logger.info("store_updated", store_id=str(store_id))
        return store

    async def delete_store(self, store_id: UUID) -> None:
        """Delete a store with its jobs, deals and price history.

        Raises:
            NotFoundError: If the store does not exist
            CrawlInProgressError: If a crawl currently owns the store
        """
        store = await self._get(store_id)
        if store.is_crawling:
            raise CrawlInProgressError(str(store_id))

        # Bulk deletes: SQLite does not enforce ON DELETE CASCADE by default
        deal_ids = select(Deal.id).where(Deal.store_id == store_id)
        await self.db.execute(delete(PriceHistory).where(PriceHistory.deal_id.in_(deal_ids)))
        await self.db.execute(delete(Deal).where(Deal.store_id == store_id))
        await self.db.execute(delete(CrawlJob).where(CrawlJob.store_id == store_id))
        await self.db.execute(delete(Store).where(Store.id == store_id))
        await self.db.commit()

        self.logger.info("store_deleted", store_id=str(store_id))

    async def get_store(self, store_id: UUID) -> Tuple[Store, List[CrawlJob]]:
        """Store plus its most recent crawl jobs, newest first.

        Raises:
            NotFoundError: If the store does not exist
        """
        store = await self._get(store_id)

        result = await self.db.execute(
            select(CrawlJob)
            .where(CrawlJob.store_id == store_id)
            .order_by(CrawlJob.enqueued_at.desc())
            .limit(RECENT_JOBS_LIMIT)
        )
        return store, list(result.scalars().all())

    async def list_stores(self) -> List[Dict[str, Any]]:
        """All stores with deal count and their latest job's status and time."""
        result = await self.db.execute(select(Store).order_by(Store.created_at, Store.id))
        stores = list(result.scalars().all())

        deal_counts_result = await self.db.execute(
            select(Deal.store_id, func.count(Deal.id)).group_by(Deal.store_id)
        )
        deal_counts = {store_id: count for store_id, count in deal_counts_result.all()}

        rows = []
        for store in stores:
            last_job_result = await self.db.execute(
                select(CrawlJob)
                .where(CrawlJob.store_id == store.id)
                .order_by(CrawlJob.enqueued_at.desc())
                .limit(1)
            )
            last_job = last_job_result.scalar_one_or_none()

            rows.append(
                {
                    "id": store.id,
                    "name": store.name,
                    "url": store.url,
                    "last_crawl_at": store.last_crawl_at,
                    "is_crawling": store.is_crawling,
                    "robots_rules": store.robots_rules,
                    "deal_count": deal_counts.get(store.id, 0),
                    "last_job_status": last_job.status if last_job else None,
                    "last_job_at": last_job.last_activity_at if last_job else None,
                }
            )

        return rows

    async def preview_robots(self, url: str) -> Dict[str, Optional[str]]:
        """Fetch robots.txt for a URL without saving anything.

        Returns:
            Dict with ``rules`` text and an ``error`` message on failure
        """
        url = url.strip()
        if not url:
            return {"rules": "", "error": "URL is required"}

        try:
            parsed = await fetch_and_parse_robots_txt(url, client=self.http_client)
        except (RobotsFetchError, RobotsParseError) as e:
            return {"rules": "", "error": e.message}

        return {"rules": parsed.format_rules(), "error": None}

    async def _get(self, store_id: UUID) -> Store:
        store = await self.db.get(Store, store_id)
        if store is None:
            raise NotFoundError("Store", str(store_id))
        return store
