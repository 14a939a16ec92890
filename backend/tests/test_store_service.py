"""Tests for store administration."""

from datetime import datetime, timezone
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from dealradar.core.exceptions import CrawlInProgressError, NotFoundError
from dealradar.models import CrawlJob, CrawlJobStatus, Store
from dealradar.services.deal_service import DealService
from dealradar.services.store_service import StoreService

ROBOTS = "User-agent: *\nDisallow: /checkout\nAllow: /checkout/help"


@pytest_asyncio.fixture
async def robots_client():
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, text=ROBOTS))) as client:
        yield client


class TestStoreCrud:
    """Tests for create, update and delete."""

    async def test_create_store_records_robots_rules(self, test_db: AsyncSession, robots_client):
        store = await StoreService(test_db, http_client=robots_client).create_store(
            "  Example Outlet ", " https://shop.example.com/deals "
        )

        assert store.name == "Example Outlet"
        assert store.url == "https://shop.example.com/deals"
        assert store.is_crawling is False
        assert store.robots_rules == "Allow: /checkout/help\nDisallow: /checkout"

    async def test_create_store_survives_robots_failure(self, test_db: AsyncSession):
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(503))) as client:
            store = await StoreService(test_db, http_client=client).create_store("Outlet", "https://shop.example.com")

        assert store.id is not None
        assert store.robots_rules is None

    async def test_update_name_keeps_robots_rules(self, test_db: AsyncSession, robots_client):
        service = StoreService(test_db, http_client=robots_client)
        store = await service.create_store("Outlet", "https://shop.example.com")

        updated = await service.update_store(store.id, name="Renamed")

        assert updated.name == "Renamed"
        assert updated.robots_rules == "Allow: /checkout/help\nDisallow: /checkout"

    async def test_update_url_refreshes_robots_rules(
        self, test_db: AsyncSession, robots_client, robots_404_client
    ):
        store = await StoreService(test_db, http_client=robots_client).create_store("Outlet", "https://a.example.com")

        updated = await StoreService(test_db, http_client=robots_404_client).update_store(
            store.id, url="https://b.example.com"
        )

        assert updated.url == "https://b.example.com"
        assert updated.robots_rules == ""

    async def test_update_missing_store(self, test_db: AsyncSession):
        with pytest.raises(NotFoundError):
            await StoreService(test_db).update_store(uuid4(), name="x")

    async def test_delete_store(self, test_db: AsyncSession, sample_store: Store):
        service = StoreService(test_db)

        await service.delete_store(sample_store.id)

        assert await test_db.get(Store, sample_store.id) is None

    async def test_delete_crawling_store_refused(self, test_db: AsyncSession, sample_store: Store):
        sample_store.is_crawling = True
        await test_db.commit()

        with pytest.raises(CrawlInProgressError):
            await StoreService(test_db).delete_store(sample_store.id)


class TestStoreQueries:
    """Tests for store listing and detail."""

    async def test_list_stores_with_stats(self, test_db: AsyncSession, sample_store: Store):
        await DealService(test_db).update_deals_for_store(
            sample_store.id,
            [{"title": "Kettle", "url": "https://shop.example.com/p/kettle", "price": 20, "currency": "USD"}],
        )
        test_db.add(
            CrawlJob(
                store_id=sample_store.id,
                status=CrawlJobStatus.DONE,
                enqueued_at=datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc),
                finished_at=datetime(2024, 5, 1, 10, 5, tzinfo=timezone.utc),
            )
        )
        await test_db.commit()

        rows = await StoreService(test_db).list_stores()

        assert len(rows) == 1
        assert rows[0]["deal_count"] == 1
        assert rows[0]["last_job_status"] == CrawlJobStatus.DONE
        assert rows[0]["last_job_at"] == datetime(2024, 5, 1, 10, 5, tzinfo=timezone.utc)

    async def test_list_store_without_jobs(self, test_db: AsyncSession, sample_store: Store):
        rows = await StoreService(test_db).list_stores()

        assert rows[0]["deal_count"] == 0
        assert rows[0]["last_job_status"] is None

    async def test_get_store_returns_recent_jobs_newest_first(self, test_db: AsyncSession, sample_store: Store):
        for hour in range(12):
            test_db.add(
                CrawlJob(
                    store_id=sample_store.id,
                    status=CrawlJobStatus.FAILED,
                    enqueued_at=datetime(2024, 5, 1, hour, tzinfo=timezone.utc),
                )
            )
        await test_db.commit()

        store, jobs = await StoreService(test_db).get_store(sample_store.id)

        assert store.id == sample_store.id
        assert len(jobs) == 10
        assert jobs[0].enqueued_at.hour == 11


class TestRobotsPreview:
    """Tests for StoreService.preview_robots."""

    async def test_preview(self, test_db: AsyncSession, robots_client):
        preview = await StoreService(test_db, http_client=robots_client).preview_robots("https://shop.example.com")

        assert preview == {"rules": "Allow: /checkout/help\nDisallow: /checkout", "error": None}

    async def test_preview_requires_url(self, test_db: AsyncSession):
        assert await StoreService(test_db).preview_robots("  ") == {"rules": "", "error": "URL is required"}

    async def test_preview_reports_fetch_error(self, test_db: AsyncSession):
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500))) as client:
            preview = await StoreService(test_db, http_client=client).preview_robots("https://shop.example.com")

        assert preview["rules"] == ""
        assert "HTTP 500" in preview["error"]
