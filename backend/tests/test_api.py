"""HTTP-level tests for the admin and deal endpoints."""

from typing import List
from uuid import UUID, uuid4

import httpx
import pytest
import pytest_asyncio

from dealradar.dependencies import get_crawl_scheduler, get_db
from dealradar.main import app
from dealradar.models import Store


class RecordingScheduler:
    """Stands in for CrawlScheduler; remembers which workflows were launched."""

    def __init__(self):
        self.launched: List[UUID] = []

    def launch_workflow(self, job_id: UUID) -> None:
        self.launched.append(job_id)

    def is_running(self) -> bool:
        return False


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest_asyncio.fixture
async def client(session_factory, scheduler):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_crawl_scheduler] = lambda: scheduler

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


class TestHealth:
    async def test_health(self, client: httpx.AsyncClient):
        response = await client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["database"] is True


class TestStoreEndpoints:
    """Tests for /api/v1/stores."""

    async def test_list_stores(self, client: httpx.AsyncClient, sample_store: Store):
        response = await client.get("/api/v1/stores")

        assert response.status_code == 200
        data = response.json()["data"]
        assert len(data) == 1
        assert data[0]["name"] == "Example Outlet"
        assert data[0]["deal_count"] == 0

    async def test_get_unknown_store(self, client: httpx.AsyncClient):
        response = await client.get(f"/api/v1/stores/{uuid4()}")

        assert response.status_code == 404

    async def test_manual_crawl_then_conflict(
        self, client: httpx.AsyncClient, sample_store: Store, scheduler: RecordingScheduler
    ):
        first = await client.post(f"/api/v1/stores/{sample_store.id}/crawl")

        assert first.status_code == 202
        job = first.json()["data"]
        assert job["status"] == "running"
        assert job["trigger"] == "manual"
        assert scheduler.launched == [UUID(job["id"])]

        second = await client.post(f"/api/v1/stores/{sample_store.id}/crawl")
        assert second.status_code == 409

        delete = await client.delete(f"/api/v1/stores/{sample_store.id}")
        assert delete.status_code == 409

    async def test_run_now_cooldown(self, client: httpx.AsyncClient, sample_store: Store):
        first = await client.post(f"/api/v1/stores/{sample_store.id}/run-now")
        second = await client.post(f"/api/v1/stores/{sample_store.id}/run-now")

        assert first.json()["data"]["success"] is True
        body = second.json()["data"]
        assert body["success"] is False
        assert 0 < body["cooldown_remaining_seconds"] <= 180

    async def test_delete_store(self, client: httpx.AsyncClient, sample_store: Store):
        response = await client.delete(f"/api/v1/stores/{sample_store.id}")

        assert response.status_code == 200
        assert (await client.get(f"/api/v1/stores/{sample_store.id}")).status_code == 404


class TestCrawlEndpoints:
    """Tests for /api/v1/crawls."""

    async def test_tick_and_job_ledger(self, client: httpx.AsyncClient, sample_store: Store):
        tick = await client.post("/api/v1/crawls/tick")

        assert tick.status_code == 200
        assert tick.json()["data"]["processed"] == 1

        jobs = await client.get("/api/v1/crawls/jobs", params={"status": "queued"})
        body = jobs.json()
        assert body["meta"]["total"] == 1
        assert body["data"][0]["store_id"] == str(sample_store.id)

        job = await client.get(f"/api/v1/crawls/jobs/{body['data'][0]['id']}")
        assert job.status_code == 200

    async def test_invalid_status_filter(self, client: httpx.AsyncClient):
        response = await client.get("/api/v1/crawls/jobs", params={"status": "paused"})

        assert response.status_code == 422

    async def test_retry_sweep(self, client: httpx.AsyncClient):
        response = await client.post("/api/v1/crawls/retry")

        assert response.json()["data"] == {"retried_count": 0}


class TestDealEndpoints:
    """Tests for /api/v1/deals."""

    async def test_empty_listing(self, client: httpx.AsyncClient):
        response = await client.get("/api/v1/deals", params={"sort": "biggest_drop"})

        assert response.status_code == 200
        assert response.json()["data"] == []

    async def test_invalid_sort(self, client: httpx.AsyncClient):
        response = await client.get("/api/v1/deals", params={"sort": "random"})

        assert response.status_code == 422

    async def test_unknown_deal(self, client: httpx.AsyncClient):
        response = await client.get(f"/api/v1/deals/{uuid4()}")

        assert response.status_code == 404
