"""Pytest configuration and shared fixtures."""

import os
from datetime import datetime, timezone
from typing import AsyncGenerator

# Keep the app from starting the background scheduler during tests
os.environ.setdefault("ENVIRONMENT", "test")

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from dealradar.models import Base, Store


@pytest.fixture
def anyio_backend():
    """Use asyncio as the async backend for tests."""
    return "asyncio"


# ============================================================================
# DATABASE
# ============================================================================

@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory bound to a fresh in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create an in-memory SQLite database session for testing."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def sample_store(test_db: AsyncSession) -> Store:
    """Create an idle store that has never been crawled."""
    store = Store(
        name="Example Outlet",
        url="https://shop.example.com/deals",
        is_crawling=False,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    test_db.add(store)
    await test_db.commit()
    await test_db.refresh(store)
    return store


# ============================================================================
# HTTP
# ============================================================================

@pytest_asyncio.fixture
async def robots_404_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client whose robots.txt requests all return 404."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404))) as client:
        yield client
