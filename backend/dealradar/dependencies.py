"""FastAPI dependency injection providers."""

from typing import AsyncGenerator

from fastapi import HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from dealradar.crawlers.scheduler import CrawlScheduler
from dealradar.db.session import async_session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session for request-scoped usage.

    The session is committed on success or rolled back on error and is
    always closed after the request completes.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_crawl_scheduler(request: Request) -> CrawlScheduler:
    """Crawl scheduler created by the application lifespan.

    Raises 503 when the app was started without one.
    """
    scheduler = getattr(request.app.state, "crawl_scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Crawl scheduler is not available",
        )
    return scheduler
