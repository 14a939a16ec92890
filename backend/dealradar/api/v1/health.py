"""Health check endpoint."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from dealradar import __version__
from dealradar.dependencies import get_db
from dealradar.schemas import HealthCheckResponse

router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """Return service health status.

    Checks database connectivity and whether the background crawl
    scheduler is running.
    """
    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        database_ok = True
    except Exception:
        database_ok = False

    scheduler = getattr(request.app.state, "crawl_scheduler", None)
    scheduler_ok = bool(scheduler and scheduler.is_running())

    return HealthCheckResponse(
        status="ok" if database_ok else "degraded",
        database=database_ok,
        scheduler=scheduler_ok,
        version=__version__,
    )
