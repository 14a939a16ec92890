"""Deal Radar -- FastAPI Application Entry Point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from dealradar import __version__
from dealradar.api.v1.router import api_v1_router
from dealradar.config import settings
from dealradar.crawlers.extraction import FirecrawlAgentClient
from dealradar.crawlers.scheduler import CrawlScheduler
from dealradar.db.session import async_session_factory
from dealradar.db.utils import create_tables

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.DEBUG else logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown events."""
    logger.info("Starting Deal Radar API server...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")

    # Auto-create tables on startup (safe for fresh deployments)
    try:
        await create_tables()
        logger.info("Database tables verified/created")
    except Exception as e:
        logger.error(f"Database init failed: {e}", exc_info=True)

    agent = FirecrawlAgentClient()
    scheduler = CrawlScheduler(async_session_factory, agent)
    app.state.crawl_scheduler = scheduler

    # Start crawl scheduler (only in non-test environments)
    if settings.ENVIRONMENT != "test":
        logger.info("Initializing crawl scheduler...")
        scheduler.start()
        try:
            resumed = await scheduler.resume_running_jobs()
            logger.info(f"Crawl scheduler started, {resumed} interrupted crawls resumed")
        except Exception as e:
            logger.error(f"Failed to resume running crawls: {e}", exc_info=True)
    else:
        logger.info("Scheduler disabled (test environment)")

    yield

    # Shutdown
    logger.info("Shutting down Deal Radar API server...")

    if scheduler.is_running():
        logger.info("Stopping crawl scheduler...")
        scheduler.stop()

    await agent.aclose()


app = FastAPI(
    title="Deal Radar API",
    description="Store crawl scheduler and deal tracker",
    version=__version__,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

# Register API v1 router
app.include_router(api_v1_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Deal Radar API",
        "version": __version__,
        "docs": "/docs" if settings.DEBUG else None,
        "health": "/api/v1/health",
    }
