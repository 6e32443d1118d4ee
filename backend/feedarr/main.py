"""
FastAPI application entry point

Builds the feed engine once at startup, starts the refresh scheduler and
shuts both down cleanly.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from feedarr.api.router import api_router
from feedarr.core.config import settings
from feedarr.core.database import AsyncSessionLocal, close_db, init_db
from feedarr.core.scheduler import FeedScheduler
from feedarr.services.arr_client import ArrApiClient
from feedarr.services.cache_store import CacheStore
from feedarr.services.feed_sync_service import FeedSyncService
from feedarr.services.rss_generator import RssGenerator

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def build_feed_scheduler() -> FeedScheduler:
    """Wire the feed engine from settings"""
    sync_service = FeedSyncService(
        cache_store=CacheStore(AsyncSessionLocal),
        api_client=ArrApiClient(),
        rss_generator=RssGenerator(),
    )
    return FeedScheduler(sync_service)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"{settings.APP_NAME} RSS Service starting ({settings.ENVIRONMENT})")
    logger.info(f"Target Server: {settings.SERVER_URL}:{settings.SERVER_PORT}")

    await init_db()
    feed_scheduler = build_feed_scheduler()
    app.state.feed_scheduler = feed_scheduler
    await feed_scheduler.start()

    try:
        yield
    finally:
        logger.info("Shutting down gracefully...")
        await feed_scheduler.stop()
        await close_db()
        logger.info("Shutdown complete")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="RSS feed generator for media server APIs",
    lifespan=lifespan,
)
app.include_router(api_router)


@app.get("/")
async def root(request: Request):
    base = str(request.base_url).rstrip("/")
    return {
        "message": f"Welcome to {settings.APP_NAME} API",
        "description": "RSS feed generator for media server APIs",
        "environment": settings.ENVIRONMENT,
        "version": settings.VERSION,
        "endpoints": {
            "rss_feeds": f"{base}/rss",
            "health": f"{base}/health",
            "status": f"{base}/rss/status",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("feedarr.main:app", host="0.0.0.0", port=settings.PORT)
