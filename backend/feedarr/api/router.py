"""
Main API router that includes all endpoint routers
"""

import time

from fastapi import APIRouter, Depends

from feedarr.api import rss
from feedarr.api.rss import get_feed_scheduler
from feedarr.core.config import settings
from feedarr.core.scheduler import FeedScheduler
from feedarr.schemas.common import HealthResponse

# Create main API router
api_router = APIRouter()

# Include all route modules
api_router.include_router(rss.router)

_started_at = time.monotonic()


@api_router.get("/health", response_model=HealthResponse)
async def health(feed_scheduler: FeedScheduler = Depends(get_feed_scheduler)):
    """Service health with scheduler summary and effective configuration"""
    scheduler_status = await feed_scheduler.get_status()
    job_status = feed_scheduler.get_job_status()

    return HealthResponse(
        status="OK" if scheduler_status["running"] else "DEGRADED",
        version=settings.VERSION,
        uptime_seconds=round(time.monotonic() - _started_at, 1),
        scheduler={
            "running": scheduler_status["running"],
            "jobs": job_status["jobs"],
            "last_fetch_times": scheduler_status["last_fetch_times"],
            "database": scheduler_status["database"],
        },
        configuration={
            "server_url": settings.SERVER_URL,
            "server_port": settings.SERVER_PORT,
            "fetch_frequency": settings.FETCH_FREQUENCY,
            "cache_ttl": settings.RSS_CACHE_TTL,
        },
    )
