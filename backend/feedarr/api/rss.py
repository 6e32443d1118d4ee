"""
RSS Feed API Endpoints

Serves the generated feeds and exposes status, manual refresh and cache
clearing on top of the feed scheduler.
"""

from datetime import datetime, timezone
from typing import Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi import status as http_status
from fastapi.responses import Response

from feedarr.core.config import settings
from feedarr.core.exceptions import FeedarrError, StorageError, UnknownFeedKindError, UpstreamError
from feedarr.core.scheduler import FeedScheduler
from feedarr.schemas.common import DataResponse, ErrorResponse
from feedarr.schemas.feeds import FeedKind, FeedLinks, SchedulerStatus, parse_feed_kind
from feedarr.services.rss_generator import FEED_CHANNELS, RSS_CONTENT_TYPE

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rss", tags=["rss"])

FEED_TYPES_MESSAGE = "Feed type must be one of: " + ", ".join(kind.value for kind in FeedKind)


def get_feed_scheduler(request: Request) -> FeedScheduler:
    """Dependency to get the feed scheduler built at startup"""
    feed_scheduler = getattr(request.app.state, "feed_scheduler", None)
    if feed_scheduler is None:
        raise HTTPException(
            status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Feed scheduler is not initialized",
        )
    return feed_scheduler


def _feed_kind_or_400(feed_type: Optional[str]) -> Optional[FeedKind]:
    if feed_type is None:
        return None
    try:
        return parse_feed_kind(feed_type)
    except UnknownFeedKindError:
        raise HTTPException(
            status_code=http_status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid feed type. {FEED_TYPES_MESSAGE}",
        )


def _error_to_http(e: FeedarrError) -> HTTPException:
    if isinstance(e, UnknownFeedKindError):
        return HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, UpstreamError):
        return HTTPException(status_code=http_status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return HTTPException(status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


def _base_url(request: Request) -> str:
    return str(request.base_url).rstrip("/")


def _feed_links(request: Request) -> FeedLinks:
    base = _base_url(request)
    return FeedLinks(**{kind.value: f"{base}/rss/{kind.value}" for kind in FeedKind})


@router.get("", response_model=DataResponse)
async def feed_discovery(request: Request):
    """List the available feeds and control endpoints"""
    base = _base_url(request)
    links = _feed_links(request)
    return DataResponse(data={
        "message": f"{settings.APP_NAME} RSS Service",
        "available_feeds": {
            kind.value: {
                "url": getattr(links, kind.value),
                "description": FEED_CHANNELS[kind]["description"],
            }
            for kind in FeedKind
        },
        "endpoints": {
            "status": f"{base}/rss/status",
            "refresh": f"{base}/rss/refresh",
            "refresh_specific": f"{base}/rss/refresh/{{feed_type}}",
            "clear_cache": f"{base}/rss/cache",
            "clear_cache_specific": f"{base}/rss/cache/{{feed_type}}",
        },
    })


@router.get(
    "/status",
    response_model=DataResponse,
    responses={
        200: {"description": "Feed status retrieved successfully"},
        500: {"description": "Internal server error", "model": ErrorResponse}
    }
)
async def get_feed_status(
    request: Request,
    feed_scheduler: FeedScheduler = Depends(get_feed_scheduler)
):
    """
    Get scheduler state and per-feed status

    Returns:
    - Whether the refresh job is running and how often it runs
    - Last successful refresh per feed
    - Feed metadata and cache entries from the database
    """
    try:
        scheduler_status = SchedulerStatus(**await feed_scheduler.get_status())
    except Exception as e:
        logger.error(f"Error getting RSS status: {str(e)}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to get RSS status"
        )

    return DataResponse(data={
        **scheduler_status.model_dump(),
        "available_feeds": [kind.value for kind in FeedKind],
        "feed_urls": _feed_links(request).model_dump(),
    })


async def _refresh(feed_scheduler: FeedScheduler, feed_type: Optional[str]) -> DataResponse:
    feed_kind = _feed_kind_or_400(feed_type)
    try:
        outcomes = await feed_scheduler.refresh_now(feed_kind)
    except FeedarrError as e:
        logger.error(f"Error refreshing RSS feeds: {str(e)}")
        raise _error_to_http(e)

    failed = [outcome.kind.value for outcome in outcomes if not outcome.success]
    if feed_kind is not None:
        message = f"{feed_kind.value} feed refreshed successfully"
    elif failed:
        message = f"Feeds refreshed with errors: {', '.join(failed)}"
    else:
        message = "All feeds refreshed successfully"

    return DataResponse(
        success=not failed,
        message=message,
        data={
            "outcomes": [outcome.as_dict() for outcome in outcomes],
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


@router.post(
    "/refresh",
    response_model=DataResponse,
    responses={
        200: {"description": "Feeds refreshed"},
        500: {"description": "Internal server error", "model": ErrorResponse}
    }
)
async def refresh_all_feeds(feed_scheduler: FeedScheduler = Depends(get_feed_scheduler)):
    """Clear the cache and refresh every feed from the upstream API"""
    return await _refresh(feed_scheduler, None)


@router.post(
    "/refresh/{feed_type}",
    response_model=DataResponse,
    responses={
        200: {"description": "Feed refreshed"},
        400: {"description": "Invalid feed type", "model": ErrorResponse},
        502: {"description": "Upstream API failed", "model": ErrorResponse},
        500: {"description": "Internal server error", "model": ErrorResponse}
    }
)
async def refresh_feed(feed_type: str, feed_scheduler: FeedScheduler = Depends(get_feed_scheduler)):
    """Clear the cache for one feed and refresh it from the upstream API"""
    return await _refresh(feed_scheduler, feed_type)


async def _clear(feed_scheduler: FeedScheduler, feed_type: Optional[str]) -> DataResponse:
    feed_kind = _feed_kind_or_400(feed_type)
    try:
        await feed_scheduler.clear_cache(feed_kind)
    except StorageError as e:
        logger.error(f"Error clearing cache: {str(e)}")
        raise _error_to_http(e)

    return DataResponse(data={
        "message": f"{feed_kind.value} cache cleared successfully" if feed_kind else "All caches cleared successfully",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })


@router.delete("/cache", response_model=DataResponse)
async def clear_all_caches(feed_scheduler: FeedScheduler = Depends(get_feed_scheduler)):
    return await _clear(feed_scheduler, None)


@router.delete("/cache/{feed_type}", response_model=DataResponse)
async def clear_feed_cache(feed_type: str, feed_scheduler: FeedScheduler = Depends(get_feed_scheduler)):
    return await _clear(feed_scheduler, feed_type)


@router.get(
    "/{feed_type}",
    response_class=Response,
    responses={
        200: {"description": "RSS document", "content": {"application/rss+xml": {}}},
        400: {"description": "Invalid feed type", "model": ErrorResponse},
        404: {"description": "Feed not generated yet", "model": ErrorResponse}
    }
)
async def get_feed(feed_type: str, feed_scheduler: FeedScheduler = Depends(get_feed_scheduler)):
    """Serve the last generated RSS document for a feed"""
    feed_kind = _feed_kind_or_400(feed_type)
    try:
        content = await feed_scheduler.read_artifact(feed_kind)
    except StorageError as e:
        logger.error(f"Error serving {feed_kind.value} RSS feed: {str(e)}")
        raise _error_to_http(e)

    if content is None:
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND,
            detail=f"{feed_kind.value.capitalize()} RSS feed not found. "
                   "Feed may not have been generated yet. Try again in a few minutes."
        )

    return Response(
        content=content,
        media_type=RSS_CONTENT_TYPE,
        headers={"Cache-Control": f"public, max-age={int(settings.cache_ttl_seconds)}"},
    )
