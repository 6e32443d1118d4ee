"""
Feed Synchronization Service

Refreshes feeds by reusing a fresh cached payload or fetching a new one
from the upstream API, then regenerates the RSS document and records the
outcome in the feed metadata.

Key Features:
- A fresh cache entry suppresses the upstream call entirely
- Feed types refresh concurrently; one failing type never affects the others
- Overlapping refreshes of the same feed type are serialized
- Every refresh attempt writes exactly one feed status row
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from feedarr.schemas.feeds import FeedKind, FeedState, FeedStatusUpdate, parse_feed_kind
from feedarr.services.arr_client import ArrApiClient, normalize_records
from feedarr.services.cache_store import CacheStore
from feedarr.services.rss_generator import RssGenerator

logger = logging.getLogger(__name__)


@dataclass
class RefreshOutcome:
    """Result of refreshing one feed type"""
    kind: FeedKind
    success: bool
    item_count: int = 0
    from_cache: bool = False
    error: Optional[BaseException] = field(default=None, repr=False)
    duration_seconds: float = 0.0

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error is not None else None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "feed_type": self.kind.value,
            "success": self.success,
            "item_count": self.item_count,
            "from_cache": self.from_cache,
            "error_message": self.error_message,
            "duration_seconds": round(self.duration_seconds, 3),
        }


class FeedSyncService:
    """Cache-or-fetch refresh of the calendar, notification and queue feeds"""

    def __init__(
        self,
        cache_store: CacheStore,
        api_client: ArrApiClient,
        rss_generator: RssGenerator,
    ):
        self.cache_store = cache_store
        self.api_client = api_client
        self.rss_generator = rss_generator
        self.last_fetch_times: Dict[FeedKind, datetime] = {}
        self._locks: Dict[FeedKind, asyncio.Lock] = {kind: asyncio.Lock() for kind in FeedKind}

    async def refresh_all(self) -> List[RefreshOutcome]:
        """Refresh every feed type concurrently and collect all outcomes"""
        start_time = time.monotonic()
        kinds = list(FeedKind)
        logger.info("Starting RSS feed update cycle")

        results = await asyncio.gather(
            *(self.refresh_feed(kind) for kind in kinds),
            return_exceptions=True,
        )

        outcomes = []
        for kind, result in zip(kinds, results):
            if isinstance(result, BaseException):
                # Only reachable when the status write itself failed
                logger.error(f"Error refreshing {kind.value} feed: {result}", exc_info=result)
                outcomes.append(RefreshOutcome(kind=kind, success=False, error=result))
            else:
                outcomes.append(result)

        duration = time.monotonic() - start_time
        succeeded = sum(1 for outcome in outcomes if outcome.success)
        logger.info(
            f"RSS feed update cycle completed in {duration:.2f}s: "
            f"{succeeded}/{len(outcomes)} feeds updated"
        )
        return outcomes

    async def refresh_feed(self, kind: FeedKind) -> RefreshOutcome:
        """
        Refresh one feed type

        Failures while fetching, caching or writing the document are recorded
        as an error status and returned in the outcome; the previous document
        stays in place. Only a failure to record the status itself raises.
        """
        kind = parse_feed_kind(kind)
        async with self._locks[kind]:
            outcome = await self._refresh_unlocked(kind)

            if outcome.success:
                status = FeedStatusUpdate(status=FeedState.SUCCESS, item_count=outcome.item_count)
            else:
                status = FeedStatusUpdate(
                    status=FeedState.ERROR,
                    item_count=0,
                    error_message=outcome.error_message,
                )
            await self.cache_store.record_status(kind, status)
            return outcome

    async def _refresh_unlocked(self, kind: FeedKind) -> RefreshOutcome:
        start_time = time.monotonic()
        try:
            payload = await self.cache_store.get(kind)
            from_cache = payload is not None

            if from_cache:
                logger.info(f"Using cached {kind.value} data ({len(normalize_records(payload))} items)")
            else:
                logger.info(f"Fetching {kind.value} data...")
                payload = await self._fetch(kind)
                logger.info(f"Retrieved {len(normalize_records(payload))} {kind.value} items from API")
                await self.cache_store.put(kind, payload)

            document = await self.rss_generator.materialize(kind, payload)
        except Exception as e:
            logger.error(f"Error updating {kind.value} feed: {str(e)}")
            return RefreshOutcome(
                kind=kind,
                success=False,
                error=e,
                duration_seconds=time.monotonic() - start_time,
            )

        self.last_fetch_times[kind] = datetime.now(timezone.utc)
        logger.info(f"{kind.value.capitalize()} RSS feed updated successfully")
        return RefreshOutcome(
            kind=kind,
            success=True,
            item_count=document.item_count,
            from_cache=from_cache,
            duration_seconds=time.monotonic() - start_time,
        )

    async def _fetch(self, kind: FeedKind) -> Any:
        if kind is FeedKind.CALENDAR:
            return await self.api_client.fetch_calendar()
        if kind is FeedKind.NOTIFICATION:
            return await self.api_client.fetch_notifications()
        return await self.api_client.fetch_queue()
