"""
Background Feed Scheduler

Drives periodic refresh of the RSS feeds using APScheduler and exposes the
operations the HTTP layer calls into: reading feeds, manual refresh, cache
clearing and status.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from feedarr.core.config import settings
from feedarr.schemas.feeds import FeedKind, parse_feed_kind
from feedarr.services.feed_sync_service import FeedSyncService, RefreshOutcome

logger = logging.getLogger(__name__)

FETCH_JOB_ID = "rss-fetcher"
MILLIS_PER_MINUTE = 60 * 1000


def interval_minutes(fetch_frequency_ms: int) -> int:
    """Whole minutes between refreshes; anything under a minute runs every minute"""
    return max(1, int(fetch_frequency_ms) // MILLIS_PER_MINUTE)


class FeedScheduler:
    """Owns the recurring refresh job and the serving-layer operations"""

    def __init__(self, sync_service: FeedSyncService, fetch_frequency: Optional[int] = None):
        self.sync_service = sync_service
        self.cache_store = sync_service.cache_store
        self.rss_generator = sync_service.rss_generator
        self.fetch_frequency = fetch_frequency or settings.FETCH_FREQUENCY
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.is_running = False
        self.initial_cycle: Optional[asyncio.Task] = None

    @property
    def interval_minutes(self) -> int:
        return interval_minutes(self.fetch_frequency)

    async def start(self, run_immediately: bool = True) -> None:
        """Start the recurring refresh job; a second call while running is a no-op"""
        if self.is_running:
            logger.warning("RSS feed scheduler already running; start ignored")
            return

        logger.info("Starting RSS feed scheduler...")
        logger.info(
            f"Fetch frequency: {self.fetch_frequency}ms "
            f"(every {self.interval_minutes} minute(s))"
        )

        try:
            self.scheduler = AsyncIOScheduler(
                timezone="UTC",
                job_defaults={
                    "coalesce": True,  # Combine multiple pending executions into one
                    "max_instances": 1,  # Only one instance of the job at a time
                    "misfire_grace_time": 60,
                },
            )
            self.scheduler.add_listener(self._job_executed_listener, EVENT_JOB_EXECUTED)
            self.scheduler.add_listener(self._job_error_listener, EVENT_JOB_ERROR)

            self.scheduler.add_job(
                func=self._scheduled_cycle,
                trigger=IntervalTrigger(minutes=self.interval_minutes),
                id=FETCH_JOB_ID,
                name="RSS Feed Refresh",
                replace_existing=True,
            )
            self.scheduler.start()
            self.is_running = True
        except Exception as e:
            logger.error(f"Failed to start RSS feed scheduler: {str(e)}", exc_info=True)
            self.scheduler = None
            raise

        logger.info(f"Scheduled jobs: {self.active_jobs()}")

        if run_immediately:
            # Initial refresh without waiting for the first tick
            self.initial_cycle = asyncio.create_task(self._scheduled_cycle())

        logger.info("RSS feed scheduler started successfully")

    async def stop(self) -> None:
        """Stop scheduling refreshes; a cycle already in flight runs to completion"""
        if not self.is_running or not self.scheduler:
            return

        logger.info("Stopping RSS feed scheduler...")
        try:
            self.scheduler.shutdown(wait=False)
        finally:
            self.scheduler = None
            self.is_running = False
        logger.info("RSS feed scheduler stopped")

    async def run_cycle(self, kind: Optional[Any] = None) -> List[RefreshOutcome]:
        """Refresh one feed type, or all of them when kind is None"""
        if kind is None:
            return await self.sync_service.refresh_all()

        feed_kind = parse_feed_kind(kind)
        return [await self.sync_service.refresh_feed(feed_kind)]

    async def _scheduled_cycle(self) -> None:
        """Timer entry point; failures are logged and never stop the scheduler"""
        try:
            await self.run_cycle()
        except Exception as e:
            logger.error(f"Error during RSS feed update cycle: {str(e)}", exc_info=True)

    # --- serving-layer operations -----------------------------------------

    async def read_artifact(self, kind: Any) -> Optional[bytes]:
        return await self.rss_generator.read_feed(parse_feed_kind(kind))

    async def refresh_now(self, kind: Optional[Any] = None) -> List[RefreshOutcome]:
        """
        Manual refresh: drop the cached payload so fresh data is fetched

        For a single feed type, a failed refresh re-raises its error. For all
        feed types the outcomes are returned so partial failures can be reported.
        """
        feed_kind = parse_feed_kind(kind) if kind is not None else None
        logger.info(f"Manual update requested for: {feed_kind.value if feed_kind else 'all feeds'}")

        await self.cache_store.clear(feed_kind)
        outcomes = await self.run_cycle(feed_kind)

        if feed_kind is not None and not outcomes[0].success:
            raise outcomes[0].error
        return outcomes

    async def clear_cache(self, kind: Optional[Any] = None) -> None:
        feed_kind = parse_feed_kind(kind) if kind is not None else None
        await self.cache_store.clear(feed_kind)

    def active_jobs(self) -> List[str]:
        if not self.scheduler:
            return []
        return [job.id for job in self.scheduler.get_jobs()]

    def get_job_status(self) -> Dict[str, Any]:
        """Get status of the scheduled job"""
        if not self.scheduler:
            return {"status": "not_started", "jobs": []}

        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger),
            })

        return {
            "status": "running" if self.is_running else "stopped",
            "jobs": jobs,
        }

    async def get_status(self) -> Dict[str, Any]:
        """Scheduler state plus store statistics; never raises for store failures"""
        status: Dict[str, Any] = {
            "running": self.is_running,
            "fetch_frequency": self.fetch_frequency,
            "interval_minutes": self.interval_minutes,
            "last_fetch_times": {
                kind.value: self._isoformat(self.sync_service.last_fetch_times.get(kind))
                for kind in FeedKind
            },
            "active_jobs": self.active_jobs(),
        }

        try:
            status["database"] = await self.cache_store.statistics()
        except Exception as e:
            logger.error(f"Error getting database statistics: {str(e)}")
            status["database"] = {"error": str(e)}

        return status

    @staticmethod
    def _isoformat(value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value else None

    def _job_executed_listener(self, event):
        """Listener for successful job executions"""
        logger.info(f"Job '{event.job_id}' executed successfully")

    def _job_error_listener(self, event):
        """Listener for job execution errors"""
        logger.error(
            f"Job '{event.job_id}' failed: {event.exception}",
            exc_info=event.exception,
        )
