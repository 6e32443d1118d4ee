"""
Feed Cache Store

Durable storage for the raw upstream payload of each feed type and for the
status of the latest refresh attempt. Both tables hold at most one row per
feed type; writes are single INSERT ... ON CONFLICT statements so a reader
never observes a half-applied row.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from feedarr.core.config import settings
from feedarr.core.exceptions import StorageError
from feedarr.models.feed_cache import FeedCacheEntry
from feedarr.models.feed_metadata import FeedMetadata
from feedarr.schemas.feeds import FeedKind, FeedStatusUpdate, parse_feed_kind

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; they are always stored as UTC"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


class CacheStore:
    """Persistent feed cache with a time-to-live on reads"""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        if session_factory is None:
            from feedarr.core.database import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self.session_factory = session_factory
        self.ttl = timedelta(seconds=settings.cache_ttl_seconds if ttl_seconds is None else ttl_seconds)
        self.clock = clock

    def _is_fresh(self, updated_at: Optional[datetime]) -> bool:
        if updated_at is None:
            return False
        return self.clock() - as_utc(updated_at) < self.ttl

    async def get(self, kind: FeedKind) -> Optional[Any]:
        """
        Return the cached payload for a feed type

        Returns None when there is no entry or the entry is older than the TTL.
        Stale rows are left in place until the next put overwrites them.
        """
        kind = parse_feed_kind(kind)
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(FeedCacheEntry).where(FeedCacheEntry.feed_type == kind.value)
                )
                entry = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read {kind.value} cache: {e}") from e

        if entry is None or not self._is_fresh(entry.updated_at):
            return None
        return entry.data

    async def put(self, kind: FeedKind, payload: Any) -> None:
        """Upsert the payload for a feed type; created_at is kept on update"""
        kind = parse_feed_kind(kind)
        now = self.clock()
        stmt = insert(FeedCacheEntry).values(
            feed_type=kind.value,
            data=payload,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["feed_type"],
            set_={"data": stmt.excluded.data, "updated_at": stmt.excluded.updated_at},
        )
        await self._execute_write(stmt, f"write {kind.value} cache")
        logger.debug(f"Cached {kind.value} payload")

    async def clear(self, kind: Optional[FeedKind] = None) -> None:
        """Delete one cache entry, or all of them when kind is None"""
        stmt = delete(FeedCacheEntry)
        if kind is not None:
            kind = parse_feed_kind(kind)
            stmt = stmt.where(FeedCacheEntry.feed_type == kind.value)
        await self._execute_write(stmt, "clear cache")
        logger.info(f"Cleared cache for {kind.value if kind else 'all feeds'}")

    async def record_status(self, kind: FeedKind, status: FeedStatusUpdate) -> None:
        """Upsert the feed metadata row for a feed type"""
        kind = parse_feed_kind(kind)
        now = self.clock()
        values = {
            "last_fetch": status.last_fetch or now,
            "item_count": status.item_count,
            "status": status.status.value,
            "error_message": status.error_message,
            "updated_at": now,
        }
        stmt = insert(FeedMetadata).values(feed_type=kind.value, **values)
        stmt = stmt.on_conflict_do_update(index_elements=["feed_type"], set_=values)
        await self._execute_write(stmt, f"record {kind.value} status")

    async def get_status(self, kind: FeedKind) -> Optional[Dict[str, Any]]:
        kind = parse_feed_kind(kind)
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(FeedMetadata).where(FeedMetadata.feed_type == kind.value)
                )
                row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read {kind.value} status: {e}") from e
        return self._status_dict(row) if row else None

    async def statistics(self) -> Dict[str, Any]:
        """Feed statuses and cache entry summaries for observability"""
        try:
            async with self.session_factory() as db:
                feeds = (await db.execute(
                    select(FeedMetadata).order_by(FeedMetadata.feed_type)
                )).scalars().all()
                cache_rows = (await db.execute(
                    select(
                        FeedCacheEntry.feed_type,
                        FeedCacheEntry.created_at,
                        FeedCacheEntry.updated_at,
                    ).order_by(FeedCacheEntry.feed_type)
                )).all()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read statistics: {e}") from e

        cache: List[Dict[str, Any]] = [
            {
                "feed_type": row.feed_type,
                "created_at": _isoformat(row.created_at),
                "updated_at": _isoformat(row.updated_at),
                "fresh": self._is_fresh(row.updated_at),
            }
            for row in cache_rows
        ]
        return {
            "feeds": [self._status_dict(row) for row in feeds],
            "cache": cache,
            "total_cache_entries": len(cache),
        }

    async def _execute_write(self, stmt, action: str) -> None:
        try:
            async with self.session_factory() as db:
                await db.execute(stmt)
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to {action}: {str(e)}")
            raise StorageError(f"Failed to {action}: {e}") from e

    @staticmethod
    def _status_dict(row: FeedMetadata) -> Dict[str, Any]:
        summary = row.status_summary
        summary["last_fetch"] = _isoformat(row.last_fetch)
        return summary
