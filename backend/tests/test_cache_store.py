"""
Tests for the persistent feed cache store

Covers TTL expiry, upsert semantics, status recording, statistics and the
mapping of database failures to StorageError.
"""

import pytest

from feedarr.core.database import build_engine, build_session_factory
from feedarr.core.exceptions import StorageError, UnknownFeedKindError
from feedarr.schemas.feeds import FeedKind, FeedState, FeedStatusUpdate
from feedarr.services.cache_store import CacheStore


class TestCacheReads:
    """get/put behaviour around the TTL"""

    @pytest.mark.asyncio
    async def test_get_returns_none_when_nothing_cached(self, cache_store):
        assert await cache_store.get(FeedKind.CALENDAR) is None

    @pytest.mark.asyncio
    async def test_put_then_get_returns_equal_payload(self, cache_store, sample_queue_page):
        await cache_store.put(FeedKind.QUEUE, sample_queue_page)

        assert await cache_store.get(FeedKind.QUEUE) == sample_queue_page

    @pytest.mark.asyncio
    async def test_entry_expires_once_ttl_has_elapsed(self, cache_store, clock, sample_calendar):
        await cache_store.put(FeedKind.CALENDAR, sample_calendar)

        clock.advance(seconds=599)
        assert await cache_store.get(FeedKind.CALENDAR) == sample_calendar

        clock.advance(seconds=1)
        assert await cache_store.get(FeedKind.CALENDAR) is None

    @pytest.mark.asyncio
    async def test_stale_entry_is_kept_until_overwritten(self, cache_store, clock, sample_calendar):
        await cache_store.put(FeedKind.CALENDAR, sample_calendar)
        clock.advance(minutes=30)

        assert await cache_store.get(FeedKind.CALENDAR) is None
        stats = await cache_store.statistics()
        assert stats["total_cache_entries"] == 1
        assert stats["cache"][0]["fresh"] is False

    @pytest.mark.asyncio
    async def test_empty_list_is_a_cache_hit(self, cache_store):
        await cache_store.put(FeedKind.NOTIFICATION, [])

        assert await cache_store.get(FeedKind.NOTIFICATION) == []

    @pytest.mark.asyncio
    async def test_put_accepts_plain_strings(self, cache_store, sample_calendar):
        await cache_store.put("calendar", sample_calendar)

        assert await cache_store.get("calendar") == sample_calendar

    @pytest.mark.asyncio
    async def test_unknown_kind_is_rejected(self, cache_store):
        with pytest.raises(UnknownFeedKindError):
            await cache_store.get("bogus")


class TestCacheUpserts:
    """One row per feed type; created_at survives updates"""

    @pytest.mark.asyncio
    async def test_put_replaces_payload_and_keeps_created_at(self, cache_store, clock):
        await cache_store.put(FeedKind.QUEUE, [{"id": 1}])
        first = (await cache_store.statistics())["cache"][0]

        clock.advance(minutes=2)
        await cache_store.put(FeedKind.QUEUE, [{"id": 2}])
        stats = await cache_store.statistics()

        assert stats["total_cache_entries"] == 1
        assert stats["cache"][0]["created_at"] == first["created_at"]
        assert stats["cache"][0]["updated_at"] != first["updated_at"]
        assert await cache_store.get(FeedKind.QUEUE) == [{"id": 2}]

    @pytest.mark.asyncio
    async def test_put_refreshes_ttl(self, cache_store, clock):
        await cache_store.put(FeedKind.QUEUE, [{"id": 1}])
        clock.advance(minutes=9)
        await cache_store.put(FeedKind.QUEUE, [{"id": 2}])
        clock.advance(minutes=9)

        assert await cache_store.get(FeedKind.QUEUE) == [{"id": 2}]


class TestCacheClear:

    @pytest.mark.asyncio
    async def test_clear_one_kind_leaves_others(self, cache_store, sample_calendar, sample_notifications):
        await cache_store.put(FeedKind.CALENDAR, sample_calendar)
        await cache_store.put(FeedKind.NOTIFICATION, sample_notifications)

        await cache_store.clear(FeedKind.CALENDAR)

        assert await cache_store.get(FeedKind.CALENDAR) is None
        assert await cache_store.get(FeedKind.NOTIFICATION) == sample_notifications

    @pytest.mark.asyncio
    async def test_clear_all(self, cache_store, sample_calendar, sample_notifications):
        await cache_store.put(FeedKind.CALENDAR, sample_calendar)
        await cache_store.put(FeedKind.NOTIFICATION, sample_notifications)

        await cache_store.clear()

        assert (await cache_store.statistics())["total_cache_entries"] == 0

    @pytest.mark.asyncio
    async def test_clear_is_idempotent(self, cache_store):
        await cache_store.clear(FeedKind.QUEUE)
        await cache_store.clear(FeedKind.QUEUE)
        await cache_store.clear()


class TestFeedStatus:

    @pytest.mark.asyncio
    async def test_record_status_upserts_single_row(self, cache_store, clock):
        await cache_store.record_status(
            FeedKind.QUEUE,
            FeedStatusUpdate(status=FeedState.ERROR, error_message="HTTP 500"),
        )
        clock.advance(minutes=5)
        await cache_store.record_status(
            FeedKind.QUEUE,
            FeedStatusUpdate(status=FeedState.SUCCESS, item_count=3),
        )

        stats = await cache_store.statistics()
        assert len(stats["feeds"]) == 1
        status = await cache_store.get_status(FeedKind.QUEUE)
        assert status["status"] == "success"
        assert status["item_count"] == 3
        assert status["error_message"] is None
        assert status["last_fetch"] == clock.now.isoformat()

    @pytest.mark.asyncio
    async def test_get_status_for_never_refreshed_kind(self, cache_store):
        assert await cache_store.get_status(FeedKind.CALENDAR) is None

    def test_negative_item_count_is_invalid(self):
        with pytest.raises(ValueError):
            FeedStatusUpdate(status=FeedState.SUCCESS, item_count=-1)


class TestStatistics:

    @pytest.mark.asyncio
    async def test_empty_store_returns_empty_collections(self, cache_store):
        assert await cache_store.statistics() == {
            "feeds": [],
            "cache": [],
            "total_cache_entries": 0,
        }

    @pytest.mark.asyncio
    async def test_statistics_lists_entries_and_statuses(self, cache_store, sample_calendar):
        await cache_store.put(FeedKind.CALENDAR, sample_calendar)
        await cache_store.record_status(
            FeedKind.CALENDAR,
            FeedStatusUpdate(status=FeedState.SUCCESS, item_count=len(sample_calendar)),
        )

        stats = await cache_store.statistics()

        assert stats["total_cache_entries"] == 1
        assert stats["cache"][0]["feed_type"] == "calendar"
        assert stats["cache"][0]["fresh"] is True
        assert stats["feeds"][0]["feed_type"] == "calendar"
        assert stats["feeds"][0]["item_count"] == 2


class TestPersistence:

    @pytest.mark.asyncio
    async def test_entries_survive_a_new_store_instance(self, db_engine, cache_store, clock, sample_calendar):
        await cache_store.put(FeedKind.CALENDAR, sample_calendar)

        reopened = CacheStore(build_session_factory(db_engine), ttl_seconds=600, clock=clock)

        assert await reopened.get(FeedKind.CALENDAR) == sample_calendar


class TestStorageErrors:
    """Database failures surface as StorageError"""

    @pytest.fixture
    def broken_store(self, tmp_path, clock):
        # Parent directory never created, so SQLite cannot open the file
        engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'feedarr.db'}", echo=False)
        return CacheStore(build_session_factory(engine), ttl_seconds=600, clock=clock)

    @pytest.mark.asyncio
    async def test_get_raises_storage_error(self, broken_store):
        with pytest.raises(StorageError):
            await broken_store.get(FeedKind.CALENDAR)

    @pytest.mark.asyncio
    async def test_put_raises_storage_error(self, broken_store):
        with pytest.raises(StorageError):
            await broken_store.put(FeedKind.CALENDAR, [])

    @pytest.mark.asyncio
    async def test_record_status_raises_storage_error(self, broken_store):
        with pytest.raises(StorageError):
            await broken_store.record_status(FeedKind.CALENDAR, FeedStatusUpdate(status=FeedState.SUCCESS))

    @pytest.mark.asyncio
    async def test_statistics_raises_storage_error(self, broken_store):
        with pytest.raises(StorageError):
            await broken_store.statistics()
