"""
Tests for the cache-or-fetch feed refresh
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from feedarr.core.exceptions import StorageError, UnknownFeedKindError, UpstreamError
from feedarr.schemas.feeds import FeedKind


class TestRefreshFeed:

    @pytest.mark.asyncio
    async def test_cache_miss_fetches_and_caches(self, sync_service, mock_api_client, cache_store, sample_calendar):
        outcome = await sync_service.refresh_feed(FeedKind.CALENDAR)

        assert outcome.success
        assert outcome.item_count == 2
        assert outcome.from_cache is False
        mock_api_client.fetch_calendar.assert_awaited_once()
        assert await cache_store.get(FeedKind.CALENDAR) == sample_calendar

    @pytest.mark.asyncio
    async def test_fresh_cache_skips_upstream(self, sync_service, mock_api_client, cache_store, sample_calendar):
        await cache_store.put(FeedKind.CALENDAR, sample_calendar)

        outcome = await sync_service.refresh_feed(FeedKind.CALENDAR)

        assert outcome.success
        assert outcome.from_cache is True
        assert mock_api_client.fetch_calendar.call_count == 0

    @pytest.mark.asyncio
    async def test_stale_cache_fetches_again(self, sync_service, mock_api_client, clock):
        await sync_service.refresh_feed(FeedKind.NOTIFICATION)
        clock.advance(minutes=11)

        outcome = await sync_service.refresh_feed(FeedKind.NOTIFICATION)

        assert outcome.from_cache is False
        assert mock_api_client.fetch_notifications.call_count == 2

    @pytest.mark.asyncio
    async def test_cached_empty_list_is_a_hit(self, sync_service, mock_api_client, cache_store, rss_generator):
        await cache_store.put(FeedKind.NOTIFICATION, [])

        outcome = await sync_service.refresh_feed(FeedKind.NOTIFICATION)

        assert outcome.success
        assert outcome.from_cache is True
        assert outcome.item_count == 0
        assert mock_api_client.fetch_notifications.call_count == 0
        assert rss_generator.feed_exists(FeedKind.NOTIFICATION)

    @pytest.mark.asyncio
    async def test_success_writes_feed_and_status(self, sync_service, cache_store, rss_generator):
        await sync_service.refresh_feed(FeedKind.QUEUE)

        assert rss_generator.feed_exists(FeedKind.QUEUE)
        status = await cache_store.get_status(FeedKind.QUEUE)
        assert status["status"] == "success"
        assert status["item_count"] == 1
        assert status["error_message"] is None
        assert FeedKind.QUEUE in sync_service.last_fetch_times

    @pytest.mark.asyncio
    async def test_upstream_failure_is_recorded(self, sync_service, mock_api_client, cache_store, rss_generator):
        mock_api_client.fetch_queue.side_effect = UpstreamError("Request to /queue returned Internal Server Error", 500)

        outcome = await sync_service.refresh_feed(FeedKind.QUEUE)

        assert outcome.success is False
        assert isinstance(outcome.error, UpstreamError)
        assert not rss_generator.feed_exists(FeedKind.QUEUE)
        assert await cache_store.get(FeedKind.QUEUE) is None
        status = await cache_store.get_status(FeedKind.QUEUE)
        assert status["status"] == "error"
        assert status["item_count"] == 0
        assert "HTTP 500" in status["error_message"]
        assert FeedKind.QUEUE not in sync_service.last_fetch_times

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_feed(self, sync_service, mock_api_client, cache_store, rss_generator):
        await sync_service.refresh_feed(FeedKind.QUEUE)
        previous = await rss_generator.read_feed(FeedKind.QUEUE)

        await cache_store.clear(FeedKind.QUEUE)
        mock_api_client.fetch_queue.side_effect = UpstreamError("Request to /queue timed out")
        outcome = await sync_service.refresh_feed(FeedKind.QUEUE)

        assert outcome.success is False
        assert await rss_generator.read_feed(FeedKind.QUEUE) == previous

    @pytest.mark.asyncio
    async def test_storage_failure_on_status_write_raises(self, sync_service, cache_store):
        cache_store.record_status = AsyncMock(side_effect=StorageError("database is locked"))

        with pytest.raises(StorageError):
            await sync_service.refresh_feed(FeedKind.CALENDAR)

    @pytest.mark.asyncio
    async def test_unknown_kind(self, sync_service, mock_api_client):
        with pytest.raises(UnknownFeedKindError):
            await sync_service.refresh_feed("bogus")

        assert mock_api_client.fetch_calendar.call_count == 0

    @pytest.mark.asyncio
    async def test_overlapping_refreshes_of_one_kind_fetch_once(self, sync_service, mock_api_client):
        first, second = await asyncio.gather(
            sync_service.refresh_feed(FeedKind.CALENDAR),
            sync_service.refresh_feed(FeedKind.CALENDAR),
        )

        assert first.success and second.success
        assert mock_api_client.fetch_calendar.call_count == 1
        assert sorted([first.from_cache, second.from_cache]) == [False, True]


class TestRefreshAll:

    @pytest.mark.asyncio
    async def test_all_kinds_refreshed(self, sync_service, rss_generator):
        outcomes = await sync_service.refresh_all()

        assert [o.kind for o in outcomes] == list(FeedKind)
        assert all(o.success for o in outcomes)
        assert all(rss_generator.feed_exists(kind) for kind in FeedKind)

    @pytest.mark.asyncio
    async def test_one_failing_kind_does_not_affect_others(self, sync_service, mock_api_client, cache_store, rss_generator):
        mock_api_client.fetch_queue.side_effect = UpstreamError("Request to /queue failed: Connection refused")

        outcomes = {o.kind: o for o in await sync_service.refresh_all()}

        assert outcomes[FeedKind.CALENDAR].success
        assert outcomes[FeedKind.NOTIFICATION].success
        assert outcomes[FeedKind.QUEUE].success is False
        assert rss_generator.feed_exists(FeedKind.CALENDAR)
        assert rss_generator.feed_exists(FeedKind.NOTIFICATION)
        assert not rss_generator.feed_exists(FeedKind.QUEUE)

        stats = await cache_store.statistics()
        assert {f["feed_type"]: f["status"] for f in stats["feeds"]} == {
            "calendar": "success",
            "notification": "success",
            "queue": "error",
        }

    @pytest.mark.asyncio
    async def test_status_write_failure_becomes_failed_outcome(self, sync_service, cache_store):
        cache_store.record_status = AsyncMock(side_effect=StorageError("database is locked"))

        outcomes = await sync_service.refresh_all()

        assert len(outcomes) == 3
        assert all(o.success is False for o in outcomes)
        assert all(isinstance(o.error, StorageError) for o in outcomes)

    @pytest.mark.asyncio
    async def test_outcome_as_dict(self, sync_service, mock_api_client):
        mock_api_client.fetch_notifications.side_effect = UpstreamError("Request to /notification returned Unauthorized", 401)

        outcomes = {o.kind: o.as_dict() for o in await sync_service.refresh_all()}

        assert outcomes[FeedKind.NOTIFICATION]["success"] is False
        assert outcomes[FeedKind.NOTIFICATION]["error_message"] == (
            "Request to /notification returned Unauthorized (HTTP 401)"
        )
        assert outcomes[FeedKind.CALENDAR]["error_message"] is None
        assert outcomes[FeedKind.CALENDAR]["item_count"] == 2
