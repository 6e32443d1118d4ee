"""
Pytest configuration and fixtures for the feed engine tests

Every test gets its own SQLite file and feeds directory under tmp_path, a
controllable clock, and a mocked upstream client.
"""

import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, Mock
import sys

# Add the backend directory to the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from feedarr.core.database import build_engine, build_session_factory, close_db, init_db
from feedarr.core.scheduler import FeedScheduler
from feedarr.services.arr_client import ArrApiClient
from feedarr.services.cache_store import CacheStore
from feedarr.services.feed_sync_service import FeedSyncService
from feedarr.services.rss_generator import RssGenerator


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def db_engine(tmp_path):
    """Provide a fresh SQLite database with all tables created"""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'data' / 'feedarr.db'}", echo=False)
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def cache_store(db_engine, clock):
    return CacheStore(build_session_factory(db_engine), ttl_seconds=600, clock=clock)


@pytest.fixture
def feeds_dir(tmp_path):
    return tmp_path / "feeds"


@pytest.fixture
def rss_generator(feeds_dir, clock):
    return RssGenerator(
        feeds_dir=str(feeds_dir),
        site_url="http://feeds.test",
        ttl_minutes=10,
        clock=clock,
    )


@pytest.fixture
def mock_api_client(sample_calendar, sample_notifications, sample_queue_page):
    """Provide a mocked upstream client answering with the sample payloads"""
    client = Mock(spec=ArrApiClient)
    client.fetch_calendar = AsyncMock(return_value=sample_calendar)
    client.fetch_notifications = AsyncMock(return_value=sample_notifications)
    client.fetch_queue = AsyncMock(return_value=sample_queue_page)
    return client


@pytest.fixture
def sync_service(cache_store, mock_api_client, rss_generator):
    return FeedSyncService(cache_store, mock_api_client, rss_generator)


@pytest.fixture
async def feed_scheduler(sync_service):
    feed_scheduler = FeedScheduler(sync_service, fetch_frequency=300000)
    yield feed_scheduler
    await feed_scheduler.stop()


@pytest.fixture
def sample_calendar():
    return [
        {
            "id": 42,
            "title": "Dune: Part Two",
            "year": 2024,
            "status": "released",
            "overview": "Paul Atreides unites with Chani & the Fremen.",
            "inCinemas": "2024-02-27T00:00:00Z",
            "digitalRelease": "2024-04-16T00:00:00Z",
            "physicalRelease": "2024-05-14T00:00:00Z",
            "genres": ["Science Fiction", "Adventure", "Drama", "Action"],
            "imdbId": "tt15239678",
        },
        {
            "id": 43,
            "title": "Furiosa",
            "inCinemas": "2024-05-22T00:00:00Z",
        },
    ]


@pytest.fixture
def sample_notifications():
    return [
        {
            "id": 1,
            "name": "Discord Alerts",
            "implementationName": "Discord",
            "configContract": "DiscordSettings",
            "fields": [{"name": "webHookUrl"}, {"name": "username"}, {"name": "avatar"}],
        },
    ]


@pytest.fixture
def sample_queue_page():
    """Queue endpoint answer in its paginated envelope form"""
    return {
        "page": 1,
        "pageSize": 50,
        "totalRecords": 1,
        "records": [
            {
                "id": 7,
                "status": "downloading",
                "size": 1073741824,
                "sizeleft": 536870912,
                "added": "2024-01-14T08:30:00Z",
                "protocol": "torrent",
                "indexer": "Example Indexer",
                "quality": {"quality": {"name": "Bluray-1080p"}},
                "movie": {
                    "title": "The Matrix",
                    "imdbId": "tt0133093",
                    "overview": "A hacker learns the truth <about> reality.",
                },
            },
        ],
    }
