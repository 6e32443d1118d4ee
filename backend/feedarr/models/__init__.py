# Database models

from .feed_cache import FeedCacheEntry
from .feed_metadata import FeedMetadata

__all__ = [
    "FeedCacheEntry",
    "FeedMetadata",
]
