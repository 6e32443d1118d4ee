"""
Feed cache model for persistent caching of raw upstream payloads
"""

from sqlalchemy import Column, String, DateTime, JSON

from feedarr.core.database import Base


class FeedCacheEntry(Base):
    """Most recent raw payload per feed type (one row per feed type)"""
    __tablename__ = "feed_cache"

    feed_type = Column(String(20), primary_key=True)
    data = Column(JSON, nullable=False)

    # Set by the cache store, not the database, so TTL checks share one clock
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self):
        return f"<FeedCacheEntry(feed_type='{self.feed_type}', updated_at={self.updated_at})>"
