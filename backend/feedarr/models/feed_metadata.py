"""
Feed Metadata Model

Tracks the outcome of the latest refresh attempt for each feed type.
"""

from sqlalchemy import Column, String, DateTime, Integer, Text

from feedarr.core.database import Base


class FeedMetadata(Base):
    """Status of the most recent refresh per feed type"""
    __tablename__ = "feed_metadata"

    feed_type = Column(String(20), primary_key=True)

    last_fetch = Column(DateTime(timezone=True), nullable=True, index=True)
    item_count = Column(Integer, nullable=False, default=0)

    status = Column(String(20), nullable=False, default="pending", index=True)  # 'pending', 'success', 'error'
    error_message = Column(Text, nullable=True)

    updated_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<FeedMetadata(feed_type='{self.feed_type}', status='{self.status}', item_count={self.item_count})>"

    @property
    def status_summary(self) -> dict:
        """Return a serializable summary of the feed status"""
        return {
            "feed_type": self.feed_type,
            "last_fetch": self.last_fetch.isoformat() if self.last_fetch else None,
            "item_count": self.item_count,
            "status": self.status,
            "error_message": self.error_message,
        }
