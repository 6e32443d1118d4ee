"""
Feed schemas
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum

from feedarr.core.exceptions import UnknownFeedKindError


class FeedKind(str, Enum):
    """Feed kind enum"""
    CALENDAR = "calendar"
    NOTIFICATION = "notification"
    QUEUE = "queue"


class FeedState(str, Enum):
    """Refresh state enum"""
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


def parse_feed_kind(value: Any) -> FeedKind:
    """Convert a caller-supplied value into a FeedKind"""
    if isinstance(value, FeedKind):
        return value
    try:
        return FeedKind(value)
    except ValueError:
        raise UnknownFeedKindError(value) from None


class FeedStatusUpdate(BaseModel):
    """Outcome of one refresh attempt, written to feed metadata"""
    status: FeedState = Field(...)
    item_count: int = Field(default=0, ge=0)
    last_fetch: Optional[datetime] = Field(default=None)
    error_message: Optional[str] = Field(default=None)


class FeedLinks(BaseModel):
    """Public feed addresses"""
    calendar: str = Field(...)
    notification: str = Field(...)
    queue: str = Field(...)


class SchedulerStatus(BaseModel):
    """Scheduler status as reported to the serving layer"""
    running: bool = Field(...)
    fetch_frequency: int = Field(...)
    interval_minutes: int = Field(...)
    last_fetch_times: Dict[str, Optional[str]] = Field(default_factory=dict)
    active_jobs: List[str] = Field(default_factory=list)
    database: Dict[str, Any] = Field(default_factory=dict)
