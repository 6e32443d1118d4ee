"""
Typed errors raised by the feed engine
"""

from typing import Optional


class FeedarrError(Exception):
    """Base class for all feed engine errors"""


class UpstreamError(FeedarrError):
    """The upstream API failed: transport error, timeout or non-2xx status"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.message} (HTTP {self.status_code})"
        return self.message


class UnknownFeedKindError(FeedarrError):
    """A feed kind outside calendar/notification/queue was requested"""

    def __init__(self, kind):
        super().__init__(f"Unknown feed type: {kind}")
        self.kind = kind


class StorageError(FeedarrError):
    """Cache, status or artifact persistence failed"""
