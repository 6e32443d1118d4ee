"""
Common schemas and response models
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseResponse(BaseModel):
    """Base response model"""
    success: bool = Field(default=True)
    message: Optional[str] = Field(default=None)
    timestamp: datetime = Field(default_factory=_utcnow)


class DataResponse(BaseResponse):
    """Response with data"""
    data: Any = Field(...)


class ErrorResponse(BaseResponse):
    """Error response model"""
    success: bool = Field(default=False)
    error_code: Optional[str] = Field(default=None)
    details: Optional[Dict[str, Any]] = Field(default=None)


class HealthResponse(BaseModel):
    """Health check response"""
    status: str = Field(...)
    timestamp: datetime = Field(default_factory=_utcnow)
    version: str = Field(...)
    uptime_seconds: float = Field(...)
    scheduler: Dict[str, Any] = Field(default_factory=dict)
    configuration: Dict[str, Any] = Field(default_factory=dict)
