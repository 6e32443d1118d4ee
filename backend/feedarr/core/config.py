"""
Application configuration settings
"""

from typing import Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "Feedarr"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    PORT: int = 3000

    # Upstream media-management API
    SERVER_URL: str = "http://localhost"
    SERVER_PORT: int = 7878
    API_BASE_URL: str = "/api/v3"
    API_KEY: str = ""
    REQUEST_TIMEOUT: float = 30.0

    # Refresh and cache timing (milliseconds)
    FETCH_FREQUENCY: int = 300000   # 5 minutes
    RSS_CACHE_TTL: int = 600000     # 10 minutes

    # Storage
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/feedarr.db"
    DATABASE_ECHO: bool = False
    FEEDS_DIR: str = "./feeds"

    # Public address used inside generated feeds
    SITE_URL: Optional[str] = None

    @field_validator("SERVER_URL", "API_BASE_URL", "SITE_URL", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v):
        if isinstance(v, str):
            return v.strip().rstrip("/")
        return v

    @field_validator("API_KEY", mode="after")
    @classmethod
    def strip_api_key(cls, v: str) -> str:
        return (v or "").strip()

    @property
    def upstream_base_url(self) -> str:
        """Base URL of the upstream API, e.g. http://radarr:7878/api/v3"""
        return f"{self.SERVER_URL}:{self.SERVER_PORT}{self.API_BASE_URL}"

    @property
    def cache_ttl_seconds(self) -> float:
        return self.RSS_CACHE_TTL / 1000

    @property
    def public_site_url(self) -> str:
        return self.SITE_URL or f"http://localhost:{self.PORT}"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


# Create settings instance
settings = Settings()
