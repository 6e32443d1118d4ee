"""
Database engine and session management

SQLite through SQLAlchemy's async engine. The feed cache and feed status
tables live here so they survive restarts.
"""

import logging
from pathlib import Path
from typing import Optional

from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from feedarr.core.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def _ensure_sqlite_directory(url: URL) -> None:
    """Create the parent directory of a file-backed SQLite database"""
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        return
    Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)


def build_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> AsyncEngine:
    return create_async_engine(
        database_url or settings.DATABASE_URL,
        echo=settings.DATABASE_ECHO if echo is None else echo,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


engine = build_engine()
AsyncSessionLocal = build_session_factory(engine)


async def init_db(db_engine: Optional[AsyncEngine] = None) -> None:
    """Create the data directory and all tables"""
    # Register models on Base.metadata
    from feedarr import models  # noqa: F401

    db_engine = db_engine or engine
    _ensure_sqlite_directory(db_engine.url)
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database initialized at: {db_engine.url.database}")


async def close_db(db_engine: Optional[AsyncEngine] = None) -> None:
    """Dispose of the engine's connection pool"""
    db_engine = db_engine or engine
    await db_engine.dispose()
    logger.info("Database connection closed")
