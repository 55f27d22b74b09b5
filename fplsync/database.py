"""
Async SQLAlchemy engine and scoped sessions (SQLite or PostgreSQL).

The engine is built on first use from Settings.DATABASE_URL, so importing
this module never opens a connection. Jobs acquire a session per call via
session_scope() and release it on every exit path.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from fplsync.config import get_settings

logger = logging.getLogger(__name__)

_ASYNC_DRIVERS = {
    "sqlite://": "sqlite+aiosqlite://",
    "postgres://": "postgresql+asyncpg://",
    "postgresql://": "postgresql+asyncpg://",
}

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def get_database_url(url: Optional[str] = None) -> str:
    """Rewrite a sync DATABASE_URL to its async driver (aiosqlite / asyncpg)."""
    url = url or get_settings().DATABASE_URL
    for prefix, async_prefix in _ASYNC_DRIVERS.items():
        if url.startswith(prefix):
            return async_prefix + url[len(prefix):]
    return url


def build_engine(url: Optional[str] = None) -> AsyncEngine:
    url = get_database_url(url)
    if url.startswith("sqlite"):
        # One shared connection; job tracking writes are serialized anyway
        return create_async_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(
        url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=5,
        pool_recycle=300,
    )


def get_engine() -> AsyncEngine:
    global _engine, _session_factory
    if _engine is None:
        _engine = build_engine()
        _session_factory = async_sessionmaker(
            bind=_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _engine


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Session for one job call: acquired here, closed on exit."""
    get_engine()
    async with _session_factory() as session:
        yield session


async def init_db() -> None:
    """Create missing tables (job_runs, historical_player_performances)."""
    async with get_engine().begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("[DB] Tables ready")


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("[DB] Connections closed")
