"""Database engine and session management.

One asyncpg engine serves the API, the Celery helpers and the admin
bootstrap script.  Pool sizing comes from ``Settings.db_pool_size`` and
``Settings.db_max_overflow``.

Sessions never commit on their own.  Every public service method decides
its own transaction boundary and commits exactly once; ``get_db`` only
rolls back what a failing request left open.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

import mc_exchange.core.models  # noqa: F401  (registers every mapper)
from mc_exchange.config.settings import get_settings
from mc_exchange.core.models.base import Base  # noqa: F401


def build_engine(database_url: str, *, pool_size: int = 10, max_overflow: int = 20, echo: bool = False) -> AsyncEngine:
    """Create an async engine with connection health checks enabled."""
    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
    )


_settings = get_settings()

async_engine = build_engine(
    str(_settings.database_url),
    pool_size=_settings.db_pool_size,
    max_overflow=_settings.db_max_overflow,
    echo=_settings.db_echo,
)

AsyncSessionLocal: async_sessionmaker[AsyncSession] = async_sessionmaker(
    bind=async_engine,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session dependency.

    Rolls back when the handler raises so a half-applied escrow step never
    leaks into the next request on the same connection.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
