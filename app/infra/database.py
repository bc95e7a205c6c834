"""
Database engine and sessions.

One async engine per process, built from ``DATABASE_URL``. Repository
methods each open a short transaction through ``get_db_context``.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from app.config import settings
from app.models.database import Base

logger = logging.getLogger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]


def build_engine(url: str, echo: bool = False, **kwargs) -> AsyncEngine:
    """Create an async engine (NullPool unless ``poolclass`` is given)."""
    kwargs.setdefault("poolclass", NullPool)
    return create_async_engine(url, echo=echo, **kwargs)


def build_session_factory(bind: AsyncEngine) -> SessionFactory:
    """Session factory whose records stay readable after commit."""
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(settings.database_url, echo=settings.debug)
async_session_factory = build_session_factory(engine)


@asynccontextmanager
async def get_db_context(
    session_factory: Optional[SessionFactory] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Transactional session.

    Commits when the block succeeds and rolls back when it raises.

    Usage:
        async with get_db_context() as db:
            client = (await db.execute(select(Client))).scalars().first()

    Args:
        session_factory: Factory to use (the application factory if not provided)
    """
    session = (session_factory or async_session_factory)()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """Create missing tables.

    Development only; production schemas are managed by migrations.
    """
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose the engine's connections (application shutdown)."""
    await engine.dispose()


async def check_db_health(session_factory: Optional[SessionFactory] = None) -> bool:
    """True when a trivial query succeeds."""
    try:
        async with get_db_context(session_factory) as db:
            await db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        return False
