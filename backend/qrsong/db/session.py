from __future__ import annotations

from collections.abc import AsyncIterator
from functools import lru_cache
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ..core.config import get_settings
from . import models  # noqa: F401  registers tables on Base.metadata
from .base import Base


def build_engine(dsn: str, *, echo: bool = False) -> AsyncEngine:
    options: Dict[str, Any] = {"future": True, "echo": echo}
    if dsn.startswith("postgresql"):
        options.update(pool_pre_ping=True, pool_size=5, max_overflow=10)
    return create_async_engine(dsn, **options)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    settings = get_settings()
    return build_engine(settings.postgres_dsn, echo=settings.environment == "development")


@lru_cache(maxsize=1)
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return build_session_factory(get_engine())


async def get_session() -> AsyncIterator[AsyncSession]:
    async with get_session_factory()() as session:
        yield session


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create missing tables; the settings table is the only schema this service owns."""
    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    if get_engine.cache_info().currsize:
        await get_engine().dispose()
