from __future__ import annotations

import asyncio
import logging
from typing import Literal, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..cache.redis import Cache
from ..core.config import Settings, get_settings
from ..db import models

logger = logging.getLogger("settings")

SettingKey = Literal[
    "spotify_access_token",
    "spotify_refresh_token",
    # expiry as a unix timestamp in milliseconds
    "spotify_token_expires_at",
]


class SettingsStore:
    """Application settings persisted in ``app_settings`` and cached in Redis.

    A cache miss is repopulated by exactly one caller: whoever wins the
    ``setting_lock:{key}`` lock reads the database and fills the cache, the others poll
    the cache for a short while and only then fall back to reading the database
    themselves.
    """

    def __init__(
        self,
        cache: Cache,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
    ) -> None:
        self.cache = cache
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    @staticmethod
    def _cache_key(key: str) -> str:
        return f"setting:{key}"

    async def _read_db(self, key: str) -> Optional[str]:
        async with self.session_factory() as session:
            row = await session.get(models.AppSetting, key)
            return row.value if row is not None else None

    async def get_setting(self, key: SettingKey) -> Optional[str]:
        cache_key = self._cache_key(key)

        cached = await self.cache.get(cache_key)
        if cached is not None:
            logger.debug("Setting %s found in cache", key)
            return cached

        lock_key = f"setting_lock:{key}"
        if await self.cache.acquire_lock(lock_key, ttl=self.settings.settings_lock_ttl):
            logger.debug("Acquired lock for setting %s, reading database", key)
            try:
                # another worker may have filled the cache right before we got the lock
                cached = await self.cache.get(cache_key)
                if cached is not None:
                    return cached

                value = await self._read_db(key)
                if value is not None:
                    await self.cache.set(cache_key, value, self.settings.settings_cache_ttl)
                    logger.info("Setting %s read from database and cached", key)
                else:
                    logger.info("Setting %s not found in database", key)
                return value
            except SQLAlchemyError as exc:
                logger.error("Error reading setting %s while holding lock: %s", key, exc)
                return None
            finally:
                await self.cache.release_lock(lock_key)

        logger.info("Could not acquire lock for setting %s, waiting for cache", key)
        for attempt in range(1, self.settings.settings_lock_max_retries + 1):
            await asyncio.sleep(self.settings.settings_lock_retry_delay)
            cached = await self.cache.get(cache_key)
            if cached is not None:
                logger.debug("Setting %s found in cache after waiting (attempt %d)", key, attempt)
                return cached

        logger.warning("Setting %s still not cached after waiting, reading database directly", key)
        try:
            return await self._read_db(key)
        except SQLAlchemyError as exc:
            logger.error("Error reading setting %s from database (fallback): %s", key, exc)
            return None

    async def set_setting(self, key: SettingKey, value: str) -> None:
        try:
            async with self.session_factory() as session:
                row = await session.get(models.AppSetting, key)
                if row is None:
                    session.add(models.AppSetting(key=key, value=value))
                else:
                    row.value = value
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("Error writing setting %s to database: %s", key, exc)
            return
        await self.cache.delete(self._cache_key(key))
        logger.info("Setting %s updated, cache invalidated", key)

    async def delete_setting(self, key: SettingKey) -> None:
        try:
            async with self.session_factory() as session:
                row = await session.get(models.AppSetting, key)
                if row is None:
                    raise LookupError(f"setting {key} does not exist")
                await session.delete(row)
                await session.commit()
            logger.info("Setting %s deleted from database", key)
        except (SQLAlchemyError, LookupError) as exc:
            logger.warning("Error deleting setting %s: %s", key, exc)
        await self.cache.delete(self._cache_key(key))
