from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends
from redis.asyncio import Redis

from ..cache.redis import Cache, get_cache, get_redis
from ..core.config import Settings, get_settings
from ..rapidapi.queue import RapidApiQueue


async def get_settings_dep() -> Settings:
    return get_settings()


async def get_redis_dep() -> AsyncIterator[Redis]:
    async for client in get_redis():
        yield client


async def get_cache_dep() -> Cache:
    return get_cache()


async def get_rapidapi_queue(
    cache: Cache = Depends(get_cache_dep),
    settings: Settings = Depends(get_settings_dep),
) -> RapidApiQueue:
    return RapidApiQueue(cache, settings)
