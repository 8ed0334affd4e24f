from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from typing import Any, Iterable, List

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..core.config import get_settings

logger = logging.getLogger("cache")

settings = get_settings()

redis = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)


def _now_ms() -> int:
    return int(time.time() * 1000)


class Cache:
    """Versioned key/value access on top of a shared Redis connection.

    Every key is stored as ``{version}:{key}`` so a deploy with a new version starts
    from a cold cache. Locks live outside the version namespace.
    """

    def __init__(self, client: Redis, *, version: str | None = None) -> None:
        self.client = client
        self.version = version or get_settings().cache_version

    def _key(self, key: str) -> str:
        return f"{self.version}:{key}"

    async def execute(self, command: str, *args: Any, **kwargs: Any) -> Any:
        try:
            return await getattr(self.client, command)(*args, **kwargs)
        except RedisError as exc:
            logger.error("Redis command %s failed: %s", command, exc)
            raise

    async def get(self, key: str) -> str | None:
        return await self.execute("get", self._key(key))

    async def set(self, key: str, value: str, expire: int | None = None) -> None:
        if expire:
            await self.execute("set", self._key(key), value, ex=expire)
        else:
            await self.execute("set", self._key(key), value)

    async def delete(self, key: str) -> None:
        await self.execute("delete", self._key(key))

    async def delete_pattern(self, pattern: str) -> None:
        keys = await self.execute("keys", self._key(pattern))
        if keys:
            await self.execute("delete", *keys)

    async def set_array(self, key: str, values: Iterable[str]) -> None:
        cache_key = self._key(key)
        await self.execute("delete", cache_key)
        items = list(values)
        if items:
            await self.execute("sadd", cache_key, *items)

    async def get_array(self, key: str) -> List[str]:
        members = await self.execute("smembers", self._key(key))
        return sorted(members or [])

    async def value_exists_in_array(self, key: str, value: str) -> bool:
        return bool(await self.execute("sismember", self._key(key), value))

    async def add_value_to_array(self, key: str, value: str) -> None:
        await self.execute("sadd", self._key(key), value)

    async def add_values_to_array(self, key: str, values: Iterable[str]) -> None:
        items = list(values)
        if items:
            await self.execute("sadd", self._key(key), *items)

    async def acquire_lock(self, key: str, ttl: int = 300) -> bool:
        result = await self.execute("set", f"lock:{key}", "1", nx=True, ex=ttl)
        return bool(result)

    async def release_lock(self, key: str) -> None:
        await self.execute("delete", f"lock:{key}")

    async def rate_limit(self, key: str, delay_ms: int) -> None:
        """Space consecutive calls sharing ``key`` at least ``delay_ms`` apart."""
        last = await self.get(key)
        now = _now_ms()
        if last:
            elapsed = now - int(last)
            if elapsed < delay_ms:
                await asyncio.sleep((delay_ms - elapsed) / 1000)
        await self.set(key, str(_now_ms()))


cache = Cache(redis)


async def get_redis() -> AsyncIterator[Redis]:
    try:
        yield redis
    finally:
        # keep connection open for reuse; do not close
        pass


def get_cache() -> Cache:
    return cache
