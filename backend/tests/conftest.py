from __future__ import annotations

import asyncio
import fnmatch
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from qrsong.cache.redis import Cache  # noqa: E402
from qrsong.core.config import Settings  # noqa: E402


class FakeRedis:
    """In-memory stand-in for the subset of ``redis.asyncio.Redis`` the services use."""

    def __init__(self) -> None:
        self.values: Dict[str, str] = {}
        self.sets: Dict[str, Set[str]] = {}
        self.lists: Dict[str, List[str]] = {}
        self.expiry: Dict[str, int] = {}

    def _exists(self, key: str) -> bool:
        return key in self.values or key in self.sets or key in self.lists

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    async def set(self, key: str, value: Any, ex: Optional[int] = None, nx: bool = False) -> Optional[bool]:
        if nx and self._exists(key):
            return None
        self.values[key] = str(value)
        if ex:
            self.expiry[key] = int(ex)
        else:
            self.expiry.pop(key, None)
        return True

    async def setex(self, key: str, ttl: int, value: Any) -> bool:
        return bool(await self.set(key, value, ex=ttl))

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            for store in (self.values, self.sets, self.lists):
                if key in store:
                    del store[key]
                    removed += 1
            self.expiry.pop(key, None)
        return removed

    async def keys(self, pattern: str) -> List[str]:
        every = list(self.values) + list(self.sets) + list(self.lists)
        return [key for key in every if fnmatch.fnmatchcase(key, pattern)]

    async def ttl(self, key: str) -> int:
        if not self._exists(key):
            return -2
        return self.expiry.get(key, -1)

    async def sadd(self, key: str, *values: str) -> int:
        members = self.sets.setdefault(key, set())
        before = len(members)
        members.update(values)
        return len(members) - before

    async def smembers(self, key: str) -> Set[str]:
        return set(self.sets.get(key, set()))

    async def sismember(self, key: str, value: str) -> int:
        return int(value in self.sets.get(key, set()))

    async def rpush(self, key: str, *values: str) -> int:
        items = self.lists.setdefault(key, [])
        items.extend(values)
        return len(items)

    async def lpop(self, key: str) -> Optional[str]:
        items = self.lists.get(key)
        if not items:
            return None
        value = items.pop(0)
        if not items:
            del self.lists[key]
        return value

    async def llen(self, key: str) -> int:
        return len(self.lists.get(key, []))


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        cache_version="test",
        spotify_client_id="client-id",
        spotify_client_secret="client-secret",
        rapid_api_key="rapid-key",
        discogs_token="discogs-token",
    )


@pytest.fixture
def cache(fake_redis: FakeRedis, settings: Settings) -> Cache:
    return Cache(fake_redis, version=settings.cache_version)


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> List[float]:
    """Record requested sleeps instead of waiting."""
    recorded: List[float] = []

    async def _fake_sleep(delay: float, result: Any = None) -> Any:
        recorded.append(delay)
        return result

    monkeypatch.setattr(asyncio, "sleep", _fake_sleep)
    return recorded
