from __future__ import annotations

import asyncio

from qrsong.cache import redis as cache_module


def test_keys_are_namespaced_by_version(cache, fake_redis):
    async def scenario():
        await cache.set("greeting", "hello", expire=30)
        assert fake_redis.values["test:greeting"] == "hello"
        assert fake_redis.expiry["test:greeting"] == 30
        assert await cache.get("greeting") == "hello"
        await cache.delete("greeting")
        assert await cache.get("greeting") is None

    asyncio.run(scenario())


def test_lock_is_exclusive_until_released(cache, fake_redis):
    async def scenario():
        assert await cache.acquire_lock("refresh", ttl=10) is True
        assert await cache.acquire_lock("refresh", ttl=10) is False
        assert fake_redis.expiry["lock:refresh"] == 10
        await cache.release_lock("refresh")
        assert await cache.acquire_lock("refresh", ttl=10) is True

    asyncio.run(scenario())


def test_delete_pattern_only_touches_matching_keys(cache):
    async def scenario():
        await cache.set("playlist:1", "a")
        await cache.set("playlist:2", "b")
        await cache.set("track:1", "c")
        await cache.delete_pattern("playlist:*")
        await cache.delete_pattern("nothing:*")
        return await cache.get("playlist:1"), await cache.get("playlist:2"), await cache.get("track:1")

    assert asyncio.run(scenario()) == (None, None, "c")


def test_array_helpers(cache):
    async def scenario():
        await cache.set_array("genres", ["rock", "pop"])
        await cache.set_array("genres", ["jazz"])
        await cache.add_values_to_array("genres", ["blues", "soul"])
        await cache.add_value_to_array("genres", "funk")
        assert await cache.value_exists_in_array("genres", "soul")
        assert not await cache.value_exists_in_array("genres", "rock")
        return await cache.get_array("genres")

    assert asyncio.run(scenario()) == ["blues", "funk", "jazz", "soul"]


def test_rate_limit_waits_for_remaining_delay(cache, sleeps, monkeypatch):
    monkeypatch.setattr(cache_module, "_now_ms", lambda: 10_000)

    async def scenario():
        await cache.set("mb", "9700")
        await cache.rate_limit("mb", 1200)
        return await cache.get("mb")

    stored = asyncio.run(scenario())
    assert sleeps == [0.9]
    assert stored == "10000"


def test_rate_limit_does_not_wait_after_delay(cache, sleeps, monkeypatch):
    monkeypatch.setattr(cache_module, "_now_ms", lambda: 10_000)

    async def scenario():
        await cache.set("mb", "5000")
        await cache.rate_limit("mb", 1200)

    asyncio.run(scenario())
    assert sleeps == []
