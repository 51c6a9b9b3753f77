"""Unit tests for the redis-backed TTL cache."""

import asyncio

import pytest
from fakeredis import FakeAsyncRedis
from redis.exceptions import ConnectionError as RedisConnectionError
from unittest.mock import AsyncMock, Mock


class TestTTLCache:
    @pytest.mark.asyncio
    async def test_set_get_delete(self):
        from idbroker.cache import TTLCache

        cache = TTLCache(FakeAsyncRedis())
        await cache.set("k", "v", ttl=30)
        assert await cache.get("k") == "v"
        assert await cache.delete("k") == 1
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_keys_are_prefixed_and_expire(self):
        from idbroker.cache import TTLCache

        client = FakeAsyncRedis()
        cache = TTLCache(client, prefix="test")
        await cache.set("k", "v", ttl=30)
        assert 0 < await client.ttl("test:k") <= 30

    @pytest.mark.asyncio
    async def test_getdel_returns_value_once(self):
        from idbroker.cache import TTLCache

        cache = TTLCache(FakeAsyncRedis())
        await cache.set("code", "payload", ttl=60)
        results = await asyncio.gather(*[cache.getdel("code") for _ in range(5)])
        assert results.count("payload") == 1
        assert results.count(None) == 4

    @pytest.mark.asyncio
    async def test_fail_open_swallows_backend_errors(self):
        from idbroker.cache import TTLCache

        client = Mock()
        client.get = AsyncMock(side_effect=RedisConnectionError("down"))
        client.set = AsyncMock(side_effect=RedisConnectionError("down"))
        client.delete = AsyncMock(side_effect=RedisConnectionError("down"))
        cache = TTLCache(client, fail_open=True)
        assert await cache.get("k") is None
        await cache.set("k", "v", ttl=10)
        assert await cache.delete("k") == 0

    @pytest.mark.asyncio
    async def test_strict_mode_propagates_backend_errors(self):
        from idbroker.cache import TTLCache

        client = Mock()
        client.getdel = AsyncMock(side_effect=RedisConnectionError("down"))
        cache = TTLCache(client, fail_open=False)
        with pytest.raises(RedisConnectionError):
            await cache.getdel("k")

    @pytest.mark.asyncio
    async def test_with_fail_open_shares_backend(self):
        from idbroker.cache import TTLCache

        cache = TTLCache(FakeAsyncRedis(), fail_open=True)
        strict = cache.with_fail_open(False)
        await cache.set("shared", "v", ttl=30)
        assert await strict.getdel("shared") == "v"
        assert await cache.get("shared") is None
        assert strict.fail_open is False
        assert cache.fail_open is True


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_serializes_same_key(self):
        from idbroker.cache import KeyedLock

        locks = KeyedLock()
        active = 0
        peak = 0

        async def worker():
            nonlocal active, peak
            async with locks.hold("same"):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*[worker() for _ in range(5)])
        assert peak == 1
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self):
        from idbroker.cache import KeyedLock

        locks = KeyedLock()
        entered = asyncio.Event()

        async def holder():
            async with locks.hold("a"):
                await asyncio.wait_for(entered.wait(), timeout=1)

        async def other():
            async with locks.hold("b"):
                entered.set()

        await asyncio.gather(holder(), other())
        assert len(locks) == 0
