"""
Redis-backed TTL cache used for identity lookups, registry records and the
transient authorization flow state.
"""

import asyncio
import traceback
from contextlib import asynccontextmanager
from typing import Optional

import redis.asyncio as redis
from loguru import logger
from redis.exceptions import RedisError

from idbroker.constants import CACHE_OP_TIMEOUT_SECONDS


FAIL_OPEN_EXCEPTIONS = (
    RedisError,
    ConnectionError,
    TimeoutError,
    OSError,
    asyncio.TimeoutError,
)


class TTLCache:
    """
    Key/value store with per-key expiration.

    With fail_open=True, backend outages are logged and reads behave as misses
    and writes are dropped; use it only where a miss has a correct fallback.
    """

    def __init__(
        self,
        client: redis.Redis,
        *,
        prefix: str = "idb",
        fail_open: bool = False,
        timeout: float = CACHE_OP_TIMEOUT_SECONDS,
    ):
        self._client = client
        self.prefix = prefix
        self.fail_open = fail_open
        self.timeout = timeout

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "TTLCache":
        return cls(redis.from_url(url), **kwargs)

    def with_fail_open(self, fail_open: bool) -> "TTLCache":
        """Another view on the same backend with different failure semantics."""
        return TTLCache(self._client, prefix=self.prefix, fail_open=fail_open, timeout=self.timeout)

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def _call(self, name: str, coro, default=None):
        try:
            return await asyncio.wait_for(coro, self.timeout)
        except FAIL_OPEN_EXCEPTIONS as exc:
            if not self.fail_open:
                raise
            error_detail = str(exc)
            if not error_detail.strip():
                error_detail = traceback.format_exc()
            logger.error(f"TTLCache: fail-open on {name}: {error_detail}")
            return default

    async def get(self, key: str) -> Optional[str]:
        value = await self._call("get", self._client.get(self._key(key)))
        if value is None:
            return None
        return value.decode() if isinstance(value, bytes) else value

    async def set(self, key: str, value: str, ttl: int):
        await self._call("set", self._client.set(self._key(key), value, ex=max(1, int(ttl))))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        deleted = await self._call("delete", self._client.delete(*[self._key(k) for k in keys]), 0)
        return int(deleted or 0)

    async def getdel(self, key: str) -> Optional[str]:
        """
        Atomically read and remove a key; of several concurrent callers at most
        one observes the value.
        """
        value = await self._call("getdel", self._client.getdel(self._key(key)))
        if value is None:
            return None
        return value.decode() if isinstance(value, bytes) else value

    async def close(self):
        try:
            await self._client.aclose()
        except FAIL_OPEN_EXCEPTIONS as exc:
            logger.warning(f"TTLCache: close() failed: {exc}")


class KeyedLock:
    """
    One asyncio.Lock per key, dropped again once nobody holds or awaits it.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._refs[key] = self._refs.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refs[key] -= 1
            if not self._refs[key]:
                del self._refs[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
