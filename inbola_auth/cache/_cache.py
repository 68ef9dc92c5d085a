import asyncio
import time
from typing import Any, Callable, Dict, Optional, Tuple
import orjson
import redis.asyncio as redis
from inbola_auth.cache.utils import LUA_FIXED_WINDOW_INCR_AND_PEXPIRE
from inbola_auth.config.settings import Settings


class KeyValueCache:
    """get/set/invalidate with TTL, plus an atomic fixed-window counter.

    Owned by the composition root (``create_app``) and passed to whoever needs it.
    """

    async def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        raise NotImplementedError

    async def invalidate(self, key: str) -> None:
        raise NotImplementedError

    async def incr_window(self, key: str, window_seconds: int) -> Tuple[int, int]:
        """Increment ``key``; the first hit starts a window of ``window_seconds``.

        Returns (count, ttl_ms) where ttl_ms is the time left in the window.
        """
        raise NotImplementedError

    async def close(self) -> None:
        return None


class InMemoryCache(KeyValueCache):
    """Per-process cache; not distributed, fine for dev, tests and single-worker deploys."""

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_every: int = 512):
        self._clock = clock
        self._data: Dict[str, Tuple[Any, float]] = {}
        self._lock = asyncio.Lock()
        self._sweep_every = sweep_every
        self._writes = 0

    def _maybe_sweep(self, now: float) -> None:
        # expired keys are otherwise only dropped when read again
        self._writes += 1
        if self._writes < self._sweep_every:
            return
        self._writes = 0
        expired = [key for key, (_, expires_at) in self._data.items() if expires_at <= now]
        for key in expired:
            del self._data[key]

    def size(self) -> int:
        return len(self._data)

    def _alive(self, key: str) -> Optional[Tuple[Any, float]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            self._data.pop(key, None)
            return None
        return entry

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._alive(key)
            return entry[0] if entry else None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        async with self._lock:
            now = self._clock()
            self._maybe_sweep(now)
            self._data[key] = (value, now + ttl_seconds)

    async def invalidate(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def incr_window(self, key: str, window_seconds: int) -> Tuple[int, int]:
        async with self._lock:
            now = self._clock()
            self._maybe_sweep(now)
            entry = self._alive(key)
            if entry is None:
                count, expires_at = 1, now + window_seconds
            else:
                count, expires_at = int(entry[0]) + 1, entry[1]
            self._data[key] = (count, expires_at)
            return count, int((expires_at - now) * 1000)


class RedisCache(KeyValueCache):

    def __init__(self, client: redis.Redis):
        self._client = client
        self._incr_script = client.register_script(LUA_FIXED_WINDOW_INCR_AND_PEXPIRE)

    async def get(self, key: str) -> Optional[Any]:
        raw = await self._client.get(key)
        if raw is None:
            return None
        return orjson.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self._client.set(key, orjson.dumps(value), ex=ttl_seconds)

    async def invalidate(self, key: str) -> None:
        await self._client.delete(key)

    async def incr_window(self, key: str, window_seconds: int) -> Tuple[int, int]:
        res = await self._incr_script(keys=[key], args=[int(window_seconds * 1000)])
        return int(res[0]), int(res[1])

    async def close(self) -> None:
        await self._client.aclose()


def build_cache(settings: Settings) -> KeyValueCache:
    if settings.CACHE_BACKEND == "redis":
        client = redis.Redis(host=settings.REDIS_HOST, port=settings.REDIS_PORT,
                             db=settings.REDIS_DB, decode_responses=False)
        return RedisCache(client)
    return InMemoryCache()
