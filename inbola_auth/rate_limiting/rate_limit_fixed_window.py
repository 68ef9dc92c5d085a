import asyncio
import math
from dataclasses import dataclass
from typing import Optional
from redis.exceptions import RedisError
from inbola_auth.auth.errors import RateLimited
from inbola_auth.cache._cache import InMemoryCache, KeyValueCache
from inbola_auth.cache.utils import build_key
from inbola_auth.rate_limiting.constants import FAIL_OPEN, RATE_LIMIT_PREFIX, USE_IN_MEMORY_FALLBACK, RateLimitPolicy, logger


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int    # seconds until the window resets


class RateLimiter:
    """Fixed window counters on top of the key-value collaborator."""

    def __init__(self, cache: KeyValueCache, fallback: Optional[KeyValueCache] = None):
        self.cache = cache
        # simple non distributed fallback for redis unavailability, use only for short outages
        self.fallback = fallback or InMemoryCache()

    async def hit(self, policy: RateLimitPolicy, identifier: str) -> RateLimitDecision:
        key = build_key(RATE_LIMIT_PREFIX, policy.name, identifier)
        try:
            count, ttl_ms = await self.cache.incr_window(key, policy.window)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            logger.warning("rate_limit.backend_error", extra={"policy": policy.name, "error": str(exc)})
            if USE_IN_MEMORY_FALLBACK:
                count, ttl_ms = await self.fallback.incr_window(key, policy.window)
            elif FAIL_OPEN:
                return RateLimitDecision(True, max(0, policy.limit - 1), policy.window)
            else:
                return RateLimitDecision(False, 0, policy.window)

        retry_after = math.ceil(ttl_ms / 1000) if ttl_ms > 0 else policy.window
        allowed = count <= policy.limit
        remaining = max(0, policy.limit - count) if allowed else 0
        return RateLimitDecision(allowed, remaining, retry_after)

    async def check(self, policy: RateLimitPolicy, identifier: str) -> RateLimitDecision:
        decision = await self.hit(policy, identifier)
        if not decision.allowed:
            logger.warning("rate_limit.blocked", extra={"policy": policy.name, "retry_after": decision.retry_after})
            raise RateLimited(f"Too many attempts, retry in {decision.retry_after}s",
                              reason=policy.name, retry_after=decision.retry_after)
        return decision
