"""Redis-backed sliding window limiter for outbound provider calls.

FMCSA, Creditsafe and the marketing APIs publish request quotas that are
shared by every API worker.  Each call acquires a slot in a Redis sorted
set per provider and window (``ZREMRANGEBYSCORE`` / ``ZCARD`` / ``ZADD``
inside one Lua script, so concurrent workers agree on the count).

When Redis is unavailable the limiter fails open: the call is allowed and a
warning is logged.

Typical usage::

    limiter = get_provider_limiter()
    async with limiter.slot("fmcsa"):
        response = await client.get(url)
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

import redis.asyncio as aioredis

from mc_exchange.core.cache_service import get_cache
from mc_exchange.core.exceptions import TooManyRequestsError

logger = logging.getLogger(__name__)

_WINDOW_SECONDS: dict[str, int] = {
    "minute": 60,
    "hour": 3600,
    "day": 86400,
}


@dataclass(frozen=True)
class ProviderQuota:
    """Request quota of one external provider.

    Attributes:
        requests_per_minute: Cap per 60-second window.
        requests_per_hour: Cap per hour, or ``None`` for no hourly cap.
        requests_per_day: Cap per day, or ``None`` for no daily cap.
    """

    requests_per_minute: int = 60
    requests_per_hour: Optional[int] = None
    requests_per_day: Optional[int] = None

    def windows(self) -> list[tuple[str, int]]:
        result = [("minute", self.requests_per_minute)]
        if self.requests_per_hour is not None:
            result.append(("hour", self.requests_per_hour))
        if self.requests_per_day is not None:
            result.append(("day", self.requests_per_day))
        return result


PROVIDER_QUOTAS: dict[str, ProviderQuota] = {
    "fmcsa": ProviderQuota(requests_per_minute=30),
    "creditsafe": ProviderQuota(requests_per_minute=20, requests_per_day=1000),
    "facebook": ProviderQuota(requests_per_minute=10, requests_per_hour=200),
    "telegram": ProviderQuota(requests_per_minute=20),
    "ghl": ProviderQuota(requests_per_minute=60),
}

_DEFAULT_QUOTA = ProviderQuota()

# KEYS[1] sorted-set key; ARGV: now, window seconds, limit, member, ttl.
# Returns 1 when the slot was acquired, 0 when the window is full.
_LUA_CHECK_AND_ACQUIRE = """
local key    = KEYS[1]
local now    = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit  = tonumber(ARGV[3])
local member = ARGV[4]
local ttl    = tonumber(ARGV[5])

redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
if redis.call('ZCARD', key) < limit then
    redis.call('ZADD', key, now, member)
    redis.call('EXPIRE', key, ttl)
    return 1
end
return 0
"""


@dataclass
class ProviderLimiter:
    """Sliding-window limiter keyed as ``ratelimit:provider:{name}:{window}``.

    Attributes:
        redis_client: Async Redis connection, or ``None`` to disable limiting.
    """

    redis_client: Optional[aioredis.Redis]
    _sha_acquire: str = field(default="", init=False, repr=False)

    def _key(self, provider: str, window: str) -> str:
        return f"ratelimit:provider:{provider}:{window}"

    async def _ensure_script_loaded(self) -> None:
        if not self._sha_acquire and self.redis_client is not None:
            self._sha_acquire = await self.redis_client.script_load(_LUA_CHECK_AND_ACQUIRE)

    async def check_and_acquire(
        self,
        provider: str,
        quota: Optional[ProviderQuota] = None,
    ) -> bool:
        """Record one call against every window of *provider*'s quota.

        All windows must have capacity; a slot taken in an earlier window is
        released again when a later one is full.

        Returns:
            ``True`` when the call may proceed.
        """
        if self.redis_client is None:
            return True
        try:
            await self._ensure_script_loaded()
        except Exception:
            logger.warning(
                "Redis unavailable, allowing provider call without limiting",
                extra={"provider": provider},
            )
            return True

        member = str(uuid.uuid4())
        acquired: list[str] = []
        try:
            for window, limit in (quota or PROVIDER_QUOTAS.get(provider, _DEFAULT_QUOTA)).windows():
                key = self._key(provider, window)
                seconds = _WINDOW_SECONDS[window]
                ok = await self.redis_client.evalsha(  # type: ignore[attr-defined]
                    self._sha_acquire,
                    1,
                    key,
                    str(time.time()),
                    str(seconds),
                    str(limit),
                    member,
                    str(seconds + 10),
                )
                if not ok:
                    for taken in acquired:
                        await self.redis_client.zrem(taken, member)
                    logger.debug(
                        "Provider rate limited",
                        extra={"provider": provider, "window": window},
                    )
                    return False
                acquired.append(key)
        except Exception:
            logger.exception(
                "Redis error during provider rate-limit check, allowing call",
                extra={"provider": provider},
            )
            return True
        return True

    async def wait_for_slot(
        self,
        provider: str,
        *,
        timeout: float = 10.0,
        poll_interval: float = 0.5,
    ) -> None:
        """Block until a slot is acquired.

        Raises:
            TooManyRequestsError: No slot became free within *timeout* seconds.
        """
        deadline = time.monotonic() + timeout
        while not await self.check_and_acquire(provider):
            if time.monotonic() >= deadline:
                raise TooManyRequestsError(
                    f"{provider} request quota exhausted", retry_after=int(timeout)
                )
            await asyncio.sleep(poll_interval)

    @asynccontextmanager
    async def slot(self, provider: str, *, timeout: float = 10.0) -> AsyncIterator[None]:
        await self.wait_for_slot(provider, timeout=timeout)
        yield


_limiter: Optional[ProviderLimiter] = None


def get_provider_limiter() -> ProviderLimiter:
    global _limiter
    if _limiter is None:
        _limiter = ProviderLimiter(get_cache().redis)
    return _limiter
