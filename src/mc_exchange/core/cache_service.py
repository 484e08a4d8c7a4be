"""Redis-backed JSON cache with namespaced keys and fixed TTL tiers.

Every operation degrades gracefully: when Redis is not configured or a
command fails, reads return ``None`` (or a neutral value) and writes return
``False``.  Callers therefore never need to guard cache calls themselves.

Key prefixes (:class:`CacheKeys`) and TTLs (:class:`CacheTTL`) are shared by
the listing, FMCSA, settings and rate-limit helpers below.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional, TypeVar

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from mc_exchange.config.settings import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheKeys:
    USER = "user:"
    LISTING = "listing:"
    LISTINGS = "listings:"
    FMCSA = "fmcsa:"
    SESSION = "session:"
    RATE_LIMIT = "ratelimit:"
    PLATFORM_SETTINGS = "settings:"
    STATS = "stats:"


class CacheTTL:
    """TTL values in seconds."""

    SHORT = 60
    MEDIUM = 300
    LONG = 3600
    VERY_LONG = 86400
    FMCSA = 86400
    LISTING = 300
    USER = 600
    SETTINGS = 3600


class CacheService:
    """Thin JSON layer over ``redis.asyncio``.

    Args:
        redis_client: A client created with ``decode_responses=True``, or
            ``None`` to run in degraded (no-op) mode.
    """

    def __init__(self, redis_client: Optional[aioredis.Redis]) -> None:
        self.redis = redis_client

    @property
    def enabled(self) -> bool:
        return self.redis is not None

    # ------------------------------------------------------------------
    # Primitive operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any:
        """Return the cached value for *key*.

        JSON payloads are decoded; anything that is not valid JSON is
        returned as the raw string.  Misses and Redis errors yield ``None``.
        """
        if not self.enabled:
            return None
        try:
            value = await self.redis.get(key)
        except RedisError:
            logger.exception("cache_get_failed", extra={"key": key})
            return None
        if value is None:
            return None
        try:
            return json.loads(value)
        except (TypeError, ValueError):
            return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self.enabled:
            return False
        try:
            serialized = json.dumps(value, default=str)
            if ttl:
                await self.redis.setex(key, ttl, serialized)
            else:
                await self.redis.set(key, serialized)
            return True
        except RedisError:
            logger.exception("cache_set_failed", extra={"key": key})
            return False

    async def delete(self, key: str) -> bool:
        if not self.enabled:
            return False
        try:
            await self.redis.delete(key)
            return True
        except RedisError:
            logger.exception("cache_delete_failed", extra={"key": key})
            return False

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob *pattern*; returns the count."""
        if not self.enabled:
            return 0
        try:
            keys = [key async for key in self.redis.scan_iter(match=pattern)]
            if not keys:
                return 0
            return int(await self.redis.delete(*keys))
        except RedisError:
            logger.exception("cache_delete_pattern_failed", extra={"pattern": pattern})
            return 0

    async def exists(self, key: str) -> bool:
        if not self.enabled:
            return False
        try:
            return await self.redis.exists(key) == 1
        except RedisError:
            logger.exception("cache_exists_failed", extra={"key": key})
            return False

    async def incr(self, key: str, ttl: Optional[int] = None) -> int:
        """Increment a counter; the TTL is applied on the first increment only."""
        if not self.enabled:
            return 0
        try:
            value = int(await self.redis.incr(key))
            if ttl and value == 1:
                await self.redis.expire(key, ttl)
            return value
        except RedisError:
            logger.exception("cache_incr_failed", extra={"key": key})
            return 0

    async def ttl(self, key: str) -> int:
        if not self.enabled:
            return -1
        try:
            return int(await self.redis.ttl(key))
        except RedisError:
            logger.exception("cache_ttl_failed", extra={"key": key})
            return -1

    async def get_or_set(
        self,
        key: str,
        fetch: Callable[[], Awaitable[T]],
        ttl: int = CacheTTL.MEDIUM,
    ) -> T:
        """Return the cached value or compute, store and return a fresh one."""
        cached = await self.get(key)
        if cached is not None:
            return cached
        fresh = await fetch()
        await self.set(key, fresh, ttl)
        return fresh

    # ------------------------------------------------------------------
    # Hash helpers
    # ------------------------------------------------------------------

    async def hget(self, key: str, field: str) -> Optional[str]:
        if not self.enabled:
            return None
        try:
            return await self.redis.hget(key, field)
        except RedisError:
            logger.exception("cache_hget_failed", extra={"key": key, "field": field})
            return None

    async def hset(self, key: str, field: str, value: str) -> bool:
        if not self.enabled:
            return False
        try:
            await self.redis.hset(key, field, value)
            return True
        except RedisError:
            logger.exception("cache_hset_failed", extra={"key": key, "field": field})
            return False

    async def hgetall(self, key: str) -> Optional[dict[str, str]]:
        if not self.enabled:
            return None
        try:
            result = await self.redis.hgetall(key)
        except RedisError:
            logger.exception("cache_hgetall_failed", extra={"key": key})
            return None
        return result or None

    async def get_stats(self) -> dict[str, Any]:
        """Return connectivity, memory usage and key count."""
        if not self.enabled:
            return {"connected": False}
        try:
            info = await self.redis.info("memory")
            key_count = await self.redis.dbsize()
        except RedisError:
            return {"connected": False}
        return {
            "connected": True,
            "memoryUsage": info.get("used_memory_human", "unknown"),
            "keyCount": int(key_count),
        }

    async def ping(self) -> bool:
        if not self.enabled:
            return False
        try:
            return bool(await self.redis.ping())
        except RedisError:
            return False

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    async def check_rate_limit(
        self,
        identifier: str,
        action: str,
        limit: int,
        window: int,
    ) -> dict[str, Any]:
        """Fixed-window counter for ad-hoc throttling inside services.

        Args:
            identifier: Who is being limited (user id, IP, email).
            action: What is being limited (``"api"``, ``"unlock"`` ...).
            limit: Maximum calls allowed per window.
            window: Window length in seconds.

        Returns:
            ``{"allowed", "remaining", "resetIn"}``.  When Redis is down
            the counter reads 0 and the call is allowed.
        """
        key = f"{CacheKeys.RATE_LIMIT}{action}:{identifier}"
        count = await self.incr(key, window)
        reset_in = await self.ttl(key)
        return {
            "allowed": count <= limit,
            "remaining": max(0, limit - count),
            "resetIn": reset_in,
        }

    # ------------------------------------------------------------------
    # Domain helpers
    # ------------------------------------------------------------------

    async def cache_user(self, user_id: str, data: Any) -> None:
        await self.set(f"{CacheKeys.USER}{user_id}", data, CacheTTL.USER)

    async def get_cached_user(self, user_id: str) -> Any:
        return await self.get(f"{CacheKeys.USER}{user_id}")

    async def invalidate_user(self, user_id: str) -> None:
        await self.delete(f"{CacheKeys.USER}{user_id}")

    async def cache_listing(self, listing_id: str, data: Any) -> None:
        await self.set(f"{CacheKeys.LISTING}{listing_id}", data, CacheTTL.LISTING)

    async def get_cached_listing(self, listing_id: str) -> Any:
        return await self.get(f"{CacheKeys.LISTING}{listing_id}")

    async def invalidate_listing(self, listing_id: str) -> None:
        """Drop one listing and every cached listing page."""
        await self.delete(f"{CacheKeys.LISTING}{listing_id}")
        await self.delete_pattern(f"{CacheKeys.LISTINGS}*")

    async def cache_fmcsa(self, identifier: str, kind: str, data: Any) -> None:
        await self.set(f"{CacheKeys.FMCSA}{kind}:{identifier}", data, CacheTTL.FMCSA)

    async def get_cached_fmcsa(self, identifier: str, kind: str) -> Any:
        return await self.get(f"{CacheKeys.FMCSA}{kind}:{identifier}")

    async def cache_settings(self, data: Any) -> None:
        await self.set(f"{CacheKeys.PLATFORM_SETTINGS}all", data, CacheTTL.SETTINGS)

    async def get_cached_settings(self) -> Any:
        return await self.get(f"{CacheKeys.PLATFORM_SETTINGS}all")

    async def invalidate_settings(self) -> None:
        await self.delete(f"{CacheKeys.PLATFORM_SETTINGS}all")


# ---------------------------------------------------------------------------
# Process-wide instance
# ---------------------------------------------------------------------------

_cache: Optional[CacheService] = None


def get_cache() -> CacheService:
    """Return the shared :class:`CacheService`, creating it on first use.

    The underlying client connects lazily, so this never touches the network.
    """
    global _cache
    if _cache is None:
        redis_url = get_settings().redis_url
        client = aioredis.from_url(redis_url, decode_responses=True) if redis_url else None
        if client is None:
            logger.warning("cache_disabled_no_redis_url")
        _cache = CacheService(client)
    return _cache


async def close_cache() -> None:
    """Close the shared client (application shutdown)."""
    global _cache
    if _cache is not None and _cache.redis is not None:
        await _cache.redis.aclose()
    _cache = None
