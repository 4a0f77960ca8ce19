"""
Cache Service
=============

Read-through caching for reference data served by the marketplace API
(service categories, materials, regions, settings).

HOW IT WORKS:
-------------
    result = await cache_service.get_or_set(
        CacheKeys.materials("tiles"), CacheTTL.MATERIALS, load_materials
    )
    result.data        # the payload
    result.from_cache  # True on a hit

Values are stored as an orjson envelope ``{"data", "cached_at", "ttl"}`` so
a cached ``None`` is distinguishable from a miss.

FAILURE POLICY:
---------------
The service never raises because of the cache. If the client raises (for
example with the memory fallback disabled and Redis down), the loader is
called directly and the result is returned uncached.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

import orjson

from cacheguard.core.exceptions import CacheGuardError
from cacheguard.core.logging.logger import get_logger
from cacheguard.infrastructure.cache.resilient_client import BACKEND_ERRORS, ResilientCacheClient

logger = get_logger(__name__)

T = TypeVar("T")

CACHE_FAILURES = (CacheGuardError, *BACKEND_ERRORS)


class CacheKeys:
    """Cache key builders for reference data."""

    SERVICE_CATEGORIES = "cache:service-categories"
    SETTINGS = "cache:settings"

    @staticmethod
    def materials(category_id: str | None = None) -> str:
        return f"cache:materials:{category_id or 'all'}"

    @staticmethod
    def regions(level: int | None = None) -> str:
        return f"cache:regions:{'all' if level is None else level}"


class CacheTTL:
    """TTLs in seconds."""

    SERVICE_CATEGORIES = 300
    MATERIALS = 300
    SETTINGS = 60
    REGIONS = 600


@dataclass
class CacheResult(Generic[T]):
    data: T
    from_cache: bool


class CacheService:
    """
    Read-through cache over the resilient cache client.

    DESIGN PRINCIPLES:
    ------------------
    - Stateless apart from the injected client
    - Cache faults are logged, never raised
    """

    def __init__(self, client: ResilientCacheClient):
        self._client = client

    def _encode(self, data: Any, ttl: int) -> str:
        envelope = {
            "data": data,
            "cached_at": datetime.now(timezone.utc).isoformat(),
            "ttl": ttl,
        }
        return orjson.dumps(envelope).decode()

    def _decode(self, key: str, raw: str) -> tuple[bool, Any]:
        try:
            envelope = orjson.loads(raw)
        except orjson.JSONDecodeError:
            logger.warning("Discarding unreadable cache entry", key=key)
            return False, None
        if not isinstance(envelope, dict) or "data" not in envelope:
            logger.warning("Discarding cache entry without envelope", key=key)
            return False, None
        return True, envelope["data"]

    async def get_or_set(
        self,
        key: str,
        ttl: int,
        fetch_fn: Callable[[], Awaitable[T]],
    ) -> CacheResult[T]:
        """
        Return the cached value for ``key`` or load, store and return it.

        Args:
            key: Cache key (see CacheKeys)
            ttl: Expiry in seconds (see CacheTTL)
            fetch_fn: Loader called on a miss; its errors propagate

        Returns:
            CacheResult with ``from_cache`` set on a hit
        """
        try:
            raw = await self._client.get(key)
        except CACHE_FAILURES as e:
            logger.warning("Cache read failed, loading directly", key=key, error=str(e))
            raw = None

        if raw is not None:
            hit, data = self._decode(key, raw)
            if hit:
                logger.debug("Cache hit", key=key)
                return CacheResult(data=data, from_cache=True)

        data = await fetch_fn()

        try:
            await self._client.setex(key, ttl, self._encode(data, ttl))
        except CACHE_FAILURES as e:
            logger.warning("Cache write failed", key=key, error=str(e))
        except TypeError as e:
            # orjson refuses types it cannot serialize; serve the value uncached
            logger.warning("Value not cacheable", key=key, error=str(e))

        return CacheResult(data=data, from_cache=False)

    async def invalidate(self, key: str) -> None:
        try:
            await self._client.delete(key)
            logger.info("Cache invalidated", key=key)
        except CACHE_FAILURES as e:
            logger.warning("Cache invalidation failed", key=key, error=str(e))

    async def invalidate_pattern(self, pattern: str) -> int:
        """
        Delete every key matching ``pattern`` (``*`` wildcard).

        Returns:
            int: Number of keys deleted
        """
        try:
            keys = await self._client.keys(pattern)
            for key in keys:
                await self._client.delete(key)
        except CACHE_FAILURES as e:
            logger.warning("Pattern invalidation failed", pattern=pattern, error=str(e))
            return 0

        logger.info("Cache pattern invalidated", pattern=pattern, count=len(keys))
        return len(keys)
