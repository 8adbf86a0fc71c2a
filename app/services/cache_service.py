"""
Cache Service for rider location lookups and rate-limit counters.

Supports:
1. Redis (preferred for production, shared across workers)
2. In-memory fallback (for development/testing)

Usage:
    cache = get_cache()

    await cache.set_rider_location(rider_id, {"latitude": 12.9, "longitude": 77.6})
    location = await cache.get_rider_location(rider_id)

    count = await cache.incr_window("orders", actor_id, window_seconds=60)
"""
import json
import time
from typing import Any, Optional, Dict
from datetime import datetime, timedelta, timezone
from abc import ABC, abstractmethod
import asyncio
import logging

import redis.asyncio as redis

from app.config import settings

logger = logging.getLogger(__name__)


class CacheBackend(ABC):
    """Abstract cache backend interface."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        """Set value in cache with TTL (seconds)."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key from cache."""
        pass

    @abstractmethod
    async def incr(self, key: str, ttl: int) -> int:
        """
        Increment an integer counter and return the new value.
        The TTL is applied when the counter is created and never extended.
        """
        pass


class InMemoryCache(CacheBackend):
    """
    In-memory cache for development/fallback.

    Note: counters are per-process; run Redis when more than one worker
    serves traffic.
    """

    def __init__(self):
        self._cache: Dict[str, tuple[Any, datetime]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> Optional[tuple[Any, datetime]]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        if entry[1] <= datetime.now(timezone.utc):
            del self._cache[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        async with self._lock:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl)
            self._cache[key] = (value, expires_at)
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            if key in self._cache:
                del self._cache[key]
                return True
            return False

    async def incr(self, key: str, ttl: int) -> int:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl)
                self._cache[key] = (1, expires_at)
                return 1
            value = int(entry[0]) + 1
            self._cache[key] = (value, entry[1])
            return value


class RedisCache(CacheBackend):
    """Redis cache backend for production."""

    def __init__(self, redis_url: str):
        self._redis_url = redis_url
        self._client = None

    async def _get_client(self):
        if self._client is None:
            self._client = redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    async def get(self, key: str) -> Optional[Any]:
        try:
            client = await self._get_client()
            value = await client.get(key)
            if value:
                return json.loads(value)
            return None
        except Exception as e:
            logger.warning(f"Redis get failed for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        try:
            client = await self._get_client()
            await client.set(key, json.dumps(value), ex=ttl)
            return True
        except Exception as e:
            logger.warning(f"Redis set failed for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        try:
            client = await self._get_client()
            await client.delete(key)
            return True
        except Exception as e:
            logger.warning(f"Redis delete failed for {key}: {e}")
            return False

    async def incr(self, key: str, ttl: int) -> int:
        # Fail open: a broken cache must not block order traffic
        try:
            client = await self._get_client()
            value = await client.incr(key)
            if value == 1:
                await client.expire(key, ttl)
            return int(value)
        except Exception as e:
            logger.warning(f"Redis incr failed for {key}: {e}")
            return 0


class CacheService:
    """
    Namespaced cache facade. Keys follow the format:

        {namespace}:{resource_type}:{identifier}

    Examples:
        ezgrocer:rider_location:7b7c...
        ezgrocer:ratelimit:orders:1f2e...:28733512
    """

    def __init__(self, backend: CacheBackend, namespace: str = "ezgrocer"):
        self._backend = backend
        self._namespace = namespace

    def _make_key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        return await self._backend.get(self._make_key(key))

    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        return await self._backend.set(self._make_key(key), value, ttl)

    async def delete(self, key: str) -> bool:
        return await self._backend.delete(self._make_key(key))

    # ==================== Rider Location ====================

    async def get_rider_location(self, rider_id: str) -> Optional[dict]:
        """Get the last cached location of a rider."""
        return await self.get(f"rider_location:{rider_id}")

    async def set_rider_location(
        self,
        rider_id: str,
        data: dict,
        ttl: Optional[int] = None
    ) -> bool:
        """Cache a rider location update."""
        ttl = ttl or settings.RIDER_LOCATION_CACHE_TTL
        return await self.set(f"rider_location:{rider_id}", data, ttl)

    # ==================== Rate Limiting ====================

    async def incr_window(self, scope: str, actor_id: str, window_seconds: int) -> int:
        """
        Count a hit in the current fixed window for an actor.

        The window index is part of the key, so every window starts at zero.
        """
        window = int(time.time() // window_seconds)
        key = self._make_key(f"ratelimit:{scope}:{actor_id}:{window}")
        return await self._backend.incr(key, window_seconds)


# Singleton cache instance
_cache_instance: Optional[CacheService] = None


def get_cache() -> CacheService:
    """Get the cache service singleton."""
    global _cache_instance

    if _cache_instance is None:
        if settings.REDIS_URL and settings.CACHE_ENABLED:
            backend = RedisCache(settings.REDIS_URL)
            logger.info("Cache initialized with Redis backend")
        else:
            backend = InMemoryCache()
            logger.info("Cache initialized with in-memory backend")

        _cache_instance = CacheService(backend)

    return _cache_instance


async def init_cache() -> CacheService:
    """Initialize and return cache service."""
    return get_cache()
