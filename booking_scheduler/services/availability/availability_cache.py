# ============================================================================
# booking_scheduler/services/availability/availability_cache.py
# ============================================================================
"""Short-lived cache for computed availability grids"""
import json
import logging
import threading
import time
from datetime import date
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Tuple

import redis

from booking_scheduler.config.redis import RedisKeys, get_redis
from booking_scheduler.config.settings import get_settings

logger = logging.getLogger(__name__)


class MemoryCacheBackend:
    """Process-local TTL store"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._data: Dict[str, Tuple[float, str]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: str, ttl: int, index_key: str) -> None:
        with self._lock:
            self._data[key] = (self._clock() + ttl, value)

    def delete_prefix(self, prefix: str, index_key: str) -> int:
        with self._lock:
            keys = [key for key in self._data if key.startswith(prefix)]
            for key in keys:
                del self._data[key]
            return len(keys)


class RedisCacheBackend:
    """SETEX entries plus a per-provider set of keys for invalidation"""

    def __init__(self, client: Optional[redis.Redis] = None):
        self._client = client

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = get_redis()
        return self._client

    def get(self, key: str) -> Optional[str]:
        return self.client.get(key)

    def set(self, key: str, value: str, ttl: int, index_key: str) -> None:
        pipe = self.client.pipeline()
        pipe.setex(key, ttl, value)
        pipe.sadd(index_key, key)
        pipe.expire(index_key, ttl)
        pipe.execute()

    def delete_prefix(self, prefix: str, index_key: str) -> int:
        keys = list(self.client.smembers(index_key))
        if keys:
            self.client.delete(*keys)
        self.client.delete(index_key)
        return len(keys)


class AvailabilityCache:
    """
    Availability grids keyed by (provider, day, duration) with a bounded TTL.
    Any scheduling event for a provider drops all of that provider's entries.
    Cache failures never break an availability query; they count as a miss.
    """

    def __init__(self, backend=None, ttl_seconds: Optional[int] = None):
        settings = get_settings()
        self.backend = backend or MemoryCacheBackend()
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.AVAILABILITY_CACHE_TTL_SECONDS

    @staticmethod
    def key(provider_id: Any, day: date, duration_minutes: int) -> str:
        return RedisKeys.AVAILABILITY_DAY.format(
            provider_id=provider_id, day=day.isoformat(), duration=duration_minutes
        )

    @staticmethod
    def _index_key(provider_id: Any) -> str:
        return RedisKeys.AVAILABILITY_PROVIDER_INDEX.format(provider_id=provider_id)

    def get(self, provider_id: Any, day: date, duration_minutes: int) -> Optional[List[dict]]:
        try:
            raw = self.backend.get(self.key(provider_id, day, duration_minutes))
        except redis.RedisError as e:
            logger.warning(f"Availability cache read failed: {e}")
            return None
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, provider_id: Any, day: date, duration_minutes: int, grid: List[dict]) -> None:
        if self.ttl_seconds <= 0:
            return
        try:
            self.backend.set(
                self.key(provider_id, day, duration_minutes),
                json.dumps(grid, default=str),
                self.ttl_seconds,
                self._index_key(provider_id),
            )
        except redis.RedisError as e:
            logger.warning(f"Availability cache write failed: {e}")

    def invalidate(self, provider_id: Any) -> int:
        prefix = f"availability:{provider_id}:"
        try:
            removed = self.backend.delete_prefix(prefix, self._index_key(provider_id))
        except redis.RedisError as e:
            logger.warning(f"Availability cache invalidation failed for provider {provider_id}: {e}")
            return 0
        if removed:
            logger.debug(f"Invalidated {removed} availability entries for provider {provider_id}")
        return removed

    def handle_event(self, event) -> None:
        if event.provider_id:
            self.invalidate(event.provider_id)

    def attach(self, bus) -> None:
        bus.subscribe(self.handle_event)


def create_cache_backend(name: Optional[str] = None):
    name = (name or get_settings().AVAILABILITY_CACHE_BACKEND).lower()
    if name == "memory":
        return MemoryCacheBackend()
    if name == "redis":
        return RedisCacheBackend()
    raise ValueError(f"Unknown availability cache backend: {name}")


@lru_cache()
def get_availability_cache() -> AvailabilityCache:
    return AvailabilityCache(backend=create_cache_backend())
