# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tiered cache in front of the memory store.

A CacheBackend is anything with async get/set/delete over string keys and
JSON-compatible values. TieredCache walks its backends in order (fast
in-process dict first, shared Redis second), back-fills the faster tiers
on a hit for no longer than the entry has left in the tier that served
it, and writes through to every tier on set.

A miss is never an error: backend failures are logged and reported as
misses, so the interactive path keeps working when Redis is down.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Optional

from tutor_memory.infrastructure.cache.redis_client import RedisClient, RedisError

logger = logging.getLogger(__name__)


def memory_cache_key(user_id: str, conversation_id: str) -> str:
    """Key of the tier bundle for one (user, conversation)."""
    return f"memory:{user_id}:{conversation_id}"


def summary_cache_key(conversation_id: str, split_point: int) -> str:
    """Key of a working-memory summary for one split point."""
    return f"summary:{conversation_id}:{split_point}"


class CacheBackend(ABC):
    """Key-value store with per-entry TTL."""

    name: str = "backend"

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value or None."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store a value that expires after ttl_seconds."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key if present."""

    async def remaining_ttl(self, key: str) -> Optional[float]:
        """Seconds until the key expires, or None when the backend cannot tell."""
        return None


class InMemoryCacheBackend(CacheBackend):
    """Process-local TTL cache with LRU eviction.

    Safe to share between threads; the Dramatiq worker threads and the
    event loop may touch the same instance.

    Args:
        max_entries: Capacity before least recently used entries are evicted.
        clock: Monotonic time source, injectable for tests.
    """

    name = "memory"

    def __init__(self, max_entries: int = 1024, clock=time.monotonic) -> None:
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()
        self._lock = threading.Lock()

    async def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return value

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + ttl_seconds, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def remaining_ttl(self, key: str) -> Optional[float]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return 0.0
            return max(entry[0] - self._clock(), 0.0)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheBackend(CacheBackend):
    """Shared cache tier over RedisClient."""

    name = "redis"

    def __init__(self, client: RedisClient) -> None:
        self._client = client

    async def get(self, key: str) -> Optional[Any]:
        return await self._client.get(key)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self._client.set(key, value, expire_seconds=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def remaining_ttl(self, key: str) -> Optional[float]:
        ttl = await self._client.ttl(key)
        # -1: no expiry, -2: missing
        if ttl == -1:
            return None
        return float(max(ttl, 0))


class TieredCache:
    """Cache that consults several backends in order.

    Example:
        cache = TieredCache([InMemoryCacheBackend(), RedisCacheBackend(redis)])
        await cache.set(memory_cache_key("u-1", "c-1"), bundle, ttl_seconds=300)
        bundle = await cache.get(memory_cache_key("u-1", "c-1"))
    """

    def __init__(self, backends: list[CacheBackend]) -> None:
        self._backends = list(backends)

    @property
    def backends(self) -> list[CacheBackend]:
        return list(self._backends)

    async def get(self, key: str, ttl_seconds: Optional[int] = None) -> Optional[Any]:
        """Look the key up tier by tier.

        Args:
            key: Cache key.
            ttl_seconds: Upper bound on the TTL used when back-filling faster
                tiers after a hit in a slower one. The entry never outlives
                its copy in the serving tier. Back-fill is skipped when None.

        Returns:
            The cached value, or None on a miss.
        """
        for index, backend in enumerate(self._backends):
            try:
                value = await backend.get(key)
            except (RedisError, OSError) as e:
                logger.warning("Cache backend %s get failed for %s: %s", backend.name, key, e)
                continue

            if value is None:
                continue

            if ttl_seconds is not None and index > 0:
                await self._backfill(backend, self._backends[:index], key, value, ttl_seconds)
            return value

        return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Write the value through to every tier."""
        for backend in self._backends:
            await self._safe_set(backend, key, value, ttl_seconds)

    async def delete(self, key: str) -> None:
        for backend in self._backends:
            try:
                await backend.delete(key)
            except (RedisError, OSError) as e:
                logger.warning("Cache backend %s delete failed for %s: %s", backend.name, key, e)

    async def _safe_set(
        self,
        backend: CacheBackend,
        key: str,
        value: Any,
        ttl_seconds: int,
    ) -> None:
        try:
            await backend.set(key, value, ttl_seconds)
        except (RedisError, OSError) as e:
            logger.warning("Cache backend %s set failed for %s: %s", backend.name, key, e)

    async def _backfill(
        self,
        source: CacheBackend,
        faster: list[CacheBackend],
        key: str,
        value: Any,
        ttl_seconds: int,
    ) -> None:
        try:
            remaining = await source.remaining_ttl(key)
        except (RedisError, OSError) as e:
            logger.warning("Cache backend %s ttl failed for %s: %s", source.name, key, e)
            return

        if remaining is not None:
            ttl_seconds = min(ttl_seconds, int(remaining))
        if ttl_seconds <= 0:
            return

        for backend in faster:
            await self._safe_set(backend, key, value, ttl_seconds)
