# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Cache infrastructure.

Example:
    from tutor_memory.infrastructure.cache import (
        InMemoryCacheBackend,
        RedisCacheBackend,
        TieredCache,
        init_redis,
    )

    redis = await init_redis(settings)
    cache = TieredCache([InMemoryCacheBackend(), RedisCacheBackend(redis)])
"""

from tutor_memory.infrastructure.cache.redis_client import (
    RedisClient,
    RedisError,
    close_redis,
    get_redis,
    init_redis,
)
from tutor_memory.infrastructure.cache.tiered import (
    CacheBackend,
    InMemoryCacheBackend,
    RedisCacheBackend,
    TieredCache,
    memory_cache_key,
    summary_cache_key,
)

__all__ = [
    "CacheBackend",
    "InMemoryCacheBackend",
    "RedisCacheBackend",
    "RedisClient",
    "RedisError",
    "TieredCache",
    "close_redis",
    "get_redis",
    "init_redis",
    "memory_cache_key",
    "summary_cache_key",
]
