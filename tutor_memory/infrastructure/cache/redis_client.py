# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Redis client for the shared cache tier and the Dramatiq broker.

This module provides an async Redis client wrapper with JSON
serialization. It backs RedisCacheBackend, which holds assembled tier
bundles and working-memory summaries shared across processes.

Example:
    from tutor_memory.infrastructure.cache import init_redis, get_redis

    await init_redis(settings)

    redis = get_redis()
    await redis.set("summary:conv-1:12", "Discussed recursion", expire_seconds=7200)
"""

import json
from typing import TYPE_CHECKING, Any, Optional

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError as BaseRedisError

if TYPE_CHECKING:
    from tutor_memory.core.config.settings import Settings

# Module-level state
_redis_client: Optional["RedisClient"] = None


class RedisError(Exception):
    """Exception raised for Redis operation failures.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying Redis error.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


class RedisClient:
    """Async Redis client with connection pooling and JSON values.

    Example:
        client = RedisClient(settings)
        await client.connect()
        await client.set("memory:u-1:c-1", bundle, expire_seconds=300)
        bundle = await client.get("memory:u-1:c-1")
        await client.close()
    """

    def __init__(self, settings: "Settings") -> None:
        self._settings = settings
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = None

    async def connect(self) -> None:
        """Create the Redis connection pool.

        Raises:
            RedisError: If connection fails.
        """
        try:
            self._pool = ConnectionPool.from_url(
                self._settings.redis.url,
                max_connections=self._settings.redis.max_connections,
                decode_responses=True,
            )
            self._redis = Redis(connection_pool=self._pool)
            await self._redis.ping()
        except BaseRedisError as e:
            raise RedisError("Failed to connect to Redis", e) from e

    async def close(self) -> None:
        """Close the Redis connection pool."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None

    def _ensure_connected(self) -> Redis:
        if self._redis is None:
            raise RedisError("Redis client not connected. Call connect() first.")
        return self._redis

    def _serialize(self, value: Any) -> str:
        if isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False, default=str)

    def _deserialize(self, value: Optional[str]) -> Any:
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value

    async def set(
        self,
        key: str,
        value: Any,
        expire_seconds: Optional[int] = None,
    ) -> None:
        """Set a key-value pair.

        Args:
            key: The key.
            value: The value (JSON serialized if not a string).
            expire_seconds: Optional expiration time in seconds.

        Raises:
            RedisError: If the operation fails.
        """
        redis = self._ensure_connected()
        try:
            await redis.set(key, self._serialize(value), ex=expire_seconds)
        except BaseRedisError as e:
            raise RedisError(f"Failed to set key: {key}", e) from e

    async def get(self, key: str) -> Any:
        """Get a value by key.

        Returns:
            The deserialized value or None if not found.

        Raises:
            RedisError: If the operation fails.
        """
        redis = self._ensure_connected()
        try:
            value = await redis.get(key)
            return self._deserialize(value)
        except BaseRedisError as e:
            raise RedisError(f"Failed to get key: {key}", e) from e

    async def delete(self, key: str) -> bool:
        """Delete a key.

        Returns:
            True if the key was deleted, False if it didn't exist.

        Raises:
            RedisError: If the operation fails.
        """
        redis = self._ensure_connected()
        try:
            result = await redis.delete(key)
            return result > 0
        except BaseRedisError as e:
            raise RedisError(f"Failed to delete key: {key}", e) from e

    async def ttl(self, key: str) -> int:
        """Get the time-to-live for a key.

        Returns:
            TTL in seconds, -1 if no expiry, -2 if key doesn't exist.

        Raises:
            RedisError: If the operation fails.
        """
        redis = self._ensure_connected()
        try:
            return await redis.ttl(key)
        except BaseRedisError as e:
            raise RedisError(f"Failed to get TTL for key: {key}", e) from e


async def init_redis(settings: "Settings") -> RedisClient:
    """Initialize the global Redis client.

    Args:
        settings: Application settings containing Redis configuration.

    Returns:
        The connected RedisClient.

    Raises:
        RedisError: If connection fails.
    """
    global _redis_client

    if _redis_client is None:
        client = RedisClient(settings)
        await client.connect()
        _redis_client = client
    return _redis_client


def get_redis() -> RedisClient:
    """Get the global Redis client.

    Raises:
        RedisError: If Redis has not been initialized.
    """
    if _redis_client is None:
        raise RedisError("Redis not initialized. Call init_redis() first.")
    return _redis_client


async def close_redis() -> None:
    """Close the global Redis client."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.close()
        _redis_client = None
