"""Redis client for panel message ids, cooldowns and review invitations.

Usage:
    from trade_mediator.infrastructure.redis_client import init_redis, close_redis

    redis = await init_redis()
    store = RedisKeyValueStore(redis)
    await store.set("cooldown:ticket-open:1001", "1", ttl_seconds=60)
"""

from __future__ import annotations

import redis.asyncio as aioredis

from trade_mediator.config import get_settings
from trade_mediator.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


class RedisKeyValueStore:
    """KeyValueStore backed by Redis strings.

    Values are stored as-is; a TTL maps to SET .. EX so expired entries
    disappear without a sweeper.
    """

    def __init__(self, client: aioredis.Redis, prefix: str = "mediator:") -> None:
        self._client = client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> str | None:
        value = await self._client.get(self._key(key))
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        if ttl_seconds is not None and ttl_seconds > 0:
            await self._client.set(self._key(key), value, ex=ttl_seconds)
        else:
            await self._client.set(self._key(key), value)

    async def delete(self, key: str) -> None:
        await self._client.delete(self._key(key))

    async def ping(self) -> bool:
        return bool(await self._client.ping())
