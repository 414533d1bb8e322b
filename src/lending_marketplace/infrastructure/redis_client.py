"""Redis client and the idempotency-key store built on it.

Usage:
    from lending_marketplace.infrastructure.redis_client import init_redis, IdempotencyStore

    redis = await init_redis(settings)
    store = IdempotencyStore(redis, ttl_seconds=settings.redis_idempotency_ttl_seconds)
    if not await store.claim("escrow-create:abc"):
        ...  # duplicate
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from lending_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    from lending_marketplace.config import Settings

logger = get_logger(__name__)


async def init_redis(settings: Settings) -> aioredis.Redis | None:
    """Connect to Redis and verify it answers.

    Returns None when REDIS_URL is empty or the server is unreachable;
    idempotency keys are then simply not enforced.
    """
    if not settings.redis_url:
        logger.info("redis.disabled")
        return None
    client = aioredis.from_url(settings.redis_url, decode_responses=True)
    try:
        await client.ping()
    except (RedisError, OSError) as err:
        logger.warning("redis.unavailable", url=settings.redis_url, error=str(err))
        await client.aclose()
        return None
    logger.info("redis.connected", url=settings.redis_url)
    return client


async def close_redis(client: aioredis.Redis | None) -> None:
    """Close the Redis connection. Called during app shutdown."""
    if client is not None:
        await client.aclose()
        logger.info("redis.disconnected")


class IdempotencyStore:
    """Remembers idempotency keys for a bounded time."""

    prefix = "idempotency:"

    def __init__(self, client: aioredis.Redis, ttl_seconds: int) -> None:
        self._client = client
        self._ttl = ttl_seconds

    async def claim(self, key: str, value: str = "1") -> bool:
        """Atomically record a key. Returns False if it was already used."""
        created = await self._client.set(f"{self.prefix}{key}", value, ex=self._ttl, nx=True)
        return bool(created)

    async def release(self, key: str) -> None:
        """Forget a key, e.g. when the operation it guarded was rolled back."""
        await self._client.delete(f"{self.prefix}{key}")
