"""
Redis connection and keyspace for the todo API.

One connection serves both uses:
- ``jwt:revoked:<jti>`` keys mark signed-out sessions until the token expires
- the ``todos:changes`` Pub/Sub channel carries the change feed
"""

from __future__ import annotations

import redis.asyncio as redis
from redis.asyncio.client import PubSub

from todo_api.core.config import get_settings

settings = get_settings()

CHANGES_CHANNEL = "todos:changes"
REVOKED_KEY_PREFIX = "jwt:revoked:"

_redis_pool: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    """Get or create the Redis connection."""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis_pool


def revoked_key(jti: str) -> str:
    return f"{REVOKED_KEY_PREFIX}{jti}"


async def mark_revoked(jti: str, ttl_seconds: int) -> None:
    conn = await get_redis()
    await conn.setex(revoked_key(jti), ttl_seconds, "1")


async def is_revoked(jti: str) -> bool:
    conn = await get_redis()
    return await conn.exists(revoked_key(jti)) > 0


async def publish_change(payload: str) -> int:
    """Publish a serialized change; returns the number of live subscribers."""
    conn = await get_redis()
    return await conn.publish(CHANGES_CHANNEL, payload)


async def subscribe_changes() -> PubSub:
    """Open a Pub/Sub handle already subscribed to the change channel."""
    conn = await get_redis()
    pubsub = conn.pubsub()
    await pubsub.subscribe(CHANGES_CHANNEL)
    return pubsub


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.aclose()
        _redis_pool = None
