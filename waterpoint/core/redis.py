"""Redis client factory.

The client is created in the application lifespan and handed to the
services that need it; nothing here is a process-wide singleton.
"""

import logging

import redis.asyncio as redis

from waterpoint.core.config import Settings

logger = logging.getLogger(__name__)


def create_redis(settings: Settings) -> redis.Redis | None:
    """Create an async Redis client, or None when caching is disabled."""
    if not settings.otp_cache_enabled or not settings.redis_url:
        return None
    return redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
        socket_timeout=2,
    )


async def close_redis(client: redis.Redis | None) -> None:
    """Close a Redis client if one was created."""
    if client is None:
        return
    try:
        await client.aclose()
    except redis.RedisError as e:
        logger.warning(f"Error closing Redis client: {e}")
