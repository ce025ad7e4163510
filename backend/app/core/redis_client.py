"""
Redis client initialization and connection management.

Redis only backs the scheduler tick lock; nothing correctness-critical
depends on it being reachable.
"""

import logging
import redis.asyncio as redis
from redis.exceptions import RedisError
from backend.app.core.config import settings

logger = logging.getLogger("finance.redis")


# Create async Redis client
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """
    Get Redis client instance.

    Resolved at call time so tests can swap the module-level client.
    """
    return redis_client


async def ping_redis() -> bool:
    """
    Test Redis connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await redis_client.ping()
    except (RedisError, OSError) as exc:
        logger.warning("Redis ping failed: %s", exc)
        return False
