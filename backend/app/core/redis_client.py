"""
Redis client for the exchange rate cache.

The cache is optional at runtime: RateCache treats an unreachable Redis as a
miss, and /health reports reachability.
"""

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError
from backend.app.core.config import settings

logger = logging.getLogger(__name__)

redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """FastAPI dependency returning the shared client."""
    return redis_client


async def ping_redis() -> bool:
    """True when Redis answers a PING."""
    try:
        return await redis_client.ping()
    except (RedisError, OSError) as exc:
        logger.warning("Redis ping failed: %s", exc)
        return False


async def close_redis() -> None:
    await redis_client.aclose()
