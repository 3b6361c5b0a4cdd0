"""
Exchange rate cache.

Redis-backed key/value cache with an explicit TTL and an invalidation hook.
Cache failures are logged and treated as misses; a rate can always be
recomputed from the source.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from redis.exceptions import RedisError

from backend.app.core.config import settings

logger = logging.getLogger(__name__)

EXCHANGE_RATE_KEY = "exchange_rate:{local}:{foreign}"


def exchange_rate_key(local_currency: str, foreign_currency: str) -> str:
    return EXCHANGE_RATE_KEY.format(local=local_currency.lower(), foreign=foreign_currency.lower())


class RateCache:

    def __init__(self, redis, ttl_seconds: Optional[int] = None):
        self.redis = redis
        self.ttl_seconds = ttl_seconds or settings.exchange_rate_cache_ttl_seconds

    async def get(self, key: str) -> Optional[Decimal]:
        try:
            raw = await self.redis.get(key)
        except RedisError as exc:
            logger.warning("Rate cache read failed for %s: %s", key, exc)
            return None

        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode()

        try:
            return Decimal(raw)
        except InvalidOperation:
            logger.warning("Discarding unparseable cached rate %r under %s", raw, key)
            await self.invalidate(key)
            return None

    async def set(self, key: str, rate: Decimal) -> None:
        try:
            await self.redis.set(key, str(rate), ex=self.ttl_seconds)
        except RedisError as exc:
            logger.warning("Rate cache write failed for %s: %s", key, exc)

    async def invalidate(self, key: str) -> bool:
        try:
            return bool(await self.redis.delete(key))
        except RedisError as exc:
            logger.warning("Rate cache invalidation failed for %s: %s", key, exc)
            return False

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self.redis.exists(key))
        except RedisError as exc:
            logger.warning("Rate cache lookup failed for %s: %s", key, exc)
            return False
