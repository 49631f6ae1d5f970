import json
import logging
from typing import Optional

from redis import asyncio as aioredis
from storefront.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class RedisClient:
    """Order detail cache and fixed-window rate limiter.

    Redis is an optimisation here: every failure is logged and the caller
    carries on as if the key were missing.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.redis = None

    async def connect(self):
        if not self.redis:
            self.redis = aioredis.from_url(self.settings.REDIS_URL, encoding="utf-8", decode_responses=True)
            logger.info("Connected to Redis.")

    async def close(self):
        if self.redis:
            await self.redis.aclose()
            self.redis = None

    async def get_cached_order(self, order_id: str) -> Optional[dict]:
        if not self.redis:
            await self.connect()
        try:
            data = await self.redis.get(f"order:{order_id}")
            return json.loads(data) if data else None
        except Exception as e:
            logger.error(f"Redis get error: {e}")
            return None

    async def set_cached_order(self, order_id: str, data: dict, ttl: Optional[int] = None):
        if not self.redis:
            await self.connect()
        try:
            ttl = ttl or self.settings.ORDER_CACHE_TTL_SECONDS
            await self.redis.set(f"order:{order_id}", json.dumps(data, default=str), ex=ttl)
        except Exception as e:
            logger.error(f"Redis set error: {e}")

    async def invalidate_order(self, order_id: str):
        if not self.redis:
            await self.connect()
        try:
            await self.redis.delete(f"order:{order_id}")
        except Exception as e:
            logger.error(f"Redis delete error: {e}")

    async def check_rate_limit(self, key: str, limit: int, window: int) -> bool:
        """
        Returns True if request is allowed, False if rate limited.
        """
        if not self.settings.API_RATE_LIMIT_ENABLED:
            return True

        if not self.redis:
            await self.connect()

        key = f"rate_limit:{key}"
        try:
            current = await self.redis.incr(key)
            if current == 1:
                await self.redis.expire(key, window)

            return current <= limit
        except Exception as e:
            logger.error(f"Redis rate limit error: {e}")
            return True # Fail open to avoid blocking users on cache failure

redis_client = RedisClient(get_settings())

async def get_redis():
    if not redis_client.redis:
        await redis_client.connect()
    return redis_client
