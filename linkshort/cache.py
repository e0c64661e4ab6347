import logging
import redis.asyncio as redis
from .config import settings
from .observability import CACHE_ERRORS
from typing import Optional

logger = logging.getLogger(__name__)

class LinkCache:
    """Read-through cache of short code -> destination URL.

    Every Redis failure is treated as a miss (for reads) or a no-op (for
    writes), so callers never see a cache error.
    """

    def __init__(self, prefix: str = settings.CACHE_KEY_PREFIX):
        self.client: Optional[redis.Redis] = None
        self.prefix = prefix

    async def connect(self):
        self.client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True
        )
        try:
            await self.client.ping()
        except redis.RedisError as e:
            # Keep the client; redirects fall back to the database until Redis recovers
            logger.warning(f"Redis unavailable at startup: {e}")

    async def close(self):
        if self.client:
            await self.client.aclose()

    def key(self, code: str) -> str:
        return f"{self.prefix}{code}"

    async def get(self, code: str) -> Optional[str]:
        if not self.client:
            return None
        try:
            return await self.client.get(self.key(code))
        except redis.RedisError as e:
            CACHE_ERRORS.labels(operation="get").inc()
            logger.warning(f"Cache get failed: {e}", extra={"short_code": code})
            return None

    async def set(self, code: str, url: str, ttl: int):
        if not self.client:
            return
        try:
            await self.client.set(self.key(code), url, ex=ttl)
        except redis.RedisError as e:
            CACHE_ERRORS.labels(operation="set").inc()
            logger.warning(f"Cache set failed: {e}", extra={"short_code": code})

    async def invalidate(self, *codes: str):
        if not self.client or not codes:
            return
        try:
            await self.client.delete(*(self.key(code) for code in codes))
        except redis.RedisError as e:
            CACHE_ERRORS.labels(operation="invalidate").inc()
            logger.warning(f"Cache invalidate failed: {e}", extra={"short_code": ",".join(codes)})

link_cache = LinkCache()
