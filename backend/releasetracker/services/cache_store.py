"""
cache_store.py

Best-effort JSON cache over Redis. The cache is never the source of truth:
every failure is logged and treated as a miss so callers rebuild from source.
"""
import json
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Cache TTLs (in seconds)
CACHE_TTL = {
    "short": 300,
    "medium": 1800,
    "long": 3600,
    "day": 86400,
    "week": 604800,
}


class CacheStore:
    def __init__(self, redis):
        self.redis = redis

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self.redis.get(key)
        except Exception as e:
            logger.error(f"Redis get error for {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Discarding undecodable cache value for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int = CACHE_TTL["medium"]) -> bool:
        try:
            await self.redis.set(key, json.dumps(value, default=str), ex=ttl)
            return True
        except Exception as e:
            logger.error(f"Redis set error for {key}: {e}")
            return False

    async def delete(self, key: str) -> None:
        try:
            await self.redis.delete(key)
        except Exception as e:
            logger.error(f"Redis del error for {key}: {e}")
