"""TTL cache abstraction backed by Redis.

Request handlers are stateless, so nothing is cached in process memory.
Cache failures are logged and treated as misses.

Usage:
    from libs.common.cache import get_cache

    cache = get_cache()
    wallets = await cache.get_json("org_wallets:s2gholding")
    if wallets is None:
        wallets = await load()
        await cache.set_json("org_wallets:s2gholding", wallets)
"""

import json
from typing import Any, Optional, Protocol

from libs.common.config import get_settings
from libs.common.logging import get_logger
from libs.common.redis import get_redis

logger = get_logger(__name__)


class Cache(Protocol):
    async def get_json(self, key: str) -> Optional[Any]: ...

    async def set_json(
        self, key: str, value: Any, ttl_seconds: Optional[int] = None
    ) -> None: ...

    async def delete(self, key: str) -> None: ...


class NullCache:
    """Cache that never stores anything."""

    async def get_json(self, key: str) -> Optional[Any]:
        return None

    async def set_json(
        self, key: str, value: Any, ttl_seconds: Optional[int] = None
    ) -> None:
        return None

    async def delete(self, key: str) -> None:
        return None


class RedisCache:
    """JSON values in Redis with a per-entry TTL."""

    def __init__(self, default_ttl_seconds: int, prefix: str = "s2g:cache:"):
        self.default_ttl_seconds = default_ttl_seconds
        self.prefix = prefix

    async def get_json(self, key: str) -> Optional[Any]:
        try:
            redis = await get_redis()
            raw = await redis.get(self.prefix + key)
        except Exception as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

    async def set_json(
        self, key: str, value: Any, ttl_seconds: Optional[int] = None
    ) -> None:
        try:
            redis = await get_redis()
            await redis.set(
                self.prefix + key,
                json.dumps(value, default=str),
                ex=ttl_seconds or self.default_ttl_seconds,
            )
        except Exception as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    async def delete(self, key: str) -> None:
        try:
            redis = await get_redis()
            await redis.delete(self.prefix + key)
        except Exception as e:
            logger.warning(f"Cache delete failed for {key}: {e}")


def get_cache() -> Cache:
    """Return the configured cache backend."""
    settings = get_settings()
    if settings.CACHE_BACKEND == "redis":
        return RedisCache(default_ttl_seconds=settings.CACHE_TTL_SECONDS)
    return NullCache()
