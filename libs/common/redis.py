"""Shared async Redis connection."""

from typing import Optional

from redis.asyncio import Redis

from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)

_redis: Optional[Redis] = None


async def get_redis() -> Redis:
    """Return the shared Redis client, creating it on first use."""
    global _redis
    if _redis is None:
        settings = get_settings()
        _redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis


async def ping_redis() -> bool:
    try:
        redis = await get_redis()
        return bool(await redis.ping())
    except Exception as e:
        logger.warning(f"Redis ping failed: {e}")
        return False


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
