"""ARQ (Async Redis Queue) settings for the bestowals worker."""

from typing import Optional
from urllib.parse import urlparse

from arq.connections import RedisSettings

from libs.common.config import get_settings

BESTOWALS_QUEUE = "arq:bestowals"


def get_redis_settings(redis_url: Optional[str] = None) -> RedisSettings:
    """Translate a redis:// or rediss:// URL into ARQ RedisSettings.

    Defaults to REDIS_URL. The database index is the URL path, e.g. ``/2``.
    """
    parsed = urlparse(redis_url or get_settings().REDIS_URL)
    db_index = parsed.path.lstrip("/")
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=int(db_index) if db_index.isdigit() else 0,
        username=parsed.username,
        password=parsed.password,
        ssl=parsed.scheme == "rediss",
        conn_timeout=5,
        conn_retries=3,
    )
