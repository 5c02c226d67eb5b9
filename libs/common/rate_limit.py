"""Rate limiting for the bestowals API.

Uses slowapi; storage comes from RATE_LIMIT_STORAGE_URI so limits are shared
across instances when pointed at Redis.
"""

from functools import lru_cache
from typing import Callable

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from libs.common.config import get_settings


def _get_client_ip(request: Request) -> str:
    """
    Client IP, preferring the first hop of X-Forwarded-For.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


def _get_user_or_ip(request: Request) -> str:
    """
    Rate limit by user ID if authenticated, otherwise by IP.
    """
    user = getattr(request.state, "user", None)
    if user is not None:
        return f"user:{user.user_id}"
    return f"ip:{_get_client_ip(request)}"


@lru_cache
def get_limiter() -> Limiter:
    settings = get_settings()
    return Limiter(
        key_func=_get_user_or_ip,
        storage_uri=settings.RATE_LIMIT_STORAGE_URI,
        strategy="fixed-window",
        enabled=settings.RATE_LIMIT_ENABLED,
    )


limiter = get_limiter()


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """
    JSON body with a Retry-After header for 429 responses.
    """
    return JSONResponse(
        status_code=429,
        content={"error": "Too many payment requests. Please slow down."},
        headers={"Retry-After": str(getattr(exc, "retry_after", 60))},
    )


def payment_limit(func: Callable) -> Callable:
    """Apply the payment endpoint rate limit (PAYMENT_RATE_LIMIT)."""
    return limiter.limit(get_settings().PAYMENT_RATE_LIMIT)(func)
