"""FastAPI application for the Bestowals Service."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from libs.common.config import get_settings
from libs.common.error_handler import add_exception_handlers
from libs.common.logging import get_logger
from libs.common.middleware import add_observability_middleware
from libs.common.rate_limit import limiter, rate_limit_exceeded_handler
from libs.common.redis import close_redis, ping_redis
from services.bestowals_service.errors import (
    GENERIC_FAILURE_MESSAGE,
    BestowalError,
    ValidationError,
)
from services.bestowals_service.routers import (
    bestowals_router,
    escrow_router,
    products_router,
    webhooks_router,
)
from slowapi.errors import RateLimitExceeded

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Bestowals service starting")
    yield
    await close_redis()
    logger.info("Bestowals service stopped")


async def bestowal_error_handler(request: Request, exc: BestowalError) -> JSONResponse:
    """Render ``{"error": ...}``; 5xx details are logged, never returned."""
    if exc.status_code >= 500:
        logger.error(
            f"{type(exc).__name__} on {request.method} {request.url.path}: "
            f"{exc.message}",
            extra={"extra_fields": {"status_code": exc.status_code}},
        )
    content = {"error": exc.public_message}
    if isinstance(exc, ValidationError):
        content["fields"] = exc.fields
    return JSONResponse(status_code=exc.status_code, content=content)


def create_app() -> FastAPI:
    """Create and configure the Bestowals Service FastAPI app."""
    app = FastAPI(
        title="Sow2Grow Bestowals Service",
        version="0.1.0",
        description="Bestowal payments, distribution and escrow for Sow2Grow.",
        lifespan=lifespan,
    )

    # Add rate limiter state to app
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    # Add observability (structured logging + request tracing)
    add_observability_middleware(app)

    add_exception_handlers(app, generic_message=GENERIC_FAILURE_MESSAGE)
    app.add_exception_handler(BestowalError, bestowal_error_handler)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        health = {"status": "ok", "service": "bestowals"}
        if get_settings().CACHE_BACKEND == "redis":
            health["cache"] = "ok" if await ping_redis() else "unavailable"
        return health

    app.include_router(webhooks_router)
    app.include_router(escrow_router)
    app.include_router(products_router)
    app.include_router(bestowals_router)

    return app


app = create_app()
