"""Exception handlers giving every error response the ``{"error": ...}`` shape."""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from libs.common.logging import get_logger

logger = get_logger(__name__)


def _field_name(loc: tuple) -> str:
    # Drop the leading "body"/"query"/"header" segment
    parts = [str(part) for part in loc[1:]] or [str(loc[0])]
    return ".".join(parts)


def add_exception_handlers(
    app: FastAPI, *, generic_message: str = "Internal server error"
) -> None:
    """Register handlers for HTTP, request-validation and unhandled errors.

    Unhandled exceptions are logged with their traceback and answered with
    ``generic_message``; their detail never reaches the client.
    """

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        fields = sorted({_field_name(tuple(err["loc"])) for err in exc.errors()})
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "fields": fields},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(
            f"Unhandled error on {request.method} {request.url.path}",
            extra={"extra_fields": {"error": str(exc)}},
        )
        return JSONResponse(status_code=500, content={"error": generic_message})
