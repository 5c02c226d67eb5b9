"""Routers package."""

from services.bestowals_service.routers.bestowals import router as bestowals_router
from services.bestowals_service.routers.escrow import router as escrow_router
from services.bestowals_service.routers.products import router as products_router
from services.bestowals_service.routers.webhooks import router as webhooks_router

__all__ = [
    "bestowals_router",
    "escrow_router",
    "products_router",
    "webhooks_router",
]
