"""Bestowals Service schemas package."""

from services.bestowals_service.schemas.bestowals import BestowalResponse
from services.bestowals_service.schemas.distribution import (
    DistributionPercentages,
    DistributionSnapshot,
)
from services.bestowals_service.schemas.escrow import (
    EscrowReleaseRequest,
    EscrowReleaseResponse,
)
from services.bestowals_service.schemas.orders import (
    CreateBestowalOrderRequest,
    CreateBestowalOrderResponse,
)
from services.bestowals_service.schemas.products import (
    CompleteProductBestowalRequest,
    CompleteProductBestowalResponse,
)

__all__ = [
    "BestowalResponse",
    "CompleteProductBestowalRequest",
    "CompleteProductBestowalResponse",
    "CreateBestowalOrderRequest",
    "CreateBestowalOrderResponse",
    "DistributionPercentages",
    "DistributionSnapshot",
    "EscrowReleaseRequest",
    "EscrowReleaseResponse",
]
