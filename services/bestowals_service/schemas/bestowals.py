import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict
from services.bestowals_service.models.enums import (
    PaymentMethod,
    PaymentStatus,
    ReleaseStatus,
)


class BestowalResponse(BaseModel):
    id: uuid.UUID
    orchard_id: uuid.UUID
    bestower_id: str
    amount: Decimal
    currency: str
    pockets_count: int
    message: Optional[str] = None
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    payment_reference: Optional[str] = None
    distribution_data: dict
    release_status: Optional[ReleaseStatus] = None
    released_at: Optional[datetime] = None
    distributed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
