import uuid
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from services.bestowals_service.models.enums import BestowalType


class EscrowReleaseRequest(BaseModel):
    bestowal_id: uuid.UUID = Field(alias="bestowalId")
    bestowal_type: BestowalType = Field(alias="bestowalType")
    courier_id: Optional[str] = Field(default=None, alias="courierId")
    pickup_confirmation: Optional[Any] = Field(
        default=None, alias="pickupConfirmation"
    )

    model_config = ConfigDict(populate_by_name=True)


class EscrowReleaseResponse(BaseModel):
    success: bool = True
    message: str
    bestowal_id: uuid.UUID = Field(alias="bestowalId")
    released_amount: Optional[str] = Field(default=None, alias="releasedAmount")

    model_config = ConfigDict(populate_by_name=True)
