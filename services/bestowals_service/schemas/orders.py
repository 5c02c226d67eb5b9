import uuid
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl
from services.bestowals_service.models.enums import PaymentMethod


class CreateBestowalOrderRequest(BaseModel):
    campaign_id: uuid.UUID = Field(alias="campaignId")
    amount: Decimal = Field(gt=0, max_digits=16, decimal_places=2)
    unit_count: int = Field(alias="unitCount", gt=0)
    message: Optional[str] = Field(default=None, max_length=500)
    grower_id: Optional[uuid.UUID] = Field(default=None, alias="growerId")
    return_url: Optional[HttpUrl] = Field(default=None, alias="returnUrl")
    cancel_url: Optional[HttpUrl] = Field(default=None, alias="cancelUrl")

    # Defaults to DEFAULT_PAYMENT_PROVIDER
    payment_method: Optional[PaymentMethod] = Field(
        default=None, alias="paymentMethod"
    )
    currency: Optional[str] = Field(default=None, min_length=3, max_length=16)
    # Cryptomus only, e.g. TRC20
    network: Optional[str] = Field(default=None, max_length=32)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CreateBestowalOrderResponse(BaseModel):
    """Success payload; cached verbatim under the idempotency key."""

    success: bool = True
    bestowal_id: uuid.UUID = Field(serialization_alias="bestowalId")
    provider_order_id: str = Field(serialization_alias="providerOrderId")
    payment_url: Optional[str] = Field(serialization_alias="paymentUrl")
    distribution: dict
    # Cryptomus deposit details
    address: Optional[str] = None
    network: Optional[str] = None

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
