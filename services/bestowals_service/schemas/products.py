import uuid
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.bestowals_service.models.enums import ProductType, ReleaseStatus


class CompleteProductBestowalRequest(BaseModel):
    product_id: uuid.UUID = Field(alias="productId")
    bestower_id: str = Field(alias="bestowerId", min_length=1)
    amount: Decimal = Field(gt=0, max_digits=16, decimal_places=2)
    grower_id: Optional[str] = Field(default=None, alias="growerId")
    # Provider reference of the settled payment; repeats return the first row
    payment_reference: Optional[str] = Field(
        default=None, alias="paymentReference", max_length=128
    )

    model_config = ConfigDict(populate_by_name=True)


class CompleteProductBestowalResponse(BaseModel):
    success: bool = True
    bestowal_id: uuid.UUID = Field(alias="bestowalId")
    product_type: ProductType = Field(alias="productType")
    release_status: ReleaseStatus = Field(alias="releaseStatus")
    hold_reason: Optional[str] = Field(default=None, alias="holdReason")
    sower_amount: str = Field(alias="sowerAmount")
    grower_amount: Optional[str] = Field(default=None, alias="growerAmount")
    tithing_amount: str = Field(alias="tithingAmount")

    model_config = ConfigDict(populate_by_name=True)
