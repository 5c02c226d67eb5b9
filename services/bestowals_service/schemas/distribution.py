from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict
from services.bestowals_service.models.enums import (
    DistributionMode,
    OrchardType,
    ProductType,
)


class DistributionPercentages(BaseModel):
    holding: Decimal = Decimal("1")
    tithing_admin: Decimal
    sower: Decimal
    grower: Optional[Decimal] = None


class DistributionSnapshot(BaseModel):
    """Point-in-time split plan frozen onto a bestowal at order creation.

    tithing_admin_amount + sower_amount + grower_amount == total_amount.
    The holding wallet is a pass-through and is not part of the sum. Only
    proof_sent_at and manual_release_at/manual_release_user_id change after
    creation, each set once.
    """

    total_amount: Decimal
    currency: str

    holding_wallet: str
    tithing_admin_wallet: str
    tithing_admin_amount: Decimal

    sower_user_id: str
    sower_wallet: str
    sower_amount: Decimal

    grower_user_id: Optional[str] = None
    grower_wallet: Optional[str] = None
    grower_amount: Optional[Decimal] = None
    # Grower requested but no payable wallet; share folded into the sower's
    grower_unresolved: bool = False

    mode: DistributionMode
    hold_reason: Optional[str] = None
    orchard_type: Optional[OrchardType] = None
    product_type: Optional[ProductType] = None
    courier_required: bool = False

    proof_sent_at: Optional[datetime] = None
    manual_release_at: Optional[datetime] = None
    manual_release_user_id: Optional[str] = None

    percentages: DistributionPercentages
    generated_at: datetime

    model_config = ConfigDict(use_enum_values=False)

    def to_json(self) -> dict:
        """JSON-safe dict for the bestowal's distribution_data column."""
        return self.model_dump(mode="json")

    @property
    def effective_grower_amount(self) -> Decimal:
        return self.grower_amount or Decimal("0")
