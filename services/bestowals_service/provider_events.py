"""Normalized payment events produced by the provider clients.

Each provider maps its own status vocabulary onto one of these variants.
Anything it does not recognize becomes ``UnrecognizedEvent``, which callers
treat as non-final.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import ClassVar, Optional, Union


@dataclass(frozen=True)
class _ProviderEvent:
    # Merchant-visible order reference, i.e. the bestowal id we sent
    order_reference: Optional[str]
    provider_reference: Optional[str]
    raw_status: str
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    payload: dict = field(default_factory=dict, compare=False, repr=False)

    kind: ClassVar[str] = "unknown"
    is_final: ClassVar[bool] = False

    @property
    def dedup_key(self) -> str:
        """Webhook-dedup id: one record per (order, outcome)."""
        return f"{self.order_reference}:{self.kind}"


@dataclass(frozen=True)
class PaymentSucceeded(_ProviderEvent):
    kind: ClassVar[str] = "succeeded"
    is_final: ClassVar[bool] = True


@dataclass(frozen=True)
class PaymentFailed(_ProviderEvent):
    kind: ClassVar[str] = "failed"
    is_final: ClassVar[bool] = True


@dataclass(frozen=True)
class PaymentExpired(_ProviderEvent):
    kind: ClassVar[str] = "expired"
    is_final: ClassVar[bool] = True


@dataclass(frozen=True)
class PaymentPending(_ProviderEvent):
    kind: ClassVar[str] = "pending"


@dataclass(frozen=True)
class UnrecognizedEvent(_ProviderEvent):
    kind: ClassVar[str] = "unrecognized"


ProviderEvent = Union[
    PaymentSucceeded, PaymentFailed, PaymentExpired, PaymentPending, UnrecognizedEvent
]


@dataclass(frozen=True)
class CheckoutOrder:
    """Hosted checkout created at the provider for one bestowal."""

    provider_order_id: str
    payment_url: Optional[str]
    raw: dict = field(default_factory=dict, repr=False)
    address: Optional[str] = None
    network: Optional[str] = None


@dataclass(frozen=True)
class TransferResult:
    """Outbound transfer/payout accepted by the provider."""

    transfer_id: Optional[str]
    status: str
    raw: dict = field(default_factory=dict, repr=False)
