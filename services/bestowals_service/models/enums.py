"""Enum definitions for bestowals service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    DISTRIBUTED = "distributed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            PaymentStatus.DISTRIBUTED,
            PaymentStatus.FAILED,
            PaymentStatus.EXPIRED,
        )


class PaymentMethod(str, enum.Enum):
    BINANCE_PAY = "binance_pay"
    CRYPTOMUS = "cryptomus"


class DistributionMode(str, enum.Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class ReleaseStatus(str, enum.Enum):
    HELD = "held"
    RELEASED = "released"


class BestowalType(str, enum.Enum):
    ORCHARD = "orchard"
    PRODUCT = "product"


class OrchardStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class OrchardType(str, enum.Enum):
    STANDARD = "standard"
    FULL_VALUE = "full_value"


class ProductType(str, enum.Enum):
    DIGITAL = "digital"
    PHYSICAL = "physical"


class RecipientRole(str, enum.Enum):
    TITHING = "tithing"
    SOWER = "sower"
    GROWER = "grower"


class TransferStatus(str, enum.Enum):
    ATTEMPTED = "attempted"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    # Escrow hold: credited to pending balance, no provider transfer
    HELD = "held"
    RELEASED = "released"


class IdempotencyStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class NotificationKind(str, enum.Enum):
    BESTOWAL_PROOF = "bestowal_proof"
    SOWER_THANK_YOU = "sower_thank_you"
    SOWER_NOTIFICATION = "sower_notification"
    ESCROW_RELEASED = "escrow_released"


class NotificationStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class AppRole(str, enum.Enum):
    GOSAT = "gosat"
    COURIER = "courier"
    ADMIN = "admin"
