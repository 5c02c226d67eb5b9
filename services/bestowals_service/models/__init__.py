"""Bestowals Service models package."""

from services.bestowals_service.models.core import (
    Bestowal,
    Orchard,
    PaymentTransaction,
    Product,
    ProductBestowal,
)
from services.bestowals_service.models.enums import (
    AppRole,
    BestowalType,
    DistributionMode,
    IdempotencyStatus,
    NotificationKind,
    NotificationStatus,
    OrchardStatus,
    OrchardType,
    PaymentMethod,
    PaymentStatus,
    ProductType,
    RecipientRole,
    ReleaseStatus,
    TransferStatus,
)
from services.bestowals_service.models.records import (
    IdempotencyRecord,
    NotificationOutbox,
    PaymentAuditLog,
    UserRole,
    WebhookEvent,
)
from services.bestowals_service.models.wallets import (
    DistributionTransfer,
    OrganizationWallet,
    UserWallet,
    WalletBalance,
)

__all__ = [
    "AppRole",
    "Bestowal",
    "BestowalType",
    "DistributionMode",
    "DistributionTransfer",
    "IdempotencyRecord",
    "IdempotencyStatus",
    "NotificationKind",
    "NotificationOutbox",
    "NotificationStatus",
    "Orchard",
    "OrchardStatus",
    "OrchardType",
    "OrganizationWallet",
    "PaymentAuditLog",
    "PaymentMethod",
    "PaymentStatus",
    "PaymentTransaction",
    "Product",
    "ProductBestowal",
    "ProductType",
    "RecipientRole",
    "ReleaseStatus",
    "TransferStatus",
    "UserRole",
    "UserWallet",
    "WalletBalance",
]
