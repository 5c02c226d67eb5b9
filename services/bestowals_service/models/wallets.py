import uuid
from datetime import datetime
from decimal import Decimal

from libs.common.datetime_utils import utc_now
from libs.db.base import Base, JSONType
from services.bestowals_service.models.enums import (
    RecipientRole,
    TransferStatus,
    enum_values,
)
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column


class OrganizationWallet(Base):
    """Platform-owned wallets looked up by name (holding, tithing, default payee)."""

    __tablename__ = "organization_wallets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    wallet_name: Mapped[str] = mapped_column(
        String(64), unique=True, index=True, nullable=False
    )
    wallet_address: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )


class UserWallet(Base):
    __tablename__ = "user_wallets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    wallet_address: Mapped[str] = mapped_column(String(255), nullable=False)
    wallet_type: Mapped[str] = mapped_column(String(32), nullable=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )


class WalletBalance(Base):
    """Internal balance per (user, wallet address).

    Only ever mutated through relative deltas in services.ledger.
    """

    __tablename__ = "wallet_balances"
    __table_args__ = (
        UniqueConstraint("user_id", "wallet_address", name="uq_wallet_balance_owner"),
        CheckConstraint("available_balance >= 0", name="ck_available_non_negative"),
        CheckConstraint("pending_balance >= 0", name="ck_pending_non_negative"),
        CheckConstraint("total_earned >= 0", name="ck_total_earned_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    wallet_address: Mapped[str] = mapped_column(String(255), nullable=False)
    currency: Mapped[str] = mapped_column(String(16), default="USDC", nullable=False)

    available_balance: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), default=Decimal("0"), nullable=False
    )
    pending_balance: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), default=Decimal("0"), nullable=False
    )
    total_earned: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), default=Decimal("0"), nullable=False
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


class DistributionTransfer(Base):
    """One row per (bestowal, recipient role); makes distribution resumable."""

    __tablename__ = "distribution_transfers"
    __table_args__ = (
        UniqueConstraint(
            "bestowal_id", "recipient_role", name="uq_distribution_transfer_role"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    bestowal_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bestowals.id"), index=True, nullable=False
    )
    recipient_role: Mapped[RecipientRole] = mapped_column(
        SAEnum(
            RecipientRole,
            name="recipient_role_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    wallet_address: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(16), nullable=False)

    status: Mapped[TransferStatus] = mapped_column(
        SAEnum(
            TransferStatus,
            name="transfer_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=TransferStatus.ATTEMPTED,
        nullable=False,
    )
    # Provider request id; reused on retry so the provider can dedupe
    request_id: Mapped[str | None] = mapped_column(
        String(128), unique=True, nullable=True
    )
    provider_transfer_id: Mapped[str | None] = mapped_column(
        String(128), nullable=True
    )
    provider_response: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    balance_credited_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )
