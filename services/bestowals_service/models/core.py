import uuid
from datetime import datetime
from decimal import Decimal

from libs.common.datetime_utils import utc_now
from libs.db.base import Base, JSONType
from services.bestowals_service.models.enums import (
    DistributionMode,
    OrchardStatus,
    OrchardType,
    PaymentMethod,
    PaymentStatus,
    ProductType,
    ReleaseStatus,
    enum_values,
)
from sqlalchemy import DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import (
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship


class Orchard(Base):
    """A sower's offering that bestowers contribute pockets towards."""

    __tablename__ = "orchards"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # Sower (owner) auth id
    user_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[OrchardStatus] = mapped_column(
        SAEnum(
            OrchardStatus,
            name="orchard_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=OrchardStatus.ACTIVE,
        nullable=False,
    )
    orchard_type: Mapped[OrchardType] = mapped_column(
        SAEnum(
            OrchardType,
            name="orchard_type_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=OrchardType.STANDARD,
        nullable=False,
    )
    product_type: Mapped[ProductType | None] = mapped_column(
        SAEnum(
            ProductType,
            name="product_type_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=True,
    )

    currency: Mapped[str] = mapped_column(String(16), default="USDC", nullable=False)
    pocket_price: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 2), nullable=True
    )
    # Delivery cost carried by full-value physical orchards
    courier_cost: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 2), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    def __repr__(self):
        return f"<Orchard {self.id} {self.status.value}>"


class Bestowal(Base):
    """A contribution towards an orchard and its payment lifecycle."""

    __tablename__ = "bestowals"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    orchard_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orchards.id"), index=True, nullable=False
    )
    bestower_id: Mapped[str] = mapped_column(String, index=True, nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(16), nullable=False)
    pockets_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    payment_method: Mapped[PaymentMethod] = mapped_column(
        SAEnum(
            PaymentMethod,
            name="payment_method_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(
            PaymentStatus,
            name="payment_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=PaymentStatus.PENDING,
        index=True,
        nullable=False,
    )
    # Provider order id (Binance prepayId / Cryptomus invoice uuid)
    payment_reference: Mapped[str | None] = mapped_column(
        String(128), index=True, nullable=True
    )

    # Frozen distribution snapshot, see schemas.distribution.DistributionSnapshot
    distribution_data: Mapped[dict] = mapped_column(JSONType, nullable=False)

    release_status: Mapped[ReleaseStatus | None] = mapped_column(
        SAEnum(
            ReleaseStatus,
            name="release_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=True,
    )
    released_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    distributed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    orchard: Mapped[Orchard] = relationship(lazy="selectin")

    @property
    def distribution_mode(self) -> DistributionMode:
        mode = (self.distribution_data or {}).get("mode")
        return DistributionMode(mode) if mode else DistributionMode.MANUAL

    def __repr__(self):
        return f"<Bestowal {self.id} {self.payment_status.value}>"


class Product(Base):
    """A store item sold by a sower; physical items ship by courier."""

    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    sower_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    product_type: Mapped[ProductType] = mapped_column(
        SAEnum(
            ProductType,
            name="product_type_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=ProductType.DIGITAL,
        nullable=False,
    )
    currency: Mapped[str] = mapped_column(String(16), default="USDC", nullable=False)
    bestowal_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


class ProductBestowal(Base):
    """Purchase of a store product; physical items are held until pickup."""

    __tablename__ = "product_bestowals"
    __table_args__ = (
        UniqueConstraint("payment_reference", name="uq_product_bestowal_reference"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)
    product_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bestower_id: Mapped[str] = mapped_column(String, index=True, nullable=False)

    sower_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    sower_wallet: Mapped[str] = mapped_column(String(255), nullable=False)
    grower_id: Mapped[str | None] = mapped_column(String, nullable=True)
    grower_wallet: Mapped[str | None] = mapped_column(String(255), nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    sower_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    grower_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 2), nullable=True
    )
    currency: Mapped[str] = mapped_column(String(16), nullable=False)
    payment_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)

    release_status: Mapped[ReleaseStatus] = mapped_column(
        SAEnum(
            ReleaseStatus,
            name="release_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=ReleaseStatus.HELD,
        nullable=False,
    )
    hold_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    delivery_confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


class PaymentTransaction(Base):
    """Provider-side record of the payment behind a bestowal."""

    __tablename__ = "payment_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    bestowal_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bestowals.id"), index=True, nullable=False
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SAEnum(
            PaymentMethod,
            name="payment_method_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    payment_provider_id: Mapped[str | None] = mapped_column(
        String(128), index=True, nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(
            PaymentStatus,
            name="payment_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    provider_response: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )
