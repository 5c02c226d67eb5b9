"""Bookkeeping tables: webhook dedup, idempotency, audit, outbox, roles."""

import uuid
from datetime import datetime
from decimal import Decimal

from libs.common.datetime_utils import utc_now
from libs.db.base import Base, JSONType
from services.bestowals_service.models.enums import (
    AppRole,
    IdempotencyStatus,
    NotificationKind,
    NotificationStatus,
    enum_values,
)
from sqlalchemy import DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Integer, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class WebhookEvent(Base):
    __tablename__ = "webhook_events"
    __table_args__ = (
        UniqueConstraint("provider", "webhook_id", name="uq_webhook_event_provider"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    # "<order reference>:<event kind>"
    webhook_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    bestowal_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )


class IdempotencyRecord(Base):
    __tablename__ = "idempotency_records"
    __table_args__ = (
        UniqueConstraint(
            "idempotency_key", "user_id", name="uq_idempotency_key_user"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[IdempotencyStatus] = mapped_column(
        SAEnum(
            IdempotencyStatus,
            name="idempotency_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=IdempotencyStatus.IN_PROGRESS,
        nullable=False,
    )
    # Exact bytes of the first response, replayed unchanged
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class PaymentAuditLog(Base):
    __tablename__ = "payment_audit_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    action: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    payment_method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(16), nullable=True)
    bestowal_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, index=True, nullable=True
    )
    transaction_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # "metadata" is reserved by SQLAlchemy's Declarative API
    audit_metadata: Mapped[dict | None] = mapped_column(
        "metadata", JSONType, nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )


class NotificationOutbox(Base):
    """Chat notifications written with the state change, sent after commit."""

    __tablename__ = "notification_outbox"
    __table_args__ = (
        UniqueConstraint("bestowal_id", "kind", name="uq_notification_bestowal_kind"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    bestowal_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)
    kind: Mapped[NotificationKind] = mapped_column(
        SAEnum(
            NotificationKind,
            name="notification_kind_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    recipient_id: Mapped[str] = mapped_column(String, nullable=False)
    sender_id: Mapped[str | None] = mapped_column(String, nullable=True)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)

    status: Mapped[NotificationStatus] = mapped_column(
        SAEnum(
            NotificationStatus,
            name="notification_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=NotificationStatus.PENDING,
        index=True,
        nullable=False,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Set once, on first successful delivery
    sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )


class UserRole(Base):
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_role"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    role: Mapped[AppRole] = mapped_column(
        SAEnum(
            AppRole,
            name="app_role_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
