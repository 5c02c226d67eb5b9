"""Payment reconciliation: apply a provider event to a bestowal.

Shared by both webhook routes and the stale-order sweep. Per bestowal the
transitions are ``pending -> completed`` (then distributed or held),
``pending -> failed`` and ``pending -> expired``. A webhook-dedup record is
committed before any transition so concurrent or repeated deliveries of the
same event apply it at most once. The transition itself is a conditional
update from ``pending``, so two different final events cannot both land.
"""

import hashlib
import uuid
from dataclasses import dataclass
from typing import Optional

from libs.common.config import get_settings
from libs.common.currency import amounts_match
from libs.common.logging import get_logger
from services.bestowals_service.errors import (
    AmountMismatchError,
    NotFoundError,
    ValidationError,
)
from services.bestowals_service.models import (
    Bestowal,
    DistributionMode,
    Orchard,
    PaymentMethod,
    PaymentStatus,
    PaymentTransaction,
    WebhookEvent,
)
from services.bestowals_service.provider_events import (
    PaymentExpired,
    PaymentFailed,
    PaymentSucceeded,
    ProviderEvent,
)
from services.bestowals_service.services.audit import record_audit
from services.bestowals_service.services.executor import DistributionExecutor
from services.bestowals_service.services.notifications import (
    NotificationDispatcher,
    enqueue_payment_notifications,
    find_gosat_user_id,
)
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

PROCESSED = "processed"
REPLAYED = "replayed"
IGNORED = "ignored"


@dataclass(frozen=True)
class ReconciliationOutcome:
    result: str
    bestowal_id: Optional[uuid.UUID] = None
    mode: Optional[DistributionMode] = None
    new_status: Optional[PaymentStatus] = None


def payload_hash(raw_body: bytes) -> str:
    return hashlib.sha256(raw_body).hexdigest()


def _parse_reference(reference: Optional[str]) -> uuid.UUID:
    if not reference:
        raise ValidationError(["orderId"], "Missing order reference")
    try:
        return uuid.UUID(str(reference))
    except ValueError:
        raise NotFoundError("Bestowal not found")


def _target_status(event: ProviderEvent) -> PaymentStatus:
    if isinstance(event, PaymentSucceeded):
        return PaymentStatus.COMPLETED
    if isinstance(event, PaymentExpired):
        return PaymentStatus.EXPIRED
    if isinstance(event, PaymentFailed):
        return PaymentStatus.FAILED
    raise TypeError(f"Unhandled final event {type(event).__name__}")


async def _reload(db: AsyncSession, bestowal_id: uuid.UUID) -> Optional[Bestowal]:
    result = await db.execute(
        select(Bestowal)
        .where(Bestowal.id == bestowal_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _mark_processed(
    db: AsyncSession,
    *,
    provider: PaymentMethod,
    event: ProviderEvent,
    raw_body: bytes,
    bestowal_id: uuid.UUID,
) -> bool:
    """Insert the dedup record. False means this event was already handled."""
    db.add(
        WebhookEvent(
            provider=provider.value,
            webhook_id=event.dedup_key,
            event_kind=event.kind,
            payload_hash=payload_hash(raw_body),
            bestowal_id=bestowal_id,
        )
    )
    try:
        await db.commit()
        return True
    except IntegrityError:
        await db.rollback()
        return False


async def _update_transactions(
    db: AsyncSession,
    bestowal: Bestowal,
    status: PaymentStatus,
    event: ProviderEvent,
) -> None:
    result = await db.execute(
        select(PaymentTransaction).where(PaymentTransaction.bestowal_id == bestowal.id)
    )
    for transaction in result.scalars().all():
        transaction.status = status
        transaction.payment_provider_id = (
            event.provider_reference or transaction.payment_provider_id
        )
        transaction.provider_response = event.payload


async def reconcile_event(
    db: AsyncSession,
    *,
    provider: PaymentMethod,
    event: ProviderEvent,
    raw_body: bytes,
) -> ReconciliationOutcome:
    """Record and apply one provider event.

    Raises:
        ValidationError: the event carries no order reference.
        NotFoundError: no bestowal matches the order reference.
        AmountMismatchError: a success event reports a different amount.
    """
    if not event.is_final:
        logger.info(
            f"Ignoring non-final {provider.value} event {event.raw_status!r}",
            extra={
                "extra_fields": {
                    "order_reference": event.order_reference,
                    "event_kind": event.kind,
                }
            },
        )
        return ReconciliationOutcome(IGNORED)

    bestowal_id = _parse_reference(event.order_reference)
    bestowal = await _reload(db, bestowal_id)
    if bestowal is None:
        logger.warning(
            f"{provider.value} event for unknown bestowal {bestowal_id}",
            extra={"extra_fields": {"event_kind": event.kind}},
        )
        raise NotFoundError("Bestowal not found")

    if isinstance(event, PaymentSucceeded):
        tolerance = get_settings().WEBHOOK_AMOUNT_TOLERANCE
        if event.amount is None or not amounts_match(
            bestowal.amount, event.amount, tolerance
        ):
            logger.error(
                f"Amount mismatch for bestowal {bestowal.id}",
                extra={
                    "extra_fields": {
                        "bestowal_id": str(bestowal.id),
                        "stored_amount": str(bestowal.amount),
                        "webhook_amount": str(event.amount),
                        "provider": provider.value,
                    }
                },
            )
            record_audit(
                db,
                action="amount_verification_failed",
                user_id=bestowal.bestower_id,
                payment_method=provider.value,
                amount=(
                    event.amount
                    if event.amount is not None and event.amount.is_finite()
                    else None
                ),
                currency=bestowal.currency,
                bestowal_id=bestowal.id,
                transaction_id=event.provider_reference or event.order_reference,
                metadata={
                    "storedAmount": str(bestowal.amount),
                    "webhookAmount": str(event.amount),
                },
            )
            await db.commit()
            raise AmountMismatchError(bestowal.amount, event.amount)

    if not await _mark_processed(
        db,
        provider=provider,
        event=event,
        raw_body=raw_body,
        bestowal_id=bestowal_id,
    ):
        logger.info(
            "Replayed %s %s event for bestowal %s",
            provider.value,
            event.kind,
            bestowal_id,
        )
        return ReconciliationOutcome(REPLAYED, bestowal_id)

    new_status = _target_status(event)
    values = {"payment_status": new_status}
    if event.provider_reference:
        values["payment_reference"] = event.provider_reference
    transition = await db.execute(
        update(Bestowal)
        .where(
            Bestowal.id == bestowal_id,
            Bestowal.payment_status == PaymentStatus.PENDING,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if transition.rowcount == 0:
        await db.rollback()
        current = await db.scalar(
            select(Bestowal.payment_status).where(Bestowal.id == bestowal_id)
        )
        logger.info(
            "Bestowal %s is %s; ignoring %s event",
            bestowal_id,
            current.value if current else None,
            event.kind,
        )
        return ReconciliationOutcome(IGNORED, bestowal_id)

    bestowal = await _reload(db, bestowal_id)
    await _update_transactions(db, bestowal, new_status, event)

    mode = bestowal.distribution_mode
    if new_status == PaymentStatus.COMPLETED:
        orchard = await db.get(Orchard, bestowal.orchard_id)
        enqueue_payment_notifications(
            db,
            bestowal=bestowal,
            orchard=orchard,
            gosat_user_id=await find_gosat_user_id(db),
        )

    record_audit(
        db,
        action="webhook_processed",
        user_id=bestowal.bestower_id,
        payment_method=provider.value,
        amount=bestowal.amount,
        currency=bestowal.currency,
        bestowal_id=bestowal.id,
        transaction_id=event.provider_reference or event.order_reference,
        metadata={
            "status": event.raw_status,
            "event_kind": event.kind,
            "distribution_mode": mode.value,
        },
    )
    await db.commit()

    logger.info(
        f"Bestowal {bestowal.id} -> {new_status.value}",
        extra={
            "extra_fields": {
                "bestowal_id": str(bestowal.id),
                "provider": provider.value,
                "status": new_status.value,
            }
        },
    )
    return ReconciliationOutcome(PROCESSED, bestowal.id, mode, new_status)


async def handle_payment_event(
    db: AsyncSession,
    *,
    provider: PaymentMethod,
    event: ProviderEvent,
    raw_body: bytes,
    executor: DistributionExecutor,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> ReconciliationOutcome:
    """Reconcile, then distribute or hold, then send notifications.

    Distribution and notification failures are logged only; the completed
    payment is already durable and the worker retries what is left.
    """
    outcome = await reconcile_event(
        db, provider=provider, event=event, raw_body=raw_body
    )
    if outcome.result != PROCESSED or outcome.new_status != PaymentStatus.COMPLETED:
        return outcome

    try:
        if outcome.mode == DistributionMode.AUTOMATIC:
            await executor.execute(db, outcome.bestowal_id)
        else:
            await executor.hold(db, outcome.bestowal_id)
    except Exception as e:
        await db.rollback()
        logger.error(
            f"Post-payment {outcome.mode.value} step failed for bestowal "
            f"{outcome.bestowal_id}: {e}",
            extra={"extra_fields": {"bestowal_id": str(outcome.bestowal_id)}},
        )

    if dispatcher is not None:
        await dispatcher.dispatch_pending(db, bestowal_id=outcome.bestowal_id)
    return outcome
