"""Background reconciliation tasks for the bestowals service."""

from __future__ import annotations

import json
from datetime import timedelta

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.db.config import AsyncSessionLocal
from services.bestowals_service.errors import BestowalError
from services.bestowals_service.messaging import ChatMessenger
from services.bestowals_service.models import (
    Bestowal,
    DistributionMode,
    PaymentMethod,
    PaymentStatus,
)
from services.bestowals_service.providers import ProviderClients
from services.bestowals_service.services.executor import DistributionExecutor
from services.bestowals_service.services.notifications import (
    NotificationDispatcher,
)
from services.bestowals_service.services.reconciliation import (
    PROCESSED,
    handle_payment_event,
)
from sqlalchemy import and_, or_, select

logger = get_logger(__name__)

_BATCH_SIZE = 200


def _stale_pending_filter():
    settings = get_settings()
    now = utc_now()
    grace = timedelta(minutes=settings.PENDING_RECONCILE_GRACE_MINUTES)
    expiry = {
        PaymentMethod.BINANCE_PAY: settings.BINANCE_PAY_ORDER_EXPIRY_MINUTES,
        PaymentMethod.CRYPTOMUS: settings.CRYPTOMUS_INVOICE_LIFETIME_MINUTES,
    }
    return or_(
        *(
            and_(
                Bestowal.payment_method == method,
                Bestowal.created_at <= now - timedelta(minutes=minutes) - grace,
            )
            for method, minutes in expiry.items()
        )
    )


async def reconcile_stale_pending_bestowals(
    providers: ProviderClients | None = None,
    messenger: ChatMessenger | None = None,
) -> int:
    """Ask the provider about pending bestowals past their checkout expiry.

    Final statuses go through the same reconciliation path as webhooks, so a
    webhook arriving later for the same event is treated as a replay.
    Returns the number of bestowals whose status changed.
    """
    providers = providers or ProviderClients()
    executor = DistributionExecutor(providers)
    dispatcher = NotificationDispatcher(messenger or ChatMessenger())
    processed = 0

    async with AsyncSessionLocal() as db:
        result = await db.execute(
            select(Bestowal.id, Bestowal.payment_method)
            .where(
                Bestowal.payment_status == PaymentStatus.PENDING,
                _stale_pending_filter(),
            )
            .order_by(Bestowal.created_at.asc())
            .limit(_BATCH_SIZE)
        )
        stale = list(result.all())

        for bestowal_id, method in stale:
            try:
                event = await providers.get(method).fetch_status(str(bestowal_id))
                raw = json.dumps(event.payload, sort_keys=True, default=str)
                outcome = await handle_payment_event(
                    db,
                    provider=method,
                    event=event,
                    raw_body=raw.encode("utf-8"),
                    executor=executor,
                    dispatcher=dispatcher,
                )
            except BestowalError as exc:
                await db.rollback()
                logger.warning(
                    "Stale bestowal reconcile failed for %s: %s", bestowal_id, exc
                )
                continue
            except Exception:
                await db.rollback()
                logger.exception(
                    "Unexpected error reconciling bestowal %s", bestowal_id
                )
                continue

            if outcome.result == PROCESSED:
                processed += 1
                logger.info(
                    "Reconciled stale bestowal %s -> %s",
                    bestowal_id,
                    outcome.new_status.value,
                )

    logger.info(
        f"Stale pending reconciliation: {processed}/{len(stale)} updated",
        extra={"extra_fields": {"checked": len(stale), "updated": processed}},
    )
    return processed


async def retry_incomplete_distributions(
    providers: ProviderClients | None = None,
) -> int:
    """Resume automatic payouts (and missing escrow holds) for completed bestowals.

    Returns the number of bestowals that finished distributing.
    """
    settings = get_settings()
    cutoff = utc_now() - timedelta(minutes=settings.DISTRIBUTION_RETRY_AFTER_MINUTES)
    executor = DistributionExecutor(providers or ProviderClients())
    distributed = 0

    async with AsyncSessionLocal() as db:
        result = await db.execute(
            select(Bestowal)
            .where(
                Bestowal.payment_status == PaymentStatus.COMPLETED,
                Bestowal.updated_at <= cutoff,
            )
            .order_by(Bestowal.updated_at.asc())
            .limit(_BATCH_SIZE)
        )
        candidates = [
            (bestowal.id, bestowal.distribution_mode, bestowal.release_status)
            for bestowal in result.scalars().all()
        ]

        for bestowal_id, mode, release_status in candidates:
            try:
                if mode == DistributionMode.AUTOMATIC:
                    await executor.execute(db, bestowal_id)
                    distributed += 1
                elif release_status is None:
                    await executor.hold(db, bestowal_id)
            except BestowalError as exc:
                await db.rollback()
                logger.warning(
                    "Distribution retry failed for %s: %s", bestowal_id, exc
                )
            except Exception:
                await db.rollback()
                logger.exception(
                    "Unexpected error retrying distribution for %s", bestowal_id
                )

    logger.info(
        "Distribution retry: %d/%d bestowals distributed",
        distributed,
        len(candidates),
    )
    return distributed


async def flush_notification_outbox(messenger: ChatMessenger | None = None) -> int:
    """Deliver outbox notifications still pending after their first attempt."""
    dispatcher = NotificationDispatcher(messenger or ChatMessenger())
    async with AsyncSessionLocal() as db:
        sent = await dispatcher.dispatch_pending(db, limit=_BATCH_SIZE)
    if sent:
        logger.info("Notification outbox: %d sent", sent)
    return sent
