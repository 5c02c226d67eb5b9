"""Integration tests for the background reconciliation tasks."""

from datetime import timedelta
from decimal import Decimal

import httpx
import pytest
from libs.common.datetime_utils import utc_now
from services.bestowals_service import tasks
from services.bestowals_service.models import (
    Bestowal,
    DistributionMode,
    NotificationKind,
    NotificationOutbox,
    NotificationStatus,
    PaymentMethod,
    PaymentStatus,
    ReleaseStatus,
)
from services.bestowals_service.provider_events import (
    PaymentExpired,
    PaymentSucceeded,
)
from services.bestowals_service.services.ledger import get_balance
from sqlalchemy import select
from tests.factories import (
    BestowalFactory,
    OrchardFactory,
    UserRoleFactory,
    snapshot_data,
)


def _hours_ago(hours):
    return utc_now() - timedelta(hours=hours)


async def _reload(db, bestowal_id):
    return await db.get(Bestowal, bestowal_id, populate_existing=True)


@pytest.mark.asyncio
@pytest.mark.integration
async def test_stale_pending_bestowals_are_reconciled(
    session_scope, providers, cryptomus, binance_pay, messenger
):
    """Past-expiry orders are settled from the provider's status."""
    db = session_scope
    orchard = OrchardFactory.create()
    paid = BestowalFactory.create(orchard_id=orchard.id, created_at=_hours_ago(2))
    expired = BestowalFactory.create(
        orchard_id=orchard.id,
        payment_method=PaymentMethod.BINANCE_PAY,
        created_at=_hours_ago(3),
    )
    still_pending = BestowalFactory.create(
        orchard_id=orchard.id, created_at=_hours_ago(4)
    )
    fresh = BestowalFactory.create(orchard_id=orchard.id, created_at=utc_now())
    db.add_all(
        [
            orchard,
            paid,
            expired,
            still_pending,
            fresh,
            UserRoleFactory.create(user_id="gosat-1"),
        ]
    )
    await db.commit()

    cryptomus.statuses[str(paid.id)] = PaymentSucceeded(
        order_reference=str(paid.id),
        provider_reference="inv-paid",
        raw_status="paid",
        amount=Decimal("150.00"),
        currency="USDC",
        payload={"status": "paid", "uuid": "inv-paid"},
    )
    binance_pay.statuses[str(expired.id)] = PaymentExpired(
        order_reference=str(expired.id),
        provider_reference=None,
        raw_status="EXPIRED",
        payload={"status": "EXPIRED"},
    )

    updated = await tasks.reconcile_stale_pending_bestowals(
        providers=providers, messenger=messenger
    )

    assert updated == 2
    assert str(fresh.id) not in cryptomus.status_requests
    assert (await _reload(db, paid.id)).payment_status == PaymentStatus.DISTRIBUTED
    assert (await _reload(db, expired.id)).payment_status == PaymentStatus.EXPIRED
    assert (await _reload(db, still_pending.id)).payment_status == (
        PaymentStatus.PENDING
    )
    assert len(messenger.messages) == 3


@pytest.mark.asyncio
@pytest.mark.integration
async def test_stale_reconcile_survives_bad_provider_data(
    session_scope, providers, cryptomus, messenger
):
    """An amount mismatch for one order does not stop the sweep."""
    db = session_scope
    orchard = OrchardFactory.create()
    mismatched = BestowalFactory.create(orchard_id=orchard.id, created_at=_hours_ago(2))
    db.add_all([orchard, mismatched])
    await db.commit()
    cryptomus.statuses[str(mismatched.id)] = PaymentSucceeded(
        order_reference=str(mismatched.id),
        provider_reference="inv-1",
        raw_status="paid",
        amount=Decimal("1.00"),
    )

    updated = await tasks.reconcile_stale_pending_bestowals(
        providers=providers, messenger=messenger
    )

    assert updated == 0
    assert (await _reload(db, mismatched.id)).payment_status == PaymentStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.integration
async def test_stale_reconcile_survives_transport_errors(
    session_scope, providers, cryptomus, messenger
):
    """A provider timeout for one order still lets the next one settle."""
    db = session_scope
    orchard = OrchardFactory.create()
    unreachable = BestowalFactory.create(
        orchard_id=orchard.id, created_at=_hours_ago(3)
    )
    expired = BestowalFactory.create(orchard_id=orchard.id, created_at=_hours_ago(2))
    db.add_all([orchard, unreachable, expired])
    await db.commit()
    cryptomus.status_errors[str(unreachable.id)] = httpx.ConnectTimeout("timed out")
    cryptomus.statuses[str(expired.id)] = PaymentExpired(
        order_reference=str(expired.id),
        provider_reference=None,
        raw_status="cancel",
    )

    updated = await tasks.reconcile_stale_pending_bestowals(
        providers=providers, messenger=messenger
    )

    assert updated == 1
    assert cryptomus.status_requests == [str(unreachable.id), str(expired.id)]
    assert (await _reload(db, unreachable.id)).payment_status == (
        PaymentStatus.PENDING
    )
    assert (await _reload(db, expired.id)).payment_status == PaymentStatus.EXPIRED


@pytest.mark.asyncio
@pytest.mark.integration
async def test_incomplete_distributions_are_retried(
    session_scope, providers, cryptomus
):
    """Completed automatic bestowals are paid out; unheld manual ones are held."""
    db = session_scope
    automatic = BestowalFactory.create(
        payment_status=PaymentStatus.COMPLETED, updated_at=_hours_ago(1)
    )
    manual = BestowalFactory.create(
        payment_status=PaymentStatus.COMPLETED,
        distribution_data=snapshot_data(
            mode=DistributionMode.MANUAL, sower_wallet="manual-wallet"
        ),
        updated_at=_hours_ago(1),
    )
    recent = BestowalFactory.create(
        payment_status=PaymentStatus.COMPLETED, updated_at=utc_now()
    )
    db.add_all([automatic, manual, recent])
    await db.commit()

    distributed = await tasks.retry_incomplete_distributions(providers=providers)

    assert distributed == 1
    assert (await _reload(db, automatic.id)).payment_status == (
        PaymentStatus.DISTRIBUTED
    )
    assert (await _reload(db, recent.id)).payment_status == PaymentStatus.COMPLETED
    manual = await _reload(db, manual.id)
    assert manual.release_status == ReleaseStatus.HELD
    balance = await get_balance(
        db, user_id="sower-1", wallet_address="manual-wallet"
    )
    assert balance.pending_balance == Decimal("127.50")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_distribution_retry_keeps_going_after_failure(
    session_scope, providers, cryptomus
):
    db = session_scope
    failing = BestowalFactory.create(
        payment_status=PaymentStatus.COMPLETED,
        distribution_data=snapshot_data(sower_wallet="blocked-wallet"),
        updated_at=_hours_ago(2),
    )
    healthy = BestowalFactory.create(
        payment_status=PaymentStatus.COMPLETED, updated_at=_hours_ago(1)
    )
    db.add_all([failing, healthy])
    await db.commit()
    cryptomus.failing_destinations.add("blocked-wallet")

    distributed = await tasks.retry_incomplete_distributions(providers=providers)

    assert distributed == 1
    assert (await _reload(db, failing.id)).payment_status == PaymentStatus.COMPLETED
    assert (await _reload(db, healthy.id)).payment_status == (
        PaymentStatus.DISTRIBUTED
    )


@pytest.mark.asyncio
@pytest.mark.integration
async def test_distribution_retry_survives_unexpected_errors(
    session_scope, providers, cryptomus
):
    """A non-provider failure mid-payout is logged and the sweep continues."""
    db = session_scope
    broken = BestowalFactory.create(
        payment_status=PaymentStatus.COMPLETED,
        distribution_data=snapshot_data(sower_wallet="broken-wallet"),
        updated_at=_hours_ago(2),
    )
    healthy = BestowalFactory.create(
        payment_status=PaymentStatus.COMPLETED, updated_at=_hours_ago(1)
    )
    db.add_all([broken, healthy])
    await db.commit()

    async def explode(destination):
        if destination == "broken-wallet":
            raise RuntimeError("connection reset")

    cryptomus.before_transfer = explode

    distributed = await tasks.retry_incomplete_distributions(providers=providers)

    assert distributed == 1
    assert (await _reload(db, broken.id)).payment_status == PaymentStatus.COMPLETED
    assert (await _reload(db, healthy.id)).payment_status == (
        PaymentStatus.DISTRIBUTED
    )


@pytest.mark.asyncio
@pytest.mark.integration
async def test_notification_outbox_is_flushed(session_scope, messenger):
    """Pending rows left by an earlier failure are delivered."""
    db = session_scope
    bestowal = BestowalFactory.create(payment_status=PaymentStatus.COMPLETED)
    db.add_all(
        [
            bestowal,
            NotificationOutbox(
                bestowal_id=bestowal.id,
                kind=NotificationKind.ESCROW_RELEASED,
                recipient_id="sower-1",
                sender_id="gosat-1",
                payload={
                    "title": "Olive Grove",
                    "amount": "127.50",
                    "currency": "USDC",
                },
                attempts=2,
            ),
        ]
    )
    await db.commit()

    sent = await tasks.flush_notification_outbox(messenger=messenger)

    assert sent == 1
    [row] = (
        await db.execute(
            select(NotificationOutbox).execution_options(populate_existing=True)
        )
    ).scalars().all()
    assert row.status == NotificationStatus.SENT
    assert row.sent_at is not None
    [message] = messenger.of_type("escrow_released")
    assert message["room_id"] == "room:gosat-1:sower-1"
