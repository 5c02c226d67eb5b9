"""Unit tests for the notification outbox and its dispatcher."""

from decimal import Decimal

import pytest
from libs.common.config import get_settings
from services.bestowals_service.models import (
    Bestowal,
    NotificationKind,
    NotificationOutbox,
    NotificationStatus,
    PaymentStatus,
)
from services.bestowals_service.services.notifications import (
    NotificationDispatcher,
    enqueue_escrow_released,
    enqueue_payment_notifications,
    find_gosat_user_id,
    render_message,
)
from sqlalchemy import select
from tests.factories import (
    BestowalFactory,
    OrchardFactory,
    UserRoleFactory,
    snapshot_data,
)


async def _paid_bestowal(db):
    orchard = OrchardFactory.create()
    bestowal = BestowalFactory.create(
        orchard_id=orchard.id,
        payment_status=PaymentStatus.COMPLETED,
        pockets_count=3,
    )
    db.add_all([orchard, bestowal])
    await db.commit()
    return orchard, bestowal


async def _outbox(db):
    result = await db.execute(
        select(NotificationOutbox).execution_options(populate_existing=True)
    )
    return {row.kind: row for row in result.scalars()}


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_render_proof_mentions_manual_release():
    content = render_message(
        NotificationKind.BESTOWAL_PROOF,
        {
            "orchard_title": "Olive Grove",
            "orchard_type": "standard",
            "amount": "150.00",
            "currency": "USDC",
            "pockets_count": 3,
            "payment_reference": "cryptomus-order-1",
            "distribution_mode": "manual",
            "created_at": "2026-03-01T10:30:00+00:00",
        },
    )

    assert content.startswith("Bestowal Proof & Invoice")
    assert "Orchard: Olive Grove" in content
    assert "Orchard Type: standard" in content
    assert "Amount: 150.00 USDC" in content
    assert "Waiting for Gosat release" in content
    assert "Date: 2026-03-01 10:30 UTC" in content


@pytest.mark.unit
def test_render_thank_you_is_signed_by_sower():
    content = render_message(
        NotificationKind.SOWER_THANK_YOU,
        {"orchard_title": "Olive Grove", "amount": "150.00", "currency": "USDC"},
        sender_name="Ruth",
        recipient_name="Boaz",
    )

    assert content.startswith("Thank You, Boaz!")
    assert '150.00 USDC to my orchard "Olive Grove"' in content
    assert content.endswith("Ruth")


@pytest.mark.unit
def test_render_escrow_released():
    content = render_message(
        NotificationKind.ESCROW_RELEASED,
        {"title": "Hand-carved bowl", "amount": "85.00", "currency": "USDC"},
    )

    assert "Funds Released" in content
    assert '85.00 USDC for "Hand-carved bowl"' in content


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_payment_notifications_are_delivered(db_session, messenger):
    orchard, bestowal = await _paid_bestowal(db_session)
    messenger.names = {"sower-1": "Ruth", "bestower-1": "Boaz"}
    enqueue_payment_notifications(
        db_session, bestowal=bestowal, orchard=orchard, gosat_user_id="gosat-1"
    )
    await db_session.commit()

    sent = await NotificationDispatcher(messenger).dispatch_pending(db_session)

    assert sent == 3
    proof = messenger.of_type("bestowal_proof")[0]
    assert proof["room_id"] == "room:gosat-1:bestower-1"
    assert proof["metadata"]["bestowal_id"] == str(bestowal.id)
    thanks = messenger.of_type("sower_thank_you")[0]
    assert thanks["room_id"] == "room:sower-1:bestower-1"
    assert thanks["content"].startswith("Thank You, Boaz!")
    notice = messenger.of_type("sower_notification")[0]
    assert notice["room_id"] == "room:gosat-1:sower-1"
    assert "Bestower: Boaz" in notice["content"]
    assert "Pockets Filled: 3" in notice["content"]

    rows = await _outbox(db_session)
    assert all(r.status == NotificationStatus.SENT for r in rows.values())
    assert all(r.sent_at is not None for r in rows.values())
    refreshed = await db_session.get(Bestowal, bestowal.id, populate_existing=True)
    assert refreshed.distribution_data["proof_sent_at"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_proof_is_not_resent_once_recorded(db_session, messenger):
    orchard, bestowal = await _paid_bestowal(db_session)
    data = snapshot_data()
    data["proof_sent_at"] = "2026-03-01T10:30:00+00:00"
    bestowal.distribution_data = data
    db_session.add(
        NotificationOutbox(
            bestowal_id=bestowal.id,
            kind=NotificationKind.BESTOWAL_PROOF,
            recipient_id=bestowal.bestower_id,
            sender_id="gosat-1",
            payload={"amount": "150.00", "currency": "USDC"},
        )
    )
    await db_session.commit()

    await NotificationDispatcher(messenger).dispatch_pending(db_session)

    assert messenger.messages == []
    row = (await _outbox(db_session))[NotificationKind.BESTOWAL_PROOF]
    assert row.status == NotificationStatus.SENT
    refreshed = await db_session.get(Bestowal, bestowal.id, populate_existing=True)
    assert refreshed.distribution_data["proof_sent_at"] == "2026-03-01T10:30:00+00:00"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_failed_delivery_is_retried_until_max_attempts(db_session, messenger):
    orchard, bestowal = await _paid_bestowal(db_session)
    enqueue_escrow_released(
        db_session,
        bestowal_id=bestowal.id,
        sower_id="sower-1",
        amount=Decimal("127.5"),
        currency="USDC",
        title=orchard.title,
        gosat_user_id="gosat-1",
    )
    await db_session.commit()
    dispatcher = NotificationDispatcher(messenger)
    messenger.fail = True

    assert await dispatcher.dispatch_pending(db_session) == 0
    row = (await _outbox(db_session))[NotificationKind.ESCROW_RELEASED]
    assert row.status == NotificationStatus.PENDING
    assert row.attempts == 1
    assert row.last_error == "chat unavailable"

    for _ in range(get_settings().NOTIFICATION_MAX_ATTEMPTS - 1):
        await dispatcher.dispatch_pending(db_session)

    row = (await _outbox(db_session))[NotificationKind.ESCROW_RELEASED]
    assert row.status == NotificationStatus.FAILED

    messenger.fail = False
    assert await dispatcher.dispatch_pending(db_session) == 0
    assert messenger.messages == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_missing_gosat_fails_only_gosat_messages(db_session, messenger):
    orchard, bestowal = await _paid_bestowal(db_session)
    enqueue_payment_notifications(
        db_session, bestowal=bestowal, orchard=orchard, gosat_user_id=None
    )
    await db_session.commit()

    sent = await NotificationDispatcher(messenger).dispatch_pending(db_session)

    assert sent == 1
    rows = await _outbox(db_session)
    assert rows[NotificationKind.SOWER_THANK_YOU].status == NotificationStatus.SENT
    proof = rows[NotificationKind.BESTOWAL_PROOF]
    assert proof.status == NotificationStatus.PENDING
    assert "No gosat user" in proof.last_error


@pytest.mark.asyncio
@pytest.mark.unit
async def test_gosat_sender_resolved_at_delivery(db_session, messenger):
    orchard, bestowal = await _paid_bestowal(db_session)
    db_session.add(UserRoleFactory.create(user_id="gosat-7"))
    enqueue_payment_notifications(
        db_session, bestowal=bestowal, orchard=orchard, gosat_user_id=None
    )
    await db_session.commit()

    assert await find_gosat_user_id(db_session) == "gosat-7"
    await NotificationDispatcher(messenger).dispatch_pending(db_session)

    proof = messenger.of_type("bestowal_proof")[0]
    assert proof["room_id"] == "room:gosat-7:bestower-1"
