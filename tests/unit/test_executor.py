"""Unit tests for the distribution executor (automatic payout and escrow hold)."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from libs.common.datetime_utils import ensure_aware
from services.bestowals_service.errors import InvalidStateError, PaymentProviderError
from services.bestowals_service.models import (
    Bestowal,
    DistributionMode,
    DistributionTransfer,
    PaymentStatus,
    RecipientRole,
    ReleaseStatus,
    TransferStatus,
    WalletBalance,
)
from services.bestowals_service.services.executor import DistributionExecutor
from services.bestowals_service.services.ledger import get_balance
from sqlalchemy import select, update
from tests.factories import TITHING_ADDRESS, BestowalFactory, snapshot_data


async def _completed_bestowal(db, **snapshot_overrides):
    bestowal = BestowalFactory.create(
        payment_status=PaymentStatus.COMPLETED,
        distribution_data=snapshot_data(**snapshot_overrides),
    )
    db.add(bestowal)
    await db.commit()
    return bestowal


async def _transfers(db, bestowal_id):
    result = await db.execute(
        select(DistributionTransfer)
        .where(DistributionTransfer.bestowal_id == bestowal_id)
        .execution_options(populate_existing=True)
    )
    return {t.recipient_role: t for t in result.scalars()}


# ---------------------------------------------------------------------------
# Automatic distribution
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_execute_pays_every_recipient(db_session, providers, cryptomus):
    bestowal = await _completed_bestowal(
        db_session, grower_user_id="grower-1", grower_wallet="grower-wallet"
    )

    await DistributionExecutor(providers).execute(db_session, bestowal.id)

    sent = [(t["destination"], t["amount"]) for t in cryptomus.transfers]
    assert sent == [
        (TITHING_ADDRESS, Decimal("22.50")),
        ("sower-wallet", Decimal("112.50")),
        ("grower-wallet", Decimal("15.00")),
    ]
    await db_session.refresh(bestowal)
    assert bestowal.payment_status == PaymentStatus.DISTRIBUTED
    assert bestowal.distributed_at is not None

    sower = await get_balance(
        db_session, user_id="sower-1", wallet_address="sower-wallet"
    )
    grower = await get_balance(
        db_session, user_id="grower-1", wallet_address="grower-wallet"
    )
    assert sower.available_balance == Decimal("112.50")
    assert grower.available_balance == Decimal("15.00")

    tithing_rows = await db_session.execute(
        select(WalletBalance).where(WalletBalance.wallet_address == TITHING_ADDRESS)
    )
    assert tithing_rows.scalars().first() is None

    transfers = await _transfers(db_session, bestowal.id)
    assert all(t.status == TransferStatus.SUCCEEDED for t in transfers.values())


@pytest.mark.asyncio
@pytest.mark.unit
async def test_execute_keeps_distribution_finished_elsewhere(
    db_session, providers, cryptomus
):
    """Only a completed bestowal is flipped to distributed; no blind overwrite."""
    bestowal = await _completed_bestowal(db_session)
    finished_at = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    async def _finish_elsewhere(destination):
        if destination == "sower-wallet":
            await db_session.execute(
                update(Bestowal)
                .where(Bestowal.id == bestowal.id)
                .values(
                    payment_status=PaymentStatus.DISTRIBUTED,
                    distributed_at=finished_at,
                )
            )
            await db_session.commit()

    cryptomus.before_transfer = _finish_elsewhere

    await DistributionExecutor(providers).execute(db_session, bestowal.id)

    await db_session.refresh(bestowal)
    assert bestowal.payment_status == PaymentStatus.DISTRIBUTED
    assert ensure_aware(bestowal.distributed_at) == finished_at
    assert transfers[RecipientRole.SOWER].provider_transfer_id == "tx-2"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_execute_resumes_after_failed_transfer(db_session, providers, cryptomus):
    bestowal = await _completed_bestowal(db_session)
    executor = DistributionExecutor(providers)
    cryptomus.failing_destinations.add("sower-wallet")

    with pytest.raises(PaymentProviderError):
        await executor.execute(db_session, bestowal.id)

    await db_session.refresh(bestowal)
    assert bestowal.payment_status == PaymentStatus.COMPLETED
    transfers = await _transfers(db_session, bestowal.id)
    assert transfers[RecipientRole.TITHING].status == TransferStatus.SUCCEEDED
    assert transfers[RecipientRole.SOWER].status == TransferStatus.FAILED
    assert "rejected" in transfers[RecipientRole.SOWER].last_error
    first_request_id = transfers[RecipientRole.SOWER].request_id

    cryptomus.failing_destinations.clear()
    await executor.execute(db_session, bestowal.id)

    assert len(cryptomus.transfers_to(TITHING_ADDRESS)) == 1
    sower_attempts = cryptomus.transfers_to("sower-wallet")
    assert len(sower_attempts) == 2
    assert {a["request_id"] for a in sower_attempts} == {first_request_id}

    transfers = await _transfers(db_session, bestowal.id)
    assert transfers[RecipientRole.SOWER].attempts == 2
    await db_session.refresh(bestowal)
    assert bestowal.payment_status == PaymentStatus.DISTRIBUTED

    sower = await get_balance(
        db_session, user_id="sower-1", wallet_address="sower-wallet"
    )
    assert sower.available_balance == Decimal("127.50")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_execute_recredits_succeeded_transfer_without_resending(
    db_session, providers, cryptomus
):
    bestowal = await _completed_bestowal(db_session)
    db_session.add(
        DistributionTransfer(
            bestowal_id=bestowal.id,
            recipient_role=RecipientRole.SOWER,
            user_id="sower-1",
            wallet_address="sower-wallet",
            amount=Decimal("127.50"),
            currency="USDC",
            status=TransferStatus.SUCCEEDED,
            request_id="earlier-request",
            provider_transfer_id="tx-earlier",
        )
    )
    await db_session.commit()

    await DistributionExecutor(providers).execute(db_session, bestowal.id)

    assert cryptomus.transfers_to("sower-wallet") == []
    sower = await get_balance(
        db_session, user_id="sower-1", wallet_address="sower-wallet"
    )
    assert sower.available_balance == Decimal("127.50")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_execute_twice_is_a_no_op(db_session, providers, cryptomus):
    bestowal = await _completed_bestowal(db_session)
    executor = DistributionExecutor(providers)

    await executor.execute(db_session, bestowal.id)
    again = await executor.execute(db_session, bestowal.id)

    assert again == []
    assert len(cryptomus.transfers) == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_execute_rejects_manual_and_pending_bestowals(db_session, providers):
    executor = DistributionExecutor(providers)
    manual = await _completed_bestowal(db_session, mode=DistributionMode.MANUAL)
    pending = BestowalFactory.create()
    db_session.add(pending)
    await db_session.commit()

    with pytest.raises(InvalidStateError):
        await executor.execute(db_session, manual.id)
    with pytest.raises(InvalidStateError):
        await executor.execute(db_session, pending.id)


# ---------------------------------------------------------------------------
# Escrow hold
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_hold_credits_pending_once(db_session, providers, cryptomus):
    bestowal = await _completed_bestowal(
        db_session,
        mode=DistributionMode.MANUAL,
        grower_user_id="grower-1",
        grower_wallet="grower-wallet",
    )
    executor = DistributionExecutor(providers)

    await executor.hold(db_session, bestowal.id)
    await executor.hold(db_session, bestowal.id)

    assert cryptomus.transfers == []
    sower = await get_balance(
        db_session, user_id="sower-1", wallet_address="sower-wallet"
    )
    grower = await get_balance(
        db_session, user_id="grower-1", wallet_address="grower-wallet"
    )
    assert sower.pending_balance == Decimal("112.50")
    assert sower.available_balance == Decimal("0")
    assert grower.pending_balance == Decimal("15.00")

    await db_session.refresh(bestowal)
    assert bestowal.release_status == ReleaseStatus.HELD
    assert bestowal.payment_status == PaymentStatus.COMPLETED
    transfers = await _transfers(db_session, bestowal.id)
    assert set(transfers) == {RecipientRole.SOWER, RecipientRole.GROWER}
    assert all(t.status == TransferStatus.HELD for t in transfers.values())


@pytest.mark.asyncio
@pytest.mark.unit
async def test_hold_applies_a_missing_credit(db_session, providers):
    bestowal = await _completed_bestowal(db_session, mode=DistributionMode.MANUAL)
    db_session.add(
        DistributionTransfer(
            bestowal_id=bestowal.id,
            recipient_role=RecipientRole.SOWER,
            user_id="sower-1",
            wallet_address="sower-wallet",
            amount=Decimal("127.50"),
            currency="USDC",
            status=TransferStatus.HELD,
        )
    )
    await db_session.commit()

    await DistributionExecutor(providers).hold(db_session, bestowal.id)

    sower = await get_balance(
        db_session, user_id="sower-1", wallet_address="sower-wallet"
    )
    assert sower.pending_balance == Decimal("127.50")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_hold_rejects_automatic_bestowals(db_session, providers):
    bestowal = await _completed_bestowal(db_session)

    with pytest.raises(InvalidStateError):
        await DistributionExecutor(providers).hold(db_session, bestowal.id)
