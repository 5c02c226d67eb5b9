"""Integration tests for POST /bestowals/escrow/release."""

import uuid
from decimal import Decimal

import pytest
from services.bestowals_service.models import (
    AppRole,
    Bestowal,
    DistributionMode,
    PaymentAuditLog,
    PaymentStatus,
    ProductBestowal,
    ReleaseStatus,
)
from services.bestowals_service.schemas import CompleteProductBestowalRequest
from services.bestowals_service.services.executor import DistributionExecutor
from services.bestowals_service.services.ledger import get_balance
from services.bestowals_service.services.products import complete_product_bestowal
from sqlalchemy import select
from tests.factories import (
    BestowalFactory,
    OrchardFactory,
    OrganizationWalletFactory,
    ProductFactory,
    UserRoleFactory,
    UserWalletFactory,
    snapshot_data,
)


@pytest.fixture
def gosat(current_user):
    current_user.user_id = "gosat-1"
    return current_user


async def _held_bestowal(db, providers, **snapshot_overrides):
    orchard = OrchardFactory.create(title="Olive Grove")
    bestowal = BestowalFactory.create(
        orchard_id=orchard.id,
        payment_status=PaymentStatus.COMPLETED,
        distribution_data=snapshot_data(
            mode=DistributionMode.MANUAL, **snapshot_overrides
        ),
    )
    db.add_all([orchard, bestowal, UserRoleFactory.create(user_id="gosat-1")])
    await db.commit()
    await DistributionExecutor(providers).hold(db, bestowal.id)
    return bestowal


def _release_body(bestowal_id, bestowal_type="orchard", **extra):
    return {"bestowalId": str(bestowal_id), "bestowalType": bestowal_type, **extra}


@pytest.mark.asyncio
@pytest.mark.integration
async def test_release_requires_role_before_lookup(client):
    """Callers without a release role get 403, even for unknown ids."""
    response = await client.post(
        "/bestowals/escrow/release", json=_release_body(uuid.uuid4())
    )

    assert response.status_code == 403
    assert "gosat" in response.json()["error"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_release_orchard_bestowal(
    client, db_session, providers, messenger, gosat
):
    """Held shares move from pending to available once."""
    bestowal = await _held_bestowal(
        db_session, providers, grower_user_id="grower-1", grower_wallet="grower-wallet"
    )

    response = await client.post(
        "/bestowals/escrow/release",
        json=_release_body(bestowal.id, courierId="courier-9"),
    )

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "Escrow released for orchard bestowal",
        "bestowalId": str(bestowal.id),
        "releasedAmount": "127.50",
    }

    sower = await get_balance(
        db_session, user_id="sower-1", wallet_address="sower-wallet"
    )
    grower = await get_balance(
        db_session, user_id="grower-1", wallet_address="grower-wallet"
    )
    assert sower.pending_balance == Decimal("0")
    assert sower.available_balance == Decimal("112.50")
    assert grower.available_balance == Decimal("15.00")

    bestowal = await db_session.get(Bestowal, bestowal.id, populate_existing=True)
    assert bestowal.release_status == ReleaseStatus.RELEASED
    assert bestowal.released_at is not None
    assert bestowal.payment_status == PaymentStatus.COMPLETED
    assert bestowal.distribution_data["manual_release_user_id"] == "gosat-1"

    [audit] = (
        await db_session.execute(
            select(PaymentAuditLog).where(PaymentAuditLog.action == "escrow_released")
        )
    ).scalars().all()
    assert audit.audit_metadata["courier_id"] == "courier-9"
    assert audit.audit_metadata["released_by"] == "gosat-1"

    [notice] = messenger.of_type("escrow_released")
    assert notice["room_id"] == "room:gosat-1:sower-1"
    assert "127.50 USDC" in notice["content"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_second_release_moves_nothing(client, db_session, providers, gosat):
    """Release is single-use."""
    bestowal = await _held_bestowal(db_session, providers)
    body = _release_body(bestowal.id)

    await client.post("/bestowals/escrow/release", json=body)
    response = await client.post("/bestowals/escrow/release", json=body)

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "Already released",
        "bestowalId": str(bestowal.id),
    }
    sower = await get_balance(
        db_session, user_id="sower-1", wallet_address="sower-wallet"
    )
    assert sower.available_balance == Decimal("127.50")
    assert sower.total_earned == Decimal("127.50")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_release_applies_missing_hold(client, db_session, current_user):
    """Bestowals whose hold never ran are held, then released."""
    orchard = OrchardFactory.create()
    bestowal = BestowalFactory.create(
        orchard_id=orchard.id,
        payment_status=PaymentStatus.COMPLETED,
        distribution_data=snapshot_data(mode=DistributionMode.MANUAL),
    )
    db_session.add_all(
        [
            orchard,
            bestowal,
            UserRoleFactory.create(user_id="courier-1", role=AppRole.COURIER),
        ]
    )
    await db_session.commit()
    current_user.user_id = "courier-1"

    response = await client.post(
        "/bestowals/escrow/release", json=_release_body(bestowal.id)
    )

    assert response.status_code == 200
    assert response.json()["releasedAmount"] == "127.50"
    sower = await get_balance(
        db_session, user_id="sower-1", wallet_address="sower-wallet"
    )
    assert sower.available_balance == Decimal("127.50")
    assert sower.pending_balance == Decimal("0")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_release_product_bestowal(client, db_session, messenger, gosat):
    """Product escrow pays the sower share held at completion."""
    listing = ProductFactory.create()
    db_session.add_all(
        [
            listing,
            *OrganizationWalletFactory.create_platform_set(),
            UserWalletFactory.create(),
            UserRoleFactory.create(user_id="gosat-1"),
        ]
    )
    await db_session.commit()
    product = await complete_product_bestowal(
        db_session,
        request=CompleteProductBestowalRequest(
            product_id=listing.id, bestower_id="bestower-1", amount=Decimal("100.00")
        ),
        user=gosat,
    )
    assert product.hold_reason == "awaiting_courier_pickup"

    response = await client.post(
        "/bestowals/escrow/release",
        json=_release_body(
            product.bestowal_id, "product", pickupConfirmation={"code": "PK-1"}
        ),
    )

    assert response.status_code == 200
    assert response.json()["releasedAmount"] == "85.00"
    product = await db_session.get(
        ProductBestowal, product.bestowal_id, populate_existing=True
    )
    assert product.release_status == ReleaseStatus.RELEASED
    assert product.hold_reason is None
    assert product.delivery_confirmed_at is not None

    sower = await get_balance(
        db_session, user_id="sower-1", wallet_address="sower-wallet"
    )
    assert sower.pending_balance == Decimal("0")
    assert sower.available_balance == Decimal("85.00")
    assert '"Hand-carved bowl"' in messenger.of_type("escrow_released")[0]["content"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_release_rejects_automatic_bestowal(client, db_session, gosat):
    """Automatic bestowals have nothing in escrow."""
    bestowal = BestowalFactory.create(payment_status=PaymentStatus.COMPLETED)
    db_session.add_all([bestowal, UserRoleFactory.create(user_id="gosat-1")])
    await db_session.commit()

    response = await client.post(
        "/bestowals/escrow/release", json=_release_body(bestowal.id)
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Bestowal is distributed automatically"}


@pytest.mark.asyncio
@pytest.mark.integration
async def test_release_rejects_unpaid_bestowal(client, db_session, gosat):
    bestowal = BestowalFactory.create(
        distribution_data=snapshot_data(mode=DistributionMode.MANUAL)
    )
    db_session.add_all([bestowal, UserRoleFactory.create(user_id="gosat-1")])
    await db_session.commit()

    response = await client.post(
        "/bestowals/escrow/release", json=_release_body(bestowal.id)
    )

    assert response.status_code == 400


@pytest.mark.asyncio
@pytest.mark.integration
async def test_release_unknown_bestowal(client, db_session, gosat):
    db_session.add(UserRoleFactory.create(user_id="gosat-1"))
    await db_session.commit()

    response = await client.post(
        "/bestowals/escrow/release", json=_release_body(uuid.uuid4(), "product")
    )

    assert response.status_code == 404


@pytest.mark.asyncio
@pytest.mark.integration
async def test_release_validates_body(client, db_session, gosat):
    """Malformed bodies list the offending fields."""
    db_session.add(UserRoleFactory.create(user_id="gosat-1"))
    await db_session.commit()

    response = await client.post(
        "/bestowals/escrow/release",
        json={"bestowalId": "not-a-uuid", "bestowalType": "voucher"},
    )

    assert response.status_code == 400
    assert response.json() == {
        "error": "Invalid request",
        "fields": ["bestowalId", "bestowalType"],
    }
