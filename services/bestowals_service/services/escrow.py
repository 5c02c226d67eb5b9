"""Escrow release for held bestowals.

Called by a gosat, courier or admin once delivery or pickup is confirmed.
The release is single-use: a conditional update flips ``release_status`` to
``released`` and only the caller whose update matched a row moves balances.
"""

import uuid
from decimal import Decimal
from typing import Optional

from libs.auth.models import AuthUser
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.bestowals_service.errors import InvalidStateError, NotFoundError
from services.bestowals_service.models import (
    Bestowal,
    BestowalType,
    DistributionMode,
    DistributionTransfer,
    Orchard,
    PaymentStatus,
    ProductBestowal,
    ReleaseStatus,
    TransferStatus,
)
from services.bestowals_service.schemas import (
    EscrowReleaseRequest,
    EscrowReleaseResponse,
)
from services.bestowals_service.services.audit import record_audit
from services.bestowals_service.services.executor import DistributionExecutor
from services.bestowals_service.services.ledger import release_pending
from services.bestowals_service.services.notifications import (
    NotificationDispatcher,
    enqueue_escrow_released,
    find_gosat_user_id,
)
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

ALREADY_RELEASED = "Already released"


async def _claim_release(db: AsyncSession, model, bestowal_id: uuid.UUID, **values):
    """Flip release_status to released. False when another caller got there first."""
    result = await db.execute(
        update(model)
        .where(
            model.id == bestowal_id,
            or_(
                model.release_status.is_(None),
                model.release_status == ReleaseStatus.HELD,
            ),
        )
        .values(release_status=ReleaseStatus.RELEASED, released_at=utc_now(), **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _audit_release(
    db: AsyncSession,
    *,
    request: EscrowReleaseRequest,
    user: AuthUser,
    amount: Decimal,
    currency: str,
) -> None:
    record_audit(
        db,
        action="escrow_released",
        user_id=user.user_id,
        amount=amount,
        currency=currency,
        bestowal_id=(
            request.bestowal_id
            if request.bestowal_type == BestowalType.ORCHARD
            else None
        ),
        metadata={
            "bestowal_id": str(request.bestowal_id),
            "bestowal_type": request.bestowal_type.value,
            "released_by": user.user_id,
            "courier_id": request.courier_id,
            "pickup_confirmation": request.pickup_confirmation,
        },
    )


async def _release_orchard(
    db: AsyncSession,
    request: EscrowReleaseRequest,
    user: AuthUser,
    executor: DistributionExecutor,
) -> EscrowReleaseResponse:
    bestowal = await db.get(Bestowal, request.bestowal_id, populate_existing=True)
    if bestowal is None:
        raise NotFoundError("Bestowal not found")
    if bestowal.release_status == ReleaseStatus.RELEASED:
        return EscrowReleaseResponse(
            message=ALREADY_RELEASED, bestowal_id=bestowal.id
        )
    if bestowal.distribution_mode != DistributionMode.MANUAL:
        raise InvalidStateError("Bestowal is distributed automatically")
    if bestowal.payment_status != PaymentStatus.COMPLETED:
        raise InvalidStateError(
            f"Bestowal payment is {bestowal.payment_status.value}"
        )

    # Ensures the held ledger rows exist if the post-payment hold never ran
    await executor.hold(db, bestowal.id)

    if not await _claim_release(db, Bestowal, bestowal.id):
        await db.rollback()
        return EscrowReleaseResponse(
            message=ALREADY_RELEASED, bestowal_id=bestowal.id
        )

    result = await db.execute(
        select(DistributionTransfer).where(
            DistributionTransfer.bestowal_id == bestowal.id,
            DistributionTransfer.status == TransferStatus.HELD,
        )
    )
    released = Decimal("0")
    for transfer in result.scalars().all():
        await release_pending(
            db,
            user_id=transfer.user_id,
            wallet_address=transfer.wallet_address,
            amount=transfer.amount,
            currency=transfer.currency,
        )
        transfer.status = TransferStatus.RELEASED
        released += transfer.amount

    bestowal = await db.get(Bestowal, request.bestowal_id, populate_existing=True)
    data = dict(bestowal.distribution_data or {})
    if not data.get("manual_release_at"):
        data["manual_release_at"] = utc_now().isoformat()
        data["manual_release_user_id"] = user.user_id
        bestowal.distribution_data = data

    orchard = await db.get(Orchard, bestowal.orchard_id)
    _audit_release(
        db,
        request=request,
        user=user,
        amount=released,
        currency=bestowal.currency,
    )
    enqueue_escrow_released(
        db,
        bestowal_id=bestowal.id,
        sower_id=orchard.user_id,
        amount=released,
        currency=bestowal.currency,
        title=orchard.title,
        gosat_user_id=await find_gosat_user_id(db),
    )
    await db.commit()

    return EscrowReleaseResponse(
        message="Escrow released for orchard bestowal",
        bestowal_id=bestowal.id,
        released_amount=f"{released:.2f}",
    )


async def _release_product(
    db: AsyncSession, request: EscrowReleaseRequest, user: AuthUser
) -> EscrowReleaseResponse:
    bestowal = await db.get(
        ProductBestowal, request.bestowal_id, populate_existing=True
    )
    if bestowal is None:
        raise NotFoundError("Product bestowal not found")
    if bestowal.release_status == ReleaseStatus.RELEASED:
        return EscrowReleaseResponse(
            message=ALREADY_RELEASED, bestowal_id=bestowal.id
        )

    if not await _claim_release(
        db,
        ProductBestowal,
        bestowal.id,
        hold_reason=None,
        delivery_confirmed_at=utc_now(),
    ):
        await db.rollback()
        return EscrowReleaseResponse(
            message=ALREADY_RELEASED, bestowal_id=bestowal.id
        )

    shares = [(bestowal.sower_id, bestowal.sower_wallet, bestowal.sower_amount)]
    if bestowal.grower_id and bestowal.grower_wallet and bestowal.grower_amount:
        shares.append(
            (bestowal.grower_id, bestowal.grower_wallet, bestowal.grower_amount)
        )
    released = Decimal("0")
    for user_id, wallet_address, amount in shares:
        await release_pending(
            db,
            user_id=user_id,
            wallet_address=wallet_address,
            amount=amount,
            currency=bestowal.currency,
        )
        released += amount

    _audit_release(
        db,
        request=request,
        user=user,
        amount=released,
        currency=bestowal.currency,
    )
    enqueue_escrow_released(
        db,
        bestowal_id=bestowal.id,
        sower_id=bestowal.sower_id,
        amount=bestowal.sower_amount,
        currency=bestowal.currency,
        title=bestowal.product_title,
        gosat_user_id=await find_gosat_user_id(db),
    )
    await db.commit()

    return EscrowReleaseResponse(
        message="Escrow released for product bestowal",
        bestowal_id=bestowal.id,
        released_amount=f"{released:.2f}",
    )


async def release_escrow(
    db: AsyncSession,
    *,
    request: EscrowReleaseRequest,
    user: AuthUser,
    executor: DistributionExecutor,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> EscrowReleaseResponse:
    """Release a held orchard or product bestowal to its recipients.

    The caller's role has already been checked. A second release of the same
    bestowal returns "Already released" and moves nothing.
    """
    if request.bestowal_type == BestowalType.ORCHARD:
        response = await _release_orchard(db, request, user, executor)
    else:
        response = await _release_product(db, request, user)

    if response.message != ALREADY_RELEASED:
        logger.info(
            f"Escrow released for {request.bestowal_type.value} bestowal "
            f"{request.bestowal_id}",
            extra={
                "extra_fields": {
                    "bestowal_id": str(request.bestowal_id),
                    "released_by": user.user_id,
                    "courier_id": request.courier_id,
                    "released_amount": response.released_amount,
                }
            },
        )
        if dispatcher is not None:
            await dispatcher.dispatch_pending(db, bestowal_id=request.bestowal_id)
    return response
