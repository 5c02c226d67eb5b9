"""Crediting of settled product purchases.

Digital products pay out immediately: the sower and grower shares land in
available balance and the row is written as released. Physical products
are held until a courier picks them up; the shares go to pending balance
and the escrow release endpoint moves them across later.
"""

from typing import Optional

from libs.auth.models import AuthUser
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.bestowals_service.errors import NotFoundError
from services.bestowals_service.models import (
    DistributionMode,
    Product,
    ProductBestowal,
    ProductType,
    ReleaseStatus,
)
from services.bestowals_service.schemas import (
    CompleteProductBestowalRequest,
    CompleteProductBestowalResponse,
)
from services.bestowals_service.services.audit import record_audit
from services.bestowals_service.services.distribution import (
    build_distribution_snapshot,
)
from services.bestowals_service.services.ledger import (
    credit_available,
    credit_pending,
)
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

AWAITING_COURIER_PICKUP = "awaiting_courier_pickup"


def _to_response(
    bestowal: ProductBestowal, product_type: ProductType
) -> CompleteProductBestowalResponse:
    grower_amount = bestowal.grower_amount if bestowal.grower_wallet else None
    tithing = bestowal.amount - bestowal.sower_amount - (grower_amount or 0)
    return CompleteProductBestowalResponse(
        bestowal_id=bestowal.id,
        product_type=product_type,
        release_status=bestowal.release_status,
        hold_reason=bestowal.hold_reason,
        sower_amount=f"{bestowal.sower_amount:.2f}",
        grower_amount=f"{grower_amount:.2f}" if grower_amount is not None else None,
        tithing_amount=f"{tithing:.2f}",
    )


async def _find_by_reference(
    db: AsyncSession, payment_reference: Optional[str]
) -> Optional[ProductBestowal]:
    if not payment_reference:
        return None
    return await db.scalar(
        select(ProductBestowal).where(
            ProductBestowal.payment_reference == payment_reference
        )
    )


async def complete_product_bestowal(
    db: AsyncSession,
    *,
    request: CompleteProductBestowalRequest,
    user: AuthUser,
) -> CompleteProductBestowalResponse:
    """Record a paid product purchase and credit its recipients.

    A repeated ``payment_reference`` returns the first bestowal and credits
    nothing.

    Raises:
        NotFoundError: unknown product.
        ConfigurationError / WalletResolutionError: from the split calculation.
    """
    product = await db.get(Product, request.product_id)
    if product is None:
        raise NotFoundError("Product not found")
    product_type = product.product_type

    existing = await _find_by_reference(db, request.payment_reference)
    if existing is not None:
        return _to_response(existing, product_type)

    is_digital = product_type == ProductType.DIGITAL
    hold_reason = None if is_digital else AWAITING_COURIER_PICKUP
    snapshot = await build_distribution_snapshot(
        db,
        total_amount=request.amount,
        currency=product.currency,
        sower_user_id=product.sower_id,
        mode=DistributionMode.AUTOMATIC if is_digital else DistributionMode.MANUAL,
        hold_reason=hold_reason,
        grower_user_id=request.grower_id,
        product_type=product_type,
        courier_required=not is_digital,
    )

    bestowal = ProductBestowal(
        product_id=product.id,
        product_title=product.title,
        bestower_id=request.bestower_id,
        sower_id=product.sower_id,
        sower_wallet=snapshot.sower_wallet,
        grower_id=request.grower_id if snapshot.grower_wallet else None,
        grower_wallet=snapshot.grower_wallet,
        amount=snapshot.total_amount,
        sower_amount=snapshot.sower_amount,
        grower_amount=snapshot.grower_amount,
        currency=snapshot.currency,
        payment_reference=request.payment_reference,
        release_status=ReleaseStatus.RELEASED if is_digital else ReleaseStatus.HELD,
        hold_reason=hold_reason,
        released_at=utc_now() if is_digital else None,
    )
    try:
        async with db.begin_nested():
            db.add(bestowal)
    except IntegrityError:
        existing = await _find_by_reference(db, request.payment_reference)
        if existing is None:
            raise
        logger.info(
            "Product bestowal for %s recorded concurrently", request.payment_reference
        )
        return _to_response(existing, product_type)

    credit = credit_available if is_digital else credit_pending
    shares = [(snapshot.sower_user_id, snapshot.sower_wallet, snapshot.sower_amount)]
    if snapshot.grower_wallet and snapshot.grower_amount:
        shares.append(
            (snapshot.grower_user_id, snapshot.grower_wallet, snapshot.grower_amount)
        )
    for user_id, wallet_address, amount in shares:
        await credit(
            db,
            user_id=user_id,
            wallet_address=wallet_address,
            amount=amount,
            currency=snapshot.currency,
        )

    await db.execute(
        update(Product)
        .where(Product.id == product.id)
        .values(bestowal_count=Product.bestowal_count + 1)
        .execution_options(synchronize_session=False)
    )
    record_audit(
        db,
        action="product_bestowal_completed",
        user_id=user.user_id,
        amount=snapshot.total_amount,
        currency=snapshot.currency,
        transaction_id=request.payment_reference,
        metadata={
            "product_bestowal_id": str(bestowal.id),
            "product_id": str(product.id),
            "product_type": product_type.value,
            "bestower_id": request.bestower_id,
            "distribution": snapshot.model_dump(mode="json"),
        },
    )
    await db.commit()

    logger.info(
        f"Product bestowal {bestowal.id} completed",
        extra={
            "extra_fields": {
                "product_bestowal_id": str(bestowal.id),
                "product_id": str(product.id),
                "product_type": product_type.value,
                "release_status": bestowal.release_status.value,
            }
        },
    )
    return _to_response(bestowal, product_type)
