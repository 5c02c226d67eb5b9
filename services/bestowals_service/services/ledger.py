"""Wallet balance ledger.

Balances are only ever changed by relative deltas in a single UPDATE, never
by writing back a value read earlier, so concurrent distributions and
releases for the same recipient cannot lose updates. A missing row is
created inside a savepoint; losing that race to another writer just means
the UPDATE is retried against the row it created.
"""

from decimal import Decimal

from libs.common.currency import Number, round_money
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.bestowals_service.models import WalletBalance
from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

ZERO = Decimal("0.00")


async def _apply_delta(
    db: AsyncSession,
    *,
    user_id: str,
    wallet_address: str,
    currency: str,
    values: dict,
    initial: dict,
) -> None:
    stmt = (
        update(WalletBalance)
        .where(
            WalletBalance.user_id == user_id,
            WalletBalance.wallet_address == wallet_address,
        )
        .values(**values, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount:
        return

    try:
        async with db.begin_nested():
            db.add(
                WalletBalance(
                    user_id=user_id,
                    wallet_address=wallet_address,
                    currency=currency,
                    available_balance=initial.get("available_balance", ZERO),
                    pending_balance=initial.get("pending_balance", ZERO),
                    total_earned=initial.get("total_earned", ZERO),
                )
            )
        return
    except IntegrityError:
        logger.info(
            "Balance row for %s/%s created concurrently, retrying update",
            user_id,
            wallet_address,
        )

    result = await db.execute(stmt)
    if not result.rowcount:
        raise RuntimeError(
            f"Wallet balance row for {user_id}/{wallet_address} vanished"
        )


async def credit_available(
    db: AsyncSession,
    *,
    user_id: str,
    wallet_address: str,
    amount: Number,
    currency: str,
) -> None:
    """Add ``amount`` to available balance and total earned."""
    delta = round_money(amount)
    await _apply_delta(
        db,
        user_id=user_id,
        wallet_address=wallet_address,
        currency=currency,
        values={
            "available_balance": WalletBalance.available_balance + delta,
            "total_earned": WalletBalance.total_earned + delta,
        },
        initial={"available_balance": delta, "total_earned": delta},
    )


async def credit_pending(
    db: AsyncSession,
    *,
    user_id: str,
    wallet_address: str,
    amount: Number,
    currency: str,
) -> None:
    """Escrow hold: add ``amount`` to pending balance only."""
    delta = round_money(amount)
    await _apply_delta(
        db,
        user_id=user_id,
        wallet_address=wallet_address,
        currency=currency,
        values={"pending_balance": WalletBalance.pending_balance + delta},
        initial={"pending_balance": delta},
    )


async def release_pending(
    db: AsyncSession,
    *,
    user_id: str,
    wallet_address: str,
    amount: Number,
    currency: str,
) -> None:
    """Move ``amount`` from pending to available and count it as earned.

    Pending is floored at zero.
    """
    delta = round_money(amount)
    await _apply_delta(
        db,
        user_id=user_id,
        wallet_address=wallet_address,
        currency=currency,
        values={
            "pending_balance": case(
                (
                    WalletBalance.pending_balance >= delta,
                    WalletBalance.pending_balance - delta,
                ),
                else_=ZERO,
            ),
            "available_balance": WalletBalance.available_balance + delta,
            "total_earned": WalletBalance.total_earned + delta,
        },
        initial={"available_balance": delta, "total_earned": delta},
    )


async def get_balance(
    db: AsyncSession, *, user_id: str, wallet_address: str
) -> WalletBalance | None:
    result = await db.execute(
        select(WalletBalance)
        .where(
            WalletBalance.user_id == user_id,
            WalletBalance.wallet_address == wallet_address,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()
