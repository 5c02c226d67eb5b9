"""Distribution calculator: how one bestowal's total splits across wallets."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from libs.common.cache import Cache, NullCache
from libs.common.config import get_settings
from libs.common.currency import Number, clamp_percentage, round_money
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.bestowals_service.errors import ConfigurationError, WalletResolutionError
from services.bestowals_service.models import (
    DistributionMode,
    OrchardType,
    OrganizationWallet,
    ProductType,
    UserWallet,
)
from services.bestowals_service.schemas import (
    DistributionPercentages,
    DistributionSnapshot,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

ORG_WALLETS_CACHE_KEY = "org_wallets"


@dataclass(frozen=True)
class SplitAmounts:
    total: Decimal
    tithing: Decimal
    sower: Decimal
    grower: Decimal
    tithing_percent: Decimal
    sower_percent: Decimal
    grower_percent: Decimal


def split_amount(
    total_amount: Number,
    tithing_percent: Number,
    grower_percent: Number = 0,
) -> SplitAmounts:
    """Split ``total_amount`` into tithing, grower and sower shares.

    Percentages are clamped to [0, 1]. The sower amount is derived by
    subtraction so the three shares always add up to the rounded total.
    """
    tithing_pct = clamp_percentage(tithing_percent)
    grower_pct = clamp_percentage(grower_percent)
    sower_pct = clamp_percentage(1 - tithing_pct - grower_pct)

    total = round_money(total_amount)
    tithing = round_money(total * tithing_pct)
    grower = round_money(total * grower_pct) if grower_pct > 0 else Decimal("0.00")
    # Percentages summing past 1 would push the sower negative
    if tithing + grower > total:
        grower = max(total - tithing, Decimal("0.00"))
    sower = total - tithing - grower

    return SplitAmounts(
        total=total,
        tithing=tithing,
        sower=sower,
        grower=grower,
        tithing_percent=tithing_pct,
        sower_percent=sower_pct,
        grower_percent=grower_pct,
    )


# ---------------------------------------------------------------------------
# Wallet resolution
# ---------------------------------------------------------------------------


async def fetch_organization_wallets(
    db: AsyncSession, cache: Optional[Cache] = None
) -> dict[str, str]:
    """Active organization wallets as ``{wallet_name: wallet_address}``."""
    settings = get_settings()
    cache = cache or NullCache()
    names = [
        settings.HOLDING_WALLET_NAME,
        settings.TITHING_WALLET_NAME,
        settings.DEFAULT_PAYEE_WALLET_NAME,
    ]

    cached = await cache.get_json(ORG_WALLETS_CACHE_KEY)
    if isinstance(cached, dict):
        return cached

    result = await db.execute(
        select(
            OrganizationWallet.wallet_name, OrganizationWallet.wallet_address
        ).where(
            OrganizationWallet.wallet_name.in_(names),
            OrganizationWallet.is_active.is_(True),
        )
    )
    wallets = {name: address for name, address in result.all()}
    # Incomplete configuration is not cached so a fix applies immediately
    if (
        settings.HOLDING_WALLET_NAME in wallets
        and settings.TITHING_WALLET_NAME in wallets
    ):
        await cache.set_json(ORG_WALLETS_CACHE_KEY, wallets)
    return wallets


async def resolve_user_wallet(db: AsyncSession, user_id: str) -> Optional[str]:
    """The user's active payout wallet of an allowed type, primary first."""
    settings = get_settings()
    result = await db.execute(
        select(UserWallet.wallet_address)
        .where(
            UserWallet.user_id == user_id,
            UserWallet.wallet_type.in_(settings.PAYOUT_WALLET_TYPES),
            UserWallet.is_active.is_(True),
        )
        .order_by(UserWallet.is_primary.desc(), UserWallet.created_at.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


async def build_distribution_snapshot(
    db: AsyncSession,
    *,
    total_amount: Number,
    currency: str,
    sower_user_id: str,
    mode: DistributionMode,
    hold_reason: Optional[str] = None,
    grower_user_id: Optional[str] = None,
    orchard_type: Optional[OrchardType] = None,
    product_type: Optional[ProductType] = None,
    courier_required: bool = False,
    tithing_percent: Optional[Number] = None,
    grower_percent: Optional[Number] = None,
    cache: Optional[Cache] = None,
) -> DistributionSnapshot:
    """Resolve wallets and compute the split for one bestowal.

    Raises:
        ConfigurationError: holding or tithing wallet missing.
        WalletResolutionError: no wallet for the sower and no default payee.
    """
    settings = get_settings()
    if tithing_percent is None:
        tithing_percent = settings.BESTOWAL_TITHING_PERCENT
    if grower_percent is None:
        grower_percent = settings.BESTOWAL_GROWER_PERCENT

    wallets = await fetch_organization_wallets(db, cache)
    holding_wallet = wallets.get(settings.HOLDING_WALLET_NAME)
    tithing_wallet = wallets.get(settings.TITHING_WALLET_NAME)
    if not holding_wallet:
        raise ConfigurationError(
            f"Holding wallet ({settings.HOLDING_WALLET_NAME}) is not configured"
        )
    if not tithing_wallet:
        raise ConfigurationError(
            f"Tithing wallet ({settings.TITHING_WALLET_NAME}) is not configured"
        )

    sower_wallet = await resolve_user_wallet(db, sower_user_id)
    if not sower_wallet:
        sower_wallet = wallets.get(settings.DEFAULT_PAYEE_WALLET_NAME)
        if sower_wallet:
            logger.info(
                "Sower %s has no payout wallet, using %s",
                sower_user_id,
                settings.DEFAULT_PAYEE_WALLET_NAME,
            )
    if not sower_wallet:
        raise WalletResolutionError(
            f"No payout wallet for sower {sower_user_id} and "
            f"{settings.DEFAULT_PAYEE_WALLET_NAME} is not configured",
            role="sower",
        )

    grower_wallet = None
    grower_unresolved = False
    if grower_user_id:
        grower_wallet = await resolve_user_wallet(db, grower_user_id)
        if not grower_wallet:
            grower_unresolved = True
            logger.warning(
                f"Grower {grower_user_id} has no payout wallet; "
                "share goes to the sower",
                extra={"extra_fields": {"grower_user_id": grower_user_id}},
            )

    effective_grower_percent = grower_percent if grower_wallet else 0
    split = split_amount(total_amount, tithing_percent, effective_grower_percent)

    return DistributionSnapshot(
        total_amount=split.total,
        currency=currency,
        holding_wallet=holding_wallet,
        tithing_admin_wallet=tithing_wallet,
        tithing_admin_amount=split.tithing,
        sower_user_id=sower_user_id,
        sower_wallet=sower_wallet,
        sower_amount=split.sower,
        grower_user_id=grower_user_id,
        grower_wallet=grower_wallet,
        grower_amount=split.grower if grower_wallet else None,
        grower_unresolved=grower_unresolved,
        mode=mode,
        hold_reason=hold_reason,
        orchard_type=orchard_type,
        product_type=product_type,
        courier_required=courier_required,
        percentages=DistributionPercentages(
            tithing_admin=split.tithing_percent,
            sower=split.sower_percent,
            grower=split.grower_percent if grower_wallet else None,
        ),
        generated_at=utc_now(),
    )
