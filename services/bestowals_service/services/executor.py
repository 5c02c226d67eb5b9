"""Distribution executor.

Pays out a completed bestowal according to its frozen snapshot. Every
recipient gets a ``distribution_transfers`` row that is committed before the
provider is called, so a retry after a crash or provider error resumes where
the last run stopped: succeeded transfers are skipped, unfinished ones reuse
their original request id, and a missing balance credit is re-applied.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.bestowals_service.errors import (
    InvalidStateError,
    NotFoundError,
    PaymentProviderError,
)
from services.bestowals_service.models import (
    Bestowal,
    DistributionMode,
    DistributionTransfer,
    PaymentStatus,
    RecipientRole,
    ReleaseStatus,
    TransferStatus,
)
from services.bestowals_service.providers import ProviderClients
from services.bestowals_service.schemas import DistributionSnapshot
from services.bestowals_service.services.ledger import credit_available, credit_pending
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

_REMARKS = {
    RecipientRole.TITHING: "Bestowal distribution - tithing & admin",
    RecipientRole.SOWER: "Bestowal distribution - sower",
    RecipientRole.GROWER: "Bestowal distribution - grower",
}


@dataclass(frozen=True)
class RecipientShare:
    role: RecipientRole
    user_id: Optional[str]
    wallet_address: str
    amount: Decimal


def recipient_shares(snapshot: DistributionSnapshot) -> list[RecipientShare]:
    """Non-zero shares in payout order: tithing, sower, grower."""
    shares = []
    if snapshot.tithing_admin_amount > 0:
        shares.append(
            RecipientShare(
                RecipientRole.TITHING,
                None,
                snapshot.tithing_admin_wallet,
                snapshot.tithing_admin_amount,
            )
        )
    if snapshot.sower_amount > 0:
        shares.append(
            RecipientShare(
                RecipientRole.SOWER,
                snapshot.sower_user_id,
                snapshot.sower_wallet,
                snapshot.sower_amount,
            )
        )
    if snapshot.grower_wallet and snapshot.effective_grower_amount > 0:
        shares.append(
            RecipientShare(
                RecipientRole.GROWER,
                snapshot.grower_user_id,
                snapshot.grower_wallet,
                snapshot.effective_grower_amount,
            )
        )
    return shares


async def _load_bestowal(db: AsyncSession, bestowal_id: uuid.UUID) -> Bestowal:
    result = await db.execute(
        select(Bestowal)
        .where(Bestowal.id == bestowal_id)
        .execution_options(populate_existing=True)
    )
    bestowal = result.scalar_one_or_none()
    if bestowal is None:
        raise NotFoundError("Bestowal not found")
    return bestowal


async def _get_transfer(
    db: AsyncSession, bestowal_id: uuid.UUID, role: RecipientRole
) -> Optional[DistributionTransfer]:
    result = await db.execute(
        select(DistributionTransfer)
        .where(
            DistributionTransfer.bestowal_id == bestowal_id,
            DistributionTransfer.recipient_role == role,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _create_transfer(
    db: AsyncSession,
    bestowal: Bestowal,
    share: RecipientShare,
    status: TransferStatus,
    request_id: Optional[str],
) -> DistributionTransfer:
    """Insert the ledger row, or return the one a concurrent run inserted."""
    transfer = DistributionTransfer(
        bestowal_id=bestowal.id,
        recipient_role=share.role,
        user_id=share.user_id,
        wallet_address=share.wallet_address,
        amount=share.amount,
        currency=bestowal.currency,
        status=status,
        request_id=request_id,
    )
    try:
        async with db.begin_nested():
            db.add(transfer)
        return transfer
    except IntegrityError:
        existing = await _get_transfer(db, bestowal.id, share.role)
        if existing is None:
            raise
        return existing


class DistributionExecutor:
    """Issues one provider transfer per recipient and credits balances."""

    def __init__(self, providers: ProviderClients):
        self.providers = providers

    async def execute(
        self, db: AsyncSession, bestowal_id: uuid.UUID
    ) -> list[DistributionTransfer]:
        """Distribute a completed automatic-mode bestowal.

        Raises:
            InvalidStateError: the bestowal is not completed or is manual-mode.
            PaymentProviderError: a transfer failed; earlier transfers stand
                and a later call resumes from the failed one.
        """
        bestowal = await _load_bestowal(db, bestowal_id)
        if bestowal.payment_status == PaymentStatus.DISTRIBUTED:
            logger.info("Bestowal %s already distributed", bestowal_id)
            return []
        if bestowal.payment_status != PaymentStatus.COMPLETED:
            raise InvalidStateError(
                f"Bestowal {bestowal_id} is {bestowal.payment_status.value}"
            )

        snapshot = DistributionSnapshot.model_validate(bestowal.distribution_data)
        if snapshot.mode != DistributionMode.AUTOMATIC:
            raise InvalidStateError(f"Bestowal {bestowal_id} awaits manual release")

        client = self.providers.get(bestowal.payment_method)
        transfers = []

        for share in recipient_shares(snapshot):
            transfer = await _get_transfer(db, bestowal.id, share.role)
            if transfer is None:
                transfer = await _create_transfer(
                    db,
                    bestowal,
                    share,
                    TransferStatus.ATTEMPTED,
                    f"{bestowal.id}-{share.role.value}-{uuid.uuid4()}",
                )

            if transfer.status == TransferStatus.SUCCEEDED:
                await self._credit_available(db, transfer)
                transfers.append(transfer)
                continue

            transfer.status = TransferStatus.ATTEMPTED
            transfer.attempts += 1
            await db.commit()

            try:
                result = await client.send_transfer(
                    request_id=transfer.request_id,
                    destination=transfer.wallet_address,
                    amount=transfer.amount,
                    currency=transfer.currency,
                    remark=_REMARKS[share.role],
                )
            except PaymentProviderError as e:
                transfer.status = TransferStatus.FAILED
                transfer.last_error = str(e)[:1000]
                transfer.provider_response = e.response_data or None
                await db.commit()
                logger.error(
                    f"{share.role.value} transfer failed for bestowal "
                    f"{bestowal.id}: {e}",
                    extra={
                        "extra_fields": {
                            "bestowal_id": str(bestowal.id),
                            "recipient_role": share.role.value,
                            "request_id": transfer.request_id,
                            "attempts": transfer.attempts,
                        }
                    },
                )
                raise

            transfer.status = TransferStatus.SUCCEEDED
            transfer.provider_transfer_id = result.transfer_id
            transfer.provider_response = result.raw
            transfer.last_error = None
            await db.commit()
            logger.info(
                "%s transfer of %s %s sent for bestowal %s",
                share.role.value,
                transfer.amount,
                transfer.currency,
                bestowal.id,
            )

            await self._credit_available(db, transfer)
            transfers.append(transfer)

        finished = await db.execute(
            update(Bestowal)
            .where(
                Bestowal.id == bestowal_id,
                Bestowal.payment_status == PaymentStatus.COMPLETED,
            )
            .values(
                payment_status=PaymentStatus.DISTRIBUTED, distributed_at=utc_now()
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if finished.rowcount == 0:
            logger.warning(
                "Bestowal %s left completed before distribution finished",
                bestowal_id,
            )
            return transfers
        await _load_bestowal(db, bestowal_id)
        logger.info(
            f"Bestowal {bestowal_id} distributed",
            extra={
                "extra_fields": {
                    "bestowal_id": str(bestowal_id),
                    "transfers": len(transfers),
                }
            },
        )
        return transfers

    async def _credit_available(
        self, db: AsyncSession, transfer: DistributionTransfer
    ) -> None:
        """Credit a paid-out share once. Failures are logged, not raised."""
        if (
            transfer.recipient_role == RecipientRole.TITHING
            or not transfer.user_id
            or transfer.balance_credited_at is not None
        ):
            return
        transfer_id, role = transfer.id, transfer.recipient_role
        try:
            async with db.begin_nested():
                await credit_available(
                    db,
                    user_id=transfer.user_id,
                    wallet_address=transfer.wallet_address,
                    amount=transfer.amount,
                    currency=transfer.currency,
                )
                transfer.balance_credited_at = utc_now()
            await db.commit()
        except SQLAlchemyError as e:
            logger.error(
                f"Balance credit failed for transfer {transfer_id} "
                f"({role.value}): {e}"
            )

    async def hold(
        self, db: AsyncSession, bestowal_id: uuid.UUID
    ) -> list[DistributionTransfer]:
        """Escrow a manual-mode bestowal: credit sower/grower pending balance once."""
        bestowal = await _load_bestowal(db, bestowal_id)
        snapshot = DistributionSnapshot.model_validate(bestowal.distribution_data)
        if snapshot.mode != DistributionMode.MANUAL:
            raise InvalidStateError(
                f"Bestowal {bestowal_id} is distributed automatically"
            )

        held = []
        for share in recipient_shares(snapshot):
            if share.role == RecipientRole.TITHING or not share.user_id:
                continue
            transfer = await _get_transfer(db, bestowal.id, share.role)
            if transfer is None:
                transfer = await _create_transfer(
                    db, bestowal, share, TransferStatus.HELD, None
                )
            if (
                transfer.status == TransferStatus.HELD
                and transfer.balance_credited_at is None
            ):
                async with db.begin_nested():
                    await credit_pending(
                        db,
                        user_id=transfer.user_id,
                        wallet_address=transfer.wallet_address,
                        amount=transfer.amount,
                        currency=transfer.currency,
                    )
                    transfer.balance_credited_at = utc_now()
            held.append(transfer)

        if bestowal.release_status is None:
            bestowal.release_status = ReleaseStatus.HELD
        await db.commit()
        logger.info(
            "Bestowal %s held in escrow (%d shares)", bestowal.id, len(held)
        )
        return held

