"""Notification outbox.

Rows are written in the same transaction as the payment state change and
delivered after commit by ``NotificationDispatcher``. Delivery is best effort:
failures are recorded on the row and retried by the worker, and never reach
the payment flow.
"""

import uuid
from decimal import Decimal
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import ensure_aware, parse_iso, utc_now
from libs.common.logging import get_logger
from services.bestowals_service.messaging import ChatMessenger
from services.bestowals_service.models import (
    AppRole,
    Bestowal,
    DistributionMode,
    NotificationKind,
    NotificationOutbox,
    NotificationStatus,
    Orchard,
    UserRole,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

_GOSAT_SENT = {
    NotificationKind.BESTOWAL_PROOF,
    NotificationKind.SOWER_NOTIFICATION,
    NotificationKind.ESCROW_RELEASED,
}


async def find_gosat_user_id(db: AsyncSession) -> Optional[str]:
    """The earliest-granted gosat, who signs system messages."""
    result = await db.execute(
        select(UserRole.user_id)
        .where(UserRole.role == AppRole.GOSAT)
        .order_by(UserRole.created_at.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Enqueue
# ---------------------------------------------------------------------------


def enqueue_payment_notifications(
    db: AsyncSession,
    *,
    bestowal: Bestowal,
    orchard: Orchard,
    gosat_user_id: Optional[str],
) -> list[NotificationOutbox]:
    """Proof to the bestower, thank-you from the sower, notice to the sower."""
    payload = {
        "bestowal_id": str(bestowal.id),
        "orchard_id": str(orchard.id),
        "orchard_title": orchard.title,
        "orchard_type": orchard.orchard_type.value if orchard.orchard_type else None,
        "amount": f"{Decimal(bestowal.amount):.2f}",
        "currency": bestowal.currency,
        "pockets_count": bestowal.pockets_count,
        "payment_reference": bestowal.payment_reference,
        "distribution_mode": bestowal.distribution_mode.value,
        "bestower_id": bestowal.bestower_id,
        "created_at": ensure_aware(bestowal.created_at or utc_now()).isoformat(),
    }
    rows = [
        NotificationOutbox(
            bestowal_id=bestowal.id,
            kind=NotificationKind.BESTOWAL_PROOF,
            recipient_id=bestowal.bestower_id,
            sender_id=gosat_user_id,
            payload=payload,
        ),
        NotificationOutbox(
            bestowal_id=bestowal.id,
            kind=NotificationKind.SOWER_THANK_YOU,
            recipient_id=bestowal.bestower_id,
            sender_id=orchard.user_id,
            payload=payload,
        ),
        NotificationOutbox(
            bestowal_id=bestowal.id,
            kind=NotificationKind.SOWER_NOTIFICATION,
            recipient_id=orchard.user_id,
            sender_id=gosat_user_id,
            payload=payload,
        ),
    ]
    db.add_all(rows)
    return rows


def enqueue_escrow_released(
    db: AsyncSession,
    *,
    bestowal_id: uuid.UUID,
    sower_id: str,
    amount: Decimal,
    currency: str,
    title: Optional[str],
    gosat_user_id: Optional[str],
) -> NotificationOutbox:
    row = NotificationOutbox(
        bestowal_id=bestowal_id,
        kind=NotificationKind.ESCROW_RELEASED,
        recipient_id=sower_id,
        sender_id=gosat_user_id,
        payload={
            "bestowal_id": str(bestowal_id),
            "title": title,
            "amount": f"{Decimal(amount):.2f}",
            "currency": currency,
        },
    )
    db.add(row)
    return row


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def render_message(
    kind: NotificationKind,
    payload: dict,
    *,
    sender_name: str = "",
    recipient_name: str = "",
    bestower_name: str = "",
) -> str:
    amount = f"{payload.get('amount')} {payload.get('currency')}"

    if kind == NotificationKind.BESTOWAL_PROOF:
        created_at = parse_iso(payload.get("created_at")) or utc_now()
        lines = [
            "Bestowal Proof & Invoice",
            "",
            f"Orchard: {payload.get('orchard_title') or 'Unknown orchard'}",
            f"Amount: {amount}",
            f"Pockets: {payload.get('pockets_count')}",
            f"Reference: {payload.get('payment_reference') or 'N/A'}",
            "Distribution: "
            + (
                "Waiting for Gosat release from the holding wallet."
                if payload.get("distribution_mode") == DistributionMode.MANUAL.value
                else "Automatically distributed to recipients."
            ),
            f"Date: {created_at.strftime('%Y-%m-%d %H:%M UTC')}",
        ]
        if payload.get("orchard_type"):
            lines.insert(3, f"Orchard Type: {payload['orchard_type']}")
        return "\n".join(lines)

    if kind == NotificationKind.SOWER_THANK_YOU:
        title = payload.get("orchard_title") or "my project"
        return "\n".join(
            [
                f"Thank You, {recipient_name}!",
                "",
                f'I am deeply grateful for your generous bestowal of {amount} '
                f'to my orchard "{title}".',
                "",
                "Your support helps bring this vision to life.",
                "",
                "Blessings and gratitude,",
                sender_name,
            ]
        )

    if kind == NotificationKind.SOWER_NOTIFICATION:
        title = payload.get("orchard_title") or "your project"
        return "\n".join(
            [
                "New Bestowal Received!",
                "",
                f'Your orchard "{title}" has received a new bestowal.',
                "",
                f"Bestower: {bestower_name}",
                f"Amount: {amount}",
                f"Pockets Filled: {payload.get('pockets_count')}",
                f"Reference: {payload.get('payment_reference') or 'N/A'}",
            ]
        )

    if kind == NotificationKind.ESCROW_RELEASED:
        title = payload.get("title") or "your bestowal"
        return "\n".join(
            [
                "Funds Released",
                "",
                f'{amount} for "{title}" has been released to your '
                "available balance.",
            ]
        )

    raise ValueError(f"Unknown notification kind: {kind}")


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class NotificationDispatcher:
    """Delivers pending outbox rows through the chat messenger."""

    def __init__(self, messenger: ChatMessenger):
        self.messenger = messenger
        self.max_attempts = get_settings().NOTIFICATION_MAX_ATTEMPTS

    async def dispatch_pending(
        self,
        db: AsyncSession,
        *,
        bestowal_id: Optional[uuid.UUID] = None,
        limit: int = 50,
    ) -> int:
        """Send pending rows (optionally for one bestowal). Returns sent count."""
        query = (
            select(NotificationOutbox.id)
            .where(
                NotificationOutbox.status == NotificationStatus.PENDING,
                NotificationOutbox.attempts < self.max_attempts,
            )
            .order_by(NotificationOutbox.created_at.asc())
            .limit(limit)
        )
        if bestowal_id is not None:
            query = query.where(NotificationOutbox.bestowal_id == bestowal_id)

        try:
            outbox_ids = (await db.execute(query)).scalars().all()
        except Exception as e:
            logger.error(f"Failed to load notification outbox: {e}")
            return 0

        sent = 0
        for outbox_id in outbox_ids:
            try:
                # Re-read each row; a rollback expires everything in the session
                row = await db.get(NotificationOutbox, outbox_id)
                if row is None or row.status != NotificationStatus.PENDING:
                    continue
                await self._deliver(db, row)
                row.status = NotificationStatus.SENT
                if row.sent_at is None:
                    row.sent_at = utc_now()
                row.last_error = None
                await db.commit()
                sent += 1
            except Exception as e:
                await db.rollback()
                await self._record_failure(db, outbox_id, str(e))
        return sent

    async def _deliver(self, db: AsyncSession, row: NotificationOutbox) -> None:
        payload = row.payload or {}
        bestowal = None
        if row.kind == NotificationKind.BESTOWAL_PROOF:
            bestowal = await db.get(Bestowal, row.bestowal_id)
            if bestowal and (bestowal.distribution_data or {}).get("proof_sent_at"):
                logger.info("Bestowal proof already sent for %s", row.bestowal_id)
                return

        sender_id = row.sender_id
        if sender_id is None and row.kind in _GOSAT_SENT:
            sender_id = await find_gosat_user_id(db)
            if sender_id is None:
                raise LookupError("No gosat user found to send system messages")
            row.sender_id = sender_id

        sender_name = "s2g gosat"
        recipient_name = ""
        bestower_name = ""
        if row.kind == NotificationKind.SOWER_THANK_YOU:
            sender_name = await self.messenger.get_display_name(sender_id, "Sower")
            recipient_name = await self.messenger.get_display_name(
                row.recipient_id, "Friend"
            )
        elif row.kind == NotificationKind.SOWER_NOTIFICATION:
            bestower_name = await self.messenger.get_display_name(
                payload.get("bestower_id") or "", "A bestower"
            )

        content = render_message(
            row.kind,
            payload,
            sender_name=sender_name,
            recipient_name=recipient_name,
            bestower_name=bestower_name,
        )
        room_id = await self.messenger.get_or_create_direct_room(
            sender_id, row.recipient_id
        )
        await self.messenger.send_system_message(
            room_id,
            content,
            {
                "type": row.kind.value,
                "bestowal_id": str(row.bestowal_id),
                "user_id": row.recipient_id,
                "sender_name": sender_name,
            },
        )

        if bestowal is not None:
            data = dict(bestowal.distribution_data or {})
            if not data.get("proof_sent_at"):
                data["proof_sent_at"] = utc_now().isoformat()
                bestowal.distribution_data = data

    async def _record_failure(
        self, db: AsyncSession, outbox_id: uuid.UUID, error: str
    ) -> None:
        try:
            row = await db.get(NotificationOutbox, outbox_id)
            if row is None:
                return
            row.attempts += 1
            row.last_error = error[:1000]
            if row.attempts >= self.max_attempts:
                row.status = NotificationStatus.FAILED
            await db.commit()
            logger.warning(
                f"Notification {row.kind.value} for {row.bestowal_id} failed "
                f"(attempt {row.attempts}): {error}"
            )
        except Exception as e:
            await db.rollback()
            logger.error(f"Failed to record notification failure {outbox_id}: {e}")
