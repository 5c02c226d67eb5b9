"""Idempotency keys for order creation.

Claiming a key is the first durable write of an order request: an
``in_progress`` row is committed under the (key, user) unique constraint.
A duplicate request that loses the insert waits for the winner to finish
and returns the stored response body byte for byte.
"""

import asyncio
import time
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.bestowals_service.errors import IdempotencyConflictError
from services.bestowals_service.models import IdempotencyRecord, IdempotencyStatus
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


async def _try_claim(db: AsyncSession, key: str, user_id: str) -> bool:
    db.add(
        IdempotencyRecord(
            idempotency_key=key,
            user_id=user_id,
            status=IdempotencyStatus.IN_PROGRESS,
        )
    )
    try:
        await db.commit()
        return True
    except IntegrityError:
        await db.rollback()
        return False


async def _load(
    db: AsyncSession, key: str, user_id: str
) -> Optional[IdempotencyRecord]:
    result = await db.execute(
        select(IdempotencyRecord)
        .where(
            IdempotencyRecord.idempotency_key == key,
            IdempotencyRecord.user_id == user_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def begin_idempotent_request(
    db: AsyncSession, *, key: str, user_id: str
) -> Optional[str]:
    """Claim ``key`` for ``user_id``.

    Returns None when the caller owns the key and should do the work, or the
    serialized response body of an earlier completed request.

    Raises:
        IdempotencyConflictError: another request still holds the key after
            IDEMPOTENCY_WAIT_SECONDS.
    """
    settings = get_settings()
    deadline = time.monotonic() + settings.IDEMPOTENCY_WAIT_SECONDS

    while True:
        if await _try_claim(db, key, user_id):
            return None

        existing = await _load(db, key, user_id)
        if existing is not None and existing.status == IdempotencyStatus.COMPLETED:
            logger.info(
                "Idempotent replay for key %s (user %s)",
                key,
                user_id,
            )
            return existing.response_body

        # In progress, or released by a failed holder; end the read and retry
        await db.rollback()
        if time.monotonic() >= deadline:
            raise IdempotencyConflictError()
        await asyncio.sleep(settings.IDEMPOTENCY_POLL_INTERVAL_SECONDS)


async def complete_idempotent_request(
    db: AsyncSession, *, key: str, user_id: str, response_body: str
) -> None:
    """Store the serialized success body; committed with the caller's work."""
    await db.execute(
        update(IdempotencyRecord)
        .where(
            IdempotencyRecord.idempotency_key == key,
            IdempotencyRecord.user_id == user_id,
        )
        .values(
            status=IdempotencyStatus.COMPLETED,
            response_body=response_body,
            completed_at=utc_now(),
        )
        .execution_options(synchronize_session=False)
    )


async def release_idempotency_key(
    db: AsyncSession, *, key: str, user_id: str
) -> None:
    """Drop an unfinished claim so the caller can retry with the same key."""
    await db.execute(
        delete(IdempotencyRecord)
        .where(
            IdempotencyRecord.idempotency_key == key,
            IdempotencyRecord.user_id == user_id,
            IdempotencyRecord.status == IdempotencyStatus.IN_PROGRESS,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
