"""Payment audit trail."""

import json
import uuid
from typing import Any, Optional

from libs.common.currency import Number, round_money
from libs.common.logging import get_logger
from services.bestowals_service.models import PaymentAuditLog
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


def _json_safe(value: Any) -> Any:
    return json.loads(json.dumps(value, default=str))


def record_audit(
    db: AsyncSession,
    *,
    action: str,
    user_id: Optional[str] = None,
    payment_method: Optional[str] = None,
    amount: Optional[Number] = None,
    currency: Optional[str] = None,
    bestowal_id: Optional[uuid.UUID] = None,
    transaction_id: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> PaymentAuditLog:
    """Add an audit row to the session; committed with the caller's work."""
    entry = PaymentAuditLog(
        action=action,
        user_id=user_id,
        payment_method=payment_method,
        amount=round_money(amount) if amount is not None else None,
        currency=currency,
        bestowal_id=bestowal_id,
        transaction_id=transaction_id,
        audit_metadata=_json_safe(metadata) if metadata else None,
    )
    db.add(entry)
    logger.info(
        f"Payment audit: {action}",
        extra={
            "extra_fields": {
                "action": action,
                "bestowal_id": str(bestowal_id) if bestowal_id else None,
                "payment_method": payment_method,
            }
        },
    )
    return entry
