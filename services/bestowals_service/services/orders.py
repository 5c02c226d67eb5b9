"""Order creation: validate, plan the split, persist, open a provider checkout."""

import json
import uuid
from decimal import Decimal
from typing import Any, Optional
from urllib.parse import urlsplit

from libs.auth.models import AuthUser
from libs.common.cache import Cache
from libs.common.config import get_settings
from libs.common.logging import get_logger
from pydantic import ValidationError as PydanticValidationError
from services.bestowals_service.errors import (
    InvalidStateError,
    NotFoundError,
    PaymentProviderError,
    ValidationError,
)
from services.bestowals_service.models import (
    Bestowal,
    DistributionMode,
    Orchard,
    OrchardStatus,
    OrchardType,
    PaymentMethod,
    PaymentStatus,
    PaymentTransaction,
    ProductType,
)
from services.bestowals_service.providers import ProviderClients
from services.bestowals_service.schemas import (
    CreateBestowalOrderRequest,
    CreateBestowalOrderResponse,
)
from services.bestowals_service.services.audit import record_audit
from services.bestowals_service.services.distribution import (
    build_distribution_snapshot,
)
from services.bestowals_service.services.idempotency import (
    begin_idempotent_request,
    complete_idempotent_request,
    release_idempotency_key,
)
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

HOLD_REASON_STANDARD = (
    "Standard orchard bestowal awaiting manual release from holding wallet."
)
HOLD_REASON_COURIER = (
    "Full value orchard bestowal held pending courier delivery confirmation."
)
HOLD_REASON_APPROVAL = "Bestowal held pending distribution approval."


def decide_distribution_mode(
    orchard: Orchard,
) -> tuple[DistributionMode, Optional[str]]:
    """Automatic payout for digital goods; everything else waits in escrow."""
    if orchard.product_type == ProductType.DIGITAL:
        return DistributionMode.AUTOMATIC, None
    if orchard.orchard_type == OrchardType.STANDARD:
        return DistributionMode.MANUAL, HOLD_REASON_STANDARD
    if orchard.orchard_type == OrchardType.FULL_VALUE and (
        orchard.courier_cost or Decimal("0")
    ) > 0:
        return DistributionMode.MANUAL, HOLD_REASON_COURIER
    return DistributionMode.MANUAL, HOLD_REASON_APPROVAL


def parse_order_request(body: Any) -> CreateBestowalOrderRequest:
    """Validate the raw body, collecting every violated field."""
    if not isinstance(body, dict):
        raise ValidationError(["body"], "Request body must be a JSON object")
    try:
        return CreateBestowalOrderRequest.model_validate(body)
    except PydanticValidationError as e:
        fields = [
            ".".join(str(part) for part in error["loc"]) or "body"
            for error in e.errors()
        ]
        raise ValidationError(fields) from e


def build_return_urls(
    payload: CreateBestowalOrderRequest, bestowal_id: uuid.UUID
) -> tuple[str, str]:
    settings = get_settings()
    if payload.return_url:
        parts = urlsplit(str(payload.return_url))
        origin = f"{parts.scheme}://{parts.netloc}"
    else:
        origin = settings.PUBLIC_SITE_URL.rstrip("/")

    return_url = (
        str(payload.return_url)
        if payload.return_url
        else f"{origin}/payment-success?orderId={bestowal_id}"
    )
    cancel_url = (
        str(payload.cancel_url)
        if payload.cancel_url
        else f"{origin}/payment-cancelled?orderId={bestowal_id}"
    )
    return return_url, cancel_url


async def create_bestowal_order(
    db: AsyncSession,
    *,
    body: Any,
    user: AuthUser,
    idempotency_key: Optional[str],
    providers: ProviderClients,
    cache: Optional[Cache] = None,
) -> str:
    """Create a pending bestowal and its hosted checkout.

    Returns the serialized JSON success body. A repeated idempotency key
    returns the stored body of the first request, byte for byte.
    """
    key = (idempotency_key or "").strip()
    if not key:
        raise ValidationError(["x-idempotency-key"], "Missing idempotency key")

    cached = await begin_idempotent_request(db, key=key, user_id=user.user_id)
    if cached is not None:
        return cached

    try:
        return await _create_order(
            db,
            body=body,
            user=user,
            idempotency_key=key,
            providers=providers,
            cache=cache,
        )
    except Exception:
        await db.rollback()
        try:
            await release_idempotency_key(db, key=key, user_id=user.user_id)
        except Exception as e:
            logger.error(f"Failed to release idempotency key {key}: {e}")
        raise


async def _create_order(
    db: AsyncSession,
    *,
    body: Any,
    user: AuthUser,
    idempotency_key: str,
    providers: ProviderClients,
    cache: Optional[Cache],
) -> str:
    settings = get_settings()
    payload = parse_order_request(body)

    orchard = await db.get(Orchard, payload.campaign_id)
    if orchard is None:
        raise NotFoundError("Orchard not found")
    if orchard.status != OrchardStatus.ACTIVE:
        raise InvalidStateError("Orchard is not accepting bestowals")

    method = payload.payment_method or PaymentMethod(settings.DEFAULT_PAYMENT_PROVIDER)
    client = providers.get(method)
    currency = (
        payload.currency or orchard.currency or settings.BESTOWAL_DEFAULT_CURRENCY
    ).upper()

    mode, hold_reason = decide_distribution_mode(orchard)
    snapshot = await build_distribution_snapshot(
        db,
        total_amount=payload.amount,
        currency=currency,
        sower_user_id=orchard.user_id,
        grower_user_id=str(payload.grower_id) if payload.grower_id else None,
        mode=mode,
        hold_reason=hold_reason,
        orchard_type=orchard.orchard_type,
        product_type=orchard.product_type,
        courier_required=bool(
            orchard.orchard_type == OrchardType.FULL_VALUE
            and (orchard.courier_cost or 0) > 0
        ),
        cache=cache,
    )

    bestowal = Bestowal(
        id=uuid.uuid4(),
        orchard_id=orchard.id,
        bestower_id=user.user_id,
        amount=snapshot.total_amount,
        currency=currency,
        pockets_count=payload.unit_count,
        message=payload.message,
        payment_method=method,
        payment_status=PaymentStatus.PENDING,
        distribution_data=snapshot.to_json(),
    )
    db.add(bestowal)
    # Pending row exists before the provider can call back with its id
    await db.commit()

    return_url, cancel_url = build_return_urls(payload, bestowal.id)
    try:
        checkout = await client.create_checkout(
            order_reference=str(bestowal.id),
            amount=bestowal.amount,
            currency=currency,
            description=f"Bestowal to {orchard.title}",
            return_url=return_url,
            cancel_url=cancel_url,
            callback_url=(
                f"{settings.SERVICE_URL.rstrip('/')}/bestowals/webhooks/cryptomus"
                if method == PaymentMethod.CRYPTOMUS
                else None
            ),
            network=payload.network,
            buyer_reference=user.user_id,
        )
    except PaymentProviderError as e:
        logger.error(
            f"Checkout creation failed for bestowal {bestowal.id}: {e}",
            extra={
                "extra_fields": {
                    "bestowal_id": str(bestowal.id),
                    "provider": method.value,
                    "provider_status": e.provider_status,
                    "response": e.response_data,
                }
            },
        )
        bestowal.payment_status = PaymentStatus.FAILED
        record_audit(
            db,
            action="payment_creation_failed",
            user_id=user.user_id,
            payment_method=method.value,
            amount=bestowal.amount,
            currency=currency,
            bestowal_id=bestowal.id,
            metadata={"error": str(e)},
        )
        await db.commit()
        raise

    bestowal.payment_reference = checkout.provider_order_id
    db.add(
        PaymentTransaction(
            bestowal_id=bestowal.id,
            payment_method=method,
            payment_provider_id=checkout.provider_order_id,
            amount=bestowal.amount,
            currency=currency,
            status=PaymentStatus.PENDING,
            provider_response=checkout.raw,
        )
    )
    record_audit(
        db,
        action="payment_created",
        user_id=user.user_id,
        payment_method=method.value,
        amount=bestowal.amount,
        currency=currency,
        bestowal_id=bestowal.id,
        transaction_id=checkout.provider_order_id,
        metadata={
            "orchard_id": str(orchard.id),
            "pockets_count": payload.unit_count,
            "distribution_mode": mode.value,
        },
    )

    result = CreateBestowalOrderResponse(
        bestowal_id=bestowal.id,
        provider_order_id=checkout.provider_order_id,
        payment_url=checkout.payment_url,
        distribution=snapshot.to_json(),
        address=checkout.address,
        network=checkout.network,
    ).to_json()
    response_body = json.dumps(result, ensure_ascii=False, separators=(",", ":"))
    await complete_idempotent_request(
        db, key=idempotency_key, user_id=user.user_id, response_body=response_body
    )
    await db.commit()

    logger.info(
        f"Created bestowal {bestowal.id} for orchard {orchard.id}",
        extra={
            "extra_fields": {
                "bestowal_id": str(bestowal.id),
                "orchard_id": str(orchard.id),
                "payment_method": method.value,
                "distribution_mode": mode.value,
                "amount": str(bestowal.amount),
            }
        },
    )
    return response_body
