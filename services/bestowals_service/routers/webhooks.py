"""Binance Pay and Cryptomus webhook endpoints.

No bearer auth; each request is verified with the provider's signature
scheme. Responses use the provider's own envelope rather than the API error
shape, since that is what the provider retries on.
"""

import json
from typing import Callable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.bestowals_service.dependencies import get_dispatcher, get_executor
from services.bestowals_service.errors import (
    GENERIC_FAILURE_MESSAGE,
    BestowalError,
    WebhookVerificationError,
)
from services.bestowals_service.models import PaymentMethod
from services.bestowals_service.providers import (
    ProviderClients,
    get_provider_clients,
)
from services.bestowals_service.services.audit import record_audit
from services.bestowals_service.services.executor import DistributionExecutor
from services.bestowals_service.services.notifications import (
    NotificationDispatcher,
)
from services.bestowals_service.services.reconciliation import (
    handle_payment_event,
    payload_hash,
)
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/bestowals/webhooks", tags=["webhooks"])
logger = get_logger(__name__)


def _binance_envelope(status_code: int, message: str = "SUCCESS") -> JSONResponse:
    code = "SUCCESS" if status_code < 400 else "ERROR"
    return JSONResponse(
        status_code=status_code, content={"code": code, "message": message}
    )


def _cryptomus_envelope(status_code: int, message: str = "SUCCESS") -> JSONResponse:
    state = 0 if status_code < 400 else 1
    return JSONResponse(
        status_code=status_code, content={"state": state, "result": message}
    )


async def _process_webhook(
    request: Request,
    *,
    method: PaymentMethod,
    envelope: Callable[..., JSONResponse],
    db: AsyncSession,
    providers: ProviderClients,
    executor: DistributionExecutor,
    dispatcher: NotificationDispatcher,
) -> JSONResponse:
    raw = await request.body()
    try:
        client = providers.get(method)
        if not client.verify_webhook_signature(raw, request.headers):
            logger.warning(
                f"Invalid {method.value} webhook signature",
                extra={
                    "extra_fields": {
                        "provider": method.value,
                        "payload_hash": payload_hash(raw),
                    }
                },
            )
            record_audit(
                db,
                action="webhook_signature_invalid",
                payment_method=method.value,
                metadata={"payload_hash": payload_hash(raw)},
            )
            await db.commit()
            raise WebhookVerificationError("Invalid signature")

        try:
            payload = json.loads(raw.decode("utf-8"))
        except ValueError:
            raise WebhookVerificationError("Invalid JSON payload")
        if not isinstance(payload, dict):
            raise WebhookVerificationError("Invalid JSON payload")

        event = client.parse_webhook(payload)
        outcome = await handle_payment_event(
            db,
            provider=method,
            event=event,
            raw_body=raw,
            executor=executor,
            dispatcher=dispatcher,
        )
    except BestowalError as e:
        if e.status_code >= 500:
            logger.error(f"{method.value} webhook failed: {e.message}")
        return envelope(e.status_code, e.public_message)
    except Exception:
        logger.exception(f"Unexpected error processing {method.value} webhook")
        await db.rollback()
        return envelope(500, GENERIC_FAILURE_MESSAGE)

    logger.info(
        f"{method.value} webhook {outcome.result}",
        extra={
            "extra_fields": {
                "provider": method.value,
                "event_kind": event.kind,
                "bestowal_id": str(outcome.bestowal_id)
                if outcome.bestowal_id
                else None,
            }
        },
    )
    return envelope(200)


@router.post("/binance-pay")
async def binance_pay_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    providers: ProviderClients = Depends(get_provider_clients),
    executor: DistributionExecutor = Depends(get_executor),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Binance Pay order notification (BinancePay-Signature verified)."""
    return await _process_webhook(
        request,
        method=PaymentMethod.BINANCE_PAY,
        envelope=_binance_envelope,
        db=db,
        providers=providers,
        executor=executor,
        dispatcher=dispatcher,
    )


@router.post("/cryptomus")
async def cryptomus_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    providers: ProviderClients = Depends(get_provider_clients),
    executor: DistributionExecutor = Depends(get_executor),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Cryptomus payment callback (``sign`` header verified)."""
    return await _process_webhook(
        request,
        method=PaymentMethod.CRYPTOMUS,
        envelope=_cryptomus_envelope,
        db=db,
        providers=providers,
        executor=executor,
        dispatcher=dispatcher,
    )
