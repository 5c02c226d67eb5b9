"""
Cryptomus API client for crypto invoices and payouts.

Requests are authenticated with ``merchant`` and ``sign`` headers, where the
signature is the MD5 of merchant id, order id, amount, currency and API key.
"""

import hashlib
import hmac
import json
from dataclasses import replace
from decimal import Decimal
from typing import Mapping, Optional

import httpx
from libs.common.config import get_settings
from libs.common.currency import format_amount, to_decimal
from libs.common.logging import get_logger
from services.bestowals_service.errors import ConfigurationError, PaymentProviderError
from services.bestowals_service.models.enums import PaymentMethod
from services.bestowals_service.provider_events import (
    CheckoutOrder,
    PaymentExpired,
    PaymentFailed,
    PaymentPending,
    PaymentSucceeded,
    ProviderEvent,
    TransferResult,
    UnrecognizedEvent,
)

logger = get_logger(__name__)

PROVIDER_NAME = "cryptomus"

_SUCCEEDED = {"paid", "paid_over"}
_FAILED = {"fail", "wrong_amount", "system_fail", "refund_paid", "refund_fail"}
_EXPIRED = {"cancel", "expired"}
# Seen but not settled; confirm_check means "waiting for confirmations"
_PENDING = {"check", "process", "confirm_check", "wrong_amount_waiting"}

# Numeric invoice state: 0 pending, 1 paid, 2 expired, 3 failed
_STATE_TO_STATUS = {0: "check", 1: "paid", 2: "cancel", 3: "fail"}


def generate_signature(
    merchant_id: str, order_id: str, amount: str, currency: str, api_key: str
) -> str:
    payload = f"{merchant_id}{order_id}{amount}{currency}{api_key}"
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


def event_from_invoice(invoice: Mapping) -> ProviderEvent:
    """Map a Cryptomus invoice/webhook object onto a provider event."""
    status = invoice.get("payment_status") or invoice.get("paymentStatus")
    status = status or invoice.get("status")
    if not status and isinstance(invoice.get("state"), int):
        status = _STATE_TO_STATUS.get(invoice["state"])
    status = str(status or "").lower()

    reported = invoice.get("amount") or invoice.get("payment_amount")
    reported = reported or invoice.get("paymentAmount")
    amount: Optional[Decimal] = None
    if reported not in (None, ""):
        try:
            amount = to_decimal(reported)
        except ValueError:
            amount = None

    fields = dict(
        order_reference=invoice.get("order_id") or invoice.get("orderId"),
        provider_reference=invoice.get("uuid") or invoice.get("txid"),
        raw_status=status,
        amount=amount,
        currency=invoice.get("currency"),
        payload=dict(invoice),
    )
    if status in _SUCCEEDED:
        return PaymentSucceeded(**fields)
    if status in _FAILED:
        return PaymentFailed(**fields)
    if status in _EXPIRED:
        return PaymentExpired(**fields)
    if status in _PENDING:
        return PaymentPending(**fields)
    return UnrecognizedEvent(**fields)


class CryptomusClient:
    """Async client for the Cryptomus merchant API."""

    method = PaymentMethod.CRYPTOMUS

    def __init__(
        self,
        merchant_id: str = None,
        api_key: str = None,
        base_url: str = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.merchant_id = merchant_id or settings.CRYPTOMUS_MERCHANT_ID
        self.api_key = api_key or settings.CRYPTOMUS_PAYMENT_API_KEY
        if not (self.merchant_id and self.api_key):
            raise ConfigurationError(
                "Cryptomus credentials (CRYPTOMUS_MERCHANT_ID, "
                "CRYPTOMUS_PAYMENT_API_KEY) are not configured"
            )
        self.base_url = (base_url or settings.CRYPTOMUS_API_BASE_URL).rstrip("/")
        self.invoice_lifetime_minutes = settings.CRYPTOMUS_INVOICE_LIFETIME_MINUTES
        self.default_network = settings.CRYPTOMUS_DEFAULT_NETWORK
        self._transport = transport

    def sign(self, order_id: str, amount: str, currency: str) -> str:
        return generate_signature(
            self.merchant_id, order_id, amount, currency, self.api_key
        )

    async def _request(
        self,
        method: str,
        endpoint: str,
        signature: str,
        payload: Optional[dict] = None,
    ) -> dict:
        """Make a signed request; returns the ``result`` object of the reply."""
        url = f"{self.base_url}{endpoint}"
        headers = {
            "Content-Type": "application/json",
            "merchant": self.merchant_id,
            "sign": signature,
        }
        content = json.dumps(payload, separators=(",", ":")) if payload else None

        try:
            async with httpx.AsyncClient(
                timeout=30.0, transport=self._transport
            ) as client:
                response = await client.request(
                    method, url, content=content, headers=headers
                )
        except httpx.HTTPError as e:
            raise PaymentProviderError(
                f"Cryptomus request to {endpoint} failed: {e}",
                provider=PROVIDER_NAME,
            ) from e

        try:
            data = response.json()
        except ValueError:
            raise PaymentProviderError(
                f"Invalid JSON response from Cryptomus: {response.text[:200]}",
                provider=PROVIDER_NAME,
                provider_status=response.status_code,
            )

        if not response.is_success:
            logger.error(f"Cryptomus API error: {response.status_code} - {data}")
            raise PaymentProviderError(
                f"Cryptomus HTTP error {response.status_code}",
                provider=PROVIDER_NAME,
                provider_status=response.status_code,
                response_data=data,
            )

        if data.get("state") not in (0, 1) or not isinstance(data.get("result"), dict):
            raise PaymentProviderError(
                f"Cryptomus request failed: {data.get('message') or data}",
                provider=PROVIDER_NAME,
                provider_status=response.status_code,
                response_data=data,
            )

        return data["result"]

    # =========================================================================
    # Invoices
    # =========================================================================

    async def create_payment(
        self,
        *,
        order_id: str,
        amount: Decimal,
        currency: str,
        network: Optional[str] = None,
        return_url: Optional[str] = None,
        success_url: Optional[str] = None,
        callback_url: Optional[str] = None,
        additional_data: Optional[dict] = None,
    ) -> CheckoutOrder:
        """
        Create a payment invoice.

        Args:
            order_id: Our order reference (the bestowal id)
            amount: Invoice amount
            currency: Crypto asset, e.g. USDC
            network: Chain, e.g. TRC20 (defaults from settings)

        Returns:
            CheckoutOrder with the invoice uuid, payment URL, address and network
        """
        amount_str = format_amount(amount)
        payload = {
            "amount": amount_str,
            "currency": currency,
            "orderId": order_id,
            "network": network or self.default_network,
            "urlReturn": return_url,
            "urlSuccess": success_url or return_url,
            "urlCallback": callback_url,
            "isPaymentMultiple": False,
            "lifetime": self.invoice_lifetime_minutes * 60,
            "additionalData": json.dumps(additional_data) if additional_data else None,
        }
        payload = {key: value for key, value in payload.items() if value is not None}

        result = await self._request(
            "POST",
            "/payment",
            self.sign(order_id, amount_str, currency),
            payload,
        )
        invoice_uuid = result.get("uuid")
        if not invoice_uuid:
            raise PaymentProviderError(
                "Cryptomus invoice response missing uuid",
                provider=PROVIDER_NAME,
                response_data=result,
            )
        return CheckoutOrder(
            provider_order_id=str(invoice_uuid),
            payment_url=result.get("url"),
            raw=result,
            address=result.get("address"),
            network=result.get("network") or payload["network"],
        )

    async def get_payment_status(self, order_id: str) -> ProviderEvent:
        """Current status of the invoice for ``order_id``."""
        result = await self._request(
            "POST",
            "/payment/info",
            self.sign(order_id, "0", "USDC"),
            {"orderId": order_id},
        )
        event = event_from_invoice(result)
        return replace(event, order_reference=order_id)

    # =========================================================================
    # Payouts
    # =========================================================================

    async def create_payout(
        self,
        *,
        request_id: str,
        address: str,
        amount: Decimal,
        currency: str,
        network: Optional[str] = None,
    ) -> TransferResult:
        """
        Send a payout to a wallet address.

        ``request_id`` is the payout order id; Cryptomus rejects duplicates.
        """
        amount_str = format_amount(amount)
        payload = {
            "amount": amount_str,
            "currency": currency,
            "network": network or self.default_network,
            "orderId": request_id,
            "address": address,
            "isSubtract": True,
        }
        result = await self._request(
            "POST",
            "/payout",
            self.sign(request_id, amount_str, currency),
            payload,
        )
        return TransferResult(
            transfer_id=result.get("uuid"),
            status=str(result.get("status", "process")),
            raw=result,
        )

    # =========================================================================
    # Provider interface used by the orchestrator, executor and worker
    # =========================================================================

    async def create_checkout(
        self,
        *,
        order_reference: str,
        amount: Decimal,
        currency: str,
        description: str,
        return_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        callback_url: Optional[str] = None,
        network: Optional[str] = None,
        buyer_reference: Optional[str] = None,
    ) -> CheckoutOrder:
        return await self.create_payment(
            order_id=order_reference,
            amount=amount,
            currency=currency,
            network=network,
            return_url=cancel_url or return_url,
            success_url=return_url,
            callback_url=callback_url,
            additional_data={"description": description},
        )

    async def send_transfer(
        self,
        *,
        request_id: str,
        destination: str,
        amount: Decimal,
        currency: str,
        remark: Optional[str] = None,
    ) -> TransferResult:
        return await self.create_payout(
            request_id=request_id,
            address=destination,
            amount=amount,
            currency=currency,
        )

    async def fetch_status(self, order_reference: str) -> ProviderEvent:
        return await self.get_payment_status(order_reference)

    # =========================================================================
    # Webhooks
    # =========================================================================

    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping) -> bool:
        sign = headers.get("sign")
        merchant = headers.get("merchant")
        if not sign or not merchant:
            return False

        if not hmac.compare_digest(merchant, self.merchant_id):
            logger.warning("Cryptomus merchant id mismatch on webhook")
            return False

        try:
            body = json.loads(raw_body.decode("utf-8"))
        except ValueError:
            return False
        if not isinstance(body, dict):
            return False

        order_id = str(body.get("order_id") or body.get("orderId") or "")
        amount = str(body.get("amount") or "0")
        currency = str(body.get("currency") or "USDC")
        expected = self.sign(order_id, amount, currency)
        return hmac.compare_digest(sign.lower(), expected)

    def parse_webhook(self, payload: dict) -> ProviderEvent:
        return event_from_invoice(payload)
