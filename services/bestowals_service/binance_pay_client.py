"""
Binance Pay API client for hosted checkout orders and merchant transfers.

Provides async methods for:
- Creating checkout orders (v3)
- Querying order status
- Transferring funds to a Binance Pay id
- Verifying and parsing webhook notifications
"""

import hashlib
import hmac
import json
import uuid
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal
from typing import Mapping, Optional

import httpx
from libs.common.config import get_settings
from libs.common.currency import format_amount, to_decimal
from libs.common.datetime_utils import epoch_ms, utc_now
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

PROVIDER_NAME = "binance_pay"

_SUCCEEDED = {"PAY_SUCCESS", "SUCCESS", "PAID"}
_FAILED = {"PAY_CLOSED", "PAY_FAIL", "FAILED", "CANCELED", "ERROR"}
_EXPIRED = {"EXPIRED"}
_PENDING = {"INITIAL", "PENDING"}


def generate_signature(body: str, timestamp: str, nonce: str, secret: str) -> str:
    """HMAC-SHA512 over ``timestamp\\nnonce\\nbody\\n``, upper-case hex."""
    payload = f"{timestamp}\n{nonce}\n{body}\n"
    digest = hmac.new(
        secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha512
    ).hexdigest()
    return digest.upper()


def event_from_order_data(data: Mapping, raw_status: str) -> ProviderEvent:
    """Map a Binance order/notification data object onto a provider event."""
    status = (raw_status or "").upper()
    reported = (
        data.get("totalFee") or data.get("orderAmount") or data.get("totalAmount")
    )
    amount: Optional[Decimal] = None
    if reported not in (None, ""):
        try:
            amount = to_decimal(reported)
        except ValueError:
            amount = None

    fields = dict(
        order_reference=data.get("merchantTradeNo"),
        provider_reference=data.get("transactionId") or data.get("prepayId"),
        raw_status=status,
        amount=amount,
        currency=data.get("currency"),
        payload=dict(data),
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


class BinancePayClient:
    """Async client for the Binance Pay merchant API."""

    method = PaymentMethod.BINANCE_PAY

    def __init__(
        self,
        api_key: str = None,
        api_secret: str = None,
        merchant_id: str = None,
        base_url: str = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.api_key = api_key or settings.BINANCE_PAY_API_KEY
        self.api_secret = api_secret or settings.BINANCE_PAY_API_SECRET
        self.merchant_id = merchant_id or settings.BINANCE_PAY_MERCHANT_ID
        if not (self.api_key and self.api_secret and self.merchant_id):
            raise ConfigurationError(
                "Binance Pay credentials (BINANCE_PAY_API_KEY, "
                "BINANCE_PAY_API_SECRET, BINANCE_PAY_MERCHANT_ID) are not configured"
            )
        self.base_url = (base_url or settings.BINANCE_PAY_API_BASE_URL).rstrip("/")
        self.trade_type = settings.BINANCE_PAY_TRADE_TYPE
        self.order_expiry_minutes = settings.BINANCE_PAY_ORDER_EXPIRY_MINUTES
        self.webhook_tolerance_ms = settings.BINANCE_PAY_WEBHOOK_TOLERANCE_MS
        self._transport = transport

    def _headers(self, body: str) -> dict:
        timestamp = str(epoch_ms())
        nonce = uuid.uuid4().hex
        return {
            "Content-Type": "application/json",
            "BinancePay-Timestamp": timestamp,
            "BinancePay-Nonce": nonce,
            "BinancePay-Certificate-SN": self.api_key,
            "BinancePay-Signature": generate_signature(
                body, timestamp, nonce, self.api_secret
            ),
        }

    async def _request(self, endpoint: str, payload: dict) -> dict:
        """Sign and POST ``payload``; returns the ``data`` object of the reply."""
        url = f"{self.base_url}{endpoint}"
        body = json.dumps(payload, separators=(",", ":"))

        try:
            async with httpx.AsyncClient(
                timeout=30.0, transport=self._transport
            ) as client:
                response = await client.post(
                    url, content=body, headers=self._headers(body)
                )
        except httpx.HTTPError as e:
            raise PaymentProviderError(
                f"Binance Pay request to {endpoint} failed: {e}",
                provider=PROVIDER_NAME,
            ) from e

        try:
            data = response.json()
        except ValueError:
            raise PaymentProviderError(
                f"Invalid JSON response from Binance Pay: {response.text[:200]}",
                provider=PROVIDER_NAME,
                provider_status=response.status_code,
            )

        if not response.is_success:
            logger.error(f"Binance Pay API error: {response.status_code} - {data}")
            raise PaymentProviderError(
                f"Binance Pay HTTP error {response.status_code}",
                provider=PROVIDER_NAME,
                provider_status=response.status_code,
                response_data=data,
            )

        if data.get("status") != "SUCCESS":
            raise PaymentProviderError(
                f"Binance Pay request failed: {data.get('code')} - "
                f"{data.get('errorMessage') or data.get('message')}",
                provider=PROVIDER_NAME,
                provider_status=response.status_code,
                response_data=data,
            )

        return data.get("data") or {}

    # =========================================================================
    # Orders
    # =========================================================================

    async def create_order(
        self,
        *,
        merchant_trade_no: str,
        amount: Decimal,
        currency: str,
        description: str,
        return_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        buyer_reference: Optional[str] = None,
        meta: Optional[dict] = None,
    ) -> CheckoutOrder:
        """
        Create a hosted checkout order.

        Args:
            merchant_trade_no: Our order reference (the bestowal id)
            amount: Order total
            currency: Crypto asset, e.g. USDC
            description: Goods name shown on the checkout page

        Returns:
            CheckoutOrder with the prepay id and checkout URL
        """
        expires_at = utc_now() + timedelta(minutes=self.order_expiry_minutes)
        payload = {
            "env": {"terminalType": self.trade_type},
            "merchantId": self.merchant_id,
            "merchantTradeNo": merchant_trade_no.replace("-", ""),
            "orderAmount": format_amount(amount),
            "currency": currency,
            "description": description[:256],
            "goodsDetails": [
                {
                    "goodsType": "02",
                    "goodsCategory": "Z000",
                    "referenceGoodsId": merchant_trade_no,
                    "goodsName": description[:128],
                }
            ],
            "orderExpireTime": int(expires_at.timestamp() * 1000),
            "passThroughInfo": json.dumps(
                {"bestowalId": merchant_trade_no, **(meta or {})}
            ),
        }
        if return_url:
            payload["returnUrl"] = return_url
        if cancel_url:
            payload["cancelUrl"] = cancel_url
        if buyer_reference:
            payload["buyer"] = {"referenceBuyerId": buyer_reference}

        data = await self._request("/binancepay/openapi/v3/order", payload)
        prepay_id = data.get("prepayId")
        if not prepay_id:
            raise PaymentProviderError(
                "Binance Pay order response missing prepayId",
                provider=PROVIDER_NAME,
                response_data=data,
            )
        return CheckoutOrder(
            provider_order_id=str(prepay_id),
            payment_url=data.get("checkoutUrl") or data.get("universalUrl"),
            raw=data,
        )

    async def query_order(self, merchant_trade_no: str) -> ProviderEvent:
        """Current status of an order as a provider event."""
        data = await self._request(
            "/binancepay/openapi/v2/order/query",
            {
                "merchantId": self.merchant_id,
                "merchantTradeNo": merchant_trade_no.replace("-", ""),
            },
        )
        event = event_from_order_data(data, str(data.get("status", "")))
        return replace(event, order_reference=merchant_trade_no)

    # =========================================================================
    # Transfers
    # =========================================================================

    async def create_transfer(
        self,
        *,
        request_id: str,
        payee_id: str,
        amount: Decimal,
        currency: str,
        remark: Optional[str] = None,
    ) -> TransferResult:
        """
        Transfer funds from the merchant wallet to a Binance Pay id.

        The provider deduplicates on ``request_id``; retries must reuse it.
        """
        payload = {
            "merchantId": self.merchant_id,
            "requestId": request_id,
            "transferType": "CUSTOMIZED_BY_USER_ID",
            "payeeType": "PAY_ID",
            "payeeId": payee_id,
            "transferAmount": format_amount(amount),
            "transferCurrency": currency,
        }
        if remark:
            payload["remark"] = remark[:100]

        data = await self._request("/binancepay/openapi/v3/transfer", payload)
        return TransferResult(
            transfer_id=data.get("transferId") or data.get("tranId"),
            status=str(data.get("status", "SUCCESS")),
            raw=data,
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
        # Binance Pay notifications go to the URL configured in the merchant portal
        return await self.create_order(
            merchant_trade_no=order_reference,
            amount=amount,
            currency=currency,
            description=description,
            return_url=return_url,
            cancel_url=cancel_url,
            buyer_reference=buyer_reference,
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
        return await self.create_transfer(
            request_id=request_id,
            payee_id=destination,
            amount=amount,
            currency=currency,
            remark=remark,
        )

    async def fetch_status(self, order_reference: str) -> ProviderEvent:
        return await self.query_order(order_reference)

    # =========================================================================
    # Webhooks
    # =========================================================================

    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping) -> bool:
        """Check certificate, timestamp freshness and HMAC of a notification."""
        timestamp = headers.get("BinancePay-Timestamp")
        nonce = headers.get("BinancePay-Nonce")
        signature = headers.get("BinancePay-Signature")
        certificate_sn = headers.get("BinancePay-Certificate-SN")

        if not (timestamp and nonce and signature and certificate_sn):
            return False

        if not hmac.compare_digest(certificate_sn, self.api_key):
            logger.warning("Binance Pay certificate mismatch on webhook")
            return False

        try:
            request_time = int(timestamp)
        except ValueError:
            return False
        if abs(epoch_ms() - request_time) > self.webhook_tolerance_ms:
            logger.warning(
                "Binance Pay webhook timestamp outside tolerance: timestamp=%s",
                timestamp,
            )
            return False

        expected = generate_signature(
            raw_body.decode("utf-8"), timestamp, nonce, self.api_secret
        )
        return hmac.compare_digest(signature.upper(), expected)

    def parse_webhook(self, payload: dict) -> ProviderEvent:
        """Normalize a notification body; ``data`` may arrive as a JSON string."""
        data = payload.get("data") or {}
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except ValueError:
                data = {}
        if not isinstance(data, dict):
            data = {}

        status = (
            payload.get("bizStatus") or data.get("status") or data.get("orderStatus")
        )
        event = event_from_order_data(data, str(status or ""))
        # We strip dashes when sending; restore the bestowal id form
        passthrough = data.get("passThroughInfo")
        if isinstance(passthrough, str):
            try:
                passthrough = json.loads(passthrough)
            except ValueError:
                passthrough = None
        if isinstance(passthrough, dict) and passthrough.get("bestowalId"):
            return replace(event, order_reference=passthrough["bestowalId"])
        return replace(event, order_reference=_restore_uuid(event.order_reference))


def _restore_uuid(reference: Optional[str]) -> Optional[str]:
    if not reference:
        return reference
    try:
        return str(uuid.UUID(reference))
    except ValueError:
        return reference
