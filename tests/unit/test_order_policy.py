"""Unit tests for order request parsing and the distribution mode policy."""

import uuid
from decimal import Decimal

import pytest
from services.bestowals_service.errors import ValidationError
from services.bestowals_service.models import (
    DistributionMode,
    OrchardType,
    PaymentMethod,
    ProductType,
)
from services.bestowals_service.services.orders import (
    HOLD_REASON_APPROVAL,
    HOLD_REASON_COURIER,
    HOLD_REASON_STANDARD,
    build_return_urls,
    decide_distribution_mode,
    parse_order_request,
)
from tests.factories import OrchardFactory

STANDARD, FULL_VALUE = OrchardType.STANDARD, OrchardType.FULL_VALUE
DIGITAL, PHYSICAL = ProductType.DIGITAL, ProductType.PHYSICAL
AUTOMATIC, MANUAL = DistributionMode.AUTOMATIC, DistributionMode.MANUAL


@pytest.mark.unit
@pytest.mark.parametrize(
    "orchard_type,product_type,courier_cost,expected_mode,expected_reason",
    [
        (STANDARD, DIGITAL, None, AUTOMATIC, None),
        (FULL_VALUE, DIGITAL, Decimal("5"), AUTOMATIC, None),
        (STANDARD, PHYSICAL, None, MANUAL, HOLD_REASON_STANDARD),
        (STANDARD, None, None, MANUAL, HOLD_REASON_STANDARD),
        (FULL_VALUE, PHYSICAL, Decimal("12.50"), MANUAL, HOLD_REASON_COURIER),
        (FULL_VALUE, PHYSICAL, None, MANUAL, HOLD_REASON_APPROVAL),
    ],
)
def test_distribution_mode_policy(
    orchard_type, product_type, courier_cost, expected_mode, expected_reason
):
    orchard = OrchardFactory.create(
        orchard_type=orchard_type,
        product_type=product_type,
        courier_cost=courier_cost,
    )

    mode, reason = decide_distribution_mode(orchard)

    assert mode == expected_mode
    assert reason == expected_reason


@pytest.mark.unit
def test_hold_reasons_name_their_cause():
    assert "Standard orchard" in HOLD_REASON_STANDARD
    assert "courier" in HOLD_REASON_COURIER
    assert "approval" in HOLD_REASON_APPROVAL


@pytest.mark.unit
def test_parse_accepts_a_valid_body():
    campaign_id = uuid.uuid4()
    payload = parse_order_request(
        {
            "campaignId": str(campaign_id),
            "amount": "150.00",
            "unitCount": 3,
            "paymentMethod": "binance_pay",
            "returnUrl": "https://app.example.com/done",
            "unknownField": "ignored",
        }
    )

    assert payload.campaign_id == campaign_id
    assert payload.amount == Decimal("150.00")
    assert payload.unit_count == 3
    assert payload.payment_method == PaymentMethod.BINANCE_PAY


@pytest.mark.unit
def test_parse_collects_every_invalid_field():
    with pytest.raises(ValidationError) as exc_info:
        parse_order_request(
            {
                "campaignId": "not-a-uuid",
                "amount": "10.001",
                "unitCount": 0,
                "message": "x" * 501,
                "returnUrl": "not a url",
                "paymentMethod": "paypal",
            }
        )

    assert exc_info.value.fields == sorted(
        ["amount", "campaignId", "message", "paymentMethod", "returnUrl", "unitCount"]
    )
    assert exc_info.value.status_code == 400


@pytest.mark.unit
def test_parse_reports_missing_required_fields():
    with pytest.raises(ValidationError) as exc_info:
        parse_order_request({})

    assert exc_info.value.fields == ["amount", "campaignId", "unitCount"]


@pytest.mark.unit
@pytest.mark.parametrize("amount", ["0", "-5", 0])
def test_parse_rejects_non_positive_amounts(amount):
    with pytest.raises(ValidationError) as exc_info:
        parse_order_request(
            {"campaignId": str(uuid.uuid4()), "amount": amount, "unitCount": 1}
        )

    assert exc_info.value.fields == ["amount"]


@pytest.mark.unit
def test_parse_rejects_non_object_body():
    with pytest.raises(ValidationError) as exc_info:
        parse_order_request(["not", "an", "object"])

    assert exc_info.value.fields == ["body"]


@pytest.mark.unit
def test_default_return_urls_use_public_site():
    payload = parse_order_request(
        {"campaignId": str(uuid.uuid4()), "amount": "5", "unitCount": 1}
    )
    bestowal_id = uuid.uuid4()

    return_url, cancel_url = build_return_urls(payload, bestowal_id)

    assert return_url == (
        f"https://app.sow2grow.test/payment-success?orderId={bestowal_id}"
    )
    assert cancel_url == (
        f"https://app.sow2grow.test/payment-cancelled?orderId={bestowal_id}"
    )


@pytest.mark.unit
def test_cancel_url_derived_from_return_url_origin():
    payload = parse_order_request(
        {
            "campaignId": str(uuid.uuid4()),
            "amount": "5",
            "unitCount": 1,
            "returnUrl": "https://shop.example.com/thanks?x=1",
        }
    )
    bestowal_id = uuid.uuid4()

    return_url, cancel_url = build_return_urls(payload, bestowal_id)

    assert return_url == "https://shop.example.com/thanks?x=1"
    assert cancel_url == (
        f"https://shop.example.com/payment-cancelled?orderId={bestowal_id}"
    )
