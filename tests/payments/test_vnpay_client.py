from datetime import datetime, timezone
from decimal import Decimal
from urllib.parse import parse_qsl, urlsplit

import pytest

from application.dtos.payments import GatewayCheckoutRequest, GatewayRefundRequest
from core.settings import VNPaySettings
from domain.common.exceptions import AuthenticityError
from domain.payment.notification import DeliveryMode, MoMoNotification, parse_notification
from infrastructure.external.payments.exceptions import PaymentProviderError
from infrastructure.external.payments.vnpay_client import (
    VNPayClient,
    canonical_query,
    format_vn_date,
    sign,
    to_vnpay_amount,
)


SECRET = "unit-test-secret"


@pytest.fixture
def client():
    return VNPayClient(config=VNPaySettings(
        tmn_code="TMN00001",
        hash_secret=SECRET,
        return_url="https://api.example/api/v1/payments/vnpay/callback",
        expiration_minutes=15,
    ))


def _notification(params):
    return parse_notification(params, DeliveryMode.WEBHOOK)


def test_canonical_query_is_sorted_and_skips_hash_fields():
    query = canonical_query({
        "vnp_TxnRef": "A1",
        "vnp_Amount": "100",
        "vnp_OrderInfo": "Thanh toan don hang A1",
        "vnp_SecureHash": "x",
        "vnp_SecureHashType": "HmacSHA512",
        "lang": "vi",
    })
    assert query == "vnp_Amount=100&vnp_OrderInfo=Thanh+toan+don+hang+A1&vnp_TxnRef=A1"


def test_amount_and_date_formatting():
    assert to_vnpay_amount(Decimal("150000")) == 15000000
    assert format_vn_date(datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)) == "20240101070000"


def test_verify_accepts_signed_params(client, signed_vnpay):
    params = signed_vnpay("ORD1", 500000, secret=SECRET)
    params["vnp_SecureHash"] = params["vnp_SecureHash"].upper()
    client.verify_notification(_notification(params))


def test_verify_rejects_tampered_amount(client, signed_vnpay):
    params = signed_vnpay("ORD1", 500000, secret=SECRET)
    params["vnp_Amount"] = "100"
    with pytest.raises(AuthenticityError) as exc:
        client.verify_notification(_notification(params))
    assert exc.value.reason == "secure hash mismatch"


def test_verify_requires_fields(client, signed_vnpay):
    params = signed_vnpay("ORD1", 500000, secret=SECRET)
    params.pop("vnp_SecureHash")
    with pytest.raises(AuthenticityError) as exc:
        client.verify_notification(_notification(params))
    assert "vnp_SecureHash" in exc.value.reason


def test_verify_rejects_other_gateway_shape(client):
    with pytest.raises(AuthenticityError):
        client.verify_notification(MoMoNotification(params={"resultCode": "0"}))


def test_verify_without_secret_fails_closed(signed_vnpay):
    unconfigured = VNPayClient(config=VNPaySettings())
    with pytest.raises(AuthenticityError):
        unconfigured.verify_notification(_notification(signed_vnpay("ORD1", 1000, secret=SECRET)))


async def test_checkout_url_is_signed(client):
    created = datetime(2024, 5, 1, 3, 30, tzinfo=timezone.utc)
    session = await client.create_checkout(GatewayCheckoutRequest(
        order_id=1,
        order_code="ORD1",
        user_id=7,
        amount=Decimal("500000"),
        transaction_ref="ORD1-VNPay-1714534200000",
        order_info="Thanh toan don hang ORD1",
        client_ip="10.0.0.8",
        created_at=created,
    ))
    parts = urlsplit(session.payment_url)
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == client.config.api_url
    params = dict(parse_qsl(parts.query))
    assert params["vnp_Amount"] == "50000000"
    assert params["vnp_TxnRef"] == "ORD1-VNPay-1714534200000"
    assert params["vnp_CreateDate"] == "20240501103000"
    assert params["vnp_ExpireDate"] == "20240501104500"
    assert params["vnp_IpAddr"] == "10.0.0.8"
    assert params["vnp_SecureHash"] == sign(params, SECRET)
    assert session.expires_at == datetime(2024, 5, 1, 3, 45, tzinfo=timezone.utc)
    assert session.raw["vnp_SecureHash"] == params["vnp_SecureHash"]
    assert session.raw["vnp_TxnRef"] == "ORD1-VNPay-1714534200000"


async def test_checkout_requires_configuration():
    with pytest.raises(PaymentProviderError):
        await VNPayClient(config=VNPaySettings()).create_checkout(GatewayCheckoutRequest(
            order_id=1,
            order_code="ORD1",
            amount=Decimal("1000"),
            transaction_ref="ORD1-VNPay-1",
            order_info="x",
            created_at=datetime.now(timezone.utc),
        ))


async def test_refund_is_manual(client):
    refund = await client.refund(GatewayRefundRequest(
        order_id=1, order_code="ORD1", amount=Decimal("1000"), description="test",
    ))
    assert refund.requires_manual_action is True
    assert refund.gateway == "VNPay"
