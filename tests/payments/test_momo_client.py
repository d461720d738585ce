import base64
import json
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from application.dtos.payments import GatewayCheckoutRequest, GatewayRefundRequest
from core.settings import MoMoSettings
from domain.common.exceptions import AuthenticityError
from domain.payment.notification import DeliveryMode, parse_notification
from infrastructure.external.payments.exceptions import PaymentProviderError, PaymentRecoverableError
from infrastructure.external.payments.momo_client import (
    CREATE_SIGNATURE_KEYS,
    REFUND_SIGNATURE_KEYS,
    MoMoClient,
    raw_signature,
    sign,
)


CONFIG = MoMoSettings(
    partner_code="MOMOTEST01",
    access_key="momo-test-access",
    secret_key="momo-test-secret",
    return_url="https://api.example/api/v1/payments/momo/callback",
    notify_url="https://api.example/api/v1/payments/momo/webhook",
)


def _client(handler=None):
    transport = httpx.MockTransport(handler) if handler else None
    return MoMoClient(config=CONFIG, transport=transport, retry={"max": 1, "base": 0.01})


def _checkout_request():
    return GatewayCheckoutRequest(
        order_id=77,
        order_code="ORD77",
        user_id=7,
        amount=Decimal("250000"),
        transaction_ref="ORD77-MoMo-1714534200000",
        order_info="Thanh toán khóa học ORD77",
        created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
    )


def test_raw_signature_uses_empty_string_for_missing_values():
    assert raw_signature({"b": 2, "a": None}, ("a", "b")) == "a=&b=2"


def test_verify_accepts_signed_ipn(signed_momo):
    params = signed_momo("ORD77", 77, 250000)
    _client().verify_notification(parse_notification(params, DeliveryMode.WEBHOOK))


@pytest.mark.parametrize(
    "mutate,reason",
    [
        (lambda p: p.update(amount=1), "signature mismatch"),
        (lambda p: p.pop("signature"), "missing signature"),
        (lambda p: p.update(partnerCode="OTHER"), "partnerCode mismatch"),
        (lambda p: p.update(amount="abc"), "amount is not numeric"),
        (lambda p: p.update(amount="²"), "amount is not numeric"),
        (lambda p: p.update(resultCode="¹"), "resultCode is not numeric"),
    ],
)
def test_verify_rejects_bad_ipn(signed_momo, mutate, reason):
    params = signed_momo("ORD77", 77, 250000)
    mutate(params)
    with pytest.raises(AuthenticityError) as exc:
        _client().verify_notification(parse_notification(params, DeliveryMode.WEBHOOK))
    assert exc.value.reason == reason


async def test_create_checkout_posts_signed_payload():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "resultCode": 0,
            "payUrl": "https://test-payment.momo.vn/pay/abc",
            "deeplink": "momo://app?abc",
            "qrCodeUrl": "https://test-payment.momo.vn/qr/abc",
        })

    client = _client(handler)
    session = await client.create_checkout(_checkout_request())
    await client.aclose()

    body = seen["body"]
    assert seen["url"] == CONFIG.endpoint
    assert body["requestId"] == "ORD77-MoMo-1714534200000"
    assert body["orderId"] == "ORD77"
    assert body["amount"] == "250000"
    assert body["signature"] == sign(body, CREATE_SIGNATURE_KEYS, CONFIG.secret_key)
    assert json.loads(base64.b64decode(body["extraData"])) == {"orderId": 77, "orderCode": "ORD77", "userId": 7}
    assert session.payment_url == "https://test-payment.momo.vn/pay/abc"
    assert session.deeplink == "momo://app?abc"
    assert session.transaction_ref == "ORD77-MoMo-1714534200000"
    assert session.expires_at == datetime(2024, 5, 1, 1, 40, tzinfo=timezone.utc)
    assert session.raw["payUrl"] == session.payment_url


async def test_create_checkout_rejection_raises_provider_error():
    def handler(request):
        return httpx.Response(200, json={"resultCode": 41, "message": "OrderId bị trùng."})

    with pytest.raises(PaymentProviderError) as exc:
        await _client(handler).create_checkout(_checkout_request())
    assert exc.value.details["provider_code"] == "41"


async def test_transport_failure_is_recoverable():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(PaymentRecoverableError):
        await _client(handler).create_checkout(_checkout_request())
    assert len(calls) == 2


async def test_refund_posts_to_refund_endpoint():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"resultCode": 0, "transId": 9900001})

    refund = await _client(handler).refund(GatewayRefundRequest(
        order_id=77, order_code="ORD77", amount=Decimal("100000"),
        transaction_id="3100000001", description="Hoàn tiền",
    ))
    body = seen["body"]
    assert seen["url"] == CONFIG.refund_endpoint
    assert body["transId"] == 3100000001
    assert body["amount"] == 100000
    assert body["orderId"].startswith("ORD77-refund-")
    assert body["signature"] == sign(body, REFUND_SIGNATURE_KEYS, CONFIG.secret_key)
    assert refund.refund_ref == "9900001"
    assert refund.requires_manual_action is False


async def test_refund_requires_transaction_id():
    with pytest.raises(PaymentProviderError):
        await _client().refund(GatewayRefundRequest(
            order_id=77, order_code="ORD77", amount=Decimal("1"), description="x",
        ))
