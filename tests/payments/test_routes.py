from decimal import Decimal
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from application.services.response_composer import ResponseComposer
from application.services.token_service import TokenService
from core.settings import payment_settings
from domain.order.entity import PaymentStatus
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork
from main import app


@pytest.fixture
async def client(database):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


def _bearer(user_id: int, role: str | None = None) -> dict:
    return {"Authorization": f"Bearer {TokenService().create_access_token(user_id, role=role)}"}


async def _status(order_id: int) -> PaymentStatus:
    async with SQLAlchemyUnitOfWork(readonly=True) as uow:
        return (await uow.order_repository.get_by_id(order_id)).payment_status


def _location(response: httpx.Response):
    parts = urlsplit(response.headers["location"])
    return parts.path, {k: v[0] for k, v in parse_qs(parts.query).items()}


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["data"] == {"status": "healthy"}


# ---- scenario A: IPN first, browser return second ---------------------------


async def test_vnpay_webhook_then_redirect(client, seed_orders, order_factory, signed_vnpay):
    [order] = await seed_orders(order_factory())
    params = signed_vnpay(order.order_code, 500000)

    ack = await client.get("/api/v1/payments/vnpay/webhook", params=params)
    assert ack.status_code == 200
    assert ack.json() == {"RspCode": "00", "Message": "Confirm Success"}
    assert await _status(order.id) is PaymentStatus.PAID

    redirect = await client.get("/api/v1/payments/vnpay/callback", params=params)
    assert redirect.status_code == 302
    path, query = _location(redirect)
    assert path == "/payment/success"
    assert query["orderCode"] == "ORD0001"
    assert query["orderId"] == str(order.id)
    assert query["vnp_ResponseCode"] == "00"

    # IPN retries keep getting the success ack
    again = await client.get("/api/v1/payments/vnpay/webhook", params=params)
    assert again.json()["RspCode"] == "00"


# ---- scenario B: browser return first, IPN second ---------------------------


async def test_momo_redirect_then_webhook(client, seed_orders, order_factory, signed_momo):
    [order] = await seed_orders(order_factory(order_code="ORD77"))
    params = signed_momo("ORD77", order.id, 500000)

    redirect = await client.get("/api/v1/payments/momo/callback", params=params)
    assert redirect.status_code == 302
    path, query = _location(redirect)
    assert path == "/payment/success"
    assert query["resultCode"] == "0"
    assert await _status(order.id) is PaymentStatus.PAID

    ack = await client.post("/api/v1/payments/momo/webhook", json=params)
    assert ack.status_code == 200
    assert ack.json() == {"resultCode": 0, "message": "Confirm Success"}
    assert await _status(order.id) is PaymentStatus.PAID


async def test_momo_declined_redirect_goes_to_failure(client, seed_orders, order_factory, signed_momo):
    [order] = await seed_orders(order_factory(order_code="ORD78"))
    params = signed_momo("ORD78", order.id, 500000, result_code=1006, message="Từ chối")

    redirect = await client.post("/api/v1/payments/momo/callback", data=params)
    path, query = _location(redirect)
    assert path == "/payment/failure"
    assert query["orderCode"] == "ORD78"
    assert await _status(order.id) is PaymentStatus.FAILED


# ---- webhook error acks -----------------------------------------------------


async def test_vnpay_webhook_error_acks(client, seed_orders, order_factory, signed_vnpay):
    [order] = await seed_orders(order_factory())

    bad_hash = signed_vnpay(order.order_code, 500000, secret="wrong")
    assert (await client.get("/api/v1/payments/vnpay/webhook", params=bad_hash)).json()["RspCode"] == "97"

    unknown = signed_vnpay("NOPE", 500000)
    assert (await client.get("/api/v1/payments/vnpay/webhook", params=unknown)).json()["RspCode"] == "01"

    wrong_amount = signed_vnpay(order.order_code, 1000)
    assert (await client.get("/api/v1/payments/vnpay/webhook", params=wrong_amount)).json()["RspCode"] == "04"

    assert await _status(order.id) is PaymentStatus.PENDING


async def test_momo_webhook_ip_allowlist(client, seed_orders, order_factory, signed_momo, monkeypatch):
    [order] = await seed_orders(order_factory(order_code="ORD79"))
    monkeypatch.setattr(payment_settings.momo, "ip_allowlist", ["10.0.0.0/8"])

    ack = await client.post("/api/v1/payments/momo/webhook", json=signed_momo("ORD79", order.id, 500000))
    assert ack.json()["resultCode"] == 13
    assert await _status(order.id) is PaymentStatus.PENDING


async def test_momo_webhook_allowlist_behind_trusted_proxy(client, seed_orders, order_factory, signed_momo, monkeypatch):
    [order] = await seed_orders(order_factory(order_code="ORD80"))
    monkeypatch.setattr(payment_settings.momo, "ip_allowlist", ["10.0.0.0/8"])
    params = signed_momo("ORD80", order.id, 500000)

    # the test client connects from 127.0.0.1, which is a trusted proxy by default
    ack = await client.post(
        "/api/v1/payments/momo/webhook", json=params, headers={"X-Forwarded-For": "203.0.113.9, 10.1.2.3"},
    )
    assert ack.json()["resultCode"] == 0
    assert await _status(order.id) is PaymentStatus.PAID


async def test_forwarded_for_ignored_from_untrusted_peer(database, seed_orders, order_factory, signed_momo, monkeypatch):
    [order] = await seed_orders(order_factory(order_code="ORD81"))
    monkeypatch.setattr(payment_settings.momo, "ip_allowlist", ["10.0.0.0/8"])

    transport = httpx.ASGITransport(app=app, client=("198.51.100.7", 4000))
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as outsider:
        ack = await outsider.post(
            "/api/v1/payments/momo/webhook",
            json=signed_momo("ORD81", order.id, 500000),
            headers={"X-Forwarded-For": "10.1.2.3"},
        )
    assert ack.json()["resultCode"] == 13
    assert await _status(order.id) is PaymentStatus.PENDING


# ---- results page -----------------------------------------------------------


async def test_unclassifiable_result_redirects_to_failure(client):
    response = await client.get("/api/v1/payments/result", params={"foo": "bar", "orderCode": "ORD5"})
    assert response.status_code == 302
    path, query = _location(response)
    assert path == "/payment/failure"
    assert query["orderCode"] == "ORD5"
    assert query["error"]


async def test_unicode_digit_order_id_redirects_to_failure(client):
    response = await client.get("/api/v1/payments/result", params={"orderId": "²", "foo": "bar"})
    assert response.status_code == 302
    path, query = _location(response)
    assert path == "/payment/failure"
    assert "orderId" not in query

    response = await client.get(
        "/api/v1/payments/momo/callback",
        params={"orderId": "²", "resultCode": "1006", "amount": "1", "signature": "x"},
    )
    assert response.status_code == 302
    assert _location(response)[0] == "/payment/failure"


async def test_failure_page_fallback_when_identity_recovery_breaks(client, monkeypatch):
    original = ResponseComposer.failure_redirect

    def broken(self, params, message=None):
        if params:
            raise ValueError("boom")
        return original(self, params, message)

    monkeypatch.setattr(ResponseComposer, "failure_redirect", broken)
    response = await client.get("/api/v1/payments/result", params={"foo": "bar"})
    assert response.status_code == 302
    path, query = _location(response)
    assert path == "/payment/failure"
    assert query["error"]


async def test_unified_result_reconciles_vnpay(client, seed_orders, order_factory, signed_vnpay):
    [order] = await seed_orders(order_factory())
    response = await client.get("/api/v1/payments/result", params=signed_vnpay(order.order_code, 500000))
    assert _location(response)[0] == "/payment/success"
    assert await _status(order.id) is PaymentStatus.PAID


async def test_result_check(client):
    response = await client.get("/api/v1/payments/result/check", params={"resultCode": "9000"})
    assert response.status_code == 200
    assert response.json()["data"] == {"gateway": "MoMo", "isSuccessful": True}


# ---- checkout -----------------------------------------------------------------


async def test_checkout_requires_token(client):
    response = await client.post("/api/v1/payments/vnpay/create", json={"orderId": 1})
    assert response.status_code == 401


async def test_vnpay_checkout(client, seed_orders, order_factory):
    [order] = await seed_orders(order_factory())

    forbidden = await client.post("/api/v1/payments/vnpay/create", json={"orderId": order.id}, headers=_bearer(99))
    assert forbidden.status_code == 403

    response = await client.post("/api/v1/payments/bank/create", json={"orderId": order.id}, headers=_bearer(7))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["orderCode"] == "ORD0001"
    assert data["gateway"] == "VNPay"
    assert data["paymentUrl"].startswith(payment_settings.vnpay.api_url)
    assert data["transactionRef"].startswith("ORD0001-VNPay-")
    assert data["reused"] is False

    again = await client.post("/api/v1/payments/vnpay/create", json={"orderId": order.id}, headers=_bearer(7))
    assert again.json()["data"]["reused"] is True
    assert again.json()["data"]["transactionRef"] == data["transactionRef"]

    async with SQLAlchemyUnitOfWork(readonly=True) as uow:
        stored = await uow.order_repository.get_by_id(order.id)
    assert stored.checkout_gateway == "VNPay"


async def test_checkout_unknown_gateway(client, seed_orders, order_factory):
    [order] = await seed_orders(order_factory())
    response = await client.get(
        "/api/v1/payments/paypal/create", params={"orderId": order.id}, headers=_bearer(7),
    )
    assert response.status_code == 400


# ---- refunds ------------------------------------------------------------------


async def test_refund_requires_admin(client, seed_orders, order_factory):
    [order] = await seed_orders(order_factory(payment_status=PaymentStatus.PAID, payment_gateway="VNPay"))
    response = await client.post(f"/api/v1/payments/refund/{order.id}", headers=_bearer(7))
    assert response.status_code == 403


async def test_admin_vnpay_refund(client, seed_orders, order_factory):
    [order] = await seed_orders(order_factory(payment_status=PaymentStatus.PAID, payment_gateway="VNPay"))

    response = await client.post(
        f"/api/v1/payments/refund/{order.id}", json={"amount": "100000"}, headers=_bearer(1, "admin"),
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["paymentStatus"] == "PARTIALLY_REFUNDED"
    assert data["requiresManualAction"] is True
    assert Decimal(data["refundAmount"]) == Decimal("100000")

    too_much = await client.post(
        f"/api/v1/payments/refund/{order.id}", json={"amount": "400001"}, headers=_bearer(1, "admin"),
    )
    assert too_much.status_code == 400
    assert await _status(order.id) is PaymentStatus.PARTIALLY_REFUNDED


# ---- ledger -------------------------------------------------------------------


async def test_admin_lists_order_ledger(client, seed_orders, order_factory, signed_vnpay):
    [order] = await seed_orders(order_factory())
    await client.get("/api/v1/payments/vnpay/webhook", params=signed_vnpay(order.order_code, 500000))

    assert (await client.get(f"/api/v1/payments/transactions/{order.id}", headers=_bearer(7))).status_code == 403

    response = await client.get(f"/api/v1/payments/transactions/{order.id}", headers=_bearer(1, "admin"))
    assert response.status_code == 200
    rows = response.json()["data"]
    assert [(r["kind"], r["status"]) for r in rows] == [("NOTIFICATION", "SUCCESS"), ("CHECKOUT", "SUCCESS")]
    assert rows[0]["deliveryMode"] == "webhook"
    assert rows[0]["applied"] is True
    assert rows[1]["transactionRef"] == "ORD0001-VNPay-1714534200000"
    assert "gatewayResponse" not in rows[0]

    missing = await client.get("/api/v1/payments/transactions/999", headers=_bearer(1, "admin"))
    assert missing.status_code == 404
