from decimal import Decimal
from urllib.parse import parse_qs, urlsplit

import pytest

from application.services.response_composer import ResponseComposer, recover_identity
from core.settings import ResultPageSettings
from domain.common.exceptions import (
    AmountMismatchError,
    AuthenticityError,
    ClassificationError,
    OrderNotFoundError,
)
from domain.order.entity import PaymentStatus
from infrastructure.external.payments.momo_client import encode_extra_data
from shared.codes.payment_codes import GatewaySource


@pytest.fixture
def composer():
    return ResponseComposer(ResultPageSettings(
        frontend_base_url="https://lms.example/",
        success_path="/payment/success",
        failure_path="/payment/failure",
    ))


def _split(url):
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}{parts.path}", {k: v[0] for k, v in parse_qs(parts.query).items()}


def test_paid_order_goes_to_success_page_with_passthrough(composer, order_factory):
    order = order_factory(id=12, payment_status=PaymentStatus.PAID)
    url = composer.redirect_for(order, GatewaySource.VNPAY, {
        "vnp_ResponseCode": "00",
        "vnp_TransactionStatus": "00",
        "vnp_TxnRef": "ORD0001-VNPay-1",
        "vnp_SecureHash": "abc",
    })
    base, query = _split(url)
    assert base == "https://lms.example/payment/success"
    assert query == {
        "orderCode": "ORD0001",
        "orderId": "12",
        "vnp_ResponseCode": "00",
        "vnp_TransactionStatus": "00",
        "vnp_TxnRef": "ORD0001-VNPay-1",
    }


def test_failed_order_goes_to_failure_page(composer, order_factory):
    order = order_factory(id=12, payment_status=PaymentStatus.FAILED)
    base, query = _split(composer.redirect_for(order, "momo", {"resultCode": 1006, "message": "Từ chối"}))
    assert base == "https://lms.example/payment/failure"
    assert query["resultCode"] == "1006"
    assert query["message"] == "Từ chối"


def test_pending_order_goes_to_success_page(composer, order_factory):
    base, _ = _split(composer.redirect_for(order_factory(id=1), "vnpay", {}))
    assert base.endswith("/payment/success")


def test_failure_redirect_recovers_identity(composer):
    base, query = _split(composer.failure_redirect({"vnp_TxnRef": "ORD9-VNPay-1714534200000"}, "boom"))
    assert base == "https://lms.example/payment/failure"
    assert query["orderCode"] == "ORD9"
    assert query["error"] == "boom"
    assert "orderId" not in query


def test_recover_identity_prefers_explicit_then_extra_data():
    extra = encode_extra_data({"orderId": 5, "orderCode": "ORD5"})
    assert recover_identity({"orderCode": "X1", "extraData": extra}) == ("X1", 5)
    assert recover_identity({"orderId": "ORD5-MoMo-1"}) == ("ORD5", None)
    assert recover_identity({"orderId": "44"}) == (None, 44)
    assert recover_identity({}) == (None, None)


def test_failure_redirect_survives_unicode_digit_order_id(composer):
    assert recover_identity({"orderId": "²"}) == ("²", None)
    extra = encode_extra_data({"orderId": "١"})
    assert recover_identity({"extraData": extra}) == (None, None)

    base, query = _split(composer.failure_redirect({"orderId": "²", "foo": "bar"}))
    assert base == "https://lms.example/payment/failure"
    assert "orderId" not in query


def test_webhook_success_acks():
    assert ResponseComposer.webhook_ack(GatewaySource.VNPAY) == {"RspCode": "00", "Message": "Confirm Success"}
    assert ResponseComposer.webhook_ack("MoMo") == {"resultCode": 0, "message": "Confirm Success"}


@pytest.mark.parametrize(
    "exc,vnpay,momo",
    [
        (AuthenticityError("VNPay", "bad hash"), "97", 13),
        (OrderNotFoundError("ORD1"), "01", 42),
        (AmountMismatchError("ORD1", Decimal("1"), Decimal("2")), "04", 21),
        (ClassificationError(), "99", 99),
        (RuntimeError("db down"), "99", 99),
    ],
)
def test_webhook_error_acks(exc, vnpay, momo):
    assert ResponseComposer.webhook_error_ack(GatewaySource.VNPAY, exc)["RspCode"] == vnpay
    assert ResponseComposer.webhook_error_ack(GatewaySource.MOMO, exc)["resultCode"] == momo
