from decimal import Decimal

import pytest

from domain.common.exceptions import ClassificationError
from domain.payment.notification import (
    DeliveryMode,
    MoMoNotification,
    VNPayNotification,
    classify,
    normalize_params,
    parse_notification,
)
from domain.payment.outcome import (
    ExtraDataDecodeError,
    decode_extra_data,
    is_payment_successful,
    resolve,
    resolve_notification,
    strip_suffix,
)
from infrastructure.external.payments.momo_client import encode_extra_data
from shared.codes.payment_codes import GatewaySource, Outcome


# ---- classification -------------------------------------------------------


def test_classify_prefers_vnpay_markers():
    params = {"vnp_TxnRef": "ORD1-VNPay-1", "resultCode": "0"}
    assert classify(params) is GatewaySource.VNPAY


def test_classify_momo_and_unknown():
    assert classify({"partnerCode": "MOMO"}) is GatewaySource.MOMO
    assert classify({"vnp_TxnRef": "", "foo": "bar"}) is None
    assert classify({}) is None


def test_parse_notification_wraps_shape():
    n = parse_notification({"resultCode": 0, "amount": 1000}, DeliveryMode.WEBHOOK)
    assert isinstance(n, MoMoNotification)
    assert n.result_code == "0"
    assert n.raw_amount == "1000"
    assert n.delivery_mode is DeliveryMode.WEBHOOK


def test_parse_notification_rejects_other_gateway_on_dedicated_route():
    with pytest.raises(ClassificationError):
        parse_notification({"resultCode": "0"}, DeliveryMode.REDIRECT, GatewaySource.VNPAY)


def test_parse_notification_rejects_unclassifiable():
    with pytest.raises(ClassificationError) as exc:
        parse_notification({"foo": "1"}, DeliveryMode.REDIRECT)
    assert exc.value.details == {"keys": ["foo"]}


def test_normalize_params_drops_none():
    assert dict(normalize_params({"a": 1, "b": None})) == {"a": "1"}


# ---- VNPay resolution -----------------------------------------------------


def _vnpay(**params):
    return VNPayNotification(params=normalize_params(params))


def test_vnpay_success_strips_suffix_and_scales_amount():
    outcome = resolve_notification(_vnpay(
        vnp_ResponseCode="00",
        vnp_TransactionStatus="00",
        vnp_TxnRef="ORD42-VNPay-1714534200000",
        vnp_Amount="50000000",
        vnp_TransactionNo="14012345",
    ))
    assert outcome.outcome is Outcome.SUCCESS
    assert outcome.order_code == "ORD42"
    assert outcome.amount == Decimal("500000")
    assert outcome.transaction_id == "14012345"


def test_vnpay_failure_reason_from_response_code():
    outcome = resolve_notification(_vnpay(vnp_ResponseCode="24", vnp_TxnRef="ORD42"))
    assert outcome.outcome is Outcome.FAILED
    assert outcome.raw_code == "24"
    assert "hủy" in outcome.reason_message


def test_vnpay_status_only_failure_uses_status_group():
    outcome = resolve_notification(_vnpay(vnp_TransactionStatus="02", vnp_TxnRef="ORD42"))
    assert outcome.outcome is Outcome.FAILED
    assert outcome.reason_message == "Giao dịch bị lỗi"


def test_vnpay_without_codes_is_unknown():
    outcome = resolve_notification(_vnpay(vnp_TxnRef="ORD42"))
    assert outcome.outcome is Outcome.UNKNOWN
    assert not outcome.is_definitive


# ---- MoMo resolution ------------------------------------------------------


def test_momo_identity_from_extra_data():
    outcome = resolve(GatewaySource.MOMO, {
        "resultCode": 0,
        "orderId": "ORD77-MoMo-1714534200000",
        "amount": 250000,
        "transId": 3100000001,
        "extraData": encode_extra_data({"orderId": 77, "orderCode": "ORD77"}),
    })
    assert outcome.outcome is Outcome.SUCCESS
    assert outcome.order_code == "ORD77"
    assert outcome.order_id == 77
    assert outcome.amount == Decimal("250000")
    assert outcome.transaction_id == "3100000001"


def test_momo_identity_falls_back_to_suffixed_order_id():
    outcome = resolve("ewallet", {"resultCode": "1006", "orderId": "ORD77-momo-abc"})
    assert outcome.outcome is Outcome.FAILED
    assert outcome.order_code == "ORD77"
    assert outcome.order_id is None


def test_momo_unicode_digit_order_id_is_not_an_id():
    outcome = resolve("ewallet", {"orderId": "²", "resultCode": "0"})
    assert outcome.order_id is None
    assert outcome.order_code == "²"

    extra = encode_extra_data({"orderId": "³", "orderCode": "ORD5"})
    outcome = resolve("momo", {"orderId": "ORD5-MoMo-1", "resultCode": "0", "extraData": extra})
    assert (outcome.order_code, outcome.order_id) == ("ORD5", None)


def test_momo_broken_extra_data_is_soft_failure():
    assert isinstance(decode_extra_data("%%%not-base64"), ExtraDataDecodeError)
    outcome = resolve("momo", {"resultCode": "0", "orderId": "ORD5", "extraData": "%%%not-base64"})
    assert outcome.order_code == "ORD5"


def test_momo_missing_result_code_is_unknown():
    assert resolve("momo", {"partnerCode": "X", "orderId": "ORD5"}).outcome is Outcome.UNKNOWN


def test_strip_suffix():
    assert strip_suffix("ABC123-MoMo-xyz789") == "ABC123"
    assert strip_suffix("ABC-123") == "ABC-123"


# ---- view-only check ------------------------------------------------------


@pytest.mark.parametrize(
    "params,expected",
    [
        ({"vnp_ResponseCode": "00"}, True),
        ({"vnp_ResponseCode": "24", "vnp_TransactionStatus": "00"}, True),
        ({"resultCode": "9000"}, True),
        ({"resultCode": 0}, True),
        ({"resultCode": "1006"}, False),
        ({}, False),
    ],
)
def test_is_payment_successful(params, expected):
    assert is_payment_successful(params) is expected
