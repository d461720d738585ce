import pytest

from shared.codes.payment_codes import (
    VNPAY_TRANSACTION_CODES,
    CodeGroup,
    GatewaySource,
    Outcome,
    lookup_outcome,
    lookup_reason,
    is_ascii_digits,
    normalize_gateway,
    parse_numeric_id,
)


def test_vnpay_known_code_reason():
    message, known = lookup_reason(GatewaySource.VNPAY, "24")
    assert known is True
    assert "hủy giao dịch" in message


def test_unknown_code_is_reported_not_raised():
    message, known = lookup_reason("VNPay", "ZZ")
    assert known is False
    assert "ZZ" in message
    assert lookup_outcome("VNPay", "ZZ") is Outcome.UNKNOWN


def test_vnpay_code_groups_are_separate():
    # "01" only exists in the transaction-status group
    assert lookup_reason(GatewaySource.VNPAY, "01")[1] is False
    assert lookup_outcome(GatewaySource.VNPAY, "01", CodeGroup.TRANSACTION_STATUS) is Outcome.PENDING
    assert lookup_outcome(GatewaySource.VNPAY, "94", CodeGroup.REFUND) is Outcome.PENDING
    assert lookup_outcome(GatewaySource.VNPAY, "94", CodeGroup.QUERY) is Outcome.FAILED


def test_momo_codes_normalise_leading_zeros():
    assert lookup_outcome(GatewaySource.MOMO, "00") is Outcome.SUCCESS
    assert lookup_outcome(GatewaySource.MOMO, 0) is Outcome.SUCCESS
    assert lookup_outcome(GatewaySource.MOMO, "1006") is Outcome.FAILED
    assert lookup_outcome(GatewaySource.MOMO, "7000") is Outcome.PENDING
    message, known = lookup_reason(GatewaySource.MOMO, "1081", CodeGroup.REFUND)
    assert known and "hoàn" in message


def test_code_tables_are_read_only():
    with pytest.raises(TypeError):
        VNPAY_TRANSACTION_CODES["00"] = None  # type: ignore[index]


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("vnpay", GatewaySource.VNPAY),
        ("BANK", GatewaySource.VNPAY),
        ("MoMo", GatewaySource.MOMO),
        (" ewallet ", GatewaySource.MOMO),
        (GatewaySource.MOMO, GatewaySource.MOMO),
    ],
)
def test_normalize_gateway_aliases(raw, expected):
    assert normalize_gateway(raw) is expected


def test_normalize_gateway_rejects_unknown():
    with pytest.raises(ValueError):
        normalize_gateway("paypal")


def test_numeric_ids_accept_ascii_digits_only():
    assert parse_numeric_id("42") == 42
    assert parse_numeric_id(" 42 ") == 42
    assert parse_numeric_id(7) == 7
    # Unicode digits pass str.isdigit() but int() rejects them
    for raw in ("²", "١٢", "４２", "-1", "", None):
        assert parse_numeric_id(raw) is None
    assert is_ascii_digits("0099")
    assert not is_ascii_digits("²")
    assert not is_ascii_digits(None)


def test_momo_superscript_code_is_unknown_not_an_error():
    message, known = lookup_reason(GatewaySource.MOMO, "²")
    assert not known
    assert message
