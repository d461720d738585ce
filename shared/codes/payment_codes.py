"""
Payment specific codes and gateway result-code tables.

Every table is an immutable ``MappingProxyType`` built once at import time.
VNPay tables are partitioned by API group (payment response, transaction
status, querydr, refund); MoMo tables are partitioned by numeric range.
Tables are gateway-scoped: the same code means different things per gateway.
"""
from __future__ import annotations

from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Mapping, NamedTuple, Union


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004

    # Reconciliation errors (61xxx)
    UNKNOWN_GATEWAY = 61000
    AMOUNT_MISMATCH = 61001
    CHECKOUT_NOT_ALLOWED = 61002

    # Refund errors (62xxx)
    REFUND_NOT_ALLOWED = 62000
    REFUND_EXCEEDS_PAYMENT = 62001
    REFUND_INVALID_AMOUNT = 62002


class GatewaySource(str, Enum):
    """Gateway that produced a notification; values double as display names."""

    VNPAY = "VNPay"
    MOMO = "MoMo"

    def __str__(self) -> str:
        return self.value


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"
    UNKNOWN = "unknown"


class CodeGroup(str, Enum):
    TRANSACTION = "transaction"
    TRANSACTION_STATUS = "transaction_status"
    QUERY = "query"
    REFUND = "refund"


class CodeEntry(NamedTuple):
    message: str
    outcome: Outcome


_GATEWAY_ALIASES = {
    "vnpay": GatewaySource.VNPAY,
    "bank": GatewaySource.VNPAY,
    "momo": GatewaySource.MOMO,
    "ewallet": GatewaySource.MOMO,
}

# Success sentinels per gateway field
VNPAY_SUCCESS_CODE = "00"
MOMO_SUCCESS_CODES = frozenset({"0", "00"})
# 9000 = "confirmed successfully"; only honoured by the result-page check
MOMO_CONFIRMED_SUCCESS_CODES = frozenset({"0", "00", "9000"})

UNKNOWN_CODE_MESSAGE = "Lỗi không xác định (mã {code})"

S, F, P = Outcome.SUCCESS, Outcome.FAILED, Outcome.PENDING


def _table(entries: dict[str, tuple[str, Outcome]]) -> Mapping[str, CodeEntry]:
    return MappingProxyType({code: CodeEntry(msg, outcome) for code, (msg, outcome) in entries.items()})


# ---------------------------------------------------------------- VNPay ----

VNPAY_TRANSACTION_CODES = _table({
    "00": ("Giao dịch thành công", S),
    "07": ("Trừ tiền thành công. Giao dịch bị nghi ngờ (liên quan tới lừa đảo, giao dịch bất thường).", P),
    "09": ("Giao dịch không thành công do: Thẻ/Tài khoản của khách hàng chưa đăng ký dịch vụ InternetBanking tại ngân hàng.", F),
    "10": ("Giao dịch không thành công do: Khách hàng xác thực thông tin thẻ/tài khoản không đúng quá 3 lần", F),
    "11": ("Giao dịch không thành công do: Đã hết hạn chờ thanh toán. Xin quý khách vui lòng thực hiện lại giao dịch.", F),
    "12": ("Giao dịch không thành công do: Thẻ/Tài khoản của khách hàng bị khóa.", F),
    "13": ("Giao dịch không thành công do Quý khách nhập sai mật khẩu xác thực giao dịch (OTP). Xin quý khách vui lòng thực hiện lại giao dịch.", F),
    "24": ("Giao dịch không thành công do: Khách hàng hủy giao dịch", F),
    "51": ("Giao dịch không thành công do: Tài khoản của quý khách không đủ số dư để thực hiện giao dịch.", F),
    "65": ("Giao dịch không thành công do: Tài khoản của Quý khách đã vượt quá hạn mức giao dịch trong ngày.", F),
    "75": ("Ngân hàng thanh toán đang bảo trì.", F),
    "79": ("Giao dịch không thành công do: KH nhập sai mật khẩu thanh toán quá số lần quy định. Xin quý khách vui lòng thực hiện lại giao dịch", F),
    "99": ("Các lỗi khác (lỗi còn lại, không có trong danh sách mã lỗi đã liệt kê)", F),
})

VNPAY_TRANSACTION_STATUS_CODES = _table({
    "00": ("Giao dịch thanh toán thành công", S),
    "01": ("Giao dịch chưa hoàn tất", P),
    "02": ("Giao dịch bị lỗi", F),
    "04": ("Giao dịch đảo (Khách hàng đã bị trừ tiền tại Ngân hàng nhưng GD chưa thành công ở VNPAY)", P),
    "05": ("VNPAY đang xử lý giao dịch này (GD hoàn tiền)", P),
    "06": ("VNPAY đã gửi yêu cầu hoàn tiền sang Ngân hàng (GD hoàn tiền)", P),
    "07": ("Giao dịch bị nghi ngờ gian lận", P),
    "09": ("GD Hoàn trả bị từ chối", F),
})

VNPAY_QUERY_CODES = _table({
    "00": ("Yêu cầu thành công", S),
    "02": ("Mã định danh kết nối không hợp lệ (kiểm tra lại TmnCode)", F),
    "03": ("Dữ liệu gửi sang không đúng định dạng", F),
    "04": ("Truy vấn không hợp lệ", F),
    "91": ("Không tìm thấy giao dịch yêu cầu", F),
    "94": ("Yêu cầu trùng lặp, duplicate request trong thời gian giới hạn của API", F),
    "97": ("Checksum không hợp lệ", F),
    "99": ("Các lỗi khác (lỗi còn lại, không có trong danh sách mã lỗi đã liệt kê)", F),
})

VNPAY_REFUND_CODES = _table({
    "00": ("Yêu cầu hoàn trả thành công", S),
    "02": ("Mã định danh kết nối không hợp lệ (kiểm tra lại TmnCode)", F),
    "03": ("Dữ liệu gửi sang không đúng định dạng", F),
    "04": ("Không cho phép hoàn trả toàn phần sau khi hoàn trả một phần", F),
    "13": ("Chỉ cho phép hoàn trả một phần", F),
    "91": ("Không tìm thấy giao dịch yêu cầu hoàn trả", F),
    "93": ("Số tiền hoàn trả không hợp lệ. Số tiền hoàn trả phải nhỏ hơn hoặc bằng số tiền thanh toán.", F),
    "94": ("Giao dịch đã được gửi yêu cầu hoàn tiền trước đó. Yêu cầu này VNPAY đang xử lý", P),
    "95": ("Giao dịch này không thành công bên VNPAY. VNPAY từ chối xử lý yêu cầu.", F),
    "97": ("Checksum không hợp lệ", F),
    "99": ("Các lỗi khác (lỗi còn lại, không có trong danh sách mã lỗi đã liệt kê)", F),
})

VNPAY_CODE_TABLES: Mapping[CodeGroup, Mapping[str, CodeEntry]] = MappingProxyType({
    CodeGroup.TRANSACTION: VNPAY_TRANSACTION_CODES,
    CodeGroup.TRANSACTION_STATUS: VNPAY_TRANSACTION_STATUS_CODES,
    CodeGroup.QUERY: VNPAY_QUERY_CODES,
    CodeGroup.REFUND: VNPAY_REFUND_CODES,
})


# ----------------------------------------------------------------- MoMo ----

MOMO_SUCCESS = _table({
    "0": ("Thành công.", S),
})

MOMO_SYSTEM_ERRORS = _table({
    "10": ("Hệ thống đang được bảo trì.", F),
    "11": ("Truy cập bị từ chối.", F),
    "12": ("Phiên bản API không được hỗ trợ cho yêu cầu này.", F),
    "13": ("Xác thực doanh nghiệp thất bại.", F),
})

MOMO_VALIDATION_ERRORS = _table({
    "20": ("Yêu cầu sai định dạng.", F),
    "21": ("Số tiền giao dịch không hợp lệ.", F),
    "22": ("Số tiền giao dịch nằm ngoài hạn mức cho phép.", F),
})

MOMO_CONFLICT_ERRORS = _table({
    "40": ("RequestId bị trùng.", F),
    "41": ("OrderId bị trùng.", F),
    "42": ("OrderId không hợp lệ hoặc không được tìm thấy.", F),
    "43": ("Yêu cầu bị từ chối vì xung đột trong quá trình xử lý giao dịch.", F),
    "45": ("Trùng ItemId.", F),
    "47": ("Yêu cầu bị từ chối vì thông tin không áp dụng trong tập dữ liệu hợp lệ.", F),
    "98": ("QR Code tạo không thành công. Vui lòng thử lại sau.", F),
    "99": ("Lỗi không xác định.", F),
})

MOMO_TRANSACTION_CODES = _table({
    "1000": ("Giao dịch đã được khởi tạo, chờ người dùng xác nhận thanh toán.", P),
    "1001": ("Giao dịch thanh toán thất bại do tài khoản người dùng không đủ tiền.", F),
    "1002": ("Giao dịch bị từ chối do nhà phát hành tài khoản thanh toán.", F),
    "1003": ("Giao dịch bị đã bị hủy.", F),
    "1004": ("Giao dịch thất bại do số tiền thanh toán vượt quá hạn mức thanh toán của người dùng.", F),
    "1005": ("Giao dịch thất bại do url hoặc QR code đã hết hạn.", F),
    "1006": ("Giao dịch thất bại do người dùng đã từ chối xác nhận thanh toán.", F),
    "1007": ("Giao dịch bị từ chối vì tài khoản không tồn tại hoặc đang ở trạng thái ngưng hoạt động.", F),
    "1017": ("Giao dịch bị hủy bởi đối tác.", F),
    "1026": ("Giao dịch bị hạn chế theo thể lệ chương trình khuyến mãi.", F),
    "2019": ("Yêu cầu bị từ chối vì orderGroupId không hợp lệ.", F),
    "4001": ("Giao dịch bị hạn chế do người dùng chưa hoàn tất xác thực tài khoản.", F),
    "4002": ("Giao dịch bị hạn chế do người dùng chưa hoàn tất xác thực tài khoản (C06).", F),
    "4100": ("Giao dịch thất bại do người dùng không đăng nhập thành công.", F),
    "7000": ("Giao dịch đang được xử lý.", P),
    "7002": ("Giao dịch đang được xử lý bởi nhà cung cấp loại hình thanh toán.", P),
    "9000": ("Giao dịch đã được xác nhận thành công.", S),
})

MOMO_REFUND_CODES = _table({
    "1080": ("Giao dịch hoàn tiền bị từ chối. Giao dịch thanh toán ban đầu không được tìm thấy.", F),
    "1081": ("Giao dịch hoàn tiền bị từ chối. Giao dịch thanh toán ban đầu có thể đã được hoàn.", F),
    "1088": ("Giao dịch hoàn tiền bị từ chối. Giao dịch thanh toán ban đầu không hỗ trợ hoàn tiền.", F),
})

MOMO_CODE_RANGES: Mapping[str, Mapping[str, CodeEntry]] = MappingProxyType({
    "success": MOMO_SUCCESS,
    "system": MOMO_SYSTEM_ERRORS,
    "validation": MOMO_VALIDATION_ERRORS,
    "conflict": MOMO_CONFLICT_ERRORS,
    "transaction": MOMO_TRANSACTION_CODES,
    "refund": MOMO_REFUND_CODES,
})

# Ranges are disjoint, so a single merged view serves every lookup.
MOMO_CODES: Mapping[str, CodeEntry] = MappingProxyType(
    {code: entry for table in MOMO_CODE_RANGES.values() for code, entry in table.items()}
)


def normalize_gateway(gateway: Union[str, GatewaySource]) -> GatewaySource:
    """Accept enum members, display names or the aliases ``bank``/``ewallet``."""
    if isinstance(gateway, GatewaySource):
        return gateway
    try:
        return _GATEWAY_ALIASES[str(gateway).strip().lower()]
    except KeyError:
        raise ValueError(f"Unsupported payment gateway: {gateway}") from None


def is_ascii_digits(text: object) -> bool:
    """True for a non-empty run of ``0-9`` only.

    ``str.isdigit`` also accepts superscripts and other Unicode digits that
    ``int()`` rejects, so gateway fields are never checked with it alone.
    """
    return isinstance(text, str) and text.isascii() and text.isdigit()


def parse_numeric_id(value: object) -> int | None:
    """Positive-integer id from a gateway field, ``None`` for anything else."""
    text = "" if value is None else str(value).strip()
    return int(text) if is_ascii_digits(text) else None


def _normalize_code(gateway: GatewaySource, code: object) -> str:
    text = "" if code is None else str(code).strip()
    if gateway is GatewaySource.MOMO and is_ascii_digits(text):
        # "00" and "0" are the same MoMo code
        return str(int(text))
    return text


def _lookup(gateway, code, group: CodeGroup) -> CodeEntry | None:
    gw = normalize_gateway(gateway)
    key = _normalize_code(gw, code)
    if gw is GatewaySource.VNPAY:
        return VNPAY_CODE_TABLES[CodeGroup(group)].get(key)
    return MOMO_CODES.get(key)


def lookup_reason(
    gateway: Union[str, GatewaySource],
    code: object,
    group: CodeGroup = CodeGroup.TRANSACTION,
) -> tuple[str, bool]:
    """Return ``(message, is_known)``; never raises for an unknown code.

    ``group`` selects the VNPay API group and is ignored for MoMo.
    """
    entry = _lookup(gateway, code, group)
    if entry is None:
        return UNKNOWN_CODE_MESSAGE.format(code=code), False
    return entry.message, True


def lookup_outcome(
    gateway: Union[str, GatewaySource],
    code: object,
    group: CodeGroup = CodeGroup.TRANSACTION,
) -> Outcome:
    """Coarse outcome a code stands for; ``Outcome.UNKNOWN`` when not listed."""
    entry = _lookup(gateway, code, group)
    return entry.outcome if entry is not None else Outcome.UNKNOWN
