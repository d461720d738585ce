from __future__ import annotations

import gettext
from contextvars import ContextVar
from pathlib import Path

from core.config import settings
from core.logging_config import get_logger

DEFAULT_LOCALE = settings.DEFAULT_LOCALE or "vi"

_current_locale: ContextVar[str] = ContextVar("current_locale", default=DEFAULT_LOCALE)
_translators: dict[str, gettext.NullTranslations] = {}
_logger = get_logger(__name__)


# Built-in catalog used when no compiled .mo file provides the msgid.
_BUILTIN_MESSAGES: dict[str, dict[str, str]] = {
    "vi": {
        "welcome": "Dịch vụ đối soát thanh toán",
        "health.ok": "Hệ thống hoạt động bình thường",
        "error.internal": "Lỗi hệ thống, vui lòng thử lại sau",
        "validation.failed": "Dữ liệu không hợp lệ: {reason}",
        "validation.domain": "Dữ liệu không hợp lệ",
        "auth.unauthorized": "Chưa xác thực",
        "auth.forbidden": "Không có quyền thực hiện thao tác này",
        "auth.token.expired": "Phiên đăng nhập đã hết hạn",
        "order.not_found": "Không tìm thấy đơn hàng",
        "order.state.conflict": "Đơn hàng vừa được cập nhật, vui lòng thử lại",
        "payments.verify.failed": "Không thể xác thực thanh toán",
        "payments.gateway.unknown": "Không xác định được cổng thanh toán",
        "payments.amount.mismatch": "Số tiền thanh toán không khớp với đơn hàng",
        "payments.checkout.created": "Tạo liên kết thanh toán thành công",
        "payments.checkout.not_allowed": "Đơn hàng không thể thanh toán",
        "payments.provider.error": "Cổng thanh toán trả về lỗi",
        "payments.refund.processed": "Hoàn tiền thành công",
        "payments.refund.manual": "Đã ghi nhận hoàn tiền. Vui lòng hoàn tiền thủ công trên cổng VNPay.",
        "payments.refund.not_allowed": "Chỉ có thể hoàn tiền cho đơn hàng đã thanh toán",
        "payments.refund.exceeds": "Số tiền hoàn vượt quá số tiền còn lại ({available})",
        "payments.refund.invalid_amount": "Số tiền hoàn phải lớn hơn 0",
        "payments.result.checked": "Kiểm tra kết quả thanh toán",
    },
    "en": {
        "welcome": "Payment reconciliation service",
        "health.ok": "Service is healthy",
        "error.internal": "Internal server error, please try again later",
        "validation.failed": "Validation failed: {reason}",
        "validation.domain": "Invalid data",
        "auth.unauthorized": "Unauthorized",
        "auth.forbidden": "You are not allowed to perform this action",
        "auth.token.expired": "Token expired",
        "order.not_found": "Order not found",
        "order.state.conflict": "Order was updated concurrently, please retry",
        "payments.verify.failed": "Unable to verify payment",
        "payments.gateway.unknown": "Cannot determine payment gateway",
        "payments.amount.mismatch": "Paid amount does not match the order amount",
        "payments.checkout.created": "Payment link created",
        "payments.checkout.not_allowed": "Order cannot be paid",
        "payments.provider.error": "Payment gateway returned an error",
        "payments.refund.processed": "Refund processed",
        "payments.refund.manual": "Refund recorded. Please complete it manually in the VNPay portal.",
        "payments.refund.not_allowed": "Only paid orders can be refunded",
        "payments.refund.exceeds": "Refund amount exceeds remaining amount ({available})",
        "payments.refund.invalid_amount": "Refund amount must be greater than 0",
        "payments.result.checked": "Payment result checked",
        "payments.transactions.listed": "Payment transactions",
    },
}


def set_locale(locale: str) -> None:
    """Set current request locale (fallback to the configured default)."""
    _current_locale.set(locale or DEFAULT_LOCALE)


def get_locale() -> str:
    """Get current request locale."""
    return _current_locale.get()


def _get_translator(locale: str) -> gettext.NullTranslations:
    tr = _translators.get(locale)
    if tr is not None:
        return tr
    localedir = Path(__file__).resolve().parent.parent / "locales"
    tr = gettext.translation(
        domain="messages",
        localedir=str(localedir),
        languages=[locale],
        fallback=True,
    )
    _translators[locale] = tr
    return tr


def t(msgid: str, **params) -> str:
    """Translate msgid using current locale and format with params.

    Lookup order: compiled gettext catalog, built-in catalog, msgid itself.
    """
    locale = get_locale()
    text = _get_translator(locale).gettext(msgid)
    if text == msgid:
        catalog = _BUILTIN_MESSAGES.get(locale) or _BUILTIN_MESSAGES.get(DEFAULT_LOCALE, _BUILTIN_MESSAGES["vi"])
        text = catalog.get(msgid, msgid)
    if not params:
        return text
    try:
        return text.format(**params)
    except (KeyError, IndexError, ValueError) as exc:
        # Log and fallback to unformatted text to avoid breaking UX
        _logger.warning("i18n_format_failed", msgid=msgid, params=list(params.keys()), error=str(exc))
        return text
