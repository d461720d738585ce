"""
Outward responses for gateway notifications.

Browser deliveries always end in a redirect to the frontend results pages;
webhook deliveries always end in the gateway's own acknowledgement shape.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional
from urllib.parse import urlencode

from core.i18n import t
from core.settings import ResultPageSettings, payment_settings
from domain.common.exceptions import (
    AmountMismatchError,
    AuthenticityError,
    OrderNotFoundError,
)
from domain.order.entity import Order, PaymentStatus
from domain.payment.notification import normalize_params
from domain.payment.outcome import decode_extra_data, strip_suffix
from shared.codes.payment_codes import GatewaySource, normalize_gateway, parse_numeric_id


VNPAY_PASSTHROUGH = ("vnp_ResponseCode", "vnp_TransactionStatus", "vnp_TxnRef")
MOMO_PASSTHROUGH = ("resultCode", "message", "extraData")

PASSTHROUGH_BY_GATEWAY = {
    GatewaySource.VNPAY: VNPAY_PASSTHROUGH,
    GatewaySource.MOMO: MOMO_PASSTHROUGH,
}

VNPAY_ACK_SUCCESS = {"RspCode": "00", "Message": "Confirm Success"}
MOMO_ACK_SUCCESS = {"resultCode": 0, "message": "Confirm Success"}

# exception type -> (VNPay RspCode, MoMo resultCode, message)
_ACK_ERRORS = (
    (AuthenticityError, "97", 13, "Invalid Checksum"),
    (OrderNotFoundError, "01", 42, "Order not found"),
    (AmountMismatchError, "04", 21, "Invalid amount"),
)
_ACK_UNKNOWN = ("99", 99, "Unknown error")


class ResponseComposer:
    def __init__(self, pages: Optional[ResultPageSettings] = None) -> None:
        self.pages = pages or payment_settings.result_pages

    def _url(self, path: str, query: Mapping[str, Any]) -> str:
        base = self.pages.frontend_base_url.rstrip("/")
        qs = urlencode({k: v for k, v in query.items() if v is not None and v != ""})
        return f"{base}{path}?{qs}" if qs else f"{base}{path}"

    def redirect_for(
        self,
        order: Order,
        gateway: GatewaySource | str,
        params: Mapping[str, Any],
    ) -> str:
        """Redirect after reconciliation; identity comes from the order record."""
        source = normalize_gateway(gateway)
        normalized = normalize_params(params)
        query: dict[str, Any] = {"orderCode": order.order_code, "orderId": order.id}
        for key in PASSTHROUGH_BY_GATEWAY[source]:
            query[key] = normalized.get(key)

        # Only FAILED dead-ends on the failure page; PENDING and no-op cases
        # go to the success page, which polls the order itself.
        if order.payment_status is PaymentStatus.FAILED:
            path = self.pages.failure_path
        else:
            path = self.pages.success_path
        return self._url(path, query)

    def failure_redirect(self, params: Mapping[str, Any], message: Optional[str] = None) -> str:
        """Best-effort failure redirect when the pipeline aborted before an order was resolved."""
        normalized = normalize_params(params)
        order_code, order_id = recover_identity(normalized)
        query: dict[str, Any] = {"orderCode": order_code, "orderId": order_id}
        for key in VNPAY_PASSTHROUGH + MOMO_PASSTHROUGH:
            query[key] = normalized.get(key)
        query["error"] = message or t("payments.verify.failed")
        return self._url(self.pages.failure_path, query)

    @staticmethod
    def webhook_ack(gateway: GatewaySource | str) -> dict[str, Any]:
        """Ack for both applied and idempotent no-op results."""
        if normalize_gateway(gateway) is GatewaySource.VNPAY:
            return dict(VNPAY_ACK_SUCCESS)
        return dict(MOMO_ACK_SUCCESS)

    @staticmethod
    def webhook_error_ack(gateway: GatewaySource | str, exc: BaseException) -> dict[str, Any]:
        vnpay_code, momo_code, message = _ACK_UNKNOWN
        for exc_type, v_code, m_code, msg in _ACK_ERRORS:
            if isinstance(exc, exc_type):
                vnpay_code, momo_code, message = v_code, m_code, msg
                break
        if normalize_gateway(gateway) is GatewaySource.VNPAY:
            return {"RspCode": vnpay_code, "Message": message}
        return {"resultCode": momo_code, "message": message}


def recover_identity(params: Mapping[str, str]) -> tuple[Optional[str], Optional[int]]:
    """Order code / id from whatever fragments a failed request still carries.

    Order: ``orderCode``, decoded ``extraData``, a non-numeric ``orderId``,
    then ``vnp_TxnRef``. Suffixes are stripped; decode failures are ignored.
    """
    extra = decode_extra_data(params.get("extraData"))
    extra = extra if isinstance(extra, dict) else {}

    order_code = params.get("orderCode") or extra.get("orderCode")
    raw_order_id = params.get("orderId")
    if not order_code and raw_order_id and parse_numeric_id(raw_order_id) is None:
        order_code = strip_suffix(raw_order_id)
    if not order_code and params.get("vnp_TxnRef"):
        order_code = strip_suffix(params["vnp_TxnRef"])

    order_id = parse_numeric_id(raw_order_id)
    if order_id is None:
        order_id = parse_numeric_id(extra.get("orderId"))
    return (str(order_code) if order_code else None), order_id
