"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
对网关通知的处理中，以下异常属于"硬错误"：在任何订单写入之前中止流程，
由最外层处理器统一转换为跳转（浏览器）或应答（webhook）。
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
        message_key: Optional[str] = None,
        format_params: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        self.message_key = message_key
        self.format_params = format_params
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
        message_key: str | None = None,
        format_params: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
            message_key=message_key or "validation.domain",
            format_params=format_params,
        )


class ClassificationError(BusinessException):
    """Parameters match neither VNPay nor MoMo markers."""

    def __init__(self, keys: Optional[list[str]] = None):
        super().__init__(
            code=PaymentCode.UNKNOWN_GATEWAY,
            message="Cannot determine payment gateway",
            error_type="ClassificationError",
            details={"keys": keys} if keys else None,
            message_key="payments.gateway.unknown",
        )


class AuthenticityError(BusinessException):
    """Signature/hash check or a required-field check failed.

    ``reason`` is for server logs only; callers render a generic message.
    """

    def __init__(self, gateway: str, reason: str):
        self.gateway = gateway
        self.reason = reason
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message="Payment notification could not be verified",
            error_type="AuthenticityError",
            details={"gateway": gateway},
            message_key="payments.verify.failed",
        )


class OrderNotFoundError(BusinessException):
    def __init__(self, order_code: Optional[str] = None, order_id: Optional[int] = None):
        self.order_code = order_code
        self.order_id = order_id
        super().__init__(
            code=BusinessCode.ORDER_NOT_FOUND,
            message="Order not found",
            error_type="OrderNotFound",
            details={"order_code": order_code, "order_id": order_id},
            message_key="order.not_found",
        )


class AmountMismatchError(BusinessException):
    def __init__(self, order_code: str, expected: Decimal, received: Decimal):
        self.order_code = order_code
        super().__init__(
            code=PaymentCode.AMOUNT_MISMATCH,
            message="Paid amount does not match order amount",
            error_type="AmountMismatch",
            details={"order_code": order_code, "expected": str(expected), "received": str(received)},
            message_key="payments.amount.mismatch",
        )


class CheckoutNotAllowedError(BusinessException):
    def __init__(self, order_code: str, status: str, reason: str = "status"):
        super().__init__(
            code=PaymentCode.CHECKOUT_NOT_ALLOWED,
            message=f"Order {order_code} cannot be paid ({reason})",
            error_type="CheckoutNotAllowed",
            details={"order_code": order_code, "status": status, "reason": reason},
            message_key="payments.checkout.not_allowed",
        )


class RefundNotAllowedError(BusinessException):
    def __init__(self, order_code: str, status: str):
        super().__init__(
            code=PaymentCode.REFUND_NOT_ALLOWED,
            message=f"Order {order_code} in status {status} cannot be refunded",
            error_type="RefundNotAllowed",
            details={"order_code": order_code, "status": status},
            message_key="payments.refund.not_allowed",
        )


class RefundExceedsPaymentError(BusinessException):
    def __init__(self, requested: Decimal, available: Decimal):
        super().__init__(
            code=PaymentCode.REFUND_EXCEEDS_PAYMENT,
            message=f"Refund amount {requested} exceeds refundable amount {available}",
            error_type="RefundExceedsPayment",
            details={"requested": str(requested), "available": str(available)},
            message_key="payments.refund.exceeds",
            format_params={"available": str(available)},
        )


class InvalidRefundAmountError(BusinessException):
    def __init__(self, requested: Decimal):
        super().__init__(
            code=PaymentCode.REFUND_INVALID_AMOUNT,
            message="Refund amount must be greater than 0",
            error_type="InvalidRefundAmount",
            details={"requested": str(requested)},
            field="amount",
            message_key="payments.refund.invalid_amount",
        )


class OrderStateConflictError(BusinessException):
    """A conditional write lost against a concurrent update."""

    def __init__(self, order_code: str):
        super().__init__(
            code=BusinessCode.ORDER_STATE_CONFLICT,
            message=f"Order {order_code} was modified concurrently",
            error_type="OrderStateConflict",
            details={"order_code": order_code},
            message_key="order.state.conflict",
        )
