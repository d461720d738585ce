"""
订单领域实体 - 订单支付状态聚合

订单由外围业务在结账时以 PENDING 创建；本服务只驱动其支付状态：
PENDING -> {PAID, FAILED}，PAID -> {PARTIALLY_REFUNDED, REFUNDED}。
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import (
    CheckoutNotAllowedError,
    DomainValidationException,
    InvalidRefundAmountError,
    RefundExceedsPaymentError,
    RefundNotAllowedError,
)


class PaymentStatus(str, Enum):
    """订单支付状态枚举"""
    PENDING = "PENDING"                        # 待支付
    PAID = "PAID"                              # 已支付
    FAILED = "FAILED"                          # 支付失败
    REFUNDED = "REFUNDED"                      # 全额退款
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"  # 部分退款


ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset({PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}),
    PaymentStatus.PARTIALLY_REFUNDED: frozenset({PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

REFUNDABLE_STATUSES = frozenset({PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED})


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Order:
    """
    订单聚合根（支付相关字段）

    业务规则：
    1. 一旦 PAID/FAILED/REFUNDED，不会回到 PENDING
    2. refund_amount <= final_price，且只增不减
    3. payment_gateway 记录最后给出确定结果的网关
    """

    id: Optional[int]
    order_code: str
    user_id: Optional[int]
    course_id: Optional[int]
    original_price: Decimal
    discount_amount: Decimal
    final_price: Decimal
    payment_status: PaymentStatus = PaymentStatus.PENDING
    refund_amount: Decimal = Decimal("0")

    payment_gateway: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    checkout_gateway: Optional[str] = None

    # 时间戳
    checkout_started_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.payment_status = PaymentStatus(self.payment_status)
        for name in ("original_price", "discount_amount", "final_price", "refund_amount"):
            setattr(self, name, Decimal(str(getattr(self, name) or 0)))
        if self.final_price < 0:
            raise DomainValidationException(
                f"订单金额不能为负: {self.final_price}", field="final_price"
            )
        if self.refund_amount > self.final_price:
            raise DomainValidationException(
                "退款金额不能超过订单金额", field="refund_amount"
            )
        for name in ("checkout_started_at", "paid_at", "failed_at", "refunded_at", "created_at", "updated_at"):
            setattr(self, name, _ensure_utc(getattr(self, name)))

    @property
    def is_pending(self) -> bool:
        return self.payment_status is PaymentStatus.PENDING

    def can_transition_to(self, target: PaymentStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self.payment_status]

    def _transition(self, target: PaymentStatus) -> None:
        if not self.can_transition_to(target):
            raise DomainValidationException(
                f"无法从状态 {self.payment_status.value} 转换为 {target.value}",
                field="payment_status",
            )
        self.payment_status = target

    # ---- notification-driven transitions -------------------------------

    def mark_paid(self, gateway: str, transaction_id: Optional[str] = None, at: Optional[datetime] = None) -> None:
        self._transition(PaymentStatus.PAID)
        self.payment_gateway = gateway
        if transaction_id:
            self.gateway_transaction_id = transaction_id
        self.paid_at = _ensure_utc(at) or datetime.now(timezone.utc)
        self.updated_at = self.paid_at

    def mark_failed(self, gateway: str, at: Optional[datetime] = None) -> None:
        self._transition(PaymentStatus.FAILED)
        self.payment_gateway = gateway
        self.failed_at = _ensure_utc(at) or datetime.now(timezone.utc)
        self.updated_at = self.failed_at

    # ---- checkout -------------------------------------------------------

    def ensure_payable(self) -> None:
        """业务规则：只有 PENDING 且金额大于0的订单可以发起支付"""
        if not self.is_pending:
            raise CheckoutNotAllowedError(self.order_code, self.payment_status.value)
        if self.final_price <= 0:
            raise CheckoutNotAllowedError(self.order_code, self.payment_status.value, reason="zero_amount")

    def start_checkout(self, gateway: str, at: Optional[datetime] = None) -> None:
        self.ensure_payable()
        self.checkout_gateway = gateway
        self.checkout_started_at = _ensure_utc(at) or datetime.now(timezone.utc)
        self.updated_at = self.checkout_started_at

    # ---- refunds (admin action) -----------------------------------------

    def refundable_amount(self) -> Decimal:
        """计算可退款金额"""
        return self.final_price - self.refund_amount

    def plan_refund(self, amount: Optional[Decimal] = None) -> tuple[Decimal, Decimal, PaymentStatus]:
        """
        计算一次退款的结果，不修改实体

        Returns:
            (本次退款金额, 新的累计退款金额, 新状态)
        """
        if self.payment_status not in REFUNDABLE_STATUSES:
            raise RefundNotAllowedError(self.order_code, self.payment_status.value)
        available = self.refundable_amount()
        requested = available if amount is None else Decimal(str(amount))
        if requested <= 0:
            raise InvalidRefundAmountError(requested)
        if requested > available:
            raise RefundExceedsPaymentError(requested, available)
        new_total = self.refund_amount + requested
        new_status = (
            PaymentStatus.REFUNDED if new_total >= self.final_price else PaymentStatus.PARTIALLY_REFUNDED
        )
        return requested, new_total, new_status

    def apply_refund(self, amount: Optional[Decimal] = None, at: Optional[datetime] = None) -> Decimal:
        requested, new_total, new_status = self.plan_refund(amount)
        self._transition(new_status)
        self.refund_amount = new_total
        self.refunded_at = _ensure_utc(at) or datetime.now(timezone.utc)
        self.updated_at = self.refunded_at
        return requested
