"""
支付流水实体 - 每次发起支付、每次网关通知各记一行

CHECKOUT 行代表一次支付尝试（一个 transaction_ref），创建时为 PENDING，
之后由网关通知、新的尝试或过期清扫终结为 SUCCESS/FAILED，终结后不再变化。
NOTIFICATION 行是每次通过验签的网关通知的原始记录，写入后只读，
包括重复投递、金额不符等没有改变订单的通知，供事后对账。
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from domain.order.entity import _ensure_utc


class TransactionKind(str, Enum):
    """流水类型"""
    CHECKOUT = "CHECKOUT"          # 发起支付
    NOTIFICATION = "NOTIFICATION"  # 网关通知


class TransactionStatus(str, Enum):
    """流水状态"""
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


SUPERSEDED_BY_CHECKOUT = "Superseded by a newer checkout"
SUPERSEDED_BY_PAYMENT = "Superseded by a successful payment"
CHECKOUT_EXPIRED = "Payment link expired"
ORDER_NO_LONGER_PENDING = "Order is no longer pending"


@dataclass
class PaymentTransaction:
    """
    支付流水

    业务规则：
    1. 只有 PENDING 的 CHECKOUT 行可以被终结，且只终结一次
    2. NOTIFICATION 行写入后不再修改
    3. 金额以 VND 记录，与订单 final_price 同精度
    """

    order_id: int
    gateway: str
    kind: TransactionKind
    transaction_ref: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: str = "VND"
    status: TransactionStatus = TransactionStatus.PENDING

    gateway_transaction_id: Optional[str] = None
    result_code: Optional[str] = None
    delivery_mode: Optional[str] = None
    applied: bool = False

    # 结账链接（仅 CHECKOUT 行），用于复用未过期的尝试
    payment_url: Optional[str] = None
    deeplink: Optional[str] = None
    qr_code_url: Optional[str] = None
    expires_at: Optional[datetime] = None

    gateway_response: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    client_ip: Optional[str] = None

    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.kind = TransactionKind(self.kind)
        self.status = TransactionStatus(self.status)
        if self.amount is not None:
            self.amount = Decimal(str(self.amount))
        for name in ("expires_at", "created_at", "updated_at"):
            setattr(self, name, _ensure_utc(getattr(self, name)))

    @property
    def is_pending(self) -> bool:
        return self.status is TransactionStatus.PENDING

    def is_live(self, now: Optional[datetime] = None) -> bool:
        """PENDING 且结账链接尚未过期"""
        if self.kind is not TransactionKind.CHECKOUT or not self.is_pending:
            return False
        now = _ensure_utc(now) or datetime.now(timezone.utc)
        return self.expires_at is None or self.expires_at > now

    def is_reusable(self, now: Optional[datetime] = None) -> bool:
        """可直接把已有链接返回给用户，而不是重新向网关下单"""
        return bool(self.payment_url) and self.is_live(now)
