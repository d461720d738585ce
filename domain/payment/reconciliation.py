"""
订单对账状态机 - 将网关结果幂等地应用到订单

First writer wins: a browser redirect and a webhook for the same transaction
may arrive in any order. Whichever is verified first performs the
PENDING -> PAID/FAILED write through the repository's conditional update;
the other one observes a non-PENDING order and becomes a no-op.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from domain.common.exceptions import AmountMismatchError, OrderNotFoundError
from domain.order.entity import Order, PaymentStatus
from domain.order.repository import OrderRepository
from domain.payment.events import OrderPaid, OrderPaymentFailed
from domain.payment.outcome import ResolvedOutcome
from shared.codes.payment_codes import Outcome


@dataclass(frozen=True)
class ReconciliationResult:
    order: Order
    applied: bool
    final_status: PaymentStatus


class OrderReconciler:
    """
    订单对账领域服务

    规则：
    1. 按 order_code 优先、order_id 兜底查找订单，找不到即报错
    2. 非 PENDING 订单一律不变（重复/迟到通知的幂等保证）
    3. pending/unknown 结果不改变状态
    4. 成功结果的金额必须与订单金额一致
    """

    def __init__(self, repository: OrderRepository):
        self.repository = repository
        self.events: List = []  # 领域事件收集

    async def find_order(self, outcome: ResolvedOutcome) -> Order:
        order = None
        if outcome.order_code:
            order = await self.repository.get_by_code(outcome.order_code)
        if order is None and outcome.order_id is not None:
            order = await self.repository.get_by_id(outcome.order_id)
        if order is None:
            raise OrderNotFoundError(order_code=outcome.order_code, order_id=outcome.order_id)
        return order

    async def apply(self, outcome: ResolvedOutcome, order: Optional[Order] = None) -> ReconciliationResult:
        if order is None:
            order = await self.find_order(outcome)

        if not order.is_pending or not outcome.is_definitive:
            return ReconciliationResult(order=order, applied=False, final_status=order.payment_status)

        gateway = str(outcome.gateway)
        if outcome.outcome is Outcome.SUCCESS:
            if outcome.amount is not None and outcome.amount != order.final_price:
                raise AmountMismatchError(order.order_code, order.final_price, outcome.amount)
            target = PaymentStatus.PAID
        else:
            target = PaymentStatus.FAILED

        now = datetime.now(timezone.utc)
        won = await self.repository.transition_from_pending(
            order.id,
            target,
            gateway=gateway,
            transaction_id=outcome.transaction_id if target is PaymentStatus.PAID else None,
            at=now,
        )
        if not won:
            # Lost the race: another delivery already moved the order.
            current = await self.repository.get_by_id(order.id) or order
            return ReconciliationResult(order=current, applied=False, final_status=current.payment_status)

        if target is PaymentStatus.PAID:
            order.mark_paid(gateway, outcome.transaction_id, at=now)
            self.events.append(OrderPaid(
                order_id=order.id,
                order_code=order.order_code,
                gateway=gateway,
                transaction_id=outcome.transaction_id,
            ))
        else:
            order.mark_failed(gateway, at=now)
            self.events.append(OrderPaymentFailed(
                order_id=order.id,
                order_code=order.order_code,
                gateway=gateway,
                reason=outcome.reason_message,
            ))
        return ReconciliationResult(order=order, applied=True, final_status=order.payment_status)

    def clear_events(self) -> List:
        """清空并返回领域事件"""
        events = self.events.copy()
        self.events.clear()
        return events
