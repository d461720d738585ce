"""
Payment ledger: the per-attempt and per-delivery trail behind an order.

The order row only keeps the latest state. The ledger keeps every checkout
attempt and every verified gateway notification so that duplicate,
late or mismatched deliveries can be reconciled by hand afterwards. All
writes go through the caller's unit of work, next to the order write.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from domain.common.exceptions import BusinessException
from domain.order.entity import Order
from domain.payment.notification import GatewayNotification
from domain.payment.outcome import ResolvedOutcome
from domain.payment.repository import PaymentTransactionRepository
from domain.payment.transaction import (
    SUPERSEDED_BY_CHECKOUT,
    SUPERSEDED_BY_PAYMENT,
    PaymentTransaction,
    TransactionKind,
    TransactionStatus,
)
from shared.codes.payment_codes import Outcome


_STATUS_BY_OUTCOME = {
    Outcome.SUCCESS: TransactionStatus.SUCCESS,
    Outcome.FAILED: TransactionStatus.FAILED,
}


class PaymentLedger:
    """
    支付流水领域服务

    规则：
    1. 新的支付尝试会让同一网关下更早的 PENDING 尝试失效
    2. 每次通过验签的通知都写一行 NOTIFICATION，无论是否改变订单
    3. 确定结果只终结对应的 PENDING 尝试一次；成功时其余 PENDING 尝试失效
    4. 金额不符的通知记为 FAILED 通知，但不终结支付尝试
    """

    def __init__(self, repository: PaymentTransactionRepository):
        self.repository = repository

    async def find_reusable_checkout(
        self,
        order_id: int,
        gateway: str,
        now: Optional[datetime] = None,
    ) -> Optional[PaymentTransaction]:
        attempt = await self.repository.latest_pending_checkout(order_id, gateway)
        if attempt is not None and attempt.is_reusable(now):
            return attempt
        return None

    async def open_checkout(self, attempt: PaymentTransaction) -> PaymentTransaction:
        """Store a new PENDING attempt; older PENDING attempts on the same gateway stop being current."""
        stored = await self.repository.add(attempt)
        await self.repository.supersede_pending(
            stored.order_id,
            reason=SUPERSEDED_BY_CHECKOUT,
            at=stored.created_at or datetime.now(timezone.utc),
            keep_id=stored.id,
            gateway=stored.gateway,
        )
        return stored

    async def record_failed_checkout(self, attempt: PaymentTransaction, error: str) -> PaymentTransaction:
        attempt.status = TransactionStatus.FAILED
        attempt.error_message = error
        return await self.repository.add(attempt)

    async def record_notification(
        self,
        order: Order,
        outcome: ResolvedOutcome,
        notification: GatewayNotification,
        *,
        applied: bool,
        error: Optional[BusinessException] = None,
        at: Optional[datetime] = None,
    ) -> PaymentTransaction:
        at = at or datetime.now(timezone.utc)
        gateway = str(outcome.gateway)

        if error is not None:
            status = TransactionStatus.FAILED
            message: Optional[str] = error.message
        else:
            status = _STATUS_BY_OUTCOME.get(outcome.outcome, TransactionStatus.PENDING)
            message = None if status is TransactionStatus.SUCCESS else outcome.reason_message

        entry = await self.repository.add(PaymentTransaction(
            order_id=order.id,
            gateway=gateway,
            kind=TransactionKind.NOTIFICATION,
            transaction_ref=outcome.transaction_ref,
            amount=outcome.amount,
            status=status,
            gateway_transaction_id=outcome.transaction_id,
            result_code=outcome.raw_code,
            delivery_mode=notification.delivery_mode.value,
            applied=applied,
            gateway_response=dict(notification.params),
            error_message=message,
            created_at=at,
            updated_at=at,
        ))

        if error is None and outcome.is_definitive:
            await self._settle_attempt(order, outcome, status, message, at)
        return entry

    async def _settle_attempt(
        self,
        order: Order,
        outcome: ResolvedOutcome,
        status: TransactionStatus,
        message: Optional[str],
        at: datetime,
    ) -> None:
        gateway = str(outcome.gateway)
        attempt = None
        if outcome.transaction_ref:
            attempt = await self.repository.get_checkout(outcome.transaction_ref)
            if attempt is not None and attempt.order_id != order.id:
                attempt = None
        if attempt is None:
            attempt = await self.repository.latest_pending_checkout(order.id, gateway)
        if attempt is None:
            # paid through a link this service never recorded
            attempt = await self.repository.add(PaymentTransaction(
                order_id=order.id,
                gateway=gateway,
                kind=TransactionKind.CHECKOUT,
                transaction_ref=outcome.transaction_ref,
                amount=outcome.amount if outcome.amount is not None else order.final_price,
                created_at=at,
                updated_at=at,
            ))

        settled = await self.repository.settle(
            attempt.id,
            status,
            at=at,
            gateway_transaction_id=outcome.transaction_id,
            error_message=message,
        )
        if settled and status is TransactionStatus.SUCCESS:
            await self.repository.supersede_pending(
                order.id, reason=SUPERSEDED_BY_PAYMENT, at=at, keep_id=attempt.id,
            )
