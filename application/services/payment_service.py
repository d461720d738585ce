"""
Application service orchestrating payment use-cases.

This class depends only on the application PaymentGateway port, the domain
and the Unit of Work. Gateway implementations are provided by infrastructure
and injected from the composition root (API/tasks) as ``gateway_factory``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Mapping, Optional

from application.dtos.payments import (
    CheckoutResponse,
    GatewayCheckoutRequest,
    GatewayRefundRequest,
    PaymentCheckResult,
    PaymentTransactionView,
    RefundRequest,
    RefundResult,
)
from application.ports.payment_gateway import PaymentGateway
from core.exceptions import ForbiddenException
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.exceptions import (
    AmountMismatchError,
    AuthenticityError,
    BusinessException,
    ClassificationError,
    OrderNotFoundError,
    OrderStateConflictError,
    RefundNotAllowedError,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import PaymentStatus
from domain.payment.events import CheckoutExpired, OrderRefunded
from domain.payment.ledger import PaymentLedger
from domain.payment.notification import (
    DeliveryMode,
    GatewayNotification,
    classify,
    normalize_params,
    parse_notification,
)
from domain.payment.outcome import ResolvedOutcome, is_payment_successful, resolve_notification
from domain.payment.reconciliation import OrderReconciler, ReconciliationResult
from domain.payment.transaction import (
    CHECKOUT_EXPIRED,
    ORDER_NO_LONGER_PENDING,
    PaymentTransaction,
    TransactionKind,
    TransactionStatus,
)
from shared.codes.payment_codes import GatewaySource, normalize_gateway


logger = get_logger(__name__)

GatewayFactory = Callable[[GatewaySource], PaymentGateway]

ORDER_INFO_TEMPLATES = {
    # VNPay rejects diacritics in vnp_OrderInfo
    GatewaySource.VNPAY: "Thanh toan don hang {order_code}",
    GatewaySource.MOMO: "Thanh toán khóa học {order_code}",
}


@dataclass(frozen=True)
class ProcessedNotification:
    notification: GatewayNotification
    outcome: ResolvedOutcome
    result: ReconciliationResult
    events: List[Any] = field(default_factory=list)

    @property
    def gateway(self) -> GatewaySource:
        return self.notification.gateway


def build_transaction_ref(order_code: str, gateway: GatewaySource, at: datetime) -> str:
    """``<orderCode>-<Gateway>-<epoch millis>``; the suffix is stripped again on the way back."""
    return f"{order_code}-{gateway.value}-{int(at.timestamp() * 1000)}"


def _source(gateway: GatewaySource | str) -> GatewaySource:
    try:
        return normalize_gateway(gateway)
    except ValueError:
        raise ClassificationError([str(gateway)])


class PaymentService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway_factory: GatewayFactory,
        *,
        vnpay_expiration_minutes: Optional[int] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway_factory = gateway_factory
        self._vnpay_expiration = timedelta(
            minutes=vnpay_expiration_minutes or payment_settings.vnpay.expiration_minutes
        )

    # ---- notifications --------------------------------------------------

    async def process_notification(
        self,
        params: Mapping[str, Any],
        delivery_mode: DeliveryMode,
        expected: Optional[GatewaySource] = None,
    ) -> ProcessedNotification:
        """Classify, verify, resolve and reconcile one gateway notification.

        Hard errors (classification, authenticity, order lookup) propagate
        before any write. An amount mismatch leaves the order untouched but is
        still written to the ledger before it propagates. Callers turn these
        errors into a redirect or an ack.
        """
        notification = parse_notification(params, delivery_mode, expected)
        gateway = notification.gateway

        client = self._gateway_factory(gateway)
        try:
            client.verify_notification(notification)
        except AuthenticityError as exc:
            logger.warning(
                "payment_notification_rejected",
                gateway=str(gateway),
                delivery_mode=delivery_mode.value,
                reason=exc.reason,
            )
            raise
        finally:
            await client.aclose()

        outcome = resolve_notification(notification)
        logger.info(
            "payment_outcome_resolved",
            gateway=str(gateway),
            delivery_mode=delivery_mode.value,
            outcome=outcome.outcome.value,
            raw_code=outcome.raw_code,
            order_code=outcome.order_code,
            order_id=outcome.order_id,
        )

        async with self._uow_factory() as uow:
            reconciler = OrderReconciler(uow.order_repository)
            ledger = PaymentLedger(uow.transaction_repository)
            order = await reconciler.find_order(outcome)
            rejected: Optional[AmountMismatchError] = None
            try:
                result = await reconciler.apply(outcome, order)
            except AmountMismatchError as exc:
                # keep the delivery on record, the order itself stays untouched
                rejected = exc
                await ledger.record_notification(order, outcome, notification, applied=False, error=exc)
            else:
                await ledger.record_notification(order, outcome, notification, applied=result.applied)
            events = reconciler.clear_events()

        if rejected is not None:
            raise rejected

        logger.info(
            "payment_reconciled",
            gateway=str(gateway),
            delivery_mode=delivery_mode.value,
            order_code=result.order.order_code,
            applied=result.applied,
            final_status=result.final_status.value,
        )
        self._publish(events)
        return ProcessedNotification(notification=notification, outcome=outcome, result=result, events=events)

    @staticmethod
    def check_result(params: Mapping[str, Any]) -> PaymentCheckResult:
        """View-only success hint for the results page; never changes state."""
        normalized = normalize_params(params)
        source = classify(normalized)
        return PaymentCheckResult(
            gateway=source.value if source else None,
            is_successful=is_payment_successful(normalized),
        )

    # ---- checkout -------------------------------------------------------

    async def create_checkout(
        self,
        order_id: int,
        gateway: GatewaySource | str,
        *,
        user_id: int,
        client_ip: Optional[str] = None,
    ) -> CheckoutResponse:
        """Start (or resume) a checkout for a PENDING order.

        A still-live PENDING attempt on the same gateway is handed back as is,
        so repeated clicks do not open parallel gateway transactions.
        """
        source = _source(gateway)
        now = datetime.now(timezone.utc)
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_id(order_id)
            reusable = None
            if order is not None:
                reusable = await PaymentLedger(uow.transaction_repository).find_reusable_checkout(
                    order.id, source.value, now
                )
        if order is None:
            raise OrderNotFoundError(order_id=order_id)
        if order.user_id != user_id:
            logger.warning("checkout_forbidden", order_id=order_id, user_id=user_id)
            raise ForbiddenException("You are not authorized to pay for this order")
        order.ensure_payable()

        if reusable is not None:
            logger.info(
                "payment_checkout_reused",
                order_code=order.order_code,
                gateway=source.value,
                transaction_ref=reusable.transaction_ref,
            )
            return CheckoutResponse(
                order_id=order.id,
                order_code=order.order_code,
                gateway=source.value,
                amount=order.final_price,
                payment_url=reusable.payment_url,
                transaction_ref=reusable.transaction_ref,
                deeplink=reusable.deeplink,
                qr_code_url=reusable.qr_code_url,
                expires_at=reusable.expires_at,
                reused=True,
            )

        request = GatewayCheckoutRequest(
            order_id=order.id,
            order_code=order.order_code,
            user_id=order.user_id,
            amount=order.final_price,
            transaction_ref=build_transaction_ref(order.order_code, source, now),
            order_info=ORDER_INFO_TEMPLATES[source].format(order_code=order.order_code),
            client_ip=client_ip,
            created_at=now,
        )
        attempt = PaymentTransaction(
            order_id=order.id,
            gateway=source.value,
            kind=TransactionKind.CHECKOUT,
            transaction_ref=request.transaction_ref,
            amount=order.final_price,
            client_ip=client_ip,
            created_at=now,
            updated_at=now,
        )

        client = self._gateway_factory(source)
        try:
            session = await client.create_checkout(request)
        except BusinessException as exc:
            async with self._uow_factory() as uow:
                await PaymentLedger(uow.transaction_repository).record_failed_checkout(attempt, exc.message)
            logger.warning(
                "payment_checkout_failed",
                order_code=order.order_code,
                gateway=source.value,
                transaction_ref=request.transaction_ref,
                error=exc.message,
            )
            raise
        finally:
            await client.aclose()

        attempt.payment_url = session.payment_url
        attempt.deeplink = session.deeplink
        attempt.qr_code_url = session.qr_code_url
        attempt.expires_at = session.expires_at
        attempt.gateway_response = session.raw
        async with self._uow_factory() as uow:
            if not await uow.order_repository.record_checkout(order.id, source.value, now):
                raise OrderStateConflictError(order.order_code)
            await PaymentLedger(uow.transaction_repository).open_checkout(attempt)

        logger.info(
            "payment_checkout_created",
            order_code=order.order_code,
            gateway=source.value,
            transaction_ref=session.transaction_ref,
        )
        return CheckoutResponse(
            order_id=order.id,
            order_code=order.order_code,
            gateway=source.value,
            amount=order.final_price,
            payment_url=session.payment_url,
            transaction_ref=session.transaction_ref,
            deeplink=session.deeplink,
            qr_code_url=session.qr_code_url,
            expires_at=session.expires_at,
        )

    # ---- refunds (admin) ------------------------------------------------

    async def refund_order(self, order_id: int, req: RefundRequest, *, admin_id: Optional[int] = None) -> RefundResult:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(order_id=order_id)

        requested, new_total, new_status = order.plan_refund(req.amount)
        if not order.payment_gateway:
            raise RefundNotAllowedError(order.order_code, order.payment_status.value)
        source = _source(order.payment_gateway)

        client = self._gateway_factory(source)
        try:
            gateway_refund = await client.refund(GatewayRefundRequest(
                order_id=order.id,
                order_code=order.order_code,
                amount=requested,
                transaction_id=order.gateway_transaction_id,
                description=req.reason or f"Hoàn tiền đơn hàng {order.order_code}",
            ))
        finally:
            await client.aclose()

        now = datetime.now(timezone.utc)
        async with self._uow_factory() as uow:
            recorded = await uow.order_repository.record_refund(
                order.id,
                expected_refund_amount=order.refund_amount,
                new_refund_amount=new_total,
                new_status=new_status,
                at=now,
            )
        if not recorded:
            # The gateway already accepted the refund; leave a trail for manual reconciliation.
            logger.error(
                "refund_record_conflict",
                order_code=order.order_code,
                amount=str(requested),
                gateway=source.value,
                refund_ref=gateway_refund.refund_ref,
            )
            raise OrderStateConflictError(order.order_code)

        event = OrderRefunded(
            order_id=order.id,
            order_code=order.order_code,
            gateway=source.value,
            amount=str(requested),
            refund_total=str(new_total),
            requires_manual_action=gateway_refund.requires_manual_action,
        )
        logger.info(
            "payment_refunded",
            order_code=order.order_code,
            admin_id=admin_id,
            amount=str(requested),
            refund_total=str(new_total),
            status=new_status.value,
            requires_manual_action=gateway_refund.requires_manual_action,
        )
        self._publish([event])
        return RefundResult(
            order_id=order.id,
            order_code=order.order_code,
            gateway=source.value,
            refund_amount=requested,
            total_refunded=new_total,
            payment_status=new_status.value,
            requires_manual_action=gateway_refund.requires_manual_action,
            refund_ref=gateway_refund.refund_ref,
        )

    # ---- ledger (admin) -------------------------------------------------

    async def list_transactions(self, order_id: int) -> List[PaymentTransactionView]:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_id(order_id)
            if order is None:
                raise OrderNotFoundError(order_id=order_id)
            rows = await uow.transaction_repository.list_for_order(order_id)
        return [
            PaymentTransactionView(
                id=row.id,
                kind=row.kind.value,
                gateway=row.gateway,
                transaction_ref=row.transaction_ref,
                gateway_transaction_id=row.gateway_transaction_id,
                amount=row.amount,
                currency=row.currency,
                status=row.status.value,
                result_code=row.result_code,
                delivery_mode=row.delivery_mode,
                applied=row.applied,
                error_message=row.error_message,
                created_at=row.created_at,
                updated_at=row.updated_at,
            )
            for row in rows
        ]

    # ---- VNPay expiration sweep -----------------------------------------

    async def expire_stale_checkouts(self, now: Optional[datetime] = None, limit: int = 100) -> int:
        """Close PENDING VNPay attempts older than the link lifetime.

        The order is failed with the same PENDING-only conditional write as
        notifications, so a notification racing the sweep still wins or loses
        cleanly. An order that still has another live attempt stays PENDING.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - self._vnpay_expiration
        gateway = GatewaySource.VNPAY.value
        expired: List[CheckoutExpired] = []
        async with self._uow_factory() as uow:
            transactions = uow.transaction_repository
            stale = await transactions.list_stale_checkouts(gateway, cutoff, limit)
            for attempt in stale:
                pending = await transactions.list_pending_checkouts(attempt.order_id)
                if any(other.id != attempt.id and other.is_live(now) for other in pending):
                    await transactions.settle(attempt.id, TransactionStatus.FAILED, at=now, error_message=CHECKOUT_EXPIRED)
                    continue

                won = await uow.order_repository.transition_from_pending(
                    attempt.order_id, PaymentStatus.FAILED, gateway=gateway, at=now
                )
                reason = CHECKOUT_EXPIRED if won else ORDER_NO_LONGER_PENDING
                await transactions.settle(attempt.id, TransactionStatus.FAILED, at=now, error_message=reason)
                if won:
                    order = await uow.order_repository.get_by_id(attempt.order_id)
                    expired.append(CheckoutExpired(
                        order_id=attempt.order_id,
                        order_code=order.order_code,
                        gateway=gateway,
                    ))
        logger.info("vnpay_checkouts_expired", count=len(expired), candidates=len(stale), cutoff=cutoff.isoformat())
        self._publish(expired)
        return len(expired)

    @staticmethod
    def _publish(events: List[Any]) -> None:
        for event in events:
            # 事件目前只记录日志，后续可发布到消息队列（如开通课程）
            logger.info(
                "domain_event",
                event_type=type(event).__name__,
                event_id=event.event_id,
                order_id=event.order_id,
                order_code=event.order_code,
                gateway=event.gateway,
            )
