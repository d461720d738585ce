"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import copy
import os
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault(
    "DATABASE__URL",
    "sqlite+aiosqlite:///" + os.path.join(tempfile.gettempdir(), f"payment-recon-test-{os.getpid()}.db"),
)

# Gateway credentials used by signing helpers
os.environ.setdefault("VNPAY__TMN_CODE", "TESTTMN1")
os.environ.setdefault("VNPAY__HASH_SECRET", "vnpay-test-hash-secret")
os.environ.setdefault("VNPAY__RETURN_URL", "http://localhost:8000/api/v1/payments/vnpay/callback")
os.environ.setdefault("MOMO__PARTNER_CODE", "MOMOTEST01")
os.environ.setdefault("MOMO__ACCESS_KEY", "momo-test-access")
os.environ.setdefault("MOMO__SECRET_KEY", "momo-test-secret")
os.environ.setdefault("MOMO__RETURN_URL", "http://localhost:8000/api/v1/payments/momo/callback")
os.environ.setdefault("MOMO__NOTIFY_URL", "http://localhost:8000/api/v1/payments/momo/webhook")
os.environ.setdefault("RESULT_PAGES__FRONTEND_BASE_URL", "https://lms.example")

import pytest  # noqa: E402

from application.dtos.payments import CheckoutSession, GatewayRefund  # noqa: E402
from domain.common.unit_of_work import AbstractUnitOfWork  # noqa: E402
from domain.order.entity import Order, PaymentStatus, REFUNDABLE_STATUSES  # noqa: E402
from domain.order.repository import OrderRepository  # noqa: E402
from domain.payment.repository import PaymentTransactionRepository  # noqa: E402
from domain.payment.transaction import PaymentTransaction, TransactionKind, TransactionStatus  # noqa: E402
from shared.codes.payment_codes import GatewaySource  # noqa: E402


class InMemoryOrderRepository(OrderRepository):
    """Dict-backed repository with the same conditional-write contract as SQL."""

    def __init__(self):
        self.orders: dict[int, Order] = {}
        self._seq = 0

    async def create(self, order: Order) -> Order:
        self._seq += 1
        stored = copy.deepcopy(order)
        stored.id = order.id or self._seq
        self.orders[stored.id] = stored
        return copy.deepcopy(stored)

    async def get_by_id(self, order_id: int) -> Optional[Order]:
        order = self.orders.get(order_id)
        return copy.deepcopy(order) if order else None

    async def get_by_code(self, order_code: str) -> Optional[Order]:
        for order in self.orders.values():
            if order.order_code == order_code:
                return copy.deepcopy(order)
        return None

    async def transition_from_pending(self, order_id, target, *, gateway, transaction_id=None, at=None) -> bool:
        order = self.orders.get(order_id)
        if order is None or order.payment_status is not PaymentStatus.PENDING:
            return False
        if target is PaymentStatus.PAID:
            order.mark_paid(gateway, transaction_id, at=at)
        else:
            order.mark_failed(gateway, at=at)
        return True

    async def record_checkout(self, order_id, gateway, at) -> bool:
        order = self.orders.get(order_id)
        if order is None or order.payment_status is not PaymentStatus.PENDING:
            return False
        order.start_checkout(gateway, at=at)
        return True

    async def record_refund(self, order_id, *, expected_refund_amount, new_refund_amount, new_status, at) -> bool:
        order = self.orders.get(order_id)
        if (
            order is None
            or order.payment_status not in REFUNDABLE_STATUSES
            or order.refund_amount != expected_refund_amount
            or new_refund_amount > order.final_price
        ):
            return False
        order.refund_amount = new_refund_amount
        order.payment_status = new_status
        order.refunded_at = at
        return True


class InMemoryPaymentTransactionRepository(PaymentTransactionRepository):
    """List-backed ledger; settle/supersede only touch PENDING checkout rows."""

    def __init__(self):
        self.rows: List[PaymentTransaction] = []
        self._seq = 0

    def _checkouts(self, order_id=None, pending_only=False):
        return [
            row for row in self.rows
            if row.kind is TransactionKind.CHECKOUT
            and (order_id is None or row.order_id == order_id)
            and (not pending_only or row.is_pending)
        ]

    async def add(self, transaction):
        self._seq += 1
        stored = copy.deepcopy(transaction)
        stored.id = self._seq
        stored.created_at = stored.created_at or datetime.now(timezone.utc)
        stored.updated_at = stored.updated_at or stored.created_at
        self.rows.append(stored)
        return copy.deepcopy(stored)

    async def get_checkout(self, transaction_ref):
        for row in reversed(self._checkouts()):
            if row.transaction_ref == transaction_ref:
                return copy.deepcopy(row)
        return None

    async def latest_pending_checkout(self, order_id, gateway=None):
        rows = [r for r in self._checkouts(order_id, pending_only=True) if gateway is None or r.gateway == gateway]
        rows.sort(key=lambda r: (r.created_at, r.id))
        return copy.deepcopy(rows[-1]) if rows else None

    async def list_pending_checkouts(self, order_id):
        return [copy.deepcopy(r) for r in self._checkouts(order_id, pending_only=True)]

    async def settle(self, transaction_id, status, *, at, gateway_transaction_id=None, error_message=None) -> bool:
        for row in self.rows:
            if row.id == transaction_id and row.is_pending:
                row.status = status
                row.error_message = error_message
                row.updated_at = at
                if gateway_transaction_id:
                    row.gateway_transaction_id = gateway_transaction_id
                return True
        return False

    async def supersede_pending(self, order_id, *, reason, at, keep_id=None, gateway=None) -> int:
        count = 0
        for row in self._checkouts(order_id, pending_only=True):
            if row.id == keep_id or (gateway and row.gateway != gateway):
                continue
            row.status = TransactionStatus.FAILED
            row.error_message = reason
            row.updated_at = at
            count += 1
        return count

    async def list_stale_checkouts(self, gateway, created_before, limit=100):
        stale = [
            r for r in self._checkouts(pending_only=True)
            if r.gateway == gateway and r.created_at < created_before
        ]
        stale.sort(key=lambda r: (r.created_at, r.id))
        return [copy.deepcopy(r) for r in stale[:limit]]

    async def list_for_order(self, order_id):
        return [copy.deepcopy(r) for r in self.rows if r.order_id == order_id]


class FakeUnitOfWork(AbstractUnitOfWork):
    def __init__(
        self,
        repository: InMemoryOrderRepository,
        transactions: Optional[InMemoryPaymentTransactionRepository] = None,
        *,
        readonly: bool = False,
    ):
        super().__init__(readonly=readonly)
        self._repository = repository
        self._transactions = transactions or InMemoryPaymentTransactionRepository()
        self.commits = 0
        self.rollbacks = 0

    async def __aenter__(self):
        self.order_repository = self._repository
        self.transaction_repository = self._transactions
        return self

    async def commit(self) -> None:
        self.commits += 1
        self._committed = True

    async def rollback(self) -> None:
        self.rollbacks += 1


class FakeGateway:
    """Port implementation that records calls; verification can be delegated to a real client."""

    def __init__(self, provider: str, verifier=None, *, manual_refund: bool = False):
        self.provider = provider
        self.verifier = verifier
        self.manual_refund = manual_refund
        self.checkouts = []
        self.checkout_error = None
        self.refunds = []
        self.closed = 0

    def verify_notification(self, notification) -> None:
        if self.verifier is not None:
            self.verifier.verify_notification(notification)

    async def create_checkout(self, req):
        self.checkouts.append(req)
        if self.checkout_error is not None:
            raise self.checkout_error
        url = f"https://pay.example/{req.transaction_ref}"
        return CheckoutSession(
            gateway=self.provider,
            payment_url=url,
            transaction_ref=req.transaction_ref,
            expires_at=req.created_at + timedelta(minutes=15),
            raw={"payUrl": url},
        )

    async def refund(self, req):
        self.refunds.append(req)
        return GatewayRefund(
            gateway=self.provider,
            refund_ref=None if self.manual_refund else f"rf-{req.order_code}",
            requires_manual_action=self.manual_refund,
        )

    async def aclose(self) -> None:
        self.closed += 1


def build_order(**overrides) -> Order:
    data = dict(
        id=None,
        order_code="ORD0001",
        user_id=7,
        course_id=3,
        original_price=Decimal("500000"),
        discount_amount=Decimal("0"),
        final_price=Decimal("500000"),
        created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
    )
    data.update(overrides)
    return Order(**data)


@pytest.fixture
def order_factory():
    return build_order


@pytest.fixture
def order_repo():
    return InMemoryOrderRepository()


@pytest.fixture
def transaction_repo():
    return InMemoryPaymentTransactionRepository()


@pytest.fixture
def uow_factory(order_repo, transaction_repo):
    def _factory(**kwargs):
        return FakeUnitOfWork(order_repo, transaction_repo, **kwargs)

    return _factory


@pytest.fixture
def gateways():
    from infrastructure.external.payments.momo_client import MoMoClient
    from infrastructure.external.payments.vnpay_client import VNPayClient

    return {
        GatewaySource.VNPAY: FakeGateway(GatewaySource.VNPAY.value, VNPayClient(), manual_refund=True),
        GatewaySource.MOMO: FakeGateway(GatewaySource.MOMO.value, MoMoClient()),
    }


@pytest.fixture
def payment_service(uow_factory, gateways):
    from application.services.payment_service import PaymentService

    return PaymentService(uow_factory=uow_factory, gateway_factory=lambda source: gateways[source])


@pytest.fixture
async def database():
    """Fresh tables on the sqlite test database; pooled connections are dropped afterwards."""
    from infrastructure.database import create_tables, drop_tables, engine

    await create_tables()
    try:
        yield engine
    finally:
        await drop_tables()
        await engine.dispose()


@pytest.fixture
def seed_orders(database):
    from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

    async def _seed(*orders: Order) -> List[Order]:
        async with SQLAlchemyUnitOfWork() as uow:
            return [await uow.order_repository.create(order) for order in orders]

    return _seed
