"""
支付流水仓储实现

终结与作废都是单条 UPDATE ... WHERE status = 'PENDING'，用受影响行数判断是否命中。
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.payment.repository import PaymentTransactionRepository
from domain.payment.transaction import PaymentTransaction, TransactionKind, TransactionStatus
from infrastructure.models.payment_transaction import PaymentTransactionModel
from core.logging_config import get_logger


logger = get_logger(__name__)

_CHECKOUT = TransactionKind.CHECKOUT.value
_PENDING = TransactionStatus.PENDING.value


class SQLAlchemyPaymentTransactionRepository(PaymentTransactionRepository):
    """支付流水仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentTransactionModel) -> PaymentTransaction:
        return PaymentTransaction(
            id=model.id,
            order_id=model.order_id,
            gateway=model.gateway,
            kind=TransactionKind(model.kind),
            transaction_ref=model.transaction_ref,
            amount=Decimal(str(model.amount)) if model.amount is not None else None,
            currency=model.currency,
            status=TransactionStatus(model.status),
            gateway_transaction_id=model.gateway_transaction_id,
            result_code=model.result_code,
            delivery_mode=model.delivery_mode,
            applied=bool(model.applied),
            payment_url=model.payment_url,
            deeplink=model.deeplink,
            qr_code_url=model.qr_code_url,
            expires_at=model.expires_at,
            gateway_response=model.gateway_response,
            error_message=model.error_message,
            client_ip=model.client_ip,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: PaymentTransaction) -> PaymentTransactionModel:
        now = datetime.now(timezone.utc)
        return PaymentTransactionModel(
            id=entity.id,
            order_id=entity.order_id,
            gateway=entity.gateway,
            kind=entity.kind.value,
            transaction_ref=entity.transaction_ref,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            gateway_transaction_id=entity.gateway_transaction_id,
            result_code=entity.result_code,
            delivery_mode=entity.delivery_mode,
            applied=entity.applied,
            payment_url=entity.payment_url,
            deeplink=entity.deeplink,
            qr_code_url=entity.qr_code_url,
            expires_at=entity.expires_at,
            gateway_response=entity.gateway_response,
            error_message=entity.error_message,
            client_ip=entity.client_ip,
            created_at=entity.created_at or now,
            updated_at=entity.updated_at or now,
        )

    async def _first(self, stmt) -> Optional[PaymentTransaction]:
        result = await self.session.execute(stmt.execution_options(populate_existing=True).limit(1))
        model = result.scalars().first()
        return self._to_entity(model) if model else None

    async def _all(self, stmt) -> List[PaymentTransaction]:
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return [self._to_entity(m) for m in result.scalars().all()]

    async def add(self, transaction: PaymentTransaction) -> PaymentTransaction:
        """写入流水"""
        db_txn = self._to_model(transaction)
        self.session.add(db_txn)
        await self.session.flush()
        await self.session.refresh(db_txn)
        logger.info(
            "payment_transaction_recorded",
            order_id=db_txn.order_id,
            kind=db_txn.kind,
            gateway=db_txn.gateway,
            transaction_ref=db_txn.transaction_ref,
            status=db_txn.status,
        )
        return self._to_entity(db_txn)

    async def get_checkout(self, transaction_ref: str) -> Optional[PaymentTransaction]:
        return await self._first(
            select(PaymentTransactionModel)
            .where(
                PaymentTransactionModel.kind == _CHECKOUT,
                PaymentTransactionModel.transaction_ref == transaction_ref,
            )
            .order_by(PaymentTransactionModel.id.desc())
        )

    async def latest_pending_checkout(
        self,
        order_id: int,
        gateway: Optional[str] = None,
    ) -> Optional[PaymentTransaction]:
        stmt = select(PaymentTransactionModel).where(
            PaymentTransactionModel.order_id == order_id,
            PaymentTransactionModel.kind == _CHECKOUT,
            PaymentTransactionModel.status == _PENDING,
        )
        if gateway:
            stmt = stmt.where(PaymentTransactionModel.gateway == gateway)
        return await self._first(
            stmt.order_by(PaymentTransactionModel.created_at.desc(), PaymentTransactionModel.id.desc())
        )

    async def list_pending_checkouts(self, order_id: int) -> List[PaymentTransaction]:
        return await self._all(
            select(PaymentTransactionModel)
            .where(
                PaymentTransactionModel.order_id == order_id,
                PaymentTransactionModel.kind == _CHECKOUT,
                PaymentTransactionModel.status == _PENDING,
            )
            .order_by(PaymentTransactionModel.id.asc())
        )

    async def settle(
        self,
        transaction_id: int,
        status: TransactionStatus,
        *,
        at: datetime,
        gateway_transaction_id: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        """PENDING -> SUCCESS/FAILED，单条条件更新"""
        values = {"status": status.value, "error_message": error_message, "updated_at": at}
        if gateway_transaction_id:
            values["gateway_transaction_id"] = gateway_transaction_id
        result = await self.session.execute(
            update(PaymentTransactionModel)
            .where(
                PaymentTransactionModel.id == transaction_id,
                PaymentTransactionModel.status == _PENDING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        won = result.rowcount == 1
        logger.info("payment_transaction_settled", transaction_id=transaction_id, status=status.value, applied=won)
        return won

    async def supersede_pending(
        self,
        order_id: int,
        *,
        reason: str,
        at: datetime,
        keep_id: Optional[int] = None,
        gateway: Optional[str] = None,
    ) -> int:
        """作废订单其余 PENDING 支付尝试"""
        stmt = update(PaymentTransactionModel).where(
            PaymentTransactionModel.order_id == order_id,
            PaymentTransactionModel.kind == _CHECKOUT,
            PaymentTransactionModel.status == _PENDING,
        )
        if keep_id is not None:
            stmt = stmt.where(PaymentTransactionModel.id != keep_id)
        if gateway:
            stmt = stmt.where(PaymentTransactionModel.gateway == gateway)
        result = await self.session.execute(
            stmt.values(status=TransactionStatus.FAILED.value, error_message=reason, updated_at=at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info("payment_transactions_superseded", order_id=order_id, count=result.rowcount, reason=reason)
        return result.rowcount

    async def list_stale_checkouts(
        self,
        gateway: str,
        created_before: datetime,
        limit: int = 100,
    ) -> List[PaymentTransaction]:
        """列出超时仍未终结的支付尝试"""
        return await self._all(
            select(PaymentTransactionModel)
            .where(
                PaymentTransactionModel.kind == _CHECKOUT,
                PaymentTransactionModel.gateway == gateway,
                PaymentTransactionModel.status == _PENDING,
                PaymentTransactionModel.created_at < created_before,
            )
            .order_by(PaymentTransactionModel.created_at.asc(), PaymentTransactionModel.id.asc())
            .limit(limit)
        )

    async def list_for_order(self, order_id: int) -> List[PaymentTransaction]:
        return await self._all(
            select(PaymentTransactionModel)
            .where(PaymentTransactionModel.order_id == order_id)
            .order_by(PaymentTransactionModel.id.asc())
        )
