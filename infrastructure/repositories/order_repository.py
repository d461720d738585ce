"""
订单仓储实现 - 使用SQLAlchemy实现数据访问

状态写入全部是单条 UPDATE ... WHERE 条件语句，用受影响行数判断是否命中。
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.exceptions import DomainValidationException
from domain.order.entity import Order, PaymentStatus, REFUNDABLE_STATUSES
from domain.order.repository import OrderRepository
from infrastructure.models.order import OrderModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体"""
        return Order(
            id=model.id,
            order_code=model.order_code,
            user_id=model.user_id,
            course_id=model.course_id,
            original_price=Decimal(str(model.original_price)),
            discount_amount=Decimal(str(model.discount_amount)),
            final_price=Decimal(str(model.final_price)),
            payment_status=PaymentStatus(model.payment_status),
            refund_amount=Decimal(str(model.refund_amount)),
            payment_gateway=model.payment_gateway,
            gateway_transaction_id=model.gateway_transaction_id,
            checkout_gateway=model.checkout_gateway,
            checkout_started_at=model.checkout_started_at,
            paid_at=model.paid_at,
            failed_at=model.failed_at,
            refunded_at=model.refunded_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Order) -> OrderModel:
        """将领域实体转换为数据库模型"""
        now = datetime.now(timezone.utc)
        return OrderModel(
            id=entity.id,
            order_code=entity.order_code,
            user_id=entity.user_id,
            course_id=entity.course_id,
            original_price=entity.original_price,
            discount_amount=entity.discount_amount,
            final_price=entity.final_price,
            payment_status=entity.payment_status.value,
            refund_amount=entity.refund_amount,
            payment_gateway=entity.payment_gateway,
            gateway_transaction_id=entity.gateway_transaction_id,
            checkout_gateway=entity.checkout_gateway,
            checkout_started_at=entity.checkout_started_at,
            paid_at=entity.paid_at,
            failed_at=entity.failed_at,
            refunded_at=entity.refunded_at,
            created_at=entity.created_at or now,
            updated_at=entity.updated_at or now,
        )

    async def create(self, order: Order) -> Order:
        """创建订单"""
        try:
            db_order = self._to_model(order)
            self.session.add(db_order)
            await self.session.flush()
            await self.session.refresh(db_order)
            return self._to_entity(db_order)
        except IntegrityError as e:
            await self.session.rollback()
            if "order_code" in str(e).lower():
                logger.warning("create_order_conflict", order_code=order.order_code)
                raise DomainValidationException(
                    f"订单编号已存在: {order.order_code}", field="order_code"
                )
            raise

    async def get_by_id(self, order_id: int) -> Optional[Order]:
        """根据ID获取订单"""
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .execution_options(populate_existing=True)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def get_by_code(self, order_code: str) -> Optional[Order]:
        """根据订单编号获取订单"""
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.order_code == order_code)
            .execution_options(populate_existing=True)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def _conditional_update(self, stmt) -> bool:
        result = await self.session.execute(
            stmt.execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def transition_from_pending(
        self,
        order_id: int,
        target: PaymentStatus,
        *,
        gateway: str,
        transaction_id: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> bool:
        """PENDING -> PAID/FAILED，单条条件更新"""
        if target not in (PaymentStatus.PAID, PaymentStatus.FAILED):
            raise DomainValidationException(
                f"非法的目标状态: {target.value}", field="payment_status"
            )
        values = {
            "payment_status": target.value,
            "payment_gateway": gateway,
            "updated_at": at,
        }
        if target is PaymentStatus.PAID:
            values["paid_at"] = at
            if transaction_id:
                values["gateway_transaction_id"] = transaction_id
        else:
            values["failed_at"] = at

        won = await self._conditional_update(
            update(OrderModel)
            .where(
                OrderModel.id == order_id,
                OrderModel.payment_status == PaymentStatus.PENDING.value,
            )
            .values(**values)
        )
        logger.info(
            "order_transition",
            order_id=order_id,
            target=target.value,
            gateway=gateway,
            applied=won,
        )
        return won

    async def record_checkout(self, order_id: int, gateway: str, at: datetime) -> bool:
        """记录发起支付（仅 PENDING 订单）"""
        return await self._conditional_update(
            update(OrderModel)
            .where(
                OrderModel.id == order_id,
                OrderModel.payment_status == PaymentStatus.PENDING.value,
            )
            .values(checkout_gateway=gateway, checkout_started_at=at, updated_at=at)
        )

    async def record_refund(
        self,
        order_id: int,
        *,
        expected_refund_amount: Decimal,
        new_refund_amount: Decimal,
        new_status: PaymentStatus,
        at: datetime,
    ) -> bool:
        """以原累计退款额为条件写入，保证 refund_amount 只增不减"""
        won = await self._conditional_update(
            update(OrderModel)
            .where(
                OrderModel.id == order_id,
                OrderModel.payment_status.in_([s.value for s in REFUNDABLE_STATUSES]),
                OrderModel.refund_amount == expected_refund_amount,
                OrderModel.final_price >= new_refund_amount,
            )
            .values(
                refund_amount=new_refund_amount,
                payment_status=new_status.value,
                refunded_at=at,
                updated_at=at,
            )
        )
        logger.info(
            "order_refund_recorded",
            order_id=order_id,
            refund_amount=str(new_refund_amount),
            status=new_status.value,
            applied=won,
        )
        return won
