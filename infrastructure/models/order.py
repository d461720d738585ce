"""
订单数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Index
from datetime import datetime, timezone

from .base import Base


class OrderModel(Base):
    """
    订单数据库模型

    只映射与支付对账相关的列；业务规则在 domain.order.entity.Order 中
    """
    __tablename__ = "orders"

    # 主键
    id = Column(Integer, primary_key=True, index=True)

    # 订单信息
    order_code = Column(String(100), unique=True, index=True, nullable=False, comment="订单编号")
    user_id = Column(Integer, nullable=True, index=True, comment="用户ID")
    course_id = Column(Integer, nullable=True, index=True, comment="课程ID")

    # 金额信息（VND 无小数，保留 2 位以兼容其他币种）
    original_price = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="原价")
    discount_amount = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="折扣金额")
    final_price = Column(Numeric(precision=15, scale=2), nullable=False, comment="实付金额")
    refund_amount = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="累计退款金额")

    # 状态
    payment_status = Column(
        String(32),
        nullable=False,
        default="PENDING",
        index=True,
        comment="支付状态: PENDING/PAID/FAILED/REFUNDED/PARTIALLY_REFUNDED"
    )

    # 网关信息
    payment_gateway = Column(String(20), nullable=True, comment="给出确定结果的网关: VNPay/MoMo")
    gateway_transaction_id = Column(String(100), nullable=True, index=True, comment="网关交易号")
    checkout_gateway = Column(String(20), nullable=True, comment="最近一次发起支付的网关")

    # 时间戳
    checkout_started_at = Column(DateTime(timezone=True), nullable=True, comment="发起支付时间")
    paid_at = Column(DateTime(timezone=True), nullable=True, comment="支付完成时间")
    failed_at = Column(DateTime(timezone=True), nullable=True, comment="支付失败时间")
    refunded_at = Column(DateTime(timezone=True), nullable=True, comment="最近一次退款时间")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    # 索引
    __table_args__ = (
        Index("ix_orders_user_status", "user_id", "payment_status"),
    )

    def __repr__(self):
        return (
            f"<OrderModel(id={self.id}, order_code='{self.order_code}', "
            f"final_price={self.final_price}, payment_status='{self.payment_status}')>"
        )
