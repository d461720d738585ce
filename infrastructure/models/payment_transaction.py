"""
支付流水数据库模型
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, JSON, Numeric, String, Text
from datetime import datetime, timezone

from .base import Base


class PaymentTransactionModel(Base):
    """
    支付流水数据库模型

    kind=CHECKOUT 为支付尝试，kind=NOTIFICATION 为网关通知原文
    """
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        comment="订单ID",
    )

    kind = Column(String(20), nullable=False, comment="流水类型: CHECKOUT/NOTIFICATION")
    gateway = Column(String(20), nullable=False, comment="网关: VNPay/MoMo")
    transaction_ref = Column(String(120), nullable=True, index=True, comment="本系统交易号 orderCode-Gateway-毫秒时间戳")
    gateway_transaction_id = Column(String(100), nullable=True, comment="网关交易号")

    amount = Column(Numeric(precision=15, scale=2), nullable=True, comment="金额")
    currency = Column(String(8), nullable=False, default="VND", comment="币种")
    status = Column(String(16), nullable=False, default="PENDING", comment="状态: PENDING/SUCCESS/FAILED")

    result_code = Column(String(32), nullable=True, comment="网关结果码")
    delivery_mode = Column(String(16), nullable=True, comment="通知方式: redirect/webhook")
    applied = Column(Boolean, nullable=False, default=False, comment="该通知是否改变了订单状态")

    payment_url = Column(Text, nullable=True, comment="支付链接")
    deeplink = Column(Text, nullable=True, comment="MoMo App 深链")
    qr_code_url = Column(Text, nullable=True, comment="MoMo 二维码链接")
    expires_at = Column(DateTime(timezone=True), nullable=True, comment="支付链接过期时间")

    gateway_response = Column(JSON, nullable=True, comment="网关原始参数/响应")
    error_message = Column(Text, nullable=True, comment="失败原因")
    client_ip = Column(String(64), nullable=True, comment="发起支付的客户端IP")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    __table_args__ = (
        Index("ix_payment_transactions_order_status", "order_id", "kind", "status"),
        Index("ix_payment_transactions_sweep", "kind", "gateway", "status", "created_at"),
    )

    def __repr__(self):
        return (
            f"<PaymentTransactionModel(id={self.id}, order_id={self.order_id}, kind='{self.kind}', "
            f"transaction_ref='{self.transaction_ref}', status='{self.status}')>"
        )
