"""create_orders_table

Revision ID: 3b8e5c1d2a47
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3b8e5c1d2a47'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_code', sa.String(length=100), nullable=False, comment='订单编号'),
        sa.Column('user_id', sa.Integer(), nullable=True, comment='用户ID'),
        sa.Column('course_id', sa.Integer(), nullable=True, comment='课程ID'),
        sa.Column('original_price', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='原价'),
        sa.Column('discount_amount', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='折扣金额'),
        sa.Column('final_price', sa.Numeric(precision=15, scale=2), nullable=False, comment='实付金额'),
        sa.Column('refund_amount', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='累计退款金额'),
        sa.Column('payment_status', sa.String(length=32), nullable=False, server_default='PENDING', comment='支付状态: PENDING/PAID/FAILED/REFUNDED/PARTIALLY_REFUNDED'),
        sa.Column('payment_gateway', sa.String(length=20), nullable=True, comment='给出确定结果的网关: VNPay/MoMo'),
        sa.Column('gateway_transaction_id', sa.String(length=100), nullable=True, comment='网关交易号'),
        sa.Column('checkout_gateway', sa.String(length=20), nullable=True, comment='最近一次发起支付的网关'),
        sa.Column('checkout_started_at', sa.DateTime(timezone=True), nullable=True, comment='发起支付时间'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True, comment='支付完成时间'),
        sa.Column('failed_at', sa.DateTime(timezone=True), nullable=True, comment='支付失败时间'),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True, comment='最近一次退款时间'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.PrimaryKeyConstraint('id'),
        comment='课程订单表，支付状态由网关通知驱动'
    )

    op.create_index('ix_orders_id', 'orders', ['id'], unique=False)
    op.create_index('ix_orders_order_code', 'orders', ['order_code'], unique=True)
    op.create_index('ix_orders_user_id', 'orders', ['user_id'], unique=False)
    op.create_index('ix_orders_course_id', 'orders', ['course_id'], unique=False)
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'], unique=False)
    op.create_index('ix_orders_gateway_transaction_id', 'orders', ['gateway_transaction_id'], unique=False)
    op.create_index('ix_orders_created_at', 'orders', ['created_at'], unique=False)
    op.create_index('ix_orders_user_status', 'orders', ['user_id', 'payment_status'], unique=False)
    # 供 VNPay 过期扫描使用
    op.create_index(
        'ix_orders_checkout_sweep',
        'orders',
        ['payment_status', 'checkout_gateway', 'checkout_started_at'],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index('ix_orders_checkout_sweep', table_name='orders')
    op.drop_index('ix_orders_user_status', table_name='orders')
    op.drop_index('ix_orders_created_at', table_name='orders')
    op.drop_index('ix_orders_gateway_transaction_id', table_name='orders')
    op.drop_index('ix_orders_payment_status', table_name='orders')
    op.drop_index('ix_orders_course_id', table_name='orders')
    op.drop_index('ix_orders_user_id', table_name='orders')
    op.drop_index('ix_orders_order_code', table_name='orders')
    op.drop_index('ix_orders_id', table_name='orders')
    op.drop_table('orders')
