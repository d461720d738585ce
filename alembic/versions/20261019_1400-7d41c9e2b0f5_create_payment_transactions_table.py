"""create_payment_transactions_table

Revision ID: 7d41c9e2b0f5
Revises: 3b8e5c1d2a47
Create Date: 2026-10-19 14:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '7d41c9e2b0f5'
down_revision: Union[str, None] = '3b8e5c1d2a47'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'payment_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False, comment='订单ID'),
        sa.Column('kind', sa.String(length=20), nullable=False, comment='流水类型: CHECKOUT/NOTIFICATION'),
        sa.Column('gateway', sa.String(length=20), nullable=False, comment='网关: VNPay/MoMo'),
        sa.Column('transaction_ref', sa.String(length=120), nullable=True, comment='本系统交易号 orderCode-Gateway-毫秒时间戳'),
        sa.Column('gateway_transaction_id', sa.String(length=100), nullable=True, comment='网关交易号'),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=True, comment='金额'),
        sa.Column('currency', sa.String(length=8), nullable=False, server_default='VND', comment='币种'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING', comment='状态: PENDING/SUCCESS/FAILED'),
        sa.Column('result_code', sa.String(length=32), nullable=True, comment='网关结果码'),
        sa.Column('delivery_mode', sa.String(length=16), nullable=True, comment='通知方式: redirect/webhook'),
        sa.Column('applied', sa.Boolean(), nullable=False, server_default=sa.false(), comment='该通知是否改变了订单状态'),
        sa.Column('payment_url', sa.Text(), nullable=True, comment='支付链接'),
        sa.Column('deeplink', sa.Text(), nullable=True, comment='MoMo App 深链'),
        sa.Column('qr_code_url', sa.Text(), nullable=True, comment='MoMo 二维码链接'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True, comment='支付链接过期时间'),
        sa.Column('gateway_response', sa.JSON(), nullable=True, comment='网关原始参数/响应'),
        sa.Column('error_message', sa.Text(), nullable=True, comment='失败原因'),
        sa.Column('client_ip', sa.String(length=64), nullable=True, comment='发起支付的客户端IP'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        comment='支付流水：每次发起支付与每次网关通知各一行'
    )

    op.create_index('ix_payment_transactions_id', 'payment_transactions', ['id'], unique=False)
    op.create_index('ix_payment_transactions_transaction_ref', 'payment_transactions', ['transaction_ref'], unique=False)
    op.create_index(
        'ix_payment_transactions_order_status',
        'payment_transactions',
        ['order_id', 'kind', 'status'],
        unique=False,
    )
    # 供 VNPay 过期扫描使用
    op.create_index(
        'ix_payment_transactions_sweep',
        'payment_transactions',
        ['kind', 'gateway', 'status', 'created_at'],
        unique=False,
    )

    # 过期扫描改为基于支付尝试
    op.drop_index('ix_orders_checkout_sweep', table_name='orders')


def downgrade() -> None:
    op.create_index(
        'ix_orders_checkout_sweep',
        'orders',
        ['payment_status', 'checkout_gateway', 'checkout_started_at'],
        unique=False,
    )
    op.drop_index('ix_payment_transactions_sweep', table_name='payment_transactions')
    op.drop_index('ix_payment_transactions_order_status', table_name='payment_transactions')
    op.drop_index('ix_payment_transactions_transaction_ref', table_name='payment_transactions')
    op.drop_index('ix_payment_transactions_id', table_name='payment_transactions')
    op.drop_table('payment_transactions')
