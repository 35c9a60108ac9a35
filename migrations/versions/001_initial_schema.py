"""Initial schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ORDER_STATUSES = (
    "'pending', 'paid', 'committed', 'collected', 'in_transit', 'delivered', "
    "'completed', 'cancelled', 'expired', 'refunded', 'disputed'"
)


def upgrade() -> None:
    """Create initial database schema"""

    # Заказы (одна запись на продавца)
    op.create_table(
        'orders',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('buyer_id', sa.String(64), nullable=False),
        sa.Column('seller_id', sa.String(64), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('book_price_subtotal', sa.Integer(), nullable=False),
        sa.Column('delivery_fee', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('platform_commission', sa.Integer(), nullable=False),
        sa.Column('seller_amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='ZAR'),
        sa.Column('payment_reference', sa.String(100), nullable=False),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('commit_deadline', sa.DateTime(), nullable=True),
        sa.Column('seller_committed', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('committed_at', sa.DateTime(), nullable=True),
        sa.Column('commit_reminder_sent_at', sa.DateTime(), nullable=True),
        sa.Column('delivery_address', sa.JSON(), nullable=False),
        sa.Column('pickup_address', sa.JSON(), nullable=False),
        sa.Column('courier_name', sa.String(100), nullable=True),
        sa.Column('courier_service', sa.String(200), nullable=True),
        sa.Column('tracking_number', sa.String(100), nullable=True),
        sa.Column('collected_at', sa.DateTime(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('expired_at', sa.DateTime(), nullable=True),
        sa.Column('seller_recipient_code', sa.String(100), nullable=False),
        sa.Column('payout_held', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('payout_completed_at', sa.DateTime(), nullable=True),
        sa.Column('refund_status', sa.String(20), nullable=False, server_default='none'),
        sa.Column('refund_reference', sa.String(100), nullable=True),
        sa.Column('refund_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('refund_error', sa.Text(), nullable=True),
        sa.Column('refunded_at', sa.DateTime(), nullable=True),
        sa.Column('decline_reason', sa.Text(), nullable=True),
        sa.Column('dispute_reason', sa.Text(), nullable=True),
        sa.Column('status_before_dispute', sa.String(20), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_reference'),
        sa.CheckConstraint(f"status IN ({ORDER_STATUSES})", name='chk_orders_status'),
        sa.CheckConstraint(
            'seller_amount + platform_commission = book_price_subtotal',
            name='chk_orders_commission_split',
        ),
        sa.CheckConstraint('amount = book_price_subtotal + delivery_fee', name='chk_orders_amount'),
        sa.CheckConstraint('book_price_subtotal >= 0', name='chk_orders_subtotal'),
        sa.CheckConstraint('delivery_fee >= 0', name='chk_orders_delivery_fee'),
    )

    op.create_index('idx_orders_status', 'orders', ['status'], unique=False)
    op.create_index('idx_orders_seller_status', 'orders', ['seller_id', 'status'], unique=False)
    op.create_index('idx_orders_buyer', 'orders', ['buyer_id'], unique=False)
    op.create_index('idx_orders_commit_deadline', 'orders', ['status', 'commit_deadline'], unique=False)

    # Позиции заказа
    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(36), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.String(64), nullable=False),
        sa.Column('title', sa.String(300), nullable=False, server_default=''),
        sa.Column('unit_price', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.CheckConstraint('unit_price >= 0', name='chk_order_items_price'),
        sa.CheckConstraint('quantity > 0', name='chk_order_items_quantity'),
    )
    op.create_index('idx_order_items_order', 'order_items', ['order_id'], unique=False)

    # История статусов
    op.create_table(
        'order_status_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(36), nullable=False),
        sa.Column('old_status', sa.String(20), nullable=True),
        sa.Column('new_status', sa.String(20), nullable=False),
        sa.Column('event', sa.String(50), nullable=False),
        sa.Column('actor_id', sa.String(64), nullable=True),
        sa.Column('changed_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
    )
    op.create_index('idx_status_history_order', 'order_status_history', ['order_id'], unique=False)
    op.create_index('idx_status_history_changed_at', 'order_status_history', ['changed_at'], unique=False)

    # Выплаты продавцам
    op.create_table(
        'payout_transactions',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('order_id', sa.String(36), nullable=False),
        sa.Column('seller_id', sa.String(64), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('transfer_reference', sa.String(100), nullable=True),
        sa.Column('transfer_code', sa.String(100), nullable=True),
        sa.Column('requires_review', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('claimed_at', sa.DateTime(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name='chk_payouts_status',
        ),
        sa.CheckConstraint('amount >= 0', name='chk_payouts_amount'),
        sa.CheckConstraint('retry_count >= 0', name='chk_payouts_retry_count'),
    )
    op.create_index('idx_payouts_status', 'payout_transactions', ['status'], unique=False)
    op.create_index('idx_payouts_seller', 'payout_transactions', ['seller_id'], unique=False)
    op.create_index('idx_payouts_status_claimed', 'payout_transactions', ['status', 'claimed_at'], unique=False)

    # Объявления
    op.create_table(
        'listings',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('seller_id', sa.String(64), nullable=False),
        sa.Column('title', sa.String(300), nullable=False, server_default=''),
        sa.Column('price', sa.Integer(), nullable=False),
        sa.Column('available', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('sold', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_listings_seller', 'listings', ['seller_id'], unique=False)


def downgrade() -> None:
    """Drop all tables"""
    op.drop_index('idx_listings_seller', table_name='listings')
    op.drop_table('listings')

    op.drop_index('idx_payouts_status_claimed', table_name='payout_transactions')
    op.drop_index('idx_payouts_seller', table_name='payout_transactions')
    op.drop_index('idx_payouts_status', table_name='payout_transactions')
    op.drop_table('payout_transactions')

    op.drop_index('idx_status_history_changed_at', table_name='order_status_history')
    op.drop_index('idx_status_history_order', table_name='order_status_history')
    op.drop_table('order_status_history')

    op.drop_index('idx_order_items_order', table_name='order_items')
    op.drop_table('order_items')

    op.drop_index('idx_orders_commit_deadline', table_name='orders')
    op.drop_index('idx_orders_buyer', table_name='orders')
    op.drop_index('idx_orders_seller_status', table_name='orders')
    op.drop_index('idx_orders_status', table_name='orders')
    op.drop_table('orders')
