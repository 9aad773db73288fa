"""Create order core tables

Revision ID: 001_order_core
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

# revision identifiers
revision = '001_order_core'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create order, NDR, notification, timeline and returns tables"""

    # ====================
    # ORDERS TABLE
    # ====================
    op.create_table(
        'orders',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('seller_id', UUID(as_uuid=True), nullable=True),
        sa.Column('customer_name', sa.String(200), nullable=False),
        sa.Column('customer_email', sa.String(255), nullable=False),
        sa.Column('customer_phone', sa.String(20), nullable=True),
        sa.Column('shipping_address', JSONB, server_default='{}', nullable=False),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('shipping_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('status', sa.String(50), server_default='pending', nullable=False),
        sa.Column('payment_status', sa.String(50), server_default='pending', nullable=False),
        sa.Column('tracking_number', sa.String(100), nullable=True),
        sa.Column('courier_partner', sa.String(100), nullable=True),
        sa.Column('delivery_instructions', sa.Text, nullable=True),
        sa.Column('order_source', sa.String(30), server_default='website', nullable=False),
        sa.Column('priority', sa.String(20), server_default='normal', nullable=False),
        sa.Column('delivery_attempts', sa.Integer, server_default='0', nullable=False),
        sa.Column('ndr_count', sa.Integer, server_default='0', nullable=False),
        sa.Column('last_ndr_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_duplicate', sa.Boolean, server_default='false', nullable=False),
        sa.Column('duplicate_of', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('estimated_delivery', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expected_delivery_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer, server_default='1', nullable=False),
    )

    op.create_index('ix_orders_customer_email', 'orders', ['customer_email'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_tracking_number', 'orders', ['tracking_number'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    op.create_index('ix_order_status_created', 'orders', ['status', 'created_at'])
    op.create_index('ix_order_payment_status', 'orders', ['payment_status', 'created_at'])
    op.create_index('ix_order_seller_created', 'orders', ['seller_id', 'created_at'])

    # ====================
    # ORDER ITEMS TABLE
    # ====================
    op.create_table(
        'order_items',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', UUID(as_uuid=True), nullable=False),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('quantity', sa.Integer, server_default='1', nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.CheckConstraint('quantity >= 1', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint('total_price = quantity * unit_price', name='ck_order_items_total_price'),
    )

    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    # ====================
    # ORDER TIMELINE TABLE
    # ====================
    op.create_table(
        'order_timeline',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('event_description', sa.Text, nullable=False),
        sa.Column('event_data', JSONB, nullable=True),
        sa.Column('created_by', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )

    op.create_index('ix_order_timeline_order_created', 'order_timeline', ['order_id', 'created_at'])

    # ====================
    # NDRS TABLE
    # ====================
    op.create_table(
        'ndrs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('ndr_reason', sa.String(255), nullable=False),
        sa.Column('customer_response', sa.Text, nullable=True),
        sa.Column('resolution_status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('next_action', sa.Text, nullable=True),
        sa.Column('auto_resolution_attempted', sa.Boolean, server_default='false', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer, server_default='1', nullable=False),
        sa.CheckConstraint(
            "(resolution_status = 'resolved') = (resolved_at IS NOT NULL)",
            name='ck_ndrs_resolved_at_matches_status',
        ),
    )

    op.create_index('ix_ndrs_order_id', 'ndrs', ['order_id'])
    op.create_index('ix_ndrs_created_at', 'ndrs', ['created_at'])
    op.create_index('ix_ndr_status_attempted', 'ndrs', ['resolution_status', 'auto_resolution_attempted'])

    # ====================
    # ORDER NOTIFICATIONS TABLE
    # ====================
    op.create_table(
        'order_notifications',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('seller_id', UUID(as_uuid=True), nullable=True),
        sa.Column('notification_type', sa.String(20), nullable=False),
        sa.Column('message', sa.Text, nullable=False),
        sa.Column('sent_via', JSONB, nullable=False),
        sa.Column('channel_results', JSONB, nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('sent_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('customer_response', sa.Text, nullable=True),
        sa.Column('responded_at', sa.DateTime(timezone=True), nullable=True),
    )

    op.create_index('ix_order_notifications_order_id', 'order_notifications', ['order_id'])
    op.create_index('ix_order_notifications_sent_at', 'order_notifications', ['sent_at'])

    # ====================
    # RETURN POLICIES TABLE
    # ====================
    op.create_table(
        'return_policies',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('seller_id', UUID(as_uuid=True), nullable=True),
        sa.Column('policy_name', sa.String(100), nullable=False),
        sa.Column('return_window_days', sa.Integer, server_default='7', nullable=False),
        sa.Column('conditions', JSONB, nullable=True),
        sa.Column('auto_approve', sa.Boolean, server_default='false', nullable=False),
        sa.Column('require_qc', sa.Boolean, server_default='true', nullable=False),
        sa.Column('refund_percentage', sa.Numeric(5, 2), server_default='100', nullable=False),
        sa.Column('shipping_charges_refundable', sa.Boolean, server_default='false', nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.CheckConstraint(
            'refund_percentage >= 0 AND refund_percentage <= 100',
            name='ck_return_policies_refund_percentage',
        ),
    )

    # ====================
    # RETURNS TABLE
    # ====================
    op.create_table(
        'returns',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('seller_id', UUID(as_uuid=True), nullable=True),
        sa.Column('return_policy_id', UUID(as_uuid=True), sa.ForeignKey('return_policies.id', ondelete='SET NULL'), nullable=True),
        sa.Column('reason', sa.Text, nullable=False),
        sa.Column('status', sa.String(20), server_default='requested', nullable=False),
        sa.Column('qc_status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('qc_notes', sa.Text, nullable=True),
        sa.Column('refund_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )

    op.create_index('ix_returns_order_id', 'returns', ['order_id'])


def downgrade():
    """Drop order core tables"""
    op.drop_table('returns')
    op.drop_table('return_policies')
    op.drop_table('order_notifications')
    op.drop_table('ndrs')
    op.drop_table('order_timeline')
    op.drop_table('order_items')
    op.drop_table('orders')
