"""Create marketplace order lifecycle schema

Revision ID: 001_marketplace_schema
Revises:
Create Date: 2026-10-19

Tables:
- users, addresses
- shops, shop_products, product_price_options
- delivery_boys
- orders, order_items, order_status_history
- return_requests, return_request_history

Constraints worth knowing about:
- shop_products.stock_quantity can never go negative
- only one active (non-terminal) return request per order item
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB


# revision identifiers, used by Alembic.
revision: str = '001_marketplace_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ACTIVE_RETURN_CLAUSE = "status IN ('REQUESTED', 'APPROVED', 'PICKED_UP', 'RECEIVED')"


def _id_column() -> sa.Column:
    return sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()'))


def _created_at() -> sa.Column:
    return sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False)


def _updated_at() -> sa.Column:
    return sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False)


def upgrade() -> None:
    """Create all marketplace tables."""

    # ==================== users ====================
    op.create_table(
        'users',
        _id_column(),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('phone', sa.String(20), unique=True, nullable=False),
        sa.Column('email', sa.String(255), unique=True, nullable=True),
        sa.Column('role', sa.String(20), server_default='CUSTOMER', nullable=False,
                  comment='CUSTOMER, SHOPKEEPER, DELIVERY_BOY, ADMIN'),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        _created_at(),
        _updated_at(),
    )
    op.create_index('ix_users_phone', 'users', ['phone'])
    op.create_index('ix_users_role', 'users', ['role'])

    # ==================== addresses ====================
    op.create_table(
        'addresses',
        _id_column(),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('label', sa.String(50), server_default='HOME', nullable=False),
        sa.Column('address_line1', sa.String(255), nullable=False),
        sa.Column('address_line2', sa.String(255), nullable=True),
        sa.Column('landmark', sa.String(255), nullable=True),
        sa.Column('city', sa.String(100), nullable=False),
        sa.Column('state', sa.String(100), nullable=False),
        sa.Column('pincode', sa.String(10), nullable=False),
        sa.Column('latitude', sa.Float, nullable=True),
        sa.Column('longitude', sa.Float, nullable=True),
        sa.Column('is_default', sa.Boolean, server_default='false', nullable=False),
        _created_at(),
    )
    op.create_index('ix_addresses_user_id', 'addresses', ['user_id'])

    # ==================== shops ====================
    op.create_table(
        'shops',
        _id_column(),
        sa.Column('owner_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('pincode', sa.String(10), nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        _created_at(),
    )
    op.create_index('ix_shops_owner_id', 'shops', ['owner_id'])

    op.create_table(
        'shop_products',
        _id_column(),
        sa.Column('shop_id', UUID(as_uuid=True), sa.ForeignKey('shops.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('brand', sa.String(100), nullable=True),
        sa.Column('image_url', sa.String(500), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('weight', sa.Numeric(10, 3), nullable=True),
        sa.Column('unit', sa.String(20), nullable=True, comment='g, kg, ml, l, pcs'),
        sa.Column('stock_quantity', sa.Integer, server_default='0', nullable=False),
        sa.Column('is_returnable', sa.Boolean, server_default='true', nullable=False),
        sa.Column('return_period_days', sa.Integer, nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint('stock_quantity >= 0', name='ck_shop_product_stock_non_negative'),
    )
    op.create_index('ix_shop_products_shop_id', 'shop_products', ['shop_id'])

    op.create_table(
        'product_price_options',
        _id_column(),
        sa.Column('shop_product_id', UUID(as_uuid=True),
                  sa.ForeignKey('shop_products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('weight', sa.Numeric(10, 3), nullable=False),
        sa.Column('unit', sa.String(20), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('mrp', sa.Numeric(10, 2), nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
    )
    op.create_index('ix_product_price_options_shop_product_id', 'product_price_options', ['shop_product_id'])

    # ==================== delivery_boys ====================
    op.create_table(
        'delivery_boys',
        _id_column(),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'),
                  unique=True, nullable=False),
        sa.Column('shop_id', UUID(as_uuid=True), sa.ForeignKey('shops.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('vehicle_type', sa.String(50), server_default='BIKE', nullable=False),
        sa.Column('vehicle_number', sa.String(30), unique=True, nullable=False),
        sa.Column('license_number', sa.String(50), unique=True, nullable=False),
        sa.Column('delivery_radius_km', sa.Integer, server_default='5', nullable=False),
        sa.Column('is_available', sa.Boolean, server_default='true', nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        sa.Column('current_latitude', sa.Float, nullable=True),
        sa.Column('current_longitude', sa.Float, nullable=True),
        sa.Column('location_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('total_deliveries', sa.Integer, server_default='0', nullable=False),
        _created_at(),
    )
    op.create_index('ix_delivery_boys_shop_id', 'delivery_boys', ['shop_id'])
    op.create_index('ix_delivery_boys_is_available', 'delivery_boys', ['is_available'])

    # ==================== orders ====================
    op.create_table(
        'orders',
        _id_column(),
        sa.Column('order_number', sa.String(30), unique=True, nullable=False),
        sa.Column('customer_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('shop_id', UUID(as_uuid=True), sa.ForeignKey('shops.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('status', sa.String(50), server_default='PENDING', nullable=False,
                  comment='PENDING, CONFIRMED, PREPARING, READY, SHIPPED, DELIVERED, CANCELLED'),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('delivery_fee', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_items', sa.Integer, nullable=False),
        sa.Column('payment_method', sa.String(20), server_default='COD', nullable=False),
        sa.Column('payment_status', sa.String(20), server_default='PENDING', nullable=False),
        sa.Column('delivery_address', JSONB, nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('delivery_otp', sa.String(10), nullable=False),
        sa.Column('delivery_otp_attempts', sa.Integer, server_default='0', nullable=False),
        sa.Column('delivery_boy_id', UUID(as_uuid=True),
                  sa.ForeignKey('delivery_boys.id', ondelete='SET NULL'), nullable=True),
        sa.Column('auto_assigned', sa.Boolean, server_default='false', nullable=False),
        sa.Column('cancel_reason', sa.Text, nullable=True),
        sa.Column('cancelled_by', sa.String(20), nullable=True),
        _created_at(),
        _updated_at(),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rider_assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_order_status_created', 'orders', ['status', 'created_at'])
    op.create_index('ix_order_customer_created', 'orders', ['customer_id', 'created_at'])
    op.create_index('ix_order_shop_status', 'orders', ['shop_id', 'status'])
    op.create_index('ix_order_rider_status', 'orders', ['delivery_boy_id', 'status'])

    op.create_table(
        'order_items',
        _id_column(),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('shop_product_id', UUID(as_uuid=True),
                  sa.ForeignKey('shop_products.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('price_option_id', UUID(as_uuid=True),
                  sa.ForeignKey('product_price_options.id', ondelete='SET NULL'), nullable=True),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('product_brand', sa.String(100), nullable=True),
        sa.Column('product_image', sa.String(500), nullable=True),
        sa.Column('weight', sa.Numeric(10, 3), nullable=True),
        sa.Column('unit', sa.String(20), nullable=True),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('total_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('is_returnable', sa.Boolean, server_default='true', nullable=False),
        sa.Column('return_period_days', sa.Integer, nullable=True),
        _created_at(),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'order_status_history',
        _id_column(),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('from_status', sa.String(50), nullable=True),
        sa.Column('to_status', sa.String(50), nullable=False),
        sa.Column('changed_by', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('actor_role', sa.String(20), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        _created_at(),
    )
    op.create_index('ix_order_status_history_order_id', 'order_status_history', ['order_id'])

    # ==================== returns ====================
    op.create_table(
        'return_requests',
        _id_column(),
        sa.Column('order_item_id', UUID(as_uuid=True),
                  sa.ForeignKey('order_items.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('customer_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('shop_id', UUID(as_uuid=True), sa.ForeignKey('shops.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('status', sa.String(20), server_default='REQUESTED', nullable=False,
                  comment='REQUESTED, APPROVED, REJECTED, PICKED_UP, RECEIVED, REFUNDED'),
        sa.Column('reason', sa.Text, nullable=False),
        sa.Column('refund_amount', sa.Numeric(12, 2), nullable=False),
        _created_at(),
        _updated_at(),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_return_requests_order_item_id', 'return_requests', ['order_item_id'])
    op.create_index('ix_return_requests_customer_id', 'return_requests', ['customer_id'])
    op.create_index('ix_return_requests_shop_id', 'return_requests', ['shop_id'])
    op.create_index('ix_return_requests_status', 'return_requests', ['status'])
    op.create_index(
        'uq_return_active_per_item',
        'return_requests',
        ['order_item_id'],
        unique=True,
        postgresql_where=sa.text(ACTIVE_RETURN_CLAUSE),
    )

    op.create_table(
        'return_request_history',
        _id_column(),
        sa.Column('return_request_id', UUID(as_uuid=True),
                  sa.ForeignKey('return_requests.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('changed_by', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('actor_role', sa.String(20), nullable=True),
        sa.Column('note', sa.Text, nullable=True),
        _created_at(),
    )
    op.create_index('ix_return_request_history_return_request_id', 'return_request_history', ['return_request_id'])


def downgrade() -> None:
    """Drop all marketplace tables."""
    op.drop_table('return_request_history')
    op.drop_table('return_requests')
    op.drop_table('order_status_history')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('delivery_boys')
    op.drop_table('product_price_options')
    op.drop_table('shop_products')
    op.drop_table('shops')
    op.drop_table('addresses')
    op.drop_table('users')
