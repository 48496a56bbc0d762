"""
Alembic migration: initial storefront order schema.

Creates the account, catalog and cart tables the order flow reads, the
orders, line items, status history and refunds tables, the append-only
audit events table, the enum types and the order number sequence.

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENUM_TYPES: dict[str, tuple[str, ...]] = {
    'user_role': ('customer', 'seller', 'admin'),
    'product_status': ('draft', 'active', 'inactive', 'out_of_stock'),
    'payment_method': ('mpesa', 'card', 'bank_transfer', 'cash_on_delivery'),
    'payment_status': (
        'pending',
        'processing',
        'completed',
        'failed',
        'refunded',
        'partially_refunded',
    ),
    'order_status': (
        'pending',
        'confirmed',
        'processing',
        'shipped',
        'delivered',
        'cancelled',
        'refunded',
    ),
    'shipping_method': ('standard', 'express', 'overnight', 'pickup'),
    'order_priority': ('low', 'normal', 'high', 'urgent'),
    'order_source': ('web', 'mobile', 'admin'),
    'refund_status': ('pending', 'approved', 'rejected'),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUM_TYPES[name], name=name, create_type=False)


def _id_column() -> sa.Column:
    return sa.Column(
        'id',
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        nullable=False,
        comment='Unique identifier for the record',
    )


def _created_at() -> sa.Column:
    return sa.Column(
        'created_at',
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text('now()'),
        comment='Timestamp when record was created',
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        'updated_at',
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text('now()'),
        comment='Timestamp when record was last updated',
    )


def _money(name: str, comment: str, default: bool = True) -> sa.Column:
    return sa.Column(
        name,
        sa.Numeric(precision=12, scale=2),
        nullable=False,
        server_default=sa.text('0') if default else None,
        comment=comment,
    )


def upgrade() -> None:
    """
    Create the order lifecycle schema.
    """
    for name, values in ENUM_TYPES.items():
        quoted = ', '.join(f"'{value}'" for value in values)
        op.execute(f"CREATE TYPE {name} AS ENUM ({quoted})")

    op.execute("CREATE SEQUENCE order_number_seq START 1")

    # Accounts
    op.create_table(
        'users',
        _id_column(),
        sa.Column('email', sa.String(255), nullable=False, unique=True, comment='User email address'),
        sa.Column('name', sa.String(200), nullable=False, comment='Display name'),
        sa.Column(
            'role',
            _enum('user_role'),
            nullable=False,
            server_default=sa.text("'customer'"),
            comment='Access role',
        ),
        sa.Column(
            'is_active',
            sa.Boolean(),
            nullable=False,
            server_default=sa.text('true'),
            comment='Account active status',
        ),
        sa.Column(
            'locked_until',
            sa.DateTime(timezone=True),
            nullable=True,
            comment='Account lock expiry',
        ),
        _created_at(),
        _updated_at(),
        comment='Storefront user accounts',
    )
    op.create_index('ix_users_role_active', 'users', ['role', 'is_active'])

    # Catalog
    op.create_table(
        'products',
        _id_column(),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('sku', sa.String(100), nullable=True, unique=True),
        sa.Column('price', sa.Numeric(precision=12, scale=2), nullable=False, comment='Base unit price'),
        sa.Column(
            'discount',
            sa.Numeric(precision=5, scale=2),
            nullable=False,
            server_default=sa.text('0'),
            comment='Percentage discount',
        ),
        sa.Column('stock', sa.Integer(), nullable=False, server_default=sa.text('0'), comment='Units in stock'),
        sa.Column('status', _enum('product_status'), nullable=False, server_default=sa.text("'draft'")),
        sa.Column(
            'seller_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('image_url', sa.String(500), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
        sa.CheckConstraint('price >= 0', name='ck_products_price_non_negative'),
        sa.CheckConstraint('discount >= 0 AND discount <= 100', name='ck_products_discount_range'),
        comment='Catalog products',
    )
    op.create_index('ix_products_status', 'products', ['status'])
    op.create_index('ix_products_seller_id', 'products', ['seller_id'])

    op.create_table(
        'product_variants',
        _id_column(),
        sa.Column(
            'product_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('products.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('size', sa.String(50), nullable=True),
        sa.Column('color', sa.String(50), nullable=True),
        sa.Column('material', sa.String(100), nullable=True),
        sa.Column(
            'price',
            sa.Numeric(precision=12, scale=2),
            nullable=True,
            comment='Overrides the product price when set',
        ),
        sa.Column('stock', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('sku', sa.String(100), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint('stock >= 0', name='ck_product_variants_stock_non_negative'),
        comment='Product variants',
    )
    op.create_index('ix_product_variants_product_id', 'product_variants', ['product_id'])

    # Carts
    op.create_table(
        'cart_items',
        _id_column(),
        sa.Column(
            'user_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('users.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'product_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('products.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default=sa.text('1')),
        sa.Column('variant', postgresql.JSONB(), nullable=True, comment='Selected variant attributes'),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint('quantity >= 1', name='ck_cart_items_quantity_positive'),
        comment='Cart contents',
    )
    op.create_index('ix_cart_items_user_id', 'cart_items', ['user_id'])

    # Orders
    op.create_table(
        'orders',
        _id_column(),
        sa.Column('order_number', sa.String(50), nullable=False, unique=True, comment='Human-readable order number'),
        sa.Column(
            'user_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('users.id', ondelete='RESTRICT'),
            nullable=False,
            comment='Customer who placed the order',
        ),
        _money('subtotal', 'Sum of line totals', default=False),
        _money('tax_amount', 'Tax on the subtotal'),
        _money('shipping_amount', 'Shipping charge'),
        _money('discount_amount', 'Coupon discount'),
        _money('total_amount', 'Amount payable', default=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default=sa.text("'KES'")),
        sa.Column('coupon_code', sa.String(50), nullable=True),
        sa.Column('payment_method', _enum('payment_method'), nullable=False),
        sa.Column(
            'payment_status',
            _enum('payment_status'),
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column(
            'payment_details',
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
            comment='Payment provider references',
        ),
        sa.Column('status', _enum('order_status'), nullable=False, server_default=sa.text("'pending'")),
        sa.Column(
            'status_changed_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
            comment='When the order entered its current status',
        ),
        sa.Column('shipping_address', postgresql.JSONB(), nullable=False),
        sa.Column('billing_address', postgresql.JSONB(), nullable=False),
        sa.Column(
            'shipping_method',
            _enum('shipping_method'),
            nullable=False,
            server_default=sa.text("'standard'"),
        ),
        sa.Column('delivery_instructions', sa.String(500), nullable=True),
        sa.Column('notes', sa.String(1000), nullable=True),
        sa.Column('admin_notes', sa.String(1000), nullable=True),
        sa.Column('priority', _enum('order_priority'), nullable=False, server_default=sa.text("'normal'")),
        sa.Column('source', _enum('order_source'), nullable=False, server_default=sa.text("'web'")),
        sa.Column('is_gift', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('gift_message', sa.String(500), nullable=True),
        sa.Column('customer_ip', sa.String(64), nullable=True),
        sa.Column('user_agent', sa.String(500), nullable=True),
        sa.Column('tracking_number', sa.String(50), nullable=True, unique=True),
        sa.Column('carrier', sa.String(100), nullable=True),
        sa.Column('tracking_url', sa.String(500), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('estimated_delivery', sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            'actual_delivery',
            sa.DateTime(timezone=True),
            nullable=True,
            comment='Set once when first delivered',
        ),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint('subtotal >= 0', name='ck_orders_subtotal_non_negative'),
        sa.CheckConstraint('tax_amount >= 0', name='ck_orders_tax_amount_non_negative'),
        sa.CheckConstraint('shipping_amount >= 0', name='ck_orders_shipping_amount_non_negative'),
        sa.CheckConstraint('discount_amount >= 0', name='ck_orders_discount_amount_non_negative'),
        sa.CheckConstraint(
            'total_amount = subtotal + tax_amount + shipping_amount - discount_amount',
            name='ck_orders_total_matches_parts',
        ),
        comment='Customer orders',
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])
    op.create_index('ix_orders_estimated_delivery', 'orders', ['estimated_delivery'])
    op.create_index('ix_orders_user_status', 'orders', ['user_id', 'status'])
    op.create_index('ix_orders_status_created', 'orders', ['status', 'created_at'])
    op.create_index('ix_orders_status_changed', 'orders', ['status', 'status_changed_at'])

    op.create_table(
        'order_items',
        _id_column(),
        sa.Column(
            'order_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'product_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('products.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column(
            'variant_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('product_variants.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column(
            'price',
            sa.Numeric(precision=12, scale=2),
            nullable=False,
            comment='Unit price at order time',
        ),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('variant', postgresql.JSONB(), nullable=True),
        sa.Column('sku', sa.String(100), nullable=True),
        sa.Column('image', postgresql.JSONB(), nullable=True),
        sa.Column(
            'seller_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
        ),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint('quantity >= 1', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint('price >= 0', name='ck_order_items_price_non_negative'),
        comment='Order line-item snapshots',
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])
    op.create_index('ix_order_items_seller_id', 'order_items', ['seller_id'])

    op.create_table(
        'order_status_history',
        _id_column(),
        sa.Column(
            'order_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('status', _enum('order_status'), nullable=False),
        sa.Column('note', sa.String(500), nullable=True),
        sa.Column(
            'updated_by',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
            comment='Acting user; NULL for system transitions',
        ),
        _created_at(),
        comment='Order status change history',
    )
    op.create_index(
        'ix_order_status_history_order_created',
        'order_status_history',
        ['order_id', 'created_at'],
    )

    op.create_table(
        'order_refunds',
        _id_column(),
        sa.Column(
            'order_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('reason', sa.String(500), nullable=False),
        sa.Column('status', _enum('refund_status'), nullable=False, server_default=sa.text("'pending'")),
        sa.Column(
            'requested_by',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column(
            'processed_by',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refund_reference', sa.String(100), nullable=True),
        sa.Column('review_note', sa.String(500), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint('amount > 0', name='ck_order_refunds_amount_positive'),
        comment='Order refund requests',
    )
    op.create_index('ix_order_refunds_order_id', 'order_refunds', ['order_id'])

    # Audit trail
    op.create_table(
        'audit_events',
        _id_column(),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column(
            'order_id',
            postgresql.UUID(as_uuid=True),
            nullable=True,
            comment='Affected order; not a foreign key so events outlive rows',
        ),
        sa.Column('actor_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            'payload',
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column('request_id', sa.String(64), nullable=True),
        _created_at(),
        comment='Append-only audit trail',
    )
    op.create_index('ix_audit_events_order_created', 'audit_events', ['order_id', 'created_at'])
    op.create_index('ix_audit_events_type', 'audit_events', ['event_type'])


def downgrade() -> None:
    """
    Drop the order lifecycle schema.
    """
    for table in (
        'audit_events',
        'order_refunds',
        'order_status_history',
        'order_items',
        'orders',
        'cart_items',
        'product_variants',
        'products',
        'users',
    ):
        op.drop_table(table)

    op.execute("DROP SEQUENCE IF EXISTS order_number_seq")

    for name in reversed(list(ENUM_TYPES)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
