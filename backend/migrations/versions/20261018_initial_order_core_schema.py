"""initial order core schema

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates the order core schema from scratch:
- products / tax_configs / discounts: catalog reference data
- stock_movements: append-only stock ledger
- orders / order_items / payments / receipts: sale documents
- returns / return_items: returns against paid orders

Money is integer cents; rates are basis points.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # products: Catalog items; the order core only changes stock_quantity
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('cost_price_cents', sa.Integer(), nullable=True),
        sa.Column('stock_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('opening_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('low_stock_threshold', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('warranty_months', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
        sa.CheckConstraint('stock_quantity >= 0', name='ck_products_stock_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_active_name', 'products', ['is_active', 'name'])

    # ============================================================================
    # tax_configs: Flat rate, at most one active
    # ============================================================================
    op.create_table(
        'tax_configs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('rate_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('rate_bps >= 0 AND rate_bps <= 10000', name='ck_tax_configs_rate_range'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_tax_configs_is_active', 'tax_configs', ['is_active'])

    # ============================================================================
    # discounts: Order-level PERCENTAGE (bps) or FIXED_AMOUNT (cents)
    # ============================================================================
    op.create_table(
        'discounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('discount_type', sa.String(length=16), nullable=False),
        sa.Column('value', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('min_purchase_cents', sa.Integer(), nullable=True),
        sa.Column('max_discount_cents', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', name='uq_discounts_code'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_discounts_is_active', 'discounts', ['is_active'])

    # ============================================================================
    # stock_movements: Append-only ledger (OUT negative, others positive)
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('resulting_quantity', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.CheckConstraint('quantity > 0', name='ck_stock_movements_quantity_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_product_id', 'stock_movements', ['product_id'])
    op.create_index('ix_stock_movements_movement_type', 'stock_movements', ['movement_type'])
    op.create_index('ix_stock_movements_user_id', 'stock_movements', ['user_id'])
    op.create_index('ix_stock_movements_product_created', 'stock_movements', ['product_id', 'created_at'])
    op.create_index('ix_stock_movements_reference', 'stock_movements', ['reference_type', 'reference_id'])

    # ============================================================================
    # orders: Aggregate root; version_id guards status transitions
    # ============================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=24), nullable=False, server_default='DRAFT'),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_rate_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_id', sa.Integer(), nullable=True),
        sa.Column('coupon_code', sa.String(length=32), nullable=True),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('agent_id', sa.Integer(), nullable=True),
        sa.Column('shipping_address', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by_user_id', sa.Integer(), nullable=True),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['discount_id'], ['discounts.id']),
        sa.UniqueConstraint('order_number', name='uq_orders_order_number'),
        sa.CheckConstraint(
            'subtotal_cents >= 0 AND tax_cents >= 0 AND discount_cents >= 0 AND total_cents >= 0',
            name='ck_orders_amounts_non_negative'
        ),
        sqlite_autoincrement=True
    )
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_discount_id', 'orders', ['discount_id'])
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_agent_id', 'orders', ['agent_id'])
    op.create_index('ix_orders_status_created', 'orders', ['status', 'created_at'])

    # ============================================================================
    # order_items: Lines with price/cost snapshots
    # ============================================================================
    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('cost_price_cents', sa.Integer(), nullable=True),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.Column('serial_number', sa.String(length=128), nullable=True),
        sa.Column('warranty_expiry', sa.DateTime(timezone=True), nullable=True),
        sa.Column('stock_movement_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['stock_movement_id'], ['stock_movements.id']),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])

    # ============================================================================
    # payments: One per order
    # ============================================================================
    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=32), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('amount_tendered_cents', sa.Integer(), nullable=True),
        sa.Column('change_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='COMPLETED'),
        sa.Column('reference_number', sa.String(length=128), nullable=True),
        sa.Column('failure_reason', sa.String(length=255), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.UniqueConstraint('order_id', name='uq_payments_order'),
        sa.CheckConstraint('amount_cents >= 0 AND change_cents >= 0', name='ck_payments_amounts_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_payments_method', 'payments', ['method'])
    op.create_index('ix_payments_status', 'payments', ['status'])

    # ============================================================================
    # receipts: One immutable snapshot per paid order
    # ============================================================================
    op.create_table(
        'receipts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('receipt_number', sa.String(length=64), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('reprint_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_printed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.UniqueConstraint('order_id', name='uq_receipts_order'),
        sa.UniqueConstraint('receipt_number', name='uq_receipts_number'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # returns / return_items: Returns against paid orders
    # ============================================================================
    op.create_table(
        'returns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('return_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('total_refund_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('approved_by_user_id', sa.Integer(), nullable=True),
        sa.Column('completed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('rejected_by_user_id', sa.Integer(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.UniqueConstraint('return_number', name='uq_returns_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_returns_order_id', 'returns', ['order_id'])
    op.create_index('ix_returns_status', 'returns', ['status'])
    op.create_index('ix_returns_created_at', 'returns', ['created_at'])
    op.create_index('ix_returns_order_status', 'returns', ['order_id', 'status'])

    op.create_table(
        'return_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('return_id', sa.Integer(), nullable=False),
        sa.Column('order_item_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('refund_cents', sa.Integer(), nullable=False),
        sa.Column('condition', sa.String(length=64), nullable=True),
        sa.Column('stock_movement_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['return_id'], ['returns.id']),
        sa.ForeignKeyConstraint(['order_item_id'], ['order_items.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['stock_movement_id'], ['stock_movements.id']),
        sa.CheckConstraint('quantity > 0', name='ck_return_items_quantity_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_return_items_return_id', 'return_items', ['return_id'])
    op.create_index('ix_return_items_order_item_id', 'return_items', ['order_item_id'])


def downgrade():
    op.drop_table('return_items')
    op.drop_table('returns')
    op.drop_table('receipts')
    op.drop_table('payments')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('stock_movements')
    op.drop_table('discounts')
    op.drop_table('tax_configs')
    op.drop_table('products')
