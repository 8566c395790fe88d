"""initial ledger schema

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete stock & cash ledger schema:
- suppliers, products: product master with cached stock
- inventory_movements: append-only stock ledger
- replenishments: goods received
- expiration_batches, expiration_batch_adjustments: dated lots and their
  downward-only quantity history
- cash_sessions: drawer custody and reconciliation
- sales, sale_lines: sale documents
- notifications: deduplicated alerts
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1b2c3d4e5f6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # suppliers
    # ============================================================================
    op.create_table(
        'suppliers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=64), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # products: stock is a cache of initial_stock + SUM(movements)
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('stock', sa.Integer(), nullable=False),
        sa.Column('initial_stock', sa.Integer(), nullable=False),
        sa.Column('min_stock', sa.Integer(), nullable=False),
        sa.Column('cost_price_cents', sa.Integer(), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('last_inventory_date', sa.DateTime(), nullable=True),
        sa.Column('last_inventory_status', sa.String(length=16), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_supplier_id', 'products', ['supplier_id'])
    op.create_index('ix_products_active_name', 'products', ['is_active', 'name'])

    # ============================================================================
    # inventory_movements: append-only, no UPDATE/DELETE path
    # ============================================================================
    op.create_table(
        'inventory_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('quantity_delta', sa.Integer(), nullable=False),
        sa.Column('previous_stock', sa.Integer(), nullable=False),
        sa.Column('new_stock', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=False),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('financial_impact_cents', sa.Integer(), nullable=True),
        sa.Column('user_name', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('new_stock = previous_stock + quantity_delta', name='ck_movements_arithmetic'),
        sa.CheckConstraint('new_stock >= 0', name='ck_movements_new_stock_non_negative'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_movements_product_id', 'inventory_movements', ['product_id'])
    op.create_index('ix_movements_product_created', 'inventory_movements', ['product_id', 'created_at'])
    op.create_index('ix_movements_type_created', 'inventory_movements', ['type', 'created_at'])

    # ============================================================================
    # replenishments
    # ============================================================================
    op.create_table(
        'replenishments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('delivery_cost_cents', sa.Integer(), nullable=False),
        sa.Column('total_price_cents', sa.Integer(), nullable=False),
        sa.Column('receipt_number', sa.String(length=64), nullable=True),
        sa.Column('expiration_date', sa.Date(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('user_name', sa.String(length=128), nullable=True),
        sa.Column('movement_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id'], ),
        sa.ForeignKeyConstraint(['movement_id'], ['inventory_movements.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_replenishments_product_id', 'replenishments', ['product_id'])
    op.create_index('ix_replenishments_supplier_id', 'replenishments', ['supplier_id'])
    op.create_index('ix_replenishments_receipt_number', 'replenishments', ['receipt_number'])
    op.create_index('ix_replenishments_product_created', 'replenishments', ['product_id', 'created_at'])

    # ============================================================================
    # expiration_batches: current_quantity only moves down
    # ============================================================================
    op.create_table(
        'expiration_batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=True),
        sa.Column('replenishment_id', sa.Integer(), nullable=True),
        sa.Column('original_quantity', sa.Integer(), nullable=False),
        sa.Column('current_quantity', sa.Integer(), nullable=False),
        sa.Column('expiration_date', sa.Date(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            'current_quantity >= 0 AND current_quantity <= original_quantity',
            name='ck_batches_quantity_bounds',
        ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id'], ),
        sa.ForeignKeyConstraint(['replenishment_id'], ['replenishments.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('replenishment_id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_expiration_batches_product_id', 'expiration_batches', ['product_id'])
    op.create_index('ix_expiration_batches_supplier_id', 'expiration_batches', ['supplier_id'])
    op.create_index('ix_batches_active_expiration', 'expiration_batches', ['is_active', 'expiration_date'])

    op.create_table(
        'expiration_batch_adjustments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('previous_quantity', sa.Integer(), nullable=False),
        sa.Column('new_quantity', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('new_quantity <= previous_quantity', name='ck_batch_adjustments_downward'),
        sa.ForeignKeyConstraint(['batch_id'], ['expiration_batches.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_expiration_batch_adjustments_batch_id', 'expiration_batch_adjustments', ['batch_id'])

    # ============================================================================
    # cash_sessions: UNIQUE drawer_slot is the one-open-session guard
    # ============================================================================
    op.create_table(
        'cash_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('drawer_slot', sa.String(length=16), nullable=True),
        sa.Column('cashier_name', sa.String(length=128), nullable=True),
        sa.Column('opening_amount_cents', sa.Integer(), nullable=False),
        sa.Column('closing_amount_cents', sa.Integer(), nullable=True),
        sa.Column('actual_amount_cents', sa.Integer(), nullable=True),
        sa.Column('total_sales_cents', sa.Integer(), nullable=False),
        sa.Column('total_transactions', sa.Integer(), nullable=False),
        sa.Column('expected_amount_cents', sa.Integer(), nullable=True),
        sa.Column('difference_cents', sa.Integer(), nullable=True),
        sa.Column('session_date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=True),
        sa.Column('last_counted_at', sa.DateTime(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('drawer_slot'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cash_sessions_status', 'cash_sessions', ['status'])
    op.create_index('ix_cash_sessions_start_time', 'cash_sessions', ['start_time'])
    op.create_index('ix_cash_sessions_status_start', 'cash_sessions', ['status', 'start_time'])

    # ============================================================================
    # sales, sale_lines
    # ============================================================================
    op.create_table(
        'sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_date', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('payment_method', sa.String(length=32), nullable=False),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False),
        sa.Column('tax_cents', sa.Integer(), nullable=False),
        sa.Column('final_amount_cents', sa.Integer(), nullable=False),
        sa.Column('cashier_name', sa.String(length=128), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('cash_session_id', sa.Integer(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['cash_session_id'], ['cash_sessions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sales_sale_date', 'sales', ['sale_date'])
    op.create_index('ix_sales_status', 'sales', ['status'])
    op.create_index('ix_sales_payment_date', 'sales', ['payment_method', 'sale_date'])
    op.create_index('ix_sales_session', 'sales', ['cash_session_id'])

    op.create_table(
        'sale_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False),
        sa.Column('total_price_cents', sa.Integer(), nullable=False),
        sa.Column('returned_quantity', sa.Integer(), nullable=False),
        sa.Column('movement_id', sa.Integer(), nullable=True),
        sa.CheckConstraint('returned_quantity <= quantity', name='ck_sale_lines_returned_bounds'),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['movement_id'], ['inventory_movements.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sale_lines_sale_id', 'sale_lines', ['sale_id'])

    # ============================================================================
    # notifications: UNIQUE unread_key dedups unread (type, product) alerts
    # ============================================================================
    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('priority', sa.String(length=16), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False),
        sa.Column('metadata_json', sa.Text(), nullable=True),
        sa.Column('unread_key', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('unread_key'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_notifications_type', 'notifications', ['type'])
    op.create_index('ix_notifications_read_created', 'notifications', ['is_read', 'created_at'])
    op.create_index('ix_notifications_product_type', 'notifications', ['product_id', 'type'])


def downgrade():
    op.drop_table('notifications')
    op.drop_table('sale_lines')
    op.drop_table('sales')
    op.drop_table('cash_sessions')
    op.drop_table('expiration_batch_adjustments')
    op.drop_table('expiration_batches')
    op.drop_table('replenishments')
    op.drop_table('inventory_movements')
    op.drop_table('products')
    op.drop_table('suppliers')
