"""initial ledger schema

Revision ID: b7c1d2e3f4a5
Revises:
Create Date: 2024-01-01 00:00:00.000000

Creates the inventory ledger and order settlement tables:
- products / stock_batches: catalog and FIFO cost layers
- inventory_movements: append-only quantity history
- customers / orders / order_items / payments: sales and balances
- expenses / recurring_expenses / refunds / bad_debts: accounting ledger

Money columns are NUMERIC(18, 6); rounding happens only for display.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b7c1d2e3f4a5'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated=False):
    columns = [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]
    if updated:
        columns.append(
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                      server_default=sa.text('CURRENT_TIMESTAMP'))
        )
    return columns


def upgrade():
    # ============================================================================
    # customers
    # ============================================================================
    op.create_table(
        'customers',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('first_name', sa.String(length=128), nullable=False),
        sa.Column('last_name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', name='uq_customers_email'),
    )

    # ============================================================================
    # products: version_id guards quantity_on_hand against lost updates
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('selling_price', sa.Numeric(18, 6), nullable=False),
        sa.Column('quantity_on_hand', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(updated=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
    )
    op.create_index('ix_products_name', 'products', ['name'])

    # ============================================================================
    # recurring_expenses
    # ============================================================================
    op.create_table(
        'recurring_expenses',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('amount', sa.Numeric(18, 6), nullable=False),
        sa.Column('category', sa.String(length=128), nullable=False),
        sa.Column('day_of_month', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('day_of_month >= 1 AND day_of_month <= 31', name='ck_recurring_day_of_month'),
        sa.CheckConstraint('amount > 0', name='ck_recurring_amount'),
    )

    # ============================================================================
    # orders
    # ============================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('customer_id', sa.String(length=32), nullable=False),
        sa.Column('order_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('subtotal', sa.Numeric(18, 6), nullable=False),
        sa.Column('total_discount', sa.Numeric(18, 6), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(18, 6), nullable=False),
        sa.Column('amount_paid', sa.Numeric(18, 6), nullable=False, server_default='0'),
        sa.Column('balance_due', sa.Numeric(18, 6), nullable=False),
        sa.Column('payment_type', sa.String(length=16), nullable=False),
        sa.Column('installment_months', sa.Integer(), nullable=True),
        sa.Column('order_status', sa.String(length=16), nullable=False),
        sa.Column('sales_person_id', sa.String(length=64), nullable=True),
        sa.Column('shipping_details', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(updated=True),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('amount_paid >= 0', name='ck_orders_amount_paid'),
    )
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_payment_type', 'orders', ['payment_type'])
    op.create_index('ix_orders_order_status', 'orders', ['order_status'])
    op.create_index('ix_orders_order_date', 'orders', ['order_date'])
    op.create_index('ix_orders_status_payment_type', 'orders', ['order_status', 'payment_type'])

    # ============================================================================
    # stock_batches: one row per receipt, consumed oldest purchase_date first
    # ============================================================================
    op.create_table(
        'stock_batches',
        sa.Column('batch_id', sa.String(length=32), nullable=False),
        sa.Column('product_id', sa.String(length=32), nullable=False),
        sa.Column('purchase_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('original_qty', sa.Integer(), nullable=False),
        sa.Column('remaining_qty', sa.Integer(), nullable=False),
        sa.Column('unit_cost', sa.Numeric(18, 6), nullable=False),
        sa.Column('supplier_name', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('batch_id'),
        sa.CheckConstraint('original_qty > 0', name='ck_stock_batches_original_qty'),
        sa.CheckConstraint(
            'remaining_qty >= 0 AND remaining_qty <= original_qty',
            name='ck_stock_batches_remaining_qty',
        ),
        sa.CheckConstraint('unit_cost >= 0', name='ck_stock_batches_unit_cost'),
    )
    op.create_index('ix_stock_batches_product_id', 'stock_batches', ['product_id'])
    op.create_index('ix_stock_batches_product_purchase', 'stock_batches', ['product_id', 'purchase_date'])
    op.create_index('ix_stock_batches_supplier', 'stock_batches', ['supplier_name'])

    # ============================================================================
    # order_items: cost_price_at_sale is the FIFO weighted average at settlement
    # ============================================================================
    op.create_table(
        'order_items',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('order_id', sa.String(length=32), nullable=False),
        sa.Column('product_id', sa.String(length=32), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('cost_price_at_sale', sa.Numeric(18, 6), nullable=False),
        sa.Column('selling_price_at_sale', sa.Numeric(18, 6), nullable=False),
        sa.Column('discount', sa.Numeric(18, 6), nullable=False, server_default='0'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity'),
        sa.CheckConstraint('discount >= 0', name='ck_order_items_discount'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])

    # ============================================================================
    # payments
    # ============================================================================
    op.create_table(
        'payments',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('order_id', sa.String(length=32), nullable=False),
        sa.Column('payment_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('amount', sa.Numeric(18, 6), nullable=False),
        sa.Column('payment_method', sa.String(length=64), nullable=False),
        sa.Column('proof_of_payment_reference', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('amount > 0', name='ck_payments_amount'),
    )
    op.create_index('ix_payments_order_id', 'payments', ['order_id'])
    op.create_index('ix_payments_payment_date', 'payments', ['payment_date'])

    # ============================================================================
    # inventory_movements: append-only; shortfall > 0 marks an oversell
    # ============================================================================
    op.create_table(
        'inventory_movements',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('product_id', sa.String(length=32), nullable=False),
        sa.Column('quantity_change', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=32), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('shortfall', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('order_id', sa.String(length=32), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_inventory_movements_product_id', 'inventory_movements', ['product_id'])
    op.create_index('ix_inventory_movements_movement_type', 'inventory_movements', ['movement_type'])
    op.create_index('ix_inventory_movements_order_id', 'inventory_movements', ['order_id'])
    op.create_index(
        'ix_inventory_movements_product_timestamp', 'inventory_movements', ['product_id', 'timestamp']
    )

    # ============================================================================
    # expenses: idempotency_key makes recurring postings once-per-month
    # ============================================================================
    op.create_table(
        'expenses',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('expense_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('amount', sa.Numeric(18, 6), nullable=False),
        sa.Column('category', sa.String(length=128), nullable=False),
        sa.Column('description', sa.String(length=512), nullable=True),
        sa.Column('idempotency_key', sa.String(length=128), nullable=True),
        sa.Column('recurring_expense_id', sa.String(length=32), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['recurring_expense_id'], ['recurring_expenses.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key', name='uq_expenses_idempotency_key'),
        sa.CheckConstraint('amount > 0', name='ck_expenses_amount'),
    )
    op.create_index('ix_expenses_expense_date', 'expenses', ['expense_date'])
    op.create_index('ix_expenses_category', 'expenses', ['category'])
    op.create_index('ix_expenses_recurring_expense_id', 'expenses', ['recurring_expense_id'])

    # ============================================================================
    # refunds / bad_debts: reported as other losses, never touch balances
    # ============================================================================
    op.create_table(
        'refunds',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('order_id', sa.String(length=32), nullable=False),
        sa.Column('refund_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('amount', sa.Numeric(18, 6), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('amount > 0', name='ck_refunds_amount'),
    )
    op.create_index('ix_refunds_order_id', 'refunds', ['order_id'])
    op.create_index('ix_refunds_refund_date', 'refunds', ['refund_date'])

    op.create_table(
        'bad_debts',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('order_id', sa.String(length=32), nullable=False),
        sa.Column('write_off_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('amount', sa.Numeric(18, 6), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('amount > 0', name='ck_bad_debts_amount'),
    )
    op.create_index('ix_bad_debts_order_id', 'bad_debts', ['order_id'])
    op.create_index('ix_bad_debts_write_off_date', 'bad_debts', ['write_off_date'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('bad_debts')
    op.drop_table('refunds')
    op.drop_table('expenses')
    op.drop_table('inventory_movements')
    op.drop_table('payments')
    op.drop_table('order_items')
    op.drop_table('stock_batches')
    op.drop_table('orders')
    op.drop_table('recurring_expenses')
    op.drop_table('products')
    op.drop_table('customers')
