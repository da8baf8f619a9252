"""initial restaurant schema

Revision ID: r0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

This migration creates the restaurant billing schema from scratch:
- users, printers, categories, products, tables: staff and catalog
- orders, order_items, order_sequences: the order ledger
- additional_charges, order_additional_charges: standing and manual charges
- payments, transactions: settlement records
- cashier_shifts, cash_movements: drawer accountability
- print_queue: asynchronous print jobs
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'r0001'
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable,
                     server_default=sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    """
    Create all tables.

    WHY: Order ids are strings ("ddmmyy-table-seq") and every money column is
    an integer in whole currency units. Only one cashier shift may be open,
    enforced by a partial unique index.
    """

    # ============================================================================
    # users: Staff accounts with PIN authorization
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('full_name', sa.String(length=128), nullable=True),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('pin_hash', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username', name='uq_users_username'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_role_active', 'users', ['role', 'is_active'])

    # ============================================================================
    # printers / categories / products / tables: Catalog
    # ============================================================================
    op.create_table(
        'printers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('printer_type', sa.String(length=32), nullable=False),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('port', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_printers_printer_type', 'printers', ['printer_type'])

    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('printer_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['printer_id'], ['printers.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_categories_printer_id', 'categories', ['printer_id'])

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_category_id', 'products', ['category_id'])

    op.create_table(
        'tables',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('table_number', sa.String(length=16), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=False, server_default='4'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='available'),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('table_number', name='uq_tables_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_tables_status', 'tables', ['status'])

    # ============================================================================
    # orders / order_items / order_sequences: Order ledger
    # ============================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('table_number', sa.String(length=16), nullable=False),
        sa.Column('customer_name', sa.String(length=128), nullable=True),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('pax', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('basket_size', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('paid_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('settled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('order_status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('is_merged', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('merged_from', sa.String(length=32), nullable=True),
        sa.Column('voided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('voided_by', sa.Integer(), nullable=True),
        sa.Column('void_reason', sa.String(length=255), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.ForeignKeyConstraint(['merged_from'], ['orders.id']),
        sa.ForeignKeyConstraint(['voided_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_orders_table_created', 'orders', ['table_number', 'created_at'])
    op.create_index('ix_orders_open', 'orders', ['settled_at', 'is_merged', 'voided_at'])
    op.create_index('ix_orders_order_status', 'orders', ['order_status'])
    op.create_index('ix_orders_is_merged', 'orders', ['is_merged'])
    op.create_index('ix_orders_merged_from', 'orders', ['merged_from'])
    op.create_index('ix_orders_voided_at', 'orders', ['voided_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.String(length=32), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('price', sa.Integer(), nullable=False),
        sa.Column('qty', sa.Integer(), nullable=False),
        sa.Column('destination', sa.String(length=32), nullable=False, server_default='kitchen'),
        sa.Column('item_status', sa.String(length=16), nullable=False, server_default='pending'),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'order_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_date', sa.String(length=6), nullable=False),
        sa.Column('table_number', sa.String(length=16), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_date', 'table_number', name='uq_order_sequences_date_table'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # additional_charges / order_additional_charges: Charges
    # ============================================================================
    op.create_table(
        'additional_charges',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('charge_type', sa.String(length=16), nullable=False),
        sa.Column('value', sa.Float(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_additional_charges_is_active', 'additional_charges', ['is_active'])

    op.create_table(
        'order_additional_charges',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.String(length=32), nullable=False),
        sa.Column('charge_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('charge_type', sa.String(length=16), nullable=False),
        sa.Column('value', sa.Float(), nullable=False, server_default='0'),
        sa.Column('applied_amount', sa.Integer(), nullable=False, server_default='0'),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['charge_id'], ['additional_charges.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_additional_charges_order_id', 'order_additional_charges', ['order_id'])
    op.create_index('ix_order_additional_charges_charge_id', 'order_additional_charges', ['charge_id'])

    # ============================================================================
    # payments / transactions: Settlement
    # ============================================================================
    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.String(length=32), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('is_item_split', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_by', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_payments_order_id', 'payments', ['order_id'])
    op.create_index('ix_payments_payment_method', 'payments', ['payment_method'])
    op.create_index('ix_payments_created_at', 'payments', ['created_at'])
    op.create_index('ix_payments_created_by_created', 'payments', ['created_by', 'created_at'])

    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.String(length=32), nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=True),
        sa.Column('total_amount', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='completed'),
        _timestamp('transaction_date'),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by', sa.Integer(), nullable=True),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id']),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.ForeignKeyConstraint(['cancelled_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_transactions_order_id', 'transactions', ['order_id'])
    op.create_index('ix_transactions_status', 'transactions', ['status'])
    op.create_index('ix_transactions_transaction_date', 'transactions', ['transaction_date'])
    op.create_index('ix_transactions_cancelled_at', 'transactions', ['cancelled_at'])
    op.create_index('ix_transactions_created_by_date', 'transactions', ['created_by', 'transaction_date'])

    # ============================================================================
    # cashier_shifts / cash_movements: Drawer accountability
    # ============================================================================
    op.create_table(
        'cashier_shifts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='open'),
        sa.Column('opened_by', sa.Integer(), nullable=False),
        sa.Column('opened_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('opening_cash', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('closed_by', sa.Integer(), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closing_cash', sa.Integer(), nullable=True),
        sa.Column('closing_card', sa.Integer(), nullable=True),
        sa.Column('closing_qris', sa.Integer(), nullable=True),
        sa.Column('closing_transfer', sa.Integer(), nullable=True),
        sa.Column('total_sales', sa.Integer(), nullable=True),
        sa.Column('total_cash_in', sa.Integer(), nullable=True),
        sa.Column('total_cash_out', sa.Integer(), nullable=True),
        sa.Column('carry_over_cash', sa.Integer(), nullable=True),
        sa.Column('previous_shift_id', sa.Integer(), nullable=True),
        sa.Column('handover_to', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['opened_by'], ['users.id']),
        sa.ForeignKeyConstraint(['closed_by'], ['users.id']),
        sa.ForeignKeyConstraint(['handover_to'], ['users.id']),
        sa.ForeignKeyConstraint(['previous_shift_id'], ['cashier_shifts.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cashier_shifts_status', 'cashier_shifts', ['status'])
    op.create_index('ix_cashier_shifts_opened_by', 'cashier_shifts', ['opened_by'])
    op.create_index('ix_cashier_shifts_opened_at', 'cashier_shifts', ['opened_at'])
    op.create_index('ix_cashier_shifts_closed_at', 'cashier_shifts', ['closed_at'])
    op.create_index(
        'uq_cashier_shifts_single_open',
        'cashier_shifts',
        ['status'],
        unique=True,
        sqlite_where=sa.text("status = 'open'"),
        postgresql_where=sa.text("status = 'open'"),
    )

    op.create_table(
        'cash_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=8), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['shift_id'], ['cashier_shifts.id']),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cash_movements_shift_id', 'cash_movements', ['shift_id'])

    # ============================================================================
    # print_queue: Asynchronous print jobs
    # ============================================================================
    op.create_table(
        'print_queue',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('printer_id', sa.Integer(), nullable=False),
        sa.Column('data', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['printer_id'], ['printers.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_print_queue_printer_id', 'print_queue', ['printer_id'])
    op.create_index('ix_print_queue_status_created', 'print_queue', ['status', 'created_at'])


def downgrade():
    """Drop all tables in reverse dependency order."""
    op.drop_table('print_queue')
    op.drop_table('cash_movements')
    op.drop_index('uq_cashier_shifts_single_open', table_name='cashier_shifts')
    op.drop_table('cashier_shifts')
    op.drop_table('transactions')
    op.drop_table('payments')
    op.drop_table('order_additional_charges')
    op.drop_table('additional_charges')
    op.drop_table('order_sequences')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('tables')
    op.drop_table('products')
    op.drop_table('categories')
    op.drop_table('printers')
    op.drop_table('users')
