"""initial retailpos schema

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates the complete RetailPOS schema:
- users, sessions and permissions
- catalog (categories, products) and warehouses with the stock movement ledger
- customers, suppliers, delegates
- sales, purchases and their returns, debts, installments, customer receipts
- cash boxes and money boxes with their transaction journals
- settings and the seed step history

Money is stored as integer *_cents columns; percentages and capacities stay Float.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0a1b2c3d4e5f'
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False)


def _updated_at():
    return sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False)


def upgrade():
    # ============================================================================
    # users / session_tokens / permissions
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64, collation='NOCASE'), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username'),
        sqlite_autoincrement=True,
    )

    op.create_table(
        'permissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('category', sa.String(length=32), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sqlite_autoincrement=True,
    )

    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=255), nullable=False),
        _created_at(),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)
    op.create_index('ix_session_tokens_expires_at', 'session_tokens', ['expires_at'])
    op.create_index('ix_session_tokens_user_active', 'session_tokens', ['user_id', 'is_revoked'])

    # ============================================================================
    # stocks: warehouses, at most one active main stock
    # ============================================================================
    op.create_table(
        'stocks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('code', sa.String(length=32, collation='NOCASE'), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=False),
        sa.Column('city', sa.String(length=64), nullable=True),
        sa.Column('manager_name', sa.String(length=128), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('email', sa.String(length=128), nullable=True),
        sa.Column('capacity', sa.Float(), nullable=False),
        sa.Column('current_capacity_used', sa.Float(), nullable=False),
        sa.Column('is_main_stock', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint('capacity >= 0', name='ck_stocks_capacity'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sqlite_autoincrement=True,
    )
    op.create_index(
        'uq_stocks_single_main',
        'stocks',
        ['is_main_stock'],
        unique=True,
        sqlite_where=sa.text('is_main_stock = 1 AND is_active = 1'),
        postgresql_where=sa.text('is_main_stock AND is_active'),
    )

    # ============================================================================
    # categories / products
    # ============================================================================
    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128, collation='NOCASE'), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True,
    )

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('sku', sa.String(length=64, collation='NOCASE'), nullable=False),
        sa.Column('barcode', sa.String(length=64), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('unit', sa.String(length=32), nullable=False),
        sa.Column('purchase_price_cents', sa.BigInteger(), nullable=False),
        sa.Column('selling_price_cents', sa.BigInteger(), nullable=False),
        sa.Column('wholesale_price_cents', sa.BigInteger(), nullable=True),
        sa.Column('current_stock', sa.Integer(), nullable=False),
        sa.Column('min_stock', sa.Integer(), nullable=True),
        sa.Column('max_stock', sa.Integer(), nullable=True),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.Column('stock_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint('selling_price_cents >= purchase_price_cents', name='ck_products_price_margin'),
        sa.CheckConstraint(
            'max_stock IS NULL OR min_stock IS NULL OR max_stock >= min_stock',
            name='ck_products_stock_bounds',
        ),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id']),
        sa.ForeignKeyConstraint(['stock_id'], ['stocks.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku'),
        sa.UniqueConstraint('barcode'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_products_name', 'products', ['name'])
    op.create_index('ix_products_category_id', 'products', ['category_id'])
    op.create_index('ix_products_stock_active', 'products', ['stock_id', 'is_active'])

    # ============================================================================
    # stock_movements: append-only ledger, the only writer of quantities
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=16), nullable=False),
        sa.Column('from_stock_id', sa.Integer(), nullable=True),
        sa.Column('to_stock_id', sa.Integer(), nullable=True),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents', sa.BigInteger(), nullable=True),
        sa.Column('total_value_cents', sa.BigInteger(), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('reference_number', sa.String(length=64), nullable=True),
        sa.Column('movement_date', sa.DateTime(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        _created_at(),
        sa.CheckConstraint('quantity > 0', name='ck_stock_movements_quantity_positive'),
        sa.CheckConstraint(
            'from_stock_id IS NOT NULL OR to_stock_id IS NOT NULL',
            name='ck_stock_movements_has_side',
        ),
        sa.CheckConstraint(
            "movement_type IN ('transfer','adjustment','purchase','sale','return','damage','expiry')",
            name='ck_stock_movements_type',
        ),
        sa.ForeignKeyConstraint(['from_stock_id'], ['stocks.id']),
        sa.ForeignKeyConstraint(['to_stock_id'], ['stocks.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stock_movements_movement_date', 'stock_movements', ['movement_date'])
    op.create_index('ix_stock_movements_product_to', 'stock_movements', ['product_id', 'to_stock_id'])
    op.create_index('ix_stock_movements_product_from', 'stock_movements', ['product_id', 'from_stock_id'])
    op.create_index('ix_stock_movements_type_date', 'stock_movements', ['movement_type', 'movement_date'])
    op.create_index('ix_stock_movements_reference', 'stock_movements', ['reference_type', 'reference_id'])

    # ============================================================================
    # delegates / customers / suppliers
    # ============================================================================
    op.create_table(
        'delegates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('email', sa.String(length=128), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('commission_type', sa.String(length=16), nullable=False),
        sa.Column('commission_rate', sa.Float(), nullable=False),
        sa.Column('sales_target_cents', sa.BigInteger(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )

    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('email', sa.String(length=128), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('customer_type', sa.String(length=16), nullable=False),
        sa.Column('tax_number', sa.String(length=64), nullable=True),
        sa.Column('credit_limit_cents', sa.BigInteger(), nullable=True),
        sa.Column('current_balance_cents', sa.BigInteger(), nullable=False),
        sa.Column('delegate_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(['delegate_id'], ['delegates.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_customers_name', 'customers', ['name'])
    op.create_index('ix_customers_phone', 'customers', ['phone'])
    op.create_index('ix_customers_delegate_id', 'customers', ['delegate_id'])

    op.create_table(
        'suppliers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('contact_person', sa.String(length=128), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('email', sa.String(length=128), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('tax_number', sa.String(length=64), nullable=True),
        sa.Column('credit_limit_cents', sa.BigInteger(), nullable=True),
        sa.Column('current_balance_cents', sa.BigInteger(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_suppliers_name', 'suppliers', ['name'])

    # ============================================================================
    # money_boxes: named treasuries, balance never negative
    # ============================================================================
    op.create_table(
        'money_boxes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128, collation='NOCASE'), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('is_default', sa.Boolean(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint('amount_cents >= 0', name='ck_money_boxes_amount_non_negative'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True,
    )

    op.create_table(
        'money_box_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('box_id', sa.Integer(), nullable=False),
        sa.Column('transaction_type', sa.String(length=32), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('balance_before_cents', sa.BigInteger(), nullable=False),
        sa.Column('balance_after_cents', sa.BigInteger(), nullable=False),
        sa.Column('related_box_id', sa.Integer(), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('amount_cents > 0', name='ck_money_box_transactions_amount_positive'),
        sa.ForeignKeyConstraint(['box_id'], ['money_boxes.id']),
        sa.ForeignKeyConstraint(['related_box_id'], ['money_boxes.id']),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_money_box_transactions_transaction_type', 'money_box_transactions', ['transaction_type'])
    op.create_index('ix_money_box_transactions_box_created', 'money_box_transactions', ['box_id', 'created_at'])

    # ============================================================================
    # sales / sale_items / sale_returns / sale_return_items
    # ============================================================================
    op.create_table(
        'sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_no', sa.String(length=64), nullable=False),
        sa.Column('barcode', sa.String(length=64), nullable=True),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('delegate_id', sa.Integer(), nullable=True),
        sa.Column('invoice_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('total_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('discount_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('tax_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('net_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('paid_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('payment_status', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=24), nullable=False),
        sa.Column('bill_type', sa.String(length=16), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint('paid_amount_cents >= 0', name='ck_sales_paid_non_negative'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['delegate_id'], ['delegates.id']),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_no'),
        sa.UniqueConstraint('barcode'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sales_customer', 'sales', ['customer_id'])
    op.create_index('ix_sales_status_date', 'sales', ['status', 'invoice_date'])

    op.create_table(
        'sale_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('stock_id', sa.Integer(), nullable=True),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('returned_quantity', sa.Integer(), nullable=False),
        sa.Column('price_cents', sa.BigInteger(), nullable=False),
        sa.Column('discount_percent', sa.Float(), nullable=False),
        sa.Column('tax_percent', sa.Float(), nullable=False),
        sa.Column('total_cents', sa.BigInteger(), nullable=False),
        _created_at(),
        sa.CheckConstraint('quantity > 0', name='ck_sale_items_quantity_positive'),
        sa.CheckConstraint(
            'returned_quantity >= 0 AND returned_quantity <= quantity',
            name='ck_sale_items_returned_bounds',
        ),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['stock_id'], ['stocks.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sale_items_sale', 'sale_items', ['sale_id'])
    op.create_index('ix_sale_items_product', 'sale_items', ['product_id'])

    op.create_table(
        'sale_returns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('return_date', sa.DateTime(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('refund_method', sa.String(length=16), nullable=False),
        sa.Column('total_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sale_returns_sale_id', 'sale_returns', ['sale_id'])

    op.create_table(
        'sale_return_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('return_id', sa.Integer(), nullable=False),
        sa.Column('sale_item_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price_cents', sa.BigInteger(), nullable=False),
        sa.Column('total_cents', sa.BigInteger(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_sale_return_items_quantity_positive'),
        sa.ForeignKeyConstraint(['return_id'], ['sale_returns.id']),
        sa.ForeignKeyConstraint(['sale_item_id'], ['sale_items.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sale_return_items_return_id', 'sale_return_items', ['return_id'])
    op.create_index('ix_sale_return_items_sale_item_id', 'sale_return_items', ['sale_item_id'])

    # ============================================================================
    # debts / installments / customer_receipts
    # ============================================================================
    op.create_table(
        'debts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('total_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('paid_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint('paid_amount_cents >= 0 AND paid_amount_cents <= total_amount_cents', name='ck_debts_paid_bounds'),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_debts_customer_id', 'debts', ['customer_id'])
    op.create_index('ix_debts_status', 'debts', ['status'])

    op.create_table(
        'installments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('paid_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('payment_status', sa.String(length=16), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint('amount_cents > 0', name='ck_installments_amount_positive'),
        sa.CheckConstraint('paid_amount_cents >= 0 AND paid_amount_cents <= amount_cents', name='ck_installments_paid_bounds'),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_installments_sale_id', 'installments', ['sale_id'])
    op.create_index('ix_installments_customer_id', 'installments', ['customer_id'])
    op.create_index('ix_installments_due', 'installments', ['payment_status', 'due_date'])

    op.create_table(
        'customer_receipts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('receipt_no', sa.String(length=32), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('receipt_date', sa.Date(), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('reference_no', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('money_box_id', sa.Integer(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        _created_at(),
        sa.CheckConstraint('amount_cents > 0', name='ck_customer_receipts_amount_positive'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['money_box_id'], ['money_boxes.id']),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('receipt_no'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_customer_receipts_customer_id', 'customer_receipts', ['customer_id'])
    op.create_index('ix_customer_receipts_sale_id', 'customer_receipts', ['sale_id'])

    op.create_table(
        'delegate_commissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('delegate_id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('sale_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('commission_type', sa.String(length=16), nullable=False),
        sa.Column('commission_rate', sa.Float(), nullable=False),
        sa.Column('commission_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['delegate_id'], ['delegates.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('delegate_id', 'sale_id', name='uq_delegate_commissions_sale'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_delegate_commissions_delegate_id', 'delegate_commissions', ['delegate_id'])
    op.create_index('ix_delegate_commissions_sale_id', 'delegate_commissions', ['sale_id'])

    # ============================================================================
    # purchases / purchase_items / purchase_returns / purchase_return_items
    # ============================================================================
    op.create_table(
        'purchases',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=False),
        sa.Column('invoice_no', sa.String(length=64), nullable=False),
        sa.Column('invoice_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('total_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('discount_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('tax_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('net_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('paid_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('payment_status', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=24), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('money_box_id', sa.Integer(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint('paid_amount_cents >= 0', name='ck_purchases_paid_non_negative'),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id']),
        sa.ForeignKeyConstraint(['money_box_id'], ['money_boxes.id']),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('supplier_id', 'invoice_no', name='uq_purchases_supplier_invoice'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_purchases_supplier_id', 'purchases', ['supplier_id'])
    op.create_index('ix_purchases_status_date', 'purchases', ['status', 'invoice_date'])

    op.create_table(
        'purchase_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('purchase_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('stock_id', sa.Integer(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('returned_quantity', sa.Integer(), nullable=False),
        sa.Column('price_cents', sa.BigInteger(), nullable=False),
        sa.Column('discount_percent', sa.Float(), nullable=False),
        sa.Column('tax_percent', sa.Float(), nullable=False),
        sa.Column('total_cents', sa.BigInteger(), nullable=False),
        sa.Column('expiry_date', sa.Date(), nullable=True),
        sa.Column('batch_number', sa.String(length=64), nullable=True),
        _created_at(),
        sa.CheckConstraint('quantity > 0', name='ck_purchase_items_quantity_positive'),
        sa.CheckConstraint(
            'returned_quantity >= 0 AND returned_quantity <= quantity',
            name='ck_purchase_items_returned_bounds',
        ),
        sa.ForeignKeyConstraint(['purchase_id'], ['purchases.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['stock_id'], ['stocks.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_purchase_items_purchase', 'purchase_items', ['purchase_id'])
    op.create_index('ix_purchase_items_product', 'purchase_items', ['product_id'])

    op.create_table(
        'purchase_returns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('purchase_id', sa.Integer(), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=True),
        sa.Column('return_date', sa.DateTime(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('refund_method', sa.String(length=16), nullable=False),
        sa.Column('total_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['purchase_id'], ['purchases.id']),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id']),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_purchase_returns_purchase_id', 'purchase_returns', ['purchase_id'])

    op.create_table(
        'purchase_return_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('return_id', sa.Integer(), nullable=False),
        sa.Column('purchase_item_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price_cents', sa.BigInteger(), nullable=False),
        sa.Column('total_cents', sa.BigInteger(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_purchase_return_items_quantity_positive'),
        sa.ForeignKeyConstraint(['return_id'], ['purchase_returns.id']),
        sa.ForeignKeyConstraint(['purchase_item_id'], ['purchase_items.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_purchase_return_items_return_id', 'purchase_return_items', ['return_id'])
    op.create_index('ix_purchase_return_items_purchase_item_id', 'purchase_return_items', ['purchase_item_id'])

    # ============================================================================
    # cash_boxes: one open session per user
    # ============================================================================
    op.create_table(
        'cash_boxes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('initial_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('current_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('closing_amount_cents', sa.BigInteger(), nullable=True),
        sa.Column('opened_at', sa.DateTime(), nullable=False),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
        sa.Column('opened_by', sa.Integer(), nullable=True),
        sa.Column('closed_by', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['opened_by'], ['users.id']),
        sa.ForeignKeyConstraint(['closed_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_cash_boxes_user_id', 'cash_boxes', ['user_id'])
    op.create_index(
        'uq_cash_boxes_user_open',
        'cash_boxes',
        ['user_id'],
        unique=True,
        sqlite_where=sa.text("status = 'open'"),
        postgresql_where=sa.text("status = 'open'"),
    )

    op.create_table(
        'cash_box_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cash_box_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('transaction_type', sa.String(length=32), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('balance_before_cents', sa.BigInteger(), nullable=False),
        sa.Column('balance_after_cents', sa.BigInteger(), nullable=False),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('amount_cents >= 0', name='ck_cash_box_transactions_amount'),
        sa.ForeignKeyConstraint(['cash_box_id'], ['cash_boxes.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_cash_box_transactions_transaction_type', 'cash_box_transactions', ['transaction_type'])
    op.create_index('ix_cash_box_transactions_box_created', 'cash_box_transactions', ['cash_box_id', 'created_at'])

    op.create_table(
        'user_cash_box_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('default_opening_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('require_opening_amount', sa.Boolean(), nullable=False),
        sa.Column('require_closing_count', sa.Boolean(), nullable=False),
        sa.Column('allow_negative_balance', sa.Boolean(), nullable=False),
        sa.Column('max_withdrawal_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('auto_close_at_end_of_day', sa.Boolean(), nullable=False),
        _updated_at(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
        sqlite_autoincrement=True,
    )

    # ============================================================================
    # settings / migrations (seed step history)
    # ============================================================================
    op.create_table(
        'settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=64), nullable=False),
        sa.Column('value', sa.Text(), nullable=True),
        _updated_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('key'),
        sqlite_autoincrement=True,
    )

    op.create_table(
        'migrations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('applied_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True,
    )


def downgrade():
    for table in (
        'migrations', 'settings',
        'user_cash_box_settings', 'cash_box_transactions', 'cash_boxes',
        'purchase_return_items', 'purchase_returns', 'purchase_items', 'purchases',
        'delegate_commissions', 'customer_receipts', 'installments', 'debts',
        'sale_return_items', 'sale_returns', 'sale_items', 'sales',
        'money_box_transactions', 'money_boxes',
        'suppliers', 'customers', 'delegates',
        'stock_movements', 'products', 'categories', 'stocks',
        'session_tokens', 'permissions', 'users',
    ):
        op.drop_table(table)
