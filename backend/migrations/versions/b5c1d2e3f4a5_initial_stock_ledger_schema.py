"""initial stock ledger schema

Revision ID: b5c1d2e3f4a5
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the branch-scoped stock ledger:
- branches: locations holding their own stock
- products: per-branch product rows with the current_stock projection
- sales / sale_lines: completed sales with frozen price snapshots
- stock_movements: append-only ledger, one row per stock-changing event
- sale_sequences: per-(prefix, day) counters behind sale ids
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b5c1d2e3f4a5'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # branches
    # ============================================================================
    op.create_table(
        'branches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_branches_code', 'branches', ['code'], unique=True)
    op.create_index('ix_branches_is_active', 'branches', ['is_active'], unique=False)

    # ============================================================================
    # products: one row per (branch, catalog code)
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reorder_threshold', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'code', name='uq_products_branch_code'),
        sa.CheckConstraint('current_stock >= 0', name='ck_products_stock_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_branch_id', 'products', ['branch_id'], unique=False)
    op.create_index('ix_products_branch_active', 'products', ['branch_id', 'is_active'], unique=False)

    # ============================================================================
    # sales
    # ============================================================================
    op.create_table(
        'sales',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='COMPLETED'),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('cancelled_by', sa.Integer(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('discount_cents >= 0', name='ck_sales_discount_non_negative'),
    )
    op.create_index('ix_sales_branch_id', 'sales', ['branch_id'], unique=False)
    op.create_index('ix_sales_status', 'sales', ['status'], unique=False)
    op.create_index('ix_sales_branch_created', 'sales', ['branch_id', 'created_at'], unique=False)
    op.create_index('ix_sales_branch_status_created', 'sales', ['branch_id', 'status', 'created_at'], unique=False)

    op.create_table(
        'sale_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.String(length=32), nullable=False),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('line_subtotal_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_id', 'line_number', name='uq_sale_lines_sale_line'),
        sa.CheckConstraint('quantity > 0', name='ck_sale_lines_quantity_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sale_lines_sale_id', 'sale_lines', ['sale_id'], unique=False)

    # ============================================================================
    # stock_movements: append-only ledger
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('stock_before', sa.Integer(), nullable=False),
        sa.Column('stock_after', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents_at_time', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('counterparty_branch_id', sa.Integer(), nullable=True),
        sa.Column('related_sale_id', sa.String(length=32), nullable=True),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.ForeignKeyConstraint(['counterparty_branch_id'], ['branches.id']),
        sa.ForeignKeyConstraint(['related_sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity > 0', name='ck_movements_quantity_positive'),
        sa.CheckConstraint('stock_before >= 0', name='ck_movements_before_non_negative'),
        sa.CheckConstraint('stock_after >= 0', name='ck_movements_after_non_negative'),
        sa.CheckConstraint(
            'stock_after - stock_before = quantity OR stock_before - stock_after = quantity',
            name='ck_movements_arithmetic',
        ),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_product_id', 'stock_movements', ['product_id'], unique=False)
    op.create_index('ix_stock_movements_branch_id', 'stock_movements', ['branch_id'], unique=False)
    op.create_index('ix_stock_movements_kind', 'stock_movements', ['kind'], unique=False)
    op.create_index('ix_stock_movements_occurred_at', 'stock_movements', ['occurred_at'], unique=False)
    op.create_index('ix_stock_movements_related_sale_id', 'stock_movements', ['related_sale_id'], unique=False)
    op.create_index('ix_movements_product_occurred', 'stock_movements', ['product_id', 'occurred_at'], unique=False)
    op.create_index('ix_movements_branch_occurred', 'stock_movements', ['branch_id', 'occurred_at'], unique=False)
    op.create_index('ix_movements_branch_kind_occurred', 'stock_movements', ['branch_id', 'kind', 'occurred_at'], unique=False)

    # ============================================================================
    # sale_sequences: atomic per-day counters
    # ============================================================================
    op.create_table(
        'sale_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('prefix', sa.String(length=16), nullable=False),
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('last_number', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('prefix', 'business_date', name='uq_sale_sequences_prefix_date'),
        sqlite_autoincrement=True
    )


def downgrade():
    op.drop_table('sale_sequences')

    op.drop_index('ix_movements_branch_kind_occurred', table_name='stock_movements')
    op.drop_index('ix_movements_branch_occurred', table_name='stock_movements')
    op.drop_index('ix_movements_product_occurred', table_name='stock_movements')
    op.drop_index('ix_stock_movements_related_sale_id', table_name='stock_movements')
    op.drop_index('ix_stock_movements_occurred_at', table_name='stock_movements')
    op.drop_index('ix_stock_movements_kind', table_name='stock_movements')
    op.drop_index('ix_stock_movements_branch_id', table_name='stock_movements')
    op.drop_index('ix_stock_movements_product_id', table_name='stock_movements')
    op.drop_table('stock_movements')

    op.drop_index('ix_sale_lines_sale_id', table_name='sale_lines')
    op.drop_table('sale_lines')

    op.drop_index('ix_sales_branch_status_created', table_name='sales')
    op.drop_index('ix_sales_branch_created', table_name='sales')
    op.drop_index('ix_sales_status', table_name='sales')
    op.drop_index('ix_sales_branch_id', table_name='sales')
    op.drop_table('sales')

    op.drop_index('ix_products_branch_active', table_name='products')
    op.drop_index('ix_products_branch_id', table_name='products')
    op.drop_table('products')

    op.drop_index('ix_branches_is_active', table_name='branches')
    op.drop_index('ix_branches_code', table_name='branches')
    op.drop_table('branches')
