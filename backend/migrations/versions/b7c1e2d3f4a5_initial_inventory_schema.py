"""initial inventory schema

Revision ID: b7c1e2d3f4a5
Revises:
Create Date: 2026-10-19 00:00:00.000000

This migration creates the pharmapos schema from scratch:
- branches: pharmacy locations
- products: product master with aggregate stock_level
- product_batches: per-lot quantity, expiry and cost, unique per (product, batch_number)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b7c1e2d3f4a5'
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
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_branches_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_branches_code', 'branches', ['code'], unique=True)

    # ============================================================================
    # products
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('gtin', sa.String(length=64), nullable=True),
        sa.Column('name_en', sa.String(length=255), nullable=False),
        sa.Column('name_mm', sa.String(length=255), nullable=True),
        sa.Column('generic_name', sa.String(length=255), nullable=True),
        sa.Column('category', sa.String(length=120), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unit', sa.String(length=32), nullable=False, server_default='STRIP'),
        sa.Column('stock_level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('min_stock_level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('requires_prescription', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('image_url', sa.String(length=512), nullable=True),
        sa.Column('location', sa.String(length=120), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'sku', name='uq_products_branch_sku'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_branch_id', 'products', ['branch_id'])
    op.create_index('ix_products_branch_name', 'products', ['branch_id', 'name_en'])
    op.create_index('ix_products_gtin', 'products', ['gtin'])

    # ============================================================================
    # product_batches
    # ============================================================================
    op.create_table(
        'product_batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('batch_number', sa.String(length=64), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expiry_date', sa.Date(), nullable=False),
        sa.Column('cost_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'batch_number', name='uq_batches_product_batch_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_product_batches_product_id', 'product_batches', ['product_id'])
    op.create_index('ix_batches_expiry', 'product_batches', ['expiry_date'])


def downgrade():
    op.drop_index('ix_batches_expiry', table_name='product_batches')
    op.drop_index('ix_product_batches_product_id', table_name='product_batches')
    op.drop_table('product_batches')

    op.drop_index('ix_products_gtin', table_name='products')
    op.drop_index('ix_products_branch_name', table_name='products')
    op.drop_index('ix_products_branch_id', table_name='products')
    op.drop_table('products')

    op.drop_index('ix_branches_code', table_name='branches')
    op.drop_table('branches')
