"""initial inventory schema

Revision ID: sg001
Revises:
Create Date: 2026-10-16 00:00:00.000000

Creates the complete inventory schema:
- products: catalog plus authoritative loose-kg / box quantities
- stock_additions, stock_corrections, damage_records: source documents
- mutation_requests: approval-gated stock and catalog changes
- sales, sale_audits: sales and their approval-gated edits/deletions
- audit_entries: append-only audit trail
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'sg001'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade():
    # ============================================================================
    # products: catalog + stock ledger
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('loose_kg', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('boxes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('box_to_kg_ratio', sa.Numeric(10, 2), nullable=False, server_default='20'),
        sa.Column('cost_per_box', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('cost_per_kg', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('price_per_box', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('price_per_kg', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('boxed_low_stock_threshold', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('expiry_date', sa.Date(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('loose_kg >= 0', name='ck_products_loose_kg_non_negative'),
        sa.CheckConstraint('boxes >= 0', name='ck_products_boxes_non_negative'),
        sa.CheckConstraint('box_to_kg_ratio > 0', name='ck_products_ratio_positive'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_account_id', 'products', ['account_id'])
    op.create_index('ix_products_account_name', 'products', ['account_id', 'name'])

    # ============================================================================
    # Source documents
    # ============================================================================
    op.create_table(
        'stock_additions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('boxes_added', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('kg_added', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('total_cost', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('delivery_date', sa.Date(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('added_by', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_additions_account_id', 'stock_additions', ['account_id'])
    op.create_index('ix_stock_additions_product_id', 'stock_additions', ['product_id'])

    op.create_table(
        'stock_corrections',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('box_adjustment', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('kg_adjustment', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('requested_by', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_corrections_account_id', 'stock_corrections', ['account_id'])
    op.create_index('ix_stock_corrections_product_id', 'stock_corrections', ['product_id'])

    op.create_table(
        'damage_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('damaged_boxes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('damaged_kg', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('loss_value', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('recorded_by', sa.Integer(), nullable=True),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_damage_records_account_id', 'damage_records', ['account_id'])
    op.create_index('ix_damage_records_product_id', 'damage_records', ['product_id'])

    # ============================================================================
    # mutation_requests: approval-gated changes
    # product_id has no FK so terminal requests outlive deleted products
    # ============================================================================
    op.create_table(
        'mutation_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('kind', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('box_delta', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('kg_delta', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('field_changed', sa.String(length=64), nullable=True),
        sa.Column('old_value', sa.Text(), nullable=True),
        sa.Column('new_value', sa.Text(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('stock_addition_id', sa.Integer(), nullable=True),
        sa.Column('correction_id', sa.Integer(), nullable=True),
        sa.Column('damage_id', sa.Integer(), nullable=True),
        sa.Column('before_state', sa.JSON(), nullable=True),
        sa.Column('after_state', sa.JSON(), nullable=True),
        sa.Column('requested_by', sa.Integer(), nullable=True),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['stock_addition_id'], ['stock_additions.id']),
        sa.ForeignKeyConstraint(['correction_id'], ['stock_corrections.id']),
        sa.ForeignKeyConstraint(['damage_id'], ['damage_records.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_mutation_requests_account_id', 'mutation_requests', ['account_id'])
    op.create_index('ix_mutation_requests_product_id', 'mutation_requests', ['product_id'])
    op.create_index('ix_mutation_requests_account_status', 'mutation_requests', ['account_id', 'status'])
    op.create_index('ix_mutation_requests_product_kind', 'mutation_requests', ['product_id', 'kind'])

    # ============================================================================
    # sales + sale_audits
    # ============================================================================
    op.create_table(
        'sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('boxes_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('kg_quantity', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('box_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('kg_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('profit_per_box', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('profit_per_kg', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('amount_paid', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('remaining_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('payment_status', sa.String(length=16), nullable=False),
        sa.Column('payment_method', sa.String(length=32), nullable=False),
        sa.Column('client_id', sa.String(length=64), nullable=True),
        sa.Column('client_name', sa.String(length=255), nullable=True),
        sa.Column('email_address', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('allocation_steps', sa.JSON(), nullable=True),
        sa.Column('performed_by', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sales_account_id', 'sales', ['account_id'])
    op.create_index('ix_sales_product_id', 'sales', ['product_id'])
    op.create_index('ix_sales_account_created', 'sales', ['account_id', 'created_at'])

    op.create_table(
        'sale_audits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('audit_type', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('boxes_change', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('kg_change', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('approval_reason', sa.Text(), nullable=True),
        sa.Column('requested_by', sa.Integer(), nullable=True),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sale_audits_account_id', 'sale_audits', ['account_id'])
    op.create_index('ix_sale_audits_sale_id', 'sale_audits', ['sale_id'])
    op.create_index('ix_sale_audits_product_id', 'sale_audits', ['product_id'])
    op.create_index('ix_sale_audits_account_status', 'sale_audits', ['account_id', 'status'])

    # ============================================================================
    # audit_entries: append-only trail
    # ============================================================================
    op.create_table(
        'audit_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('before', sa.JSON(), nullable=True),
        sa.Column('after', sa.JSON(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_audit_entries_account_id', 'audit_entries', ['account_id'])
    op.create_index('ix_audit_entries_entity', 'audit_entries', ['entity_type', 'entity_id'])


def downgrade():
    op.drop_table('audit_entries')
    op.drop_table('sale_audits')
    op.drop_table('sales')
    op.drop_table('mutation_requests')
    op.drop_table('damage_records')
    op.drop_table('stock_corrections')
    op.drop_table('stock_additions')
    op.drop_table('products')
