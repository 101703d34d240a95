"""initial inventory ledger schema

Revision ID: r1a2b3c4d5e6
Revises:
Create Date: 2026-10-18 00:00:00.000000

This migration creates the complete RRFC inventory schema from scratch:
- app_users: Attribution for every ledger write (three-tier role tag)
- lookup_list: Catalog-owned keyed lookup values
- vendors / items: Keyed master records (soft-disabled, never deleted)
- inventory_batches: Purchase intake grouping (vendor + date)
- transactions: Append-only inventory ledger
- mac_ledger: Append-only per-item valuation snapshots
- returns / corrections: Business detail for Return entries and correction links
- system_logs: Audit trail

No id_counters table: transaction ids and batch codes are generated without
emulated sequence rows.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'r1a2b3c4d5e6'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade():
    """
    Create all tables from scratch.

    WHY: transactions and mac_ledger are append-only. Current valuation is
    the latest mac_ledger row per item, served by the
    (item_id, snapshot_date DESC) index.
    """

    # ============================================================================
    # app_users
    # ============================================================================
    op.create_table(
        'app_users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('display_name', sa.Text(), nullable=True),

        # admin, manager, user
        sa.Column('role', sa.Text(), nullable=False, server_default='user'),

        *_timestamps(),
        sa.Column('disabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
    )
    op.create_index('idx_app_users_email', 'app_users', ['email'])

    # ============================================================================
    # lookup_list
    # ============================================================================
    op.create_table(
        'lookup_list',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('list_key', sa.Text(), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('applicable_to', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['created_by'], ['app_users.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_lookup_list_key_value', 'lookup_list', ['list_key', 'value'])

    # ============================================================================
    # vendors
    # ============================================================================
    op.create_table(
        'vendors',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('vendor_name', sa.Text(), nullable=False),
        sa.Column('contact_person', sa.Text(), nullable=True),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('phone', sa.Text(), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['created_by'], ['app_users.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_vendors_name', 'vendors', ['vendor_name'])

    # ============================================================================
    # items
    # ============================================================================
    op.create_table(
        'items',
        sa.Column('item_id', sa.Text(), nullable=False),
        sa.Column('item_type', sa.Text(), nullable=False),
        sa.Column('category', sa.Text(), nullable=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('color', sa.Text(), nullable=True),
        sa.Column('size', sa.Text(), nullable=True),
        sa.Column('material', sa.Text(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['created_by'], ['app_users.id'], ),
        sa.PrimaryKeyConstraint('item_id'),
    )
    op.create_index('idx_items_name', 'items', ['name'])
    op.create_index('idx_items_type', 'items', ['item_type'])
    op.create_index('idx_items_category', 'items', ['category'])

    # ============================================================================
    # inventory_batches: one purchase intake (vendor + date)
    # ============================================================================
    op.create_table(
        'inventory_batches',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('batch_code', sa.Text(), nullable=False),
        sa.Column('vendor_id', sa.Text(), nullable=True),
        sa.Column('transaction_date', sa.Date(), nullable=False),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['vendor_id'], ['vendors.id'], ),
        sa.ForeignKeyConstraint(['created_by'], ['app_users.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_batches_batch_code', 'inventory_batches', ['batch_code'])
    op.create_index('idx_batches_vendor_date', 'inventory_batches', ['vendor_id', 'transaction_date'])

    # ============================================================================
    # transactions: Append-only ledger
    # ============================================================================
    # - quantity is signed (positive inbound, negative outbound)
    # - total_cost = quantity * unit_price + shipping, fixed at write time
    # - item descriptors are copied from items at entry time
    # ============================================================================
    op.create_table(
        'transactions',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('transaction_date', sa.DateTime(timezone=True), nullable=False),

        # Purchase, Return, Correction, Transfer, Waste, Damage, Loss
        sa.Column('transaction_type', sa.Text(), nullable=False),

        sa.Column('vendor_id', sa.Text(), nullable=True),
        sa.Column('batch_id', sa.Uuid(), nullable=True),
        sa.Column('item_id', sa.Text(), nullable=True),

        # Denormalized item state at entry time
        sa.Column('item_type', sa.Text(), nullable=True),
        sa.Column('category', sa.Text(), nullable=True),
        sa.Column('item_name', sa.Text(), nullable=True),
        sa.Column('color', sa.Text(), nullable=True),
        sa.Column('size', sa.Text(), nullable=True),
        sa.Column('material', sa.Text(), nullable=True),

        sa.Column('quantity', sa.Numeric(18, 4), nullable=False),
        sa.Column('unit_price', sa.Numeric(18, 4), nullable=True, server_default='0'),
        sa.Column('shipping', sa.Numeric(18, 4), nullable=True, server_default='0'),
        sa.Column('total_cost', sa.Numeric(18, 4), nullable=True, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),

        # Return -> Purchase, Correction -> corrected/reversed entry
        sa.Column('related_txn_id', sa.Text(), nullable=True),

        sa.Column('created_by', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['vendor_id'], ['vendors.id'], ),
        sa.ForeignKeyConstraint(['batch_id'], ['inventory_batches.id'], ),
        sa.ForeignKeyConstraint(['item_id'], ['items.item_id'], ),
        sa.ForeignKeyConstraint(['created_by'], ['app_users.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_txn_item', 'transactions', ['item_id'])
    op.create_index('idx_txn_vendor', 'transactions', ['vendor_id'])
    op.create_index('idx_txn_date', 'transactions', ['transaction_date'])
    op.create_index('idx_txn_type_date', 'transactions', ['transaction_type', 'transaction_date'])
    op.create_index('idx_txn_related', 'transactions', ['related_txn_id'])

    # ============================================================================
    # mac_ledger: Append-only valuation snapshots
    # ============================================================================
    op.create_table(
        'mac_ledger',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('item_id', sa.Text(), nullable=True),
        sa.Column('snapshot_date', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('quantity_on_hand', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('mac', sa.Numeric(18, 6), nullable=False, server_default='0'),
        sa.Column('total_value', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('last_updated_by', sa.Uuid(), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['item_id'], ['items.item_id'], ),
        sa.ForeignKeyConstraint(['last_updated_by'], ['app_users.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_mac_item', 'mac_ledger', ['item_id'])
    # Latest-per-item lookups
    op.create_index('idx_mac_item_snapshot_desc', 'mac_ledger',
                    ['item_id', sa.text('snapshot_date DESC')])

    # ============================================================================
    # returns: 1:1 detail for Return-type transactions
    # ============================================================================
    op.create_table(
        'returns',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('return_txn_id', sa.Text(), nullable=True),
        sa.Column('original_txn_id', sa.Text(), nullable=True),
        sa.Column('returned_quantity', sa.Numeric(18, 4), nullable=True),
        sa.Column('refund_amount', sa.Numeric(18, 4), nullable=True),
        sa.Column('restocking_fee', sa.Numeric(18, 4), nullable=True),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['return_txn_id'], ['transactions.id'], ),
        sa.ForeignKeyConstraint(['created_by'], ['app_users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('return_txn_id'),
    )
    op.create_index('ix_returns_original_txn_id', 'returns', ['original_txn_id'])

    # ============================================================================
    # corrections: original -> (reversal, corrected) links
    # ============================================================================
    op.create_table(
        'corrections',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('original_txn_id', sa.Text(), nullable=True),
        sa.Column('reversal_txn_id', sa.Text(), nullable=True),
        sa.Column('corrected_txn_id', sa.Text(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['created_by'], ['app_users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        # An entry is corrected at most once; later fixes extend the chain
        sa.UniqueConstraint('original_txn_id'),
    )
    op.create_index('ix_corrections_reversal_txn_id', 'corrections', ['reversal_txn_id'])
    op.create_index('ix_corrections_corrected_txn_id', 'corrections', ['corrected_txn_id'])

    # ============================================================================
    # system_logs: Audit trail
    # ============================================================================
    op.create_table(
        'system_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('actor', sa.Uuid(), nullable=True),
        sa.Column('action', sa.Text(), nullable=False),
        sa.Column('entity_type', sa.Text(), nullable=True),
        sa.Column('entity_id', sa.Text(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['actor'], ['app_users.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_logs_actor_time', 'system_logs', ['actor', 'created_at'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('system_logs')
    op.drop_table('corrections')
    op.drop_table('returns')
    op.drop_table('mac_ledger')
    op.drop_table('transactions')
    op.drop_table('inventory_batches')
    op.drop_table('items')
    op.drop_table('vendors')
    op.drop_table('lookup_list')
    op.drop_table('app_users')
