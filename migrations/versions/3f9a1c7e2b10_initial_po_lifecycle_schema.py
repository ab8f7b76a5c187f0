"""initial_po_lifecycle_schema

Revision ID: 3f9a1c7e2b10
Revises:
Create Date: 2026-10-19 09:12:44.118302+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f9a1c7e2b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # 1. purchase_orders (no FKs)
    op.create_table('purchase_orders',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('po_number', sa.String(length=50), nullable=False),
    sa.Column('vendor_id', sa.String(length=64), nullable=False),
    sa.Column('vendor_email', sa.String(length=255), nullable=True),
    sa.Column('warehouse_id', sa.String(length=64), nullable=True),
    sa.Column('status', sa.String(length=50), nullable=False),
    sa.Column('total_cents', sa.BigInteger(), nullable=False),
    sa.Column('received_cents', sa.BigInteger(), nullable=False),
    sa.Column('currency', sa.String(length=3), nullable=False),
    sa.Column('payment_status', sa.String(length=20), nullable=False),
    sa.Column('expected_delivery_date', sa.Date(), nullable=True),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.Column('created_by', sa.String(length=64), nullable=True),
    sa.Column('submitted_at', sa.DateTime(), nullable=True),
    sa.Column('approved_at', sa.DateTime(), nullable=True),
    sa.Column('dispatched_at', sa.DateTime(), nullable=True),
    sa.Column('is_vendor_accepted', sa.Boolean(), nullable=True),
    sa.Column('vendor_notes', sa.Text(), nullable=True),
    sa.Column('vendor_responded_at', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), nullable=False),
    sa.Column('deleted_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('received_cents >= 0', name='chk_po_received_nonneg'),
    sa.CheckConstraint('received_cents <= total_cents', name='chk_po_received_le_total'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('po_number')
    )
    op.create_index('idx_po_vendor', 'purchase_orders', ['vendor_id'], unique=False)
    op.create_index('idx_po_status', 'purchase_orders', ['status'], unique=False)

    # 2. po_line_items (FK to purchase_orders)
    op.create_table('po_line_items',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('po_id', sa.Uuid(), nullable=False),
    sa.Column('line_number', sa.Integer(), nullable=False),
    sa.Column('product_id', sa.String(length=64), nullable=False),
    sa.Column('variant_id', sa.String(length=64), nullable=True),
    sa.Column('ordered_quantity', sa.Integer(), nullable=False),
    sa.Column('unit_price_cents', sa.BigInteger(), nullable=False),
    sa.Column('received_quantity', sa.Integer(), nullable=False),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.CheckConstraint('ordered_quantity > 0', name='chk_po_line_qty'),
    sa.CheckConstraint('unit_price_cents >= 0', name='chk_po_line_price'),
    sa.CheckConstraint(
        'received_quantity >= 0 AND received_quantity <= ordered_quantity',
        name='chk_po_line_received',
    ),
    sa.ForeignKeyConstraint(['po_id'], ['purchase_orders.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('po_id', 'line_number', name='uq_po_line_item')
    )
    op.create_index('idx_po_items_po', 'po_line_items', ['po_id'], unique=False)

    # 3. po_approvals (FK to purchase_orders)
    op.create_table('po_approvals',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('po_id', sa.Uuid(), nullable=False),
    sa.Column('approver_id', sa.String(length=64), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('comment', sa.Text(), nullable=True),
    sa.Column('signature_ref', sa.String(length=500), nullable=True),
    sa.Column('approved_at', sa.DateTime(), nullable=True),
    sa.Column('rejected_at', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.CheckConstraint(
        "status IN ('PENDING','APPROVED','REJECTED')", name='chk_approval_status'
    ),
    sa.ForeignKeyConstraint(['po_id'], ['purchase_orders.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('po_id', 'approver_id', name='uq_po_approver')
    )
    op.create_index('idx_approvals_po', 'po_approvals', ['po_id'], unique=False)
    op.create_index('idx_approvals_approver', 'po_approvals', ['approver_id', 'status'], unique=False)

    # 4. vendor_acceptance_tokens (FK to purchase_orders)
    op.create_table('vendor_acceptance_tokens',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('po_id', sa.Uuid(), nullable=False),
    sa.Column('token_hash', sa.String(length=64), nullable=False),
    sa.Column('expires_at', sa.DateTime(), nullable=False),
    sa.Column('consumed_at', sa.DateTime(), nullable=True),
    sa.Column('revoked_at', sa.DateTime(), nullable=True),
    sa.Column('decision', sa.Boolean(), nullable=True),
    sa.Column('issued_by', sa.String(length=64), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['po_id'], ['purchase_orders.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('token_hash')
    )
    op.create_index('idx_vendor_tokens_po', 'vendor_acceptance_tokens', ['po_id'], unique=False)

    # 5. goods_received_notes (FK to purchase_orders)
    op.create_table('goods_received_notes',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('grn_number', sa.String(length=50), nullable=False),
    sa.Column('po_id', sa.Uuid(), nullable=False),
    sa.Column('warehouse_id', sa.String(length=64), nullable=False),
    sa.Column('received_by', sa.String(length=64), nullable=True),
    sa.Column('received_date', sa.Date(), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('total_received_cents', sa.BigInteger(), nullable=False),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.CheckConstraint(
        "status IN ('PENDING','PARTIAL','COMPLETED')", name='chk_grn_status'
    ),
    sa.ForeignKeyConstraint(['po_id'], ['purchase_orders.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('grn_number')
    )
    op.create_index('idx_grn_po', 'goods_received_notes', ['po_id'], unique=False)
    op.create_index('idx_grn_warehouse', 'goods_received_notes', ['warehouse_id'], unique=False)

    # 6. grn_line_items (FK to goods_received_notes + po_line_items)
    op.create_table('grn_line_items',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('grn_id', sa.Uuid(), nullable=False),
    sa.Column('po_line_item_id', sa.Uuid(), nullable=False),
    sa.Column('product_id', sa.String(length=64), nullable=False),
    sa.Column('variant_id', sa.String(length=64), nullable=True),
    sa.Column('quantity_received', sa.Integer(), nullable=False),
    sa.Column('unit_price_cents', sa.BigInteger(), nullable=False),
    sa.Column('line_total_cents', sa.BigInteger(), nullable=False),
    sa.Column('condition', sa.String(length=20), nullable=False),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.CheckConstraint('quantity_received > 0', name='chk_grn_line_qty'),
    sa.CheckConstraint(
        "condition IN ('GOOD','DAMAGED','PARTIAL')", name='chk_grn_line_condition'
    ),
    sa.ForeignKeyConstraint(['grn_id'], ['goods_received_notes.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['po_line_item_id'], ['po_line_items.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_grn_line_items_grn', 'grn_line_items', ['grn_id'], unique=False)

    # 7. audit_logs (no FKs; entity_id is polymorphic)
    op.create_table('audit_logs',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('actor_id', sa.String(length=64), nullable=True),
    sa.Column('action', sa.String(length=100), nullable=False),
    sa.Column('entity_type', sa.String(length=50), nullable=False),
    sa.Column('entity_id', sa.Uuid(), nullable=False),
    sa.Column('before_state', sa.JSON(), nullable=True),
    sa.Column('after_state', sa.JSON(), nullable=True),
    sa.Column('changed_fields', sa.JSON(), nullable=True),
    sa.Column('request_id', sa.String(length=64), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_audit_entity', 'audit_logs', ['entity_type', 'entity_id'], unique=False)
    op.create_index('idx_audit_actor', 'audit_logs', ['actor_id'], unique=False)
    op.create_index('idx_audit_created', 'audit_logs', [sa.text('created_at DESC')], unique=False)

    # 8. number_sequences (one counter row per document prefix)
    number_sequences = op.create_table('number_sequences',
    sa.Column('name', sa.String(length=20), nullable=False),
    sa.Column('current_value', sa.Integer(), nullable=False),
    sa.PrimaryKeyConstraint('name')
    )
    op.bulk_insert(number_sequences, [
        {'name': 'PO', 'current_value': 0},
        {'name': 'GRN', 'current_value': 0},
    ])


def downgrade() -> None:
    op.drop_table('number_sequences')
    op.drop_index('idx_audit_created', table_name='audit_logs')
    op.drop_index('idx_audit_actor', table_name='audit_logs')
    op.drop_index('idx_audit_entity', table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index('idx_grn_line_items_grn', table_name='grn_line_items')
    op.drop_table('grn_line_items')
    op.drop_index('idx_grn_warehouse', table_name='goods_received_notes')
    op.drop_index('idx_grn_po', table_name='goods_received_notes')
    op.drop_table('goods_received_notes')
    op.drop_index('idx_vendor_tokens_po', table_name='vendor_acceptance_tokens')
    op.drop_table('vendor_acceptance_tokens')
    op.drop_index('idx_approvals_approver', table_name='po_approvals')
    op.drop_index('idx_approvals_po', table_name='po_approvals')
    op.drop_table('po_approvals')
    op.drop_index('idx_po_items_po', table_name='po_line_items')
    op.drop_table('po_line_items')
    op.drop_index('idx_po_status', table_name='purchase_orders')
    op.drop_index('idx_po_vendor', table_name='purchase_orders')
    op.drop_table('purchase_orders')
