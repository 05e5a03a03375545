"""initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-09-14

Creates the reference records, RFQ structure, supplier catalog, supplier
response ledger and price history. Enum columns are stored as VARCHAR.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Reference records
    op.create_table('part_suppliers',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table('original_parts',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('cat_number', sa.String(128), nullable=False, index=True),
        sa.Column('description_ru', sa.Text()),
        sa.Column('description_en', sa.Text()),
    )

    op.create_table('materials',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('code', sa.String(64), index=True),
        sa.Column('name', sa.String(255)),
    )

    # Client requests
    op.create_table('client_requests',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('title', sa.String(255)),
        sa.Column('status', sa.String(64)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table('client_request_revisions',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('client_request_id', sa.Integer(), sa.ForeignKey('client_requests.id'), nullable=False, index=True),
        sa.Column('rev_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table('client_request_revision_items',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('client_request_revision_id', sa.Integer(), sa.ForeignKey('client_request_revisions.id'), nullable=False, index=True),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('original_part_id', sa.Integer(), sa.ForeignKey('original_parts.id')),
        sa.Column('client_description', sa.Text()),
        sa.Column('requested_qty', sa.Float()),
        sa.Column('uom', sa.String(32)),
    )

    # RFQs
    op.create_table('rfqs',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('rfq_number', sa.String(50), unique=True),
        sa.Column('client_request_revision_id', sa.Integer(), sa.ForeignKey('client_request_revisions.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table('rfq_revisions',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('rfq_id', sa.Integer(), sa.ForeignKey('rfqs.id'), nullable=False, index=True),
        sa.Column('rev_number', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table('rfq_items',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('rfq_id', sa.Integer(), sa.ForeignKey('rfqs.id'), nullable=False, index=True),
        sa.Column('client_request_revision_item_id', sa.Integer(), sa.ForeignKey('client_request_revision_items.id'), nullable=False),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('requested_qty', sa.Float()),
        sa.Column('uom', sa.String(32)),
    )

    op.create_table('rfq_item_components',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('rfq_item_id', sa.Integer(), sa.ForeignKey('rfq_items.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('original_part_id', sa.Integer(), sa.ForeignKey('original_parts.id')),
        sa.Column('qty', sa.Float()),
    )

    op.create_table('rfq_suppliers',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('rfq_id', sa.Integer(), sa.ForeignKey('rfqs.id'), nullable=False, index=True),
        sa.Column('supplier_id', sa.Integer(), sa.ForeignKey('part_suppliers.id'), nullable=False, index=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='invited'),
        sa.Column('invited_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('responded_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('rfq_id', 'supplier_id', name='uq_rfq_supplier'),
    )

    # Supplier catalog
    op.create_table('supplier_parts',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('supplier_id', sa.Integer(), sa.ForeignKey('part_suppliers.id'), nullable=False, index=True),
        sa.Column('supplier_part_number', sa.String(128), nullable=False),
        sa.Column('canonical_part_number', sa.String(128)),
        sa.Column('description_ru', sa.Text()),
        sa.Column('description_en', sa.Text()),
        sa.Column('part_type', sa.String(16)),
        sa.Column('lead_time_days', sa.Integer()),
        sa.Column('min_order_qty', sa.Integer()),
        sa.Column('packaging', sa.String(255)),
        sa.Column('weight_kg', sa.Float()),
        sa.Column('length_cm', sa.Float()),
        sa.Column('width_cm', sa.Float()),
        sa.Column('height_cm', sa.Float()),
        sa.Column('is_overweight', sa.Boolean()),
        sa.Column('is_oversize', sa.Boolean()),
        sa.Column('default_material_id', sa.Integer(), sa.ForeignKey('materials.id')),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), onupdate=sa.func.now()),
        sa.UniqueConstraint('supplier_id', 'canonical_part_number', name='uq_supplier_part_canonical'),
        sa.Index('ix_supplier_parts_number', 'supplier_id', 'supplier_part_number'),
    )

    op.create_table('supplier_part_originals',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('supplier_part_id', sa.Integer(), sa.ForeignKey('supplier_parts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('original_part_id', sa.Integer(), sa.ForeignKey('original_parts.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('supplier_part_id', 'original_part_id', name='uq_supplier_part_original'),
    )

    op.create_table('supplier_part_aliases',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('supplier_id', sa.Integer(), sa.ForeignKey('part_suppliers.id'), nullable=False),
        sa.Column('supplier_part_id', sa.Integer(), sa.ForeignKey('supplier_parts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('alias_part_number', sa.String(128), nullable=False),
        sa.Column('alias_canonical_part_number', sa.String(128), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('note', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('supplier_part_id', 'alias_canonical_part_number', name='uq_supplier_part_alias'),
        sa.Index('ix_supplier_part_aliases_lookup', 'supplier_id', 'alias_canonical_part_number'),
    )

    # Bundles
    op.create_table('supplier_bundles',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('original_part_id', sa.Integer(), sa.ForeignKey('original_parts.id')),
        sa.Column('name', sa.String(255)),
    )

    op.create_table('supplier_bundle_items',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('bundle_id', sa.Integer(), sa.ForeignKey('supplier_bundles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role_label', sa.String(255)),
    )

    op.create_table('supplier_bundle_item_links',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('item_id', sa.Integer(), sa.ForeignKey('supplier_bundle_items.id', ondelete='CASCADE'), nullable=False),
        sa.Column('supplier_part_id', sa.Integer(), sa.ForeignKey('supplier_parts.id'), nullable=False),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('note', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('item_id', 'supplier_part_id', name='uq_bundle_item_link'),
    )

    op.create_table('rfq_supplier_line_selections',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('rfq_supplier_id', sa.Integer(), sa.ForeignKey('rfq_suppliers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rfq_item_id', sa.Integer(), sa.ForeignKey('rfq_items.id', ondelete='CASCADE'), nullable=False),
        sa.Column('selection_key', sa.String(128), nullable=False),
        sa.Column('line_type', sa.String(32), nullable=False, server_default='LINE'),
        sa.Column('line_label', sa.String(255)),
        sa.Column('line_description', sa.Text()),
        sa.Column('original_part_id', sa.Integer(), sa.ForeignKey('original_parts.id')),
        sa.Column('alt_original_part_id', sa.Integer(), sa.ForeignKey('original_parts.id')),
        sa.Column('bundle_id', sa.Integer(), sa.ForeignKey('supplier_bundles.id')),
        sa.Column('bundle_item_id', sa.Integer(), sa.ForeignKey('supplier_bundle_items.id')),
        sa.Column('use_existing_price', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint('rfq_supplier_id', 'rfq_item_id', 'selection_key', name='uq_line_selection_key'),
    )

    # Supplier responses
    op.create_table('rfq_supplier_responses',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('rfq_supplier_id', sa.Integer(), sa.ForeignKey('rfq_suppliers.id'), nullable=False, unique=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='received'),
        sa.Column('created_by_user_id', sa.Integer()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), onupdate=sa.func.now()),
    )

    op.create_table('rfq_response_revisions',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('rfq_supplier_response_id', sa.Integer(), sa.ForeignKey('rfq_supplier_responses.id'), nullable=False),
        sa.Column('rev_number', sa.Integer(), nullable=False),
        sa.Column('note', sa.Text()),
        sa.Column('created_by_user_id', sa.Integer()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('rfq_supplier_response_id', 'rev_number', name='uq_response_rev_number'),
    )

    op.create_table('rfq_response_lines',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('rfq_response_revision_id', sa.Integer(), sa.ForeignKey('rfq_response_revisions.id'), nullable=False),
        sa.Column('rfq_item_id', sa.Integer(), sa.ForeignKey('rfq_items.id'), nullable=False),
        sa.Column('selection_key', sa.String(128)),
        sa.Column('supplier_part_id', sa.Integer(), sa.ForeignKey('supplier_parts.id')),
        sa.Column('original_part_id', sa.Integer(), sa.ForeignKey('original_parts.id')),
        sa.Column('requested_original_part_id', sa.Integer(), sa.ForeignKey('original_parts.id')),
        sa.Column('bundle_id', sa.Integer(), sa.ForeignKey('supplier_bundles.id')),
        sa.Column('rfq_item_component_id', sa.Integer(), sa.ForeignKey('rfq_item_components.id')),
        sa.Column('based_on_response_line_id', sa.Integer(), sa.ForeignKey('rfq_response_lines.id')),
        sa.Column('offer_type', sa.String(16), nullable=False, server_default='UNKNOWN'),
        sa.Column('supplier_reply_status', sa.String(32), nullable=False, server_default='QUOTED'),
        sa.Column('offered_qty', sa.Float()),
        sa.Column('moq', sa.Integer()),
        sa.Column('packaging', sa.String(255)),
        sa.Column('lead_time_days', sa.Integer()),
        sa.Column('price', sa.Float()),
        sa.Column('currency', sa.String(3)),
        sa.Column('validity_days', sa.Integer()),
        sa.Column('payment_terms', sa.String(255)),
        sa.Column('incoterms', sa.String(16)),
        sa.Column('note', sa.Text()),
        sa.Column('entry_source', sa.String(32), nullable=False, server_default='SUPPLIER_FILE'),
        sa.Column('change_reason', sa.Text()),
        sa.Column('created_by_user_id', sa.Integer()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Index('ix_response_lines_revision', 'rfq_response_revision_id'),
        sa.Index('ix_response_lines_item', 'rfq_item_id'),
    )

    op.create_table('rfq_response_line_actions',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('rfq_response_line_id', sa.Integer(), sa.ForeignKey('rfq_response_lines.id'), nullable=False, index=True),
        sa.Column('action_type', sa.String(32), nullable=False),
        sa.Column('payload_json', sa.JSON()),
        sa.Column('reason', sa.Text()),
        sa.Column('created_by_user_id', sa.Integer()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table('rfq_supplier_line_status',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('rfq_supplier_id', sa.Integer(), sa.ForeignKey('rfq_suppliers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rfq_item_id', sa.Integer(), sa.ForeignKey('rfq_items.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(32), nullable=False, server_default='NONE'),
        sa.Column('source_type', sa.String(32)),
        sa.Column('source_ref', sa.String(64)),
        sa.Column('note', sa.Text()),
        sa.Column('last_request_rfq_revision_id', sa.Integer(), sa.ForeignKey('rfq_revisions.id')),
        sa.Column('last_response_revision_id', sa.Integer(), sa.ForeignKey('rfq_response_revisions.id')),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('rfq_supplier_id', 'rfq_item_id', name='uq_line_status_pair'),
    )

    # Price history
    op.create_table('supplier_part_prices',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('supplier_part_id', sa.Integer(), sa.ForeignKey('supplier_parts.id'), nullable=False, index=True),
        sa.Column('material_id', sa.Integer(), sa.ForeignKey('materials.id')),
        sa.Column('price', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('comment', sa.Text()),
        sa.Column('offer_type', sa.String(16)),
        sa.Column('lead_time_days', sa.Integer()),
        sa.Column('min_order_qty', sa.Integer()),
        sa.Column('packaging', sa.String(255)),
        sa.Column('validity_days', sa.Integer()),
        sa.Column('source_type', sa.String(16), nullable=False),
        sa.Column('source_subtype', sa.String(32)),
        sa.Column('source_id', sa.Integer()),
        sa.Column('created_by_user_id', sa.Integer()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Index('ix_supplier_part_prices_source', 'source_type', 'source_id'),
    )


def downgrade() -> None:
    # Drop tables in reverse order (respecting foreign keys)
    op.drop_table('supplier_part_prices')
    op.drop_table('rfq_supplier_line_status')
    op.drop_table('rfq_response_line_actions')
    op.drop_table('rfq_response_lines')
    op.drop_table('rfq_response_revisions')
    op.drop_table('rfq_supplier_responses')
    op.drop_table('rfq_supplier_line_selections')
    op.drop_table('supplier_bundle_item_links')
    op.drop_table('supplier_bundle_items')
    op.drop_table('supplier_bundles')
    op.drop_table('supplier_part_aliases')
    op.drop_table('supplier_part_originals')
    op.drop_table('supplier_parts')
    op.drop_table('rfq_suppliers')
    op.drop_table('rfq_item_components')
    op.drop_table('rfq_items')
    op.drop_table('rfq_revisions')
    op.drop_table('rfqs')
    op.drop_table('client_request_revision_items')
    op.drop_table('client_request_revisions')
    op.drop_table('client_requests')
    op.drop_table('materials')
    op.drop_table('original_parts')
    op.drop_table('part_suppliers')
