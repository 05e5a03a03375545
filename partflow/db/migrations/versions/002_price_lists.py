"""supplier price lists

Revision ID: 002_price_lists
Revises: 001_initial
Create Date: 2026-09-28

Adds price lists and their imported lines. Line status, match method and
confidence are written by the matcher on import and on every line edit.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '002_price_lists'
down_revision = '001_initial'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table('supplier_price_lists',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('supplier_id', sa.Integer(), sa.ForeignKey('part_suppliers.id'), nullable=False, index=True),
        sa.Column('list_code', sa.String(64)),
        sa.Column('list_name', sa.String(255)),
        sa.Column('status', sa.String(16), nullable=False, server_default='draft'),
        sa.Column('currency_default', sa.String(3)),
        sa.Column('valid_from', sa.Date()),
        sa.Column('valid_to', sa.Date()),
        sa.Column('note', sa.Text()),
        sa.Column('source_file_name', sa.String(255)),
        sa.Column('uploaded_by_user_id', sa.Integer()),
        sa.Column('activated_by_user_id', sa.Integer()),
        sa.Column('activated_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), onupdate=sa.func.now()),
    )

    # At most one active list per supplier
    op.create_index(
        'uq_supplier_price_lists_active',
        'supplier_price_lists',
        ['supplier_id'],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )

    op.create_table('supplier_price_list_lines',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('supplier_price_list_id', sa.Integer(), sa.ForeignKey('supplier_price_lists.id', ondelete='CASCADE'), nullable=False),
        sa.Column('source_row_no', sa.Integer()),
        sa.Column('line_status', sa.String(32), nullable=False, server_default='pending'),
        sa.Column('supplier_part_number_raw', sa.String(255)),
        sa.Column('supplier_part_number_canonical', sa.String(128)),
        sa.Column('description_raw', sa.Text()),
        sa.Column('material_code_raw', sa.String(64)),
        sa.Column('price', sa.Float()),
        sa.Column('currency', sa.String(3)),
        sa.Column('offer_type', sa.String(16)),
        sa.Column('lead_time_days', sa.Integer()),
        sa.Column('min_order_qty', sa.Integer()),
        sa.Column('packaging', sa.String(255)),
        sa.Column('validity_days', sa.Integer()),
        sa.Column('valid_from', sa.Date()),
        sa.Column('valid_to', sa.Date()),
        sa.Column('comment', sa.Text()),
        sa.Column('matched_supplier_part_id', sa.Integer(), sa.ForeignKey('supplier_parts.id')),
        sa.Column('matched_material_id', sa.Integer(), sa.ForeignKey('materials.id')),
        sa.Column('match_confidence', sa.Integer()),
        sa.Column('match_method', sa.String(32)),
        sa.Column('match_note', sa.Text()),
        sa.Column('imported_by_user_id', sa.Integer()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Index('ix_price_list_lines_list_status', 'supplier_price_list_id', 'line_status'),
    )


def downgrade() -> None:
    op.drop_table('supplier_price_list_lines')
    op.drop_index('uq_supplier_price_lists_active', table_name='supplier_price_lists')
    op.drop_table('supplier_price_lists')
