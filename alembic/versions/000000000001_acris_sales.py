"""acris_sales

Revision ID: 000000000001
Revises: 000000000000
Create Date: 2026-10-17 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '000000000001'
down_revision: Union[str, Sequence[str], None] = '000000000000'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'acris_sales',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('source_id', sa.String(length=100), nullable=False, comment='Natural key from the source dataset'),
        sa.Column('bbl', sa.String(length=10), nullable=True, comment='Normalized 10-digit BBL when the source provides one'),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('raw_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='Upstream payload as received'),
        sa.Column('fetched_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('sale_price', sa.Float(), nullable=False),
        sa.Column('sale_date', sa.Date(), nullable=False),
        sa.Column('apartment_number', sa.String(length=50), nullable=True),
        sa.Column('building_class_category', sa.String(length=100), nullable=True),
        sa.Column('gross_square_feet', sa.Integer(), nullable=True),
        sa.Column('borough', sa.String(length=20), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('zip_code', sa.String(length=10), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_id'),
    )
    op.create_index('ix_acris_sales_bbl', 'acris_sales', ['bbl'], unique=False)
    op.create_index('idx_acris_sales_sale_date', 'acris_sales', ['sale_date'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_acris_sales_sale_date', table_name='acris_sales')
    op.drop_index('ix_acris_sales_bbl', table_name='acris_sales')
    op.drop_table('acris_sales')
