"""add price_recommendations table

Revision ID: 001
Revises:
Create Date: 2025-11-17 00:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'price_recommendations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),

        sa.Column('product_name', sa.String(200), nullable=False),

        # Unidade e atributos derivados
        sa.Column('product_unit', sa.String(50), nullable=True),
        sa.Column('product_unit_kind', sa.String(20), nullable=True),
        sa.Column('product_unit_kg', sa.Numeric(10, 3), nullable=True),
        sa.Column('pack_count', sa.Numeric(10, 2), nullable=True),
        sa.Column('price_per_kg', sa.Numeric(12, 2), nullable=True),

        # Precos
        sa.Column('market_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('suggested_price', sa.Numeric(12, 2), nullable=False),

        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('algorithm_version', sa.String(50), nullable=False),

        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_name', 'date', 'algorithm_version', name='uq_price_recommendation_name_date_source'),
    )

    op.create_index('ix_price_recommendations_id', 'price_recommendations', ['id'])
    op.create_index('ix_price_recommendations_product_name', 'price_recommendations', ['product_name'])
    op.create_index('ix_price_recommendations_date', 'price_recommendations', ['date'])
    op.create_index('idx_price_recommendations_name_date', 'price_recommendations', ['product_name', 'date'])


def downgrade() -> None:
    op.drop_index('idx_price_recommendations_name_date')
    op.drop_index('ix_price_recommendations_date')
    op.drop_index('ix_price_recommendations_product_name')
    op.drop_index('ix_price_recommendations_id')
    op.drop_table('price_recommendations')
