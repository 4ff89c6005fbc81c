"""Executor search flags: premium listing and verified identity

Revision ID: 0002_executor_search_flags
Revises: 0001_order_engine
Create Date: 2026-10-19 16:30:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0002_executor_search_flags'
down_revision = '0001_order_engine'
branch_labels = None
depends_on = None


def upgrade():
    op.add_column(
        'executor_profiles',
        sa.Column('is_premium', sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.add_column(
        'executor_profiles',
        sa.Column('is_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index('ix_executor_profiles_search', 'executor_profiles', ['is_available', 'is_premium', 'rating'])


def downgrade():
    op.drop_index('ix_executor_profiles_search', table_name='executor_profiles')
    op.drop_column('executor_profiles', 'is_verified')
    op.drop_column('executor_profiles', 'is_premium')
