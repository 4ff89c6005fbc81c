"""Order engine schema: categories, executor profiles, orders, applications

Revision ID: 0001_order_engine
Revises:
Create Date: 2026-10-19 12:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_order_engine'
down_revision = None
branch_labels = None
depends_on = None

ORDER_STATUSES = ('draft', 'open', 'in_progress', 'waiting_confirmation', 'completed', 'cancelled', 'disputed')
PRICE_TYPES = ('fixed', 'hourly', 'negotiable')
URGENCIES = ('low', 'medium', 'high', 'urgent')
APPLICATION_STATUSES = ('pending', 'accepted', 'rejected', 'withdrawn')


def _timestamps(with_updated=True):
    columns = [sa.Column('created_at', sa.DateTime(), server_default=sa.func.now())]
    if with_updated:
        columns.append(sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()))
    return columns


def upgrade():
    op.create_table(
        'service_categories',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('name_uz', sa.String(100), nullable=False),
        sa.Column('name_ru', sa.String(100), nullable=False),
        sa.Column('description_uz', sa.Text()),
        sa.Column('description_ru', sa.Text()),
        sa.Column('icon_url', sa.String(500)),
        sa.Column('color', sa.String(7)),
        sa.Column('parent_id', sa.BigInteger(), sa.ForeignKey('service_categories.id'), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_popular', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('services_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('slug', sa.String(200), nullable=False),
        sa.Column('meta_title', sa.String(200)),
        sa.Column('meta_description', sa.String(500)),
        *_timestamps(),
    )
    op.create_index('ix_service_categories_id', 'service_categories', ['id'])
    op.create_index('ix_service_categories_parent_id', 'service_categories', ['parent_id'])
    op.create_index('ix_service_categories_slug', 'service_categories', ['slug'], unique=True)

    op.create_table(
        'executor_profiles',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('location_lat', sa.Float()),
        sa.Column('location_lng', sa.Float()),
        sa.Column('work_radius_km', sa.Float(), nullable=False, server_default='10'),
        sa.Column('is_available', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('rating', sa.Float(), nullable=False, server_default='0'),
        sa.Column('reviews_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completed_orders', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(with_updated=False),
    )
    op.create_index('ix_executor_profiles_id', 'executor_profiles', ['id'])
    op.create_index('ix_executor_profiles_user_id', 'executor_profiles', ['user_id'], unique=True)

    op.create_table(
        'executor_categories',
        sa.Column('executor_id', sa.BigInteger(), sa.ForeignKey('executor_profiles.id'), primary_key=True),
        sa.Column('category_id', sa.BigInteger(), sa.ForeignKey('service_categories.id'), primary_key=True),
    )

    op.create_table(
        'orders',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('customer_id', sa.BigInteger(), nullable=False),
        sa.Column('category_id', sa.BigInteger(), sa.ForeignKey('service_categories.id'), nullable=True),
        sa.Column('executor_id', sa.BigInteger(), sa.ForeignKey('executor_profiles.id'), nullable=True),
        sa.Column('title', sa.String(200)),
        sa.Column('description', sa.Text()),
        sa.Column('price_type', sa.Enum(*PRICE_TYPES, name='order_price_type_enum')),
        sa.Column('budget_from', sa.Numeric(12, 2)),
        sa.Column('budget_to', sa.Numeric(12, 2)),
        sa.Column('agreed_price', sa.Numeric(12, 2)),
        sa.Column('urgency', sa.Enum(*URGENCIES, name='order_urgency_enum'), nullable=False, server_default='medium'),
        sa.Column('address', sa.String(500)),
        sa.Column('location_lat', sa.Float()),
        sa.Column('location_lng', sa.Float()),
        sa.Column('attachments', sa.JSON(), nullable=False),
        sa.Column('status', sa.Enum(*ORDER_STATUSES, name='order_status_enum'), nullable=False, server_default='draft'),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('applications_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('views_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('preferred_start_date', sa.DateTime()),
        sa.Column('deadline', sa.DateTime()),
        sa.Column('actual_start_date', sa.DateTime()),
        sa.Column('actual_end_date', sa.DateTime()),
        sa.Column('cancellation_requested_at', sa.DateTime()),
        sa.Column('dispute_reason', sa.Text()),
        sa.Column('rating_by_customer', sa.Integer()),
        sa.Column('review_by_customer', sa.Text()),
        sa.Column('rating_by_executor', sa.Integer()),
        sa.Column('review_by_executor', sa.Text()),
        *_timestamps(),
    )
    op.create_index('ix_orders_id', 'orders', ['id'])
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_category_id', 'orders', ['category_id'])
    op.create_index('ix_orders_executor_id', 'orders', ['executor_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_status_published', 'orders', ['status', 'is_published'])
    op.create_index('ix_orders_category_status', 'orders', ['category_id', 'status'])

    op.create_table(
        'order_applications',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('order_id', sa.BigInteger(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('executor_id', sa.BigInteger(), sa.ForeignKey('executor_profiles.id'), nullable=False),
        sa.Column('proposed_price', sa.Numeric(12, 2)),
        sa.Column('proposed_duration_days', sa.Integer()),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('available_from', sa.DateTime()),
        sa.Column(
            'status',
            sa.Enum(*APPLICATION_STATUSES, name='application_status_enum'),
            nullable=False,
            server_default='pending',
        ),
        sa.Column('rejection_reason', sa.Text()),
        sa.Column('is_viewed', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index('ix_order_applications_id', 'order_applications', ['id'])
    op.create_index('ix_order_applications_order_created_at', 'order_applications', ['order_id', 'created_at'])
    # Индексы, которые держат инварианты заявок даже при гонках
    op.create_index(
        'uq_order_applications_live_per_executor',
        'order_applications',
        ['order_id', 'executor_id'],
        unique=True,
        postgresql_where=sa.text("status <> 'withdrawn'"),
    )
    op.create_index(
        'uq_order_applications_accepted',
        'order_applications',
        ['order_id'],
        unique=True,
        postgresql_where=sa.text("status = 'accepted'"),
    )


def downgrade():
    op.drop_index('uq_order_applications_accepted', table_name='order_applications')
    op.drop_index('uq_order_applications_live_per_executor', table_name='order_applications')
    op.drop_table('order_applications')
    op.drop_table('orders')
    op.drop_table('executor_categories')
    op.drop_table('executor_profiles')
    op.drop_table('service_categories')
    sa.Enum(name='application_status_enum').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='order_status_enum').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='order_urgency_enum').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='order_price_type_enum').drop(op.get_bind(), checkfirst=True)
