"""initial fulfillment schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

Creates reference tables, orders, QC lanes, outbounds and complaints.
Status columns are VARCHAR with CHECK constraints so the same schema runs on
PostgreSQL and SQLite.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None

PROCESSING_STATUSES = (
    'ready_to_pick', 'picking_progress', 'picking_pending', 'picking_completed',
    'qc_progress', 'qc_completed', 'outbound_completed',
)
EVENT_STATUSES = ('in_progress', 'canceled', 'duplicated')
QC_STATUSES = ('in_progress', 'pending', 'completed')


def _status(values, name):
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=True, length=50)


def _user_fk(name):
    return sa.Column(name, sa.Integer(), sa.ForeignKey('users.id'), nullable=True)


def _qc_tables(table, detail_table, fk):
    op.create_table(table,
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('tracking_number', sa.String(100), nullable=False),
        sa.Column('qc_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('status', _status(QC_STATUSES, 'qcstatus'), nullable=False, server_default='in_progress'),
        sa.Column('complained', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(f'ix_{table}_tracking_number', table, ['tracking_number'], unique=True)

    op.create_table(detail_table,
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column(fk, sa.Integer(), sa.ForeignKey(f'{table}.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('box_id', sa.Integer(), sa.ForeignKey('boxes.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.UniqueConstraint(fk, 'box_id', name=f'uq_{table[:-1]}_detail_box'),
    )


def upgrade() -> None:
    # Reference data
    op.create_table('users',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('username', sa.String(100), nullable=False),
        sa.Column('full_name', sa.String(255)),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)

    op.create_table('boxes',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('box_code', sa.String(50), unique=True, nullable=False),
        sa.Column('box_name', sa.String(100), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table('expeditions',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('expedition_code', sa.String(50), unique=True, nullable=False),
        sa.Column('expedition_name', sa.String(100), nullable=False),
        sa.Column('slug', sa.String(100), unique=True, nullable=False),
        sa.Column('expedition_color', sa.String(20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table('channels',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('channel_code', sa.String(50), unique=True, nullable=False),
        sa.Column('channel_name', sa.String(100), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table('stores',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('store_code', sa.String(50), unique=True, nullable=False),
        sa.Column('store_name', sa.String(100), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Orders
    op.create_table('orders',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('order_ginee_id', sa.String(100), nullable=False),
        sa.Column('processing_status', _status(PROCESSING_STATUSES, 'processingstatus'),
                  nullable=False, server_default='ready_to_pick'),
        sa.Column('event_status', _status(EVENT_STATUSES, 'eventstatus'),
                  nullable=False, server_default='in_progress'),
        sa.Column('channel', sa.String(100)),
        sa.Column('store', sa.String(100)),
        sa.Column('buyer', sa.String(150)),
        sa.Column('address', sa.Text()),
        sa.Column('courier', sa.String(100)),
        sa.Column('tracking_number', sa.String(100), nullable=True),
        sa.Column('sent_before', sa.DateTime(timezone=True), nullable=False),
        _user_fk('assigned_by'),
        sa.Column('assigned_at', sa.DateTime(timezone=True)),
        _user_fk('picked_by'),
        sa.Column('picked_at', sa.DateTime(timezone=True)),
        _user_fk('pending_by'),
        sa.Column('pending_at', sa.DateTime(timezone=True)),
        _user_fk('changed_by'),
        sa.Column('changed_at', sa.DateTime(timezone=True)),
        _user_fk('duplicated_by'),
        sa.Column('duplicated_at', sa.DateTime(timezone=True)),
        _user_fk('canceled_by'),
        sa.Column('canceled_at', sa.DateTime(timezone=True)),
        sa.Column('complained', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_orders_order_ginee_id', 'orders', ['order_ginee_id'], unique=True)
    op.create_index('ix_orders_tracking_number', 'orders', ['tracking_number'], unique=True)

    op.create_table('order_details',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('sku', sa.String(255), nullable=False),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('variant', sa.String(100)),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price', sa.Integer(), nullable=False),
        sa.Column('is_valid', sa.Boolean(), nullable=False, server_default=sa.false()),
    )

    op.create_table('picked_orders',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False, index=True),
        sa.Column('picked_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # QC lanes
    _qc_tables('qc_ribbons', 'qc_ribbon_details', 'qc_ribbon_id')
    _qc_tables('qc_onlines', 'qc_online_details', 'qc_online_id')

    # Outbound
    op.create_table('outbounds',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('tracking_number', sa.String(100), nullable=False),
        sa.Column('outbound_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('expedition', sa.String(100), nullable=False),
        sa.Column('expedition_slug', sa.String(100), nullable=False),
        sa.Column('expedition_color', sa.String(20), nullable=False),
        sa.Column('complained', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_outbounds_tracking_number', 'outbounds', ['tracking_number'], unique=True)

    # Complaints
    op.create_table('complains',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('code', sa.String(50), unique=True, nullable=False),
        sa.Column('tracking_number', sa.String(100), nullable=False),
        sa.Column('order_ginee_id', sa.String(100), nullable=False, index=True),
        sa.Column('channel_id', sa.Integer(), sa.ForeignKey('channels.id'), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('solution', sa.Text()),
        sa.Column('total_fee', sa.Integer()),
        sa.Column('checked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_complains_tracking_number', 'complains', ['tracking_number'], unique=True)
    op.create_index('ix_complains_created_at', 'complains', ['created_at'])

    op.create_table('complain_product_details',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('complain_id', sa.Integer(), sa.ForeignKey('complains.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('product_sku', sa.String(255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price', sa.Integer(), nullable=False),
    )

    op.create_table('complain_user_details',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('complain_id', sa.Integer(), sa.ForeignKey('complains.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('fee_charge', sa.Integer(), nullable=False, server_default='0'),
        sa.UniqueConstraint('complain_id', 'user_id', name='uq_complain_user_detail_user'),
    )


def downgrade() -> None:
    # Drop tables in reverse order (respecting foreign keys)
    op.drop_table('complain_user_details')
    op.drop_table('complain_product_details')
    op.drop_table('complains')
    op.drop_table('outbounds')
    op.drop_table('qc_online_details')
    op.drop_table('qc_onlines')
    op.drop_table('qc_ribbon_details')
    op.drop_table('qc_ribbons')
    op.drop_table('picked_orders')
    op.drop_table('order_details')
    op.drop_table('orders')
    op.drop_table('stores')
    op.drop_table('channels')
    op.drop_table('expeditions')
    op.drop_table('boxes')
    op.drop_table('users')
