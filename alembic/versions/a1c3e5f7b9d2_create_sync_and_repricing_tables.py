"""create sync and repricing tables

Revision ID: a1c3e5f7b9d2
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'a1c3e5f7b9d2'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'marketplace_connections',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('tenant_id', sa.String(length=64), nullable=False, index=True),
        sa.Column('organization_id', sa.String(length=64), nullable=False, index=True),
        sa.Column('marketplace_id', sa.String(length=32), nullable=False, index=True),
        sa.Column('credential_reference', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='connected', index=True),
        sa.Column('sync_status', sa.String(length=32), nullable=False, server_default='idle', index=True),
        sa.Column('last_checked', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sync_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('tenant_id', 'marketplace_id', name='uq_connection_tenant_marketplace'),
    )

    op.create_table(
        'monitored_products',
        sa.Column('id', sa.String(length=160), primary_key=True),
        sa.Column('product_id', sa.String(length=64), nullable=False, index=True),
        sa.Column('sku', sa.String(length=128), nullable=True, index=True),
        sa.Column('organization_id', sa.String(length=64), nullable=False, index=True),
        sa.Column('marketplace_id', sa.String(length=32), nullable=False, index=True),
        sa.Column('marketplace_product_id', sa.String(length=128), nullable=True),
        sa.Column('is_monitoring', sa.Boolean(), nullable=False, server_default=sa.true(), index=True),
        sa.Column('monitoring_frequency', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('last_checked', sa.DateTime(timezone=True), nullable=True, index=True),
        sa.Column('current_price', sa.Float(), nullable=True),
        sa.Column('cost_price', sa.Float(), nullable=True),
        sa.Column('last_snapshot', sa.JSON(), nullable=True),
        sa.Column('snapshot_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('win_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('buy_box_win_percentage', sa.Float(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'repricing_rules',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('organization_id', sa.String(length=64), nullable=False, index=True),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true(), index=True),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('strategy', sa.String(length=50), nullable=False),
        sa.Column('parameters', sa.JSON(), nullable=False),
        sa.Column('min_price', sa.Float(), nullable=True),
        sa.Column('max_price', sa.Float(), nullable=True),
        sa.Column('marketplaces', sa.JSON(), nullable=False),
        sa.Column('interval_minutes', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('last_run', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_run', sa.DateTime(timezone=True), nullable=True, index=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'repricing_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('rule_id', sa.String(length=36), nullable=True, index=True),
        sa.Column('organization_id', sa.String(length=64), nullable=True, index=True),
        sa.Column('product_id', sa.String(length=64), nullable=False, index=True),
        sa.Column('sku', sa.String(length=128), nullable=True),
        sa.Column('marketplace_id', sa.String(length=32), nullable=False, index=True),
        sa.Column('success', sa.Boolean(), nullable=False, index=True),
        sa.Column('strategy', sa.String(length=50), nullable=True),
        sa.Column('action', sa.String(length=20), nullable=False),
        sa.Column('previous_price', sa.Float(), nullable=True),
        sa.Column('new_price', sa.Float(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), index=True),
    )

    op.create_table(
        'ingested_records',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.String(length=64), nullable=False, index=True),
        sa.Column('marketplace_id', sa.String(length=32), nullable=False, index=True),
        sa.Column('entity_type', sa.String(length=20), nullable=False, index=True),
        sa.Column('external_id', sa.String(length=255), nullable=False),
        sa.Column('checksum', sa.String(length=64), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('first_seen_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('last_seen_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            'tenant_id', 'marketplace_id', 'entity_type', 'external_id',
            name='uq_ingested_record_identity',
        ),
    )


def downgrade() -> None:
    op.drop_table('ingested_records')
    op.drop_table('repricing_events')
    op.drop_table('repricing_rules')
    op.drop_table('monitored_products')
    op.drop_table('marketplace_connections')
