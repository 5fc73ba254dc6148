"""initial_schema

Revision ID: 001
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def _mapping_columns():
    return [
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('source_platform', sa.String(32), nullable=False),
        sa.Column('source_system_id', sa.String(255), nullable=False),
        sa.Column('target_platform', sa.String(32), nullable=False),
        sa.Column('target_system_id', sa.String(255), nullable=True),
        sa.Column('sync_status', sa.String(16), nullable=False),
        sa.Column('last_synced', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error_message', sa.String(1000), nullable=True),
        sa.Column('mapping_metadata', sa.JSON(), nullable=False),
    ]


def upgrade():
    op.create_table(
        'sync_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('direction', sa.String(32), nullable=False),
        sa.Column('data_types', sa.JSON(), nullable=False),
        sa.Column('filters', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('items_processed', sa.Integer(), nullable=False),
        sa.Column('items_succeeded', sa.Integer(), nullable=False),
        sa.Column('items_failed', sa.Integer(), nullable=False),
        sa.Column('errors', sa.JSON(), nullable=False),
        sa.Column('warnings', sa.JSON(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
    )
    op.create_index(op.f('ix_sync_logs_user_id'), 'sync_logs', ['user_id'])
    op.create_index(op.f('ix_sync_logs_status'), 'sync_logs', ['status'])
    op.create_index(op.f('ix_sync_logs_started_at'), 'sync_logs', ['started_at'])

    op.create_table(
        'sync_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('sync_log_id', sa.Integer(), sa.ForeignKey('sync_logs.id'), nullable=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('entity_type', sa.String(32), nullable=False),
        sa.Column('source_id', sa.String(255), nullable=False),
        sa.Column('target_id', sa.String(255), nullable=True),
        sa.Column('platform', sa.String(32), nullable=False),
        sa.Column('operation', sa.String(16), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('processing_time_ms', sa.Integer(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(op.f('ix_sync_history_sync_log_id'), 'sync_history', ['sync_log_id'])
    op.create_index(op.f('ix_sync_history_user_id'), 'sync_history', ['user_id'])

    op.create_table(
        'system_metrics',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('metric_name', sa.String(64), nullable=False),
        sa.Column('metric_type', sa.String(64), nullable=False),
        sa.Column('metric_value', sa.Float(), nullable=False),
        sa.Column('unit', sa.String(32), nullable=True),
        sa.Column('platform', sa.String(32), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(op.f('ix_system_metrics_user_id'), 'system_metrics', ['user_id'])
    op.create_index(op.f('ix_system_metrics_metric_name'), 'system_metrics', ['metric_name'])

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('platform', sa.String(32), nullable=False),
        sa.Column('platform_product_id', sa.String(255), nullable=False),
        sa.Column('sku', sa.String(255), nullable=True),
        sa.Column('name', sa.String(500), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Float(), nullable=True),
        sa.Column('inventory_quantity', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('attributes', sa.JSON(), nullable=False),
        sa.Column('last_platform_sync', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'platform', 'platform_product_id', name='uq_product_platform_record'),
    )
    op.create_index(op.f('ix_products_user_id'), 'products', ['user_id'])
    op.create_index(op.f('ix_products_platform'), 'products', ['platform'])
    op.create_index(op.f('ix_products_sku'), 'products', ['sku'])

    op.create_table(
        'restore_points',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('point_type', sa.String(16), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('total_snapshots', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('restored_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(op.f('ix_restore_points_user_id'), 'restore_points', ['user_id'])
    op.create_index(op.f('ix_restore_points_created_at'), 'restore_points', ['created_at'])

    op.create_table(
        'product_snapshots',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('entity_id', sa.String(255), nullable=False),
        sa.Column('platform', sa.String(32), nullable=False),
        sa.Column('snapshot_type', sa.String(16), nullable=False),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('checksum', sa.String(64), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('previous_snapshot_id', sa.Integer(), sa.ForeignKey('product_snapshots.id'), nullable=True),
        sa.Column('sync_log_id', sa.Integer(), sa.ForeignKey('sync_logs.id'), nullable=True),
        sa.Column('restore_point_id', sa.Integer(), sa.ForeignKey('restore_points.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    for column in ('user_id', 'entity_id', 'platform', 'sync_log_id', 'restore_point_id', 'created_at'):
        op.create_index(op.f(f'ix_product_snapshots_{column}'), 'product_snapshots', [column])

    op.create_table(
        'rollback_operations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('restore_point_id', sa.Integer(), sa.ForeignKey('restore_points.id'), nullable=True),
        sa.Column('target_timestamp', sa.DateTime(timezone=True), nullable=True),
        sa.Column('dry_run', sa.Boolean(), nullable=False),
        sa.Column('platforms', sa.JSON(), nullable=False),
        sa.Column('entity_ids', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('items_restored', sa.Integer(), nullable=False),
        sa.Column('items_failed', sa.Integer(), nullable=False),
        sa.Column('errors', sa.JSON(), nullable=False),
        sa.Column('warnings', sa.JSON(), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(op.f('ix_rollback_operations_user_id'), 'rollback_operations', ['user_id'])

    op.create_table(
        'change_log',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('entity_type', sa.String(32), nullable=False),
        sa.Column('entity_id', sa.String(255), nullable=False),
        sa.Column('platform', sa.String(32), nullable=False),
        sa.Column('operation', sa.String(16), nullable=False),
        sa.Column('field_name', sa.String(128), nullable=True),
        sa.Column('old_value', sa.JSON(), nullable=True),
        sa.Column('new_value', sa.JSON(), nullable=True),
        sa.Column('value_diff', sa.JSON(), nullable=True),
        sa.Column('change_source', sa.String(16), nullable=False),
        sa.Column('triggered_by', sa.String(128), nullable=True),
        sa.Column('sync_log_id', sa.Integer(), sa.ForeignKey('sync_logs.id'), nullable=True),
        sa.Column('before_snapshot_id', sa.Integer(), sa.ForeignKey('product_snapshots.id'), nullable=True),
        sa.Column('after_snapshot_id', sa.Integer(), sa.ForeignKey('product_snapshots.id'), nullable=True),
        sa.Column('changed_at', sa.DateTime(timezone=True), nullable=False),
    )
    for column in ('user_id', 'entity_id', 'sync_log_id', 'changed_at'):
        op.create_index(op.f(f'ix_change_log_{column}'), 'change_log', [column])

    op.create_table(
        'sync_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('event_type', sa.String(64), nullable=False),
        sa.Column('source', sa.String(32), nullable=False),
        sa.Column('entity_type', sa.String(32), nullable=False),
        sa.Column('entity_id', sa.String(255), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('correlation_id', sa.String(64), nullable=True),
        sa.Column('causation_id', sa.String(64), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('priority', sa.String(16), nullable=False),
        sa.Column('max_retries', sa.Integer(), nullable=False),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('business_impact', sa.String(16), nullable=True),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('retry_count', sa.Integer(), nullable=False),
        sa.Column('next_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    for column in ('event_type', 'source', 'entity_type', 'entity_id', 'user_id', 'correlation_id', 'status', 'occurred_at'):
        op.create_index(op.f(f'ix_sync_events_{column}'), 'sync_events', [column])

    op.create_table(
        'event_processing_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('event_id', sa.String(36), sa.ForeignKey('sync_events.id', ondelete='CASCADE'), nullable=False),
        sa.Column('processor', sa.String(128), nullable=False),
        sa.Column('result', sa.String(16), nullable=False),
        sa.Column('duration_ms', sa.Integer(), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(op.f('ix_event_processing_history_event_id'), 'event_processing_history', ['event_id'])

    op.create_table(
        'rate_limit_states',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('platform', sa.String(32), nullable=False),
        sa.Column('requests_this_minute', sa.Integer(), nullable=False),
        sa.Column('requests_this_hour', sa.Integer(), nullable=False),
        sa.Column('last_request_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('consecutive_errors', sa.Integer(), nullable=False),
        sa.Column('is_throttled', sa.Boolean(), nullable=False),
        sa.Column('throttle_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('user_id', 'platform', name='uq_rate_limit_user_platform'),
    )
    op.create_index(op.f('ix_rate_limit_states_user_id'), 'rate_limit_states', ['user_id'])

    op.create_table(
        'sync_configurations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('config_key', sa.String(128), nullable=False, unique=True),
        sa.Column('config_value', sa.JSON(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        'item_mappings',
        *_mapping_columns(),
        sa.Column('sku', sa.String(255), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'source_platform', 'source_system_id', name='uq_item_mappings_source'),
    )
    op.create_index(op.f('ix_item_mappings_sku'), 'item_mappings', ['sku'])

    op.create_table(
        'order_mappings',
        *_mapping_columns(),
        sa.Column('order_number', sa.String(64), nullable=True),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column('total_amount', sa.Float(), nullable=True),
        sa.Column('base_currency', sa.String(3), nullable=True),
        sa.Column('exchange_rate', sa.Float(), nullable=True),
        sa.Column('converted_amount', sa.Float(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'source_platform', 'source_system_id', name='uq_order_mappings_source'),
    )

    op.create_table(
        'customer_mappings',
        *_mapping_columns(),
        sa.Column('email', sa.String(255), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'source_platform', 'source_system_id', name='uq_customer_mappings_source'),
    )
    op.create_index(op.f('ix_customer_mappings_email'), 'customer_mappings', ['email'])

    for table in ('item_mappings', 'order_mappings', 'customer_mappings'):
        op.create_index(op.f(f'ix_{table}_user_id'), table, ['user_id'])
        op.create_index(op.f(f'ix_{table}_target_system_id'), table, ['target_system_id'])

    op.create_table(
        'alerts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('alert_type', sa.String(32), nullable=False),
        sa.Column('severity', sa.String(16), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('source', sa.String(64), nullable=True),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('alert_metadata', sa.JSON(), nullable=False),
        sa.Column('triggered_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(op.f('ix_alerts_user_id'), 'alerts', ['user_id'])
    op.create_index(op.f('ix_alerts_alert_type'), 'alerts', ['alert_type'])
    op.create_index(op.f('ix_alerts_triggered_at'), 'alerts', ['triggered_at'])


def downgrade():
    for table in (
        'alerts', 'customer_mappings', 'order_mappings', 'item_mappings',
        'sync_configurations', 'rate_limit_states', 'event_processing_history', 'sync_events',
        'change_log', 'rollback_operations', 'product_snapshots', 'restore_points',
        'products', 'system_metrics', 'sync_history', 'sync_logs',
    ):
        op.drop_table(table)
