"""create_google_sync_tables

Revision ID: a1c4e7f20b13
Revises:
Create Date: 2026-10-19 09:12:44.318202

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'a1c4e7f20b13'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create credential, raw event, job, sync prefs and sync audit tables."""
    op.create_table('user_integrations',
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=False, server_default='google'),
        sa.Column('service', sa.String(length=50), nullable=False, comment='gmail | calendar'),
        sa.Column('access_token', sa.Text(), nullable=False, comment='Fernet-encrypted access token'),
        sa.Column('refresh_token', sa.Text(), nullable=True, comment='Fernet-encrypted refresh token'),
        sa.Column('expiry_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('user_id', 'provider', 'service')
    )

    op.create_table('raw_events',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=False, comment='gmail | calendar'),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('contact_id', sa.UUID(), nullable=True),
        sa.Column('batch_id', sa.UUID(), nullable=True),
        sa.Column('source_meta', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('source_id', sa.Text(), nullable=True, comment='Provider item id (Gmail message id / Calendar event id)'),
        sa.Column('processed', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_raw_events_user_provider_occurred', 'raw_events', ['user_id', 'provider', 'occurred_at'])
    op.create_index('idx_raw_events_batch_id', 'raw_events', ['batch_id'])

    op.create_table('jobs',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('kind', sa.String(length=100), nullable=False),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='queued'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('batch_id', sa.UUID(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_jobs_status_created', 'jobs', ['status', 'created_at'])

    op.create_table('user_sync_prefs',
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('gmail_query', sa.Text(), nullable=False, server_default='category:primary -in:chats -in:drafts newer_than:30d'),
        sa.Column('gmail_label_includes', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('gmail_label_excludes', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text('\'["Promotions", "Social", "Forums", "Updates"]\'::jsonb')),
        sa.Column('calendar_include_organizer_self', sa.Boolean(), nullable=False, server_default=sa.text('true'), comment='When true, skip events organized by someone else'),
        sa.Column('calendar_include_private', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('calendar_time_window_days', sa.Integer(), nullable=False, server_default=sa.text('60')),
        sa.Column('calendar_future_days', sa.Integer(), nullable=True, server_default=sa.text('90')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('user_id')
    )

    op.create_table('sync_audit',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=False),
        sa.Column('action', sa.String(length=20), nullable=False, comment='preview | approve | undo'),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_sync_audit_user_provider_created', 'sync_audit', ['user_id', 'provider', 'created_at'])


def downgrade() -> None:
    """Drop Google sync tables."""
    op.drop_index('idx_sync_audit_user_provider_created', table_name='sync_audit')
    op.drop_table('sync_audit')
    op.drop_table('user_sync_prefs')
    op.drop_index('idx_jobs_status_created', table_name='jobs')
    op.drop_table('jobs')
    op.drop_index('idx_raw_events_batch_id', table_name='raw_events')
    op.drop_index('idx_raw_events_user_provider_occurred', table_name='raw_events')
    op.drop_table('raw_events')
    op.drop_table('user_integrations')
