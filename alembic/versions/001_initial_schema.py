"""Initial schema: users, gmail_tokens, safe_senders, user_settings, history, rate limits

Revision ID: 001
Revises:
Create Date: 2025-11-03

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create initial database schema."""

    # Create users table
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    # Create gmail_tokens table (one row per user, tokens Fernet-encrypted)
    op.create_table(
        'gmail_tokens',
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('encrypted_access_token', sa.Text(), nullable=False),
        sa.Column('encrypted_refresh_token', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('user_id')
    )

    # Create safe_senders table
    op.create_table(
        'safe_senders',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('email_address', sa.String(), nullable=False),
        sa.Column('added_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'email_address', name='uq_safe_senders_user_email')
    )
    op.create_index(op.f('ix_safe_senders_user_id'), 'safe_senders', ['user_id'], unique=False)

    # Create user_settings table
    op.create_table(
        'user_settings',
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('safe_senders_required', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('training_mode_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('successful_actions_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('days_limit', sa.Integer(), nullable=True, server_default='30'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('user_id')
    )

    # Create rate_limit_tracking table
    op.create_table(
        'rate_limit_tracking',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('action_type', sa.String(), nullable=False),
        sa.Column('actions_count', sa.Integer(), nullable=False),
        sa.Column('window_start', sa.DateTime(), nullable=False),
        sa.Column('window_end', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_rate_limit_tracking_user_id'), 'rate_limit_tracking', ['user_id'], unique=False)
    op.create_index(op.f('ix_rate_limit_tracking_window_end'), 'rate_limit_tracking', ['window_end'], unique=False)

    # Create email_history table
    op.create_table(
        'email_history',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('email_id', sa.String(), nullable=False),
        sa.Column('thread_id', sa.String(), nullable=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('action_type', sa.String(), nullable=False),
        sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "action IN ('delete', 'archive', 'mark_read', 'mark_unread', 'apply_rule', 'unsubscribe')",
            name='ck_email_history_action'
        ),
        sa.CheckConstraint(
            "action_type IN ('manual', 'automated')",
            name='ck_email_history_action_type'
        )
    )
    op.create_index(op.f('ix_email_history_user_id'), 'email_history', ['user_id'], unique=False)
    op.create_index(op.f('ix_email_history_email_id'), 'email_history', ['email_id'], unique=False)
    op.create_index(op.f('ix_email_history_created_at'), 'email_history', ['created_at'], unique=False)

    # email_history is append-only
    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_email_history_update()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'email_history table is append-only';
        END;
        $$ LANGUAGE plpgsql;
    """)

    op.execute("""
        CREATE TRIGGER email_history_immutable
        BEFORE UPDATE ON email_history
        FOR EACH ROW EXECUTE FUNCTION prevent_email_history_update();
    """)

    # Create action_history table
    op.create_table(
        'action_history',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('action_type', sa.String(), nullable=False),
        sa.Column('super_action', sa.String(), nullable=True),
        sa.Column('affected_emails', postgresql.ARRAY(sa.String()), nullable=False),
        sa.Column('affected_count', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('error_details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('can_undo_until', sa.DateTime(), nullable=True),
        sa.Column('undone_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "status IN ('processing', 'completed', 'partially_failed', 'undone')",
            name='ck_action_history_status'
        )
    )
    op.create_index(op.f('ix_action_history_user_id'), 'action_history', ['user_id'], unique=False)
    op.create_index(op.f('ix_action_history_created_at'), 'action_history', ['created_at'], unique=False)


def downgrade() -> None:
    """Drop all tables."""

    # Drop tables in reverse order (handle foreign keys)
    op.drop_index(op.f('ix_action_history_created_at'), table_name='action_history')
    op.drop_index(op.f('ix_action_history_user_id'), table_name='action_history')
    op.drop_table('action_history')

    op.execute("DROP TRIGGER IF EXISTS email_history_immutable ON email_history;")
    op.execute("DROP FUNCTION IF EXISTS prevent_email_history_update();")
    op.drop_index(op.f('ix_email_history_created_at'), table_name='email_history')
    op.drop_index(op.f('ix_email_history_email_id'), table_name='email_history')
    op.drop_index(op.f('ix_email_history_user_id'), table_name='email_history')
    op.drop_table('email_history')

    op.drop_index(op.f('ix_rate_limit_tracking_window_end'), table_name='rate_limit_tracking')
    op.drop_index(op.f('ix_rate_limit_tracking_user_id'), table_name='rate_limit_tracking')
    op.drop_table('rate_limit_tracking')

    op.drop_table('user_settings')

    op.drop_index(op.f('ix_safe_senders_user_id'), table_name='safe_senders')
    op.drop_table('safe_senders')

    op.drop_table('gmail_tokens')

    op.drop_index(op.f('ix_users_email'), table_name='users')
    op.drop_table('users')
