"""Initial schema: users, ip_usage, saved_responses, processed_webhook_events

Revision ID: 3f1c2a7b9d04
Revises: 
Create Date: 2025-12-01 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f1c2a7b9d04'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

subscription_type = sa.Enum('standard', 'premium', name='subscriptiontype')
subscription_status = sa.Enum('active', 'inactive', name='subscriptionstatus')
json_type = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Create usage, subscription and webhook bookkeeping tables."""
    # 1. Accounts: usage record + subscription record
    op.create_table(
        'users',
        *_timestamps(),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('picture', sa.String(), nullable=True),
        sa.Column('daily_usage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_usage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_used', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('last_reset', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('daily_usage_history', json_type, nullable=False, server_default='{}'),
        sa.Column('subscription_type', subscription_type, nullable=False, server_default='standard'),
        sa.Column('subscription_status', subscription_status, nullable=False, server_default='inactive'),
        sa.Column('subscription_updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('is_trial', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('trial_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('trial_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('trial_ending_soon', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('subscription_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('stripe_customer_id', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_users_id'), 'users', ['id'])
    op.create_index(op.f('ix_users_created_at'), 'users', ['created_at'])
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
    op.create_index(op.f('ix_users_subscription_status'), 'users', ['subscription_status'])
    op.create_index(op.f('ix_users_stripe_customer_id'), 'users', ['stripe_customer_id'], unique=True)

    # 2. Anonymous usage per network address
    op.create_table(
        'ip_usage',
        *_timestamps(),
        sa.Column('ip_address', sa.String(), nullable=False),
        sa.Column('daily_usage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_usage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_used', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('last_reset', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_ip_usage_id'), 'ip_usage', ['id'])
    op.create_index(op.f('ix_ip_usage_created_at'), 'ip_usage', ['created_at'])
    op.create_index(op.f('ix_ip_usage_ip_address'), 'ip_usage', ['ip_address'], unique=True)

    # 3. Saved responses (depends on users)
    op.create_table(
        'saved_responses',
        *_timestamps(),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('context', sa.Text(), nullable=True),
        sa.Column('last_message', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_saved_responses_id'), 'saved_responses', ['id'])
    op.create_index(op.f('ix_saved_responses_created_at'), 'saved_responses', ['created_at'])
    op.create_index(op.f('ix_saved_responses_user_id'), 'saved_responses', ['user_id'])

    # 4. Provider events already applied
    op.create_table(
        'processed_webhook_events',
        *_timestamps(),
        sa.Column('event_id', sa.String(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('customer_id', sa.String(), nullable=True),
        sa.Column('outcome', sa.String(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_processed_webhook_events_id'), 'processed_webhook_events', ['id'])
    op.create_index(op.f('ix_processed_webhook_events_created_at'), 'processed_webhook_events', ['created_at'])
    op.create_index(op.f('ix_processed_webhook_events_event_id'), 'processed_webhook_events', ['event_id'], unique=True)
    op.create_index(op.f('ix_processed_webhook_events_event_type'), 'processed_webhook_events', ['event_type'])
    op.create_index(op.f('ix_processed_webhook_events_customer_id'), 'processed_webhook_events', ['customer_id'])


def downgrade() -> None:
    """Drop all metering tables."""
    op.drop_table('processed_webhook_events')
    op.drop_table('saved_responses')
    op.drop_table('ip_usage')
    op.drop_table('users')
    subscription_status.drop(op.get_bind(), checkfirst=True)
    subscription_type.drop(op.get_bind(), checkfirst=True)
