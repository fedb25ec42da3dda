"""entitlements_baseline

Revision ID: 4c1e9a7d2b10
Revises:
Create Date: 2026-10-17 09:12:44.518302

Creates users, subscriptions, usage_records and usage_adjustments.
Only creates tables that don't exist yet.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '4c1e9a7d2b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def table_exists(table_name: str) -> bool:
    """Check if a table exists in the database."""
    bind = op.get_bind()
    inspector = inspect(bind)
    return table_name in inspector.get_table_names()


def upgrade() -> None:
    if not table_exists('users'):
        op.create_table('users',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('full_name', sa.String(), nullable=False),
            sa.Column('email', sa.String(), nullable=False),
            sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)
        op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    if not table_exists('subscriptions'):
        op.create_table('subscriptions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('plan', sa.String(), nullable=False),
            sa.Column('status', sa.String(), nullable=False),
            sa.Column('trial_start', sa.DateTime(), nullable=True),
            sa.Column('trial_end', sa.DateTime(), nullable=True),
            sa.Column('current_period_end', sa.DateTime(), nullable=False),
            sa.Column('past_due_since', sa.DateTime(), nullable=True),
            sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('canceled_at', sa.DateTime(), nullable=True),
            sa.Column('superseded_at', sa.DateTime(), nullable=True),
            sa.Column('stripe_customer_id', sa.String(), nullable=True),
            sa.Column('stripe_subscription_id', sa.String(), nullable=True),
            sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.Column('updated_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_subscriptions_id'), 'subscriptions', ['id'], unique=False)
        op.create_index(op.f('ix_subscriptions_user_id'), 'subscriptions', ['user_id'], unique=False)
        op.create_index(op.f('ix_subscriptions_superseded_at'), 'subscriptions', ['superseded_at'], unique=False)
        op.create_index(op.f('ix_subscriptions_stripe_customer_id'), 'subscriptions', ['stripe_customer_id'], unique=False)
        op.create_index(op.f('ix_subscriptions_stripe_subscription_id'), 'subscriptions', ['stripe_subscription_id'], unique=False)
        op.create_index(
            'uq_subscriptions_user_current', 'subscriptions', ['user_id'], unique=True,
            postgresql_where=sa.text('superseded_at IS NULL'),
            sqlite_where=sa.text('superseded_at IS NULL'),
        )

    if not table_exists('usage_records'):
        op.create_table('usage_records',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('feature', sa.String(), nullable=False),
            sa.Column('period_start', sa.DateTime(), nullable=False),
            sa.Column('period_end', sa.DateTime(), nullable=False),
            sa.Column('count', sa.Integer(), nullable=False),
            sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.Column('updated_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('user_id', 'feature', 'period_start', name='uq_usage_user_feature_period')
        )
        op.create_index(op.f('ix_usage_records_id'), 'usage_records', ['id'], unique=False)
        op.create_index(op.f('ix_usage_records_user_id'), 'usage_records', ['user_id'], unique=False)

    if not table_exists('usage_adjustments'):
        op.create_table('usage_adjustments',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('feature', sa.String(), nullable=False),
            sa.Column('period_start', sa.DateTime(), nullable=False),
            sa.Column('delta', sa.Integer(), nullable=False),
            sa.Column('reason', sa.String(), nullable=True),
            sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_usage_adjustments_id'), 'usage_adjustments', ['id'], unique=False)
        op.create_index(op.f('ix_usage_adjustments_user_id'), 'usage_adjustments', ['user_id'], unique=False)
        op.create_index(
            'idx_adjustment_user_feature_period', 'usage_adjustments',
            ['user_id', 'feature', 'period_start'], unique=False
        )


def downgrade() -> None:
    op.drop_table('usage_adjustments')
    op.drop_table('usage_records')
    op.drop_table('subscriptions')
    op.drop_table('users')
