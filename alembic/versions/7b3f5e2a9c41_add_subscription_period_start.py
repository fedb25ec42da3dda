"""add_subscription_period_start

Revision ID: 7b3f5e2a9c41
Revises: 4c1e9a7d2b10
Create Date: 2026-10-17 15:40:08.112907

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '7b3f5e2a9c41'
down_revision: Union[str, None] = '4c1e9a7d2b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add current_period_start so usage periods follow the billing provider's dates."""
    from sqlalchemy import inspect

    # Check if the column already exists (idempotent migration)
    bind = op.get_bind()
    inspector = inspect(bind)
    columns = [col['name'] for col in inspector.get_columns('subscriptions')]

    if 'current_period_start' not in columns:
        op.add_column('subscriptions', sa.Column('current_period_start', sa.DateTime(), nullable=True))


def downgrade() -> None:
    op.drop_column('subscriptions', 'current_period_start')
