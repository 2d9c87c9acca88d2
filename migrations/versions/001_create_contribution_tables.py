"""Create per-day contribution and rolling totals tables.

Creates the contrib_provider enum, contrib_daily (one row per user, provider
and UTC day) and contrib_totals (all-time / 30d / 365d per user and provider).

Revision ID: 001
Revises:
Create Date: 2026-10-19

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

contrib_provider = postgresql.ENUM('github', 'gitlab', name='contrib_provider', create_type=False)


def upgrade() -> None:
    contrib_provider.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'contrib_daily',
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('provider', contrib_provider, nullable=False),
        sa.Column('date_utc', sa.Date(), nullable=False),
        sa.Column('commits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('prs', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('issues', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('user_id', 'provider', 'date_utc'),
    )
    op.create_index(
        'contrib_daily_user_prov_day_uidx',
        'contrib_daily',
        ['user_id', 'provider', 'date_utc'],
        unique=True,
    )
    op.create_index('contrib_daily_provider_day_idx', 'contrib_daily', ['provider', 'date_utc'])
    op.create_index('contrib_daily_user_day_idx', 'contrib_daily', ['user_id', 'date_utc'])

    op.create_table(
        'contrib_totals',
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('provider', contrib_provider, nullable=False),
        sa.Column('all_time', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_30d', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_365d', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('user_id', 'provider'),
    )
    op.create_index(
        'contrib_totals_user_prov_uidx',
        'contrib_totals',
        ['user_id', 'provider'],
        unique=True,
    )
    op.create_index('contrib_totals_user_idx', 'contrib_totals', ['user_id'])


def downgrade() -> None:
    op.drop_index('contrib_totals_user_idx', table_name='contrib_totals')
    op.drop_index('contrib_totals_user_prov_uidx', table_name='contrib_totals')
    op.drop_table('contrib_totals')

    op.drop_index('contrib_daily_user_day_idx', table_name='contrib_daily')
    op.drop_index('contrib_daily_provider_day_idx', table_name='contrib_daily')
    op.drop_index('contrib_daily_user_prov_day_uidx', table_name='contrib_daily')
    op.drop_table('contrib_daily')

    contrib_provider.drop(op.get_bind(), checkfirst=True)
