"""waitlist_ranking_schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

LIVE_ROWS = "deleted_at IS NULL AND status <> 'blocked'"


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    # Campaigns
    op.create_table(
        'campaigns',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(255), nullable=False),
        sa.Column(
            'status',
            sa.Enum('draft', 'active', 'paused', 'completed', name='campaignstatus'),
            nullable=False,
        ),
        sa.Column('max_signups', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_campaigns_id'), 'campaigns', ['id'], unique=False)
    op.create_index(op.f('ix_campaigns_slug'), 'campaigns', ['slug'], unique=True)

    # Per-campaign referral configuration
    op.create_table(
        'campaign_referral_settings',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('campaign_id', sa.String(36), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('points_per_referral', sa.Integer(), nullable=False),
        sa.Column('verified_only', sa.Boolean(), nullable=False),
        sa.Column('positions_to_jump', sa.Integer(), nullable=False),
        sa.Column('referrer_positions_to_jump', sa.Integer(), nullable=False),
        sa.Column('referred_jump_enabled', sa.Boolean(), nullable=False),
        sa.Column('sharing_channels', sa.String(255), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaigns.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_campaign_referral_settings_id'), 'campaign_referral_settings', ['id'], unique=False)
    op.create_index(
        op.f('ix_campaign_referral_settings_campaign_id'),
        'campaign_referral_settings',
        ['campaign_id'],
        unique=True,
    )

    # Entrants
    op.create_table(
        'entrants',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('campaign_id', sa.String(36), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('original_position', sa.Integer(), nullable=False),
        sa.Column('referral_code', sa.String(32), nullable=False),
        sa.Column('referred_by_id', sa.String(36), nullable=True),
        sa.Column('source', sa.String(50), nullable=False),
        sa.Column('referral_count', sa.Integer(), nullable=False),
        sa.Column('verified_referral_count', sa.Integer(), nullable=False),
        sa.Column('email_verified', sa.Boolean(), nullable=False),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('referral_reward_applied', sa.Boolean(), nullable=False),
        sa.Column('reward_applied_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            'status',
            sa.Enum('pending', 'verified', 'blocked', name='entrantstatus'),
            nullable=False,
        ),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaigns.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('campaign_id', 'email', name='uq_entrants_campaign_email'),
    )
    op.create_index(op.f('ix_entrants_id'), 'entrants', ['id'], unique=False)
    op.create_index(op.f('ix_entrants_campaign_id'), 'entrants', ['campaign_id'], unique=False)
    op.create_index(op.f('ix_entrants_referral_code'), 'entrants', ['referral_code'], unique=True)
    op.create_index(op.f('ix_entrants_referred_by_id'), 'entrants', ['referred_by_id'], unique=False)
    op.create_index(
        'ix_entrants_canonical_order', 'entrants', ['campaign_id', 'position', 'created_at', 'id'], unique=False
    )
    # Position is unique only among live rows; deleted/blocked rows keep their stale value
    op.create_index(
        'uq_entrants_campaign_live_position',
        'entrants',
        ['campaign_id', 'position'],
        unique=True,
        postgresql_where=sa.text(LIVE_ROWS),
        sqlite_where=sa.text(LIVE_ROWS),
    )

    # Channel-specific referral codes
    op.create_table(
        'entrant_channel_codes',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('entrant_id', sa.String(36), nullable=False),
        sa.Column('channel', sa.String(50), nullable=False),
        sa.Column('code', sa.String(40), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['entrant_id'], ['entrants.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('entrant_id', 'channel', name='uq_entrant_channel'),
    )
    op.create_index(op.f('ix_entrant_channel_codes_id'), 'entrant_channel_codes', ['id'], unique=False)
    op.create_index(op.f('ix_entrant_channel_codes_entrant_id'), 'entrant_channel_codes', ['entrant_id'], unique=False)
    op.create_index(op.f('ix_entrant_channel_codes_code'), 'entrant_channel_codes', ['code'], unique=True)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('entrant_channel_codes')
    op.drop_index('uq_entrants_campaign_live_position', table_name='entrants')
    op.drop_index('ix_entrants_canonical_order', table_name='entrants')
    op.drop_table('entrants')
    op.drop_table('campaign_referral_settings')
    op.drop_table('campaigns')
    sa.Enum(name='entrantstatus').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='campaignstatus').drop(op.get_bind(), checkfirst=True)
