"""soundlink schema

Revision ID: 0001_soundlink
Revises:
Create Date: 2026-09-28 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '0001_soundlink'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- Campaigns ---
    op.create_table('campaigns',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('destination_url', sa.Text(), nullable=False),
        sa.Column('spotify_playlist_id', sa.String(length=100), nullable=True),
        sa.Column('spotify_track_id', sa.String(length=100), nullable=True),
        sa.Column('spotify_artist_id', sa.String(length=100), nullable=True),
        sa.Column('owner_id', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_campaigns_owner_id'), 'campaigns', ['owner_id'], unique=False)

    # --- Clicks ---
    op.create_table('clicks',
        sa.Column('id', sa.String(length=100), nullable=False),
        sa.Column('campaign_id', sa.Uuid(), nullable=False),
        sa.Column('utm_source', sa.String(length=255), nullable=True),
        sa.Column('utm_medium', sa.String(length=255), nullable=True),
        sa.Column('utm_campaign', sa.String(length=255), nullable=True),
        sa.Column('utm_content', sa.String(length=255), nullable=True),
        sa.Column('utm_term', sa.String(length=255), nullable=True),
        sa.Column('referrer', sa.Text(), nullable=True),
        sa.Column('ip_hash', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('clicked_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaigns.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_clicks_campaign_clicked', 'clicks', ['campaign_id', 'clicked_at'], unique=False)

    # --- Sessions ---
    op.create_table('sessions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('click_id', sa.String(length=100), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('window_expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['click_id'], ['clicks.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('click_id'),
    )
    op.create_index('ix_sessions_user_window', 'sessions', ['user_id', 'window_expires_at'], unique=False)

    # --- Plays ---
    op.create_table('plays',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('spotify_track_id', sa.String(length=100), nullable=False),
        sa.Column('spotify_artist_id', sa.String(length=100), nullable=True),
        sa.Column('track_name', sa.Text(), nullable=True),
        sa.Column('artist_name', sa.Text(), nullable=True),
        sa.Column('played_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ingested_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('attempted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'spotify_track_id', 'played_at', name='uq_plays_dedup'),
    )
    op.create_index('ix_plays_user_attempted', 'plays', ['user_id', 'attempted_at'], unique=False)
    op.create_index('ix_plays_played_at', 'plays', ['played_at'], unique=False)

    # --- Attributions (one per play) ---
    op.create_table('attributions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('play_id', sa.Integer(), nullable=False),
        sa.Column('campaign_id', sa.Uuid(), nullable=False),
        sa.Column('click_id', sa.String(length=100), nullable=False),
        sa.Column('confidence', sa.Float(), nullable=False),
        sa.Column('tier', sa.String(length=10), nullable=False),
        sa.Column('hours_after_click', sa.Float(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['play_id'], ['plays.id']),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaigns.id']),
        sa.ForeignKeyConstraint(['click_id'], ['clicks.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('play_id'),
    )
    op.create_index('ix_attributions_campaign', 'attributions', ['campaign_id', 'confidence'], unique=False)
    op.create_index('ix_attributions_click', 'attributions', ['click_id'], unique=False)

    # --- Followers snapshots ---
    op.create_table('followers_snapshots',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('spotify_id', sa.String(length=100), nullable=False),
        sa.Column('spotify_type', sa.String(length=20), nullable=False),
        sa.Column('follower_count', sa.Integer(), nullable=False),
        sa.Column('snapshot_date', sa.Date(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('spotify_id', 'spotify_type', 'snapshot_date', name='uq_followers_daily'),
    )


def downgrade() -> None:
    op.drop_table('followers_snapshots')
    op.drop_index('ix_attributions_click', table_name='attributions')
    op.drop_index('ix_attributions_campaign', table_name='attributions')
    op.drop_table('attributions')
    op.drop_index('ix_plays_played_at', table_name='plays')
    op.drop_index('ix_plays_user_attempted', table_name='plays')
    op.drop_table('plays')
    op.drop_index('ix_sessions_user_window', table_name='sessions')
    op.drop_table('sessions')
    op.drop_index('ix_clicks_campaign_clicked', table_name='clicks')
    op.drop_table('clicks')
    op.drop_index(op.f('ix_campaigns_owner_id'), table_name='campaigns')
    op.drop_table('campaigns')
