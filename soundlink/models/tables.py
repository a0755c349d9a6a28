"""
Database models: the "truth layer."

Design principles:
  - Clicks, sessions and plays are append-only
  - Campaigns are mutable only in status/expiry
  - One attribution per play, enforced by a unique constraint
  - Aggregates are never stored; analytics join at query time
"""

from uuid import uuid4

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, relationship

from soundlink.core.clock import utcnow


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Entity tables
# ---------------------------------------------------------------------------

class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)
    destination_url = Column(Text, nullable=False)

    # Provider ids the campaign promotes
    spotify_playlist_id = Column(String(100), nullable=True)
    spotify_track_id = Column(String(100), nullable=True)
    spotify_artist_id = Column(String(100), nullable=True)

    owner_id = Column(String(255), nullable=True, index=True)
    status = Column(String(20), default="active", nullable=False)  # active, expired
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    clicks = relationship("Click", back_populates="campaign")


# ---------------------------------------------------------------------------
# Event tables (append-only)
# ---------------------------------------------------------------------------

class Click(Base):
    """One row per tracker-link visit. Never mutated, never deleted."""
    __tablename__ = "clicks"

    id = Column(String(100), primary_key=True)               # signed click id
    campaign_id = Column(Uuid(as_uuid=True), ForeignKey("campaigns.id"), nullable=False)

    utm_source = Column(String(255), nullable=True)
    utm_medium = Column(String(255), nullable=True)
    utm_campaign = Column(String(255), nullable=True)
    utm_content = Column(String(255), nullable=True)
    utm_term = Column(String(255), nullable=True)

    referrer = Column(Text, nullable=True)
    ip_hash = Column(String(64), nullable=True)              # salted sha256, never the raw IP
    user_agent = Column(Text, nullable=True)

    clicked_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    campaign = relationship("Campaign", back_populates="clicks")
    session = relationship("ListenerSession", back_populates="click", uselist=False)

    __table_args__ = (
        Index("ix_clicks_campaign_clicked", "campaign_id", "clicked_at"),
    )


class ListenerSession(Base):
    """
    A click bound to an authenticated provider account.
    window_expires_at is fixed at creation; later policy changes never move it.
    """
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    click_id = Column(String(100), ForeignKey("clicks.id"), nullable=False, unique=True)
    user_id = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    window_expires_at = Column(DateTime(timezone=True), nullable=False)

    click = relationship("Click", back_populates="session")

    __table_args__ = (
        Index("ix_sessions_user_window", "user_id", "window_expires_at"),
    )


class Play(Base):
    """One row per provider play, deduplicated on (user, track, played_at)."""
    __tablename__ = "plays"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False)
    spotify_track_id = Column(String(100), nullable=False)
    spotify_artist_id = Column(String(100), nullable=True)
    track_name = Column(Text, nullable=True)
    artist_name = Column(Text, nullable=True)
    played_at = Column(DateTime(timezone=True), nullable=False)
    ingested_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    # NULL = inserted but the attribution attempt never completed (cancelled cycle)
    attempted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "spotify_track_id", "played_at", name="uq_plays_dedup"),
        Index("ix_plays_user_attempted", "user_id", "attempted_at"),
        Index("ix_plays_played_at", "played_at"),
    )


class Attribution(Base):
    __tablename__ = "attributions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    play_id = Column(Integer, ForeignKey("plays.id"), nullable=False, unique=True)
    campaign_id = Column(Uuid(as_uuid=True), ForeignKey("campaigns.id"), nullable=False)
    click_id = Column(String(100), ForeignKey("clicks.id"), nullable=False)
    confidence = Column(Float, nullable=False)
    tier = Column(String(10), nullable=False)                # high, medium, low
    hours_after_click = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)  # copied from the session window

    play = relationship("Play")

    __table_args__ = (
        Index("ix_attributions_campaign", "campaign_id", "confidence"),
        Index("ix_attributions_click", "click_id"),
    )


class FollowersSnapshot(Base):
    """Daily follower count for a provider playlist or artist."""
    __tablename__ = "followers_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    spotify_id = Column(String(100), nullable=False)
    spotify_type = Column(String(20), nullable=False)        # playlist, artist
    follower_count = Column(Integer, nullable=False)
    snapshot_date = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("spotify_id", "spotify_type", "snapshot_date", name="uq_followers_daily"),
    )
