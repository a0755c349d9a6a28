"""
Campaign analytics, computed at query time from Attribution ⋈ Session ⋈ Play.

Conventions:
  - Streams = distinct attributed play ids; listeners = distinct session user ids
  - Plays are bucketed by played_at, calendar day in UTC
  - Ranges are half-open [start, end)
  - Attributions below the headline confidence threshold are kept for audit
    but never counted here (overview reports them separately)
  - Empty buckets report 0; an unknown campaign raises CampaignNotFound
"""

from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from soundlink.core.campaigns import get_campaign
from soundlink.core.clock import Clock, as_utc, utcnow
from soundlink.core.errors import AggregationError
from soundlink.models.tables import Attribution, Click, FollowersSnapshot, ListenerSession, Play

import structlog

logger = structlog.get_logger()

SPOTIFY_TRACK_URL = "https://open.spotify.com/track/{}"


# ---------------------------------------------------------------------------
# Ratios
# ---------------------------------------------------------------------------

def streams_per_listener(streams: int, listeners: int) -> float:
    """S/L ratio. No listeners: the stream count itself if positive, else 0."""
    if listeners <= 0:
        return float(streams) if streams > 0 else 0.0
    return streams / listeners


def pct_delta(current: float, previous: float) -> float:
    """Percent change. Growth from nothing counts as +100%; 0 → 0 is 0%."""
    if previous <= 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


# ---------------------------------------------------------------------------
# Typed records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AttributedRow:
    play_id: int
    user_id: str
    played_at: datetime
    confidence: float
    tier: str
    track_id: str
    track_name: str | None
    artist_name: str | None

    @classmethod
    def from_row(cls, row) -> "AttributedRow":
        play_id, user_id, played_at, confidence, tier, track_id, track_name, artist_name = row
        if not isinstance(play_id, int) or isinstance(play_id, bool):
            raise AggregationError(f"play_id must be int, got {play_id!r}")
        if not isinstance(user_id, str) or not user_id:
            raise AggregationError(f"user_id must be a non-empty string, got {user_id!r}")
        if not isinstance(played_at, datetime):
            raise AggregationError(f"played_at must be datetime, got {played_at!r}")
        if not isinstance(confidence, (int, float)) or not 0.0 <= confidence <= 1.0:
            raise AggregationError(f"confidence out of range: {confidence!r}")
        if not isinstance(track_id, str) or not track_id:
            raise AggregationError(f"track_id must be a non-empty string, got {track_id!r}")
        return cls(
            play_id=play_id,
            user_id=user_id,
            played_at=as_utc(played_at),
            confidence=float(confidence),
            tier=tier,
            track_id=track_id,
            track_name=track_name,
            artist_name=artist_name,
        )


@dataclass(frozen=True)
class TrendSeries:
    dates: list[str]
    streams: list[int]
    listeners: list[int]

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class GrowthSeries:
    labels: list[str]
    followers: list[int]
    listeners: list[int]

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Totals:
    clicks: int
    listeners: int
    streams: int

    @property
    def streams_per_listener(self) -> float:
        return streams_per_listener(self.streams, self.listeners)

    def as_dict(self) -> dict:
        return {
            "clicks": self.clicks,
            "listeners": self.listeners,
            "streams": self.streams,
            "streams_per_listener": round(self.streams_per_listener, 2),
        }


@dataclass(frozen=True)
class SongStat:
    track_id: str
    track_name: str | None
    artist_name: str | None
    play_count: int
    unique_listeners: int

    @property
    def spotify_url(self) -> str:
        return SPOTIFY_TRACK_URL.format(self.track_id)

    def as_dict(self) -> dict:
        return {
            "track_name": self.track_name,
            "artist_name": self.artist_name,
            "play_count": self.play_count,
            "unique_listeners": self.unique_listeners,
            "spotify_url": self.spotify_url,
        }


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------

class AnalyticsAggregator:
    def __init__(self, headline_min_confidence: float = 0.6, clock: Clock = utcnow):
        self.headline_min_confidence = headline_min_confidence
        self.clock = clock

    async def _rows(
        self,
        db: AsyncSession,
        campaign_id: UUID,
        start: datetime | None = None,
        end: datetime | None = None,
        headline_only: bool = True,
    ) -> list[AttributedRow]:
        stmt = (
            select(
                Attribution.play_id,
                ListenerSession.user_id,
                Play.played_at,
                Attribution.confidence,
                Attribution.tier,
                Play.spotify_track_id,
                Play.track_name,
                Play.artist_name,
            )
            .join(Play, Attribution.play_id == Play.id)
            .join(ListenerSession, Attribution.click_id == ListenerSession.click_id)
            .where(Attribution.campaign_id == campaign_id)
        )
        if start is not None:
            stmt = stmt.where(Play.played_at >= start)
        if end is not None:
            stmt = stmt.where(Play.played_at < end)
        if headline_only:
            stmt = stmt.where(Attribution.confidence >= self.headline_min_confidence)

        result = await db.execute(stmt)
        try:
            return [AttributedRow.from_row(tuple(row)) for row in result.all()]
        except AggregationError as exc:
            logger.error("analytics_row_rejected", campaign_id=str(campaign_id), error=str(exc))
            raise

    async def _click_count(
        self, db: AsyncSession, campaign_id: UUID, start: datetime | None, end: datetime | None,
    ) -> int:
        stmt = select(func.count(Click.id)).where(Click.campaign_id == campaign_id)
        if start is not None:
            stmt = stmt.where(Click.clicked_at >= start)
        if end is not None:
            stmt = stmt.where(Click.clicked_at < end)
        return (await db.execute(stmt)).scalar_one()

    async def trends(self, db: AsyncSession, campaign_id: UUID, days: int = 30) -> TrendSeries:
        """Daily streams/listeners over the trailing N days, today included."""
        await get_campaign(db, campaign_id)
        today = self.clock().date()
        first_day = today - timedelta(days=days - 1)
        rows = await self._rows(db, campaign_id, _day_start(first_day), _day_start(today + timedelta(days=1)))

        plays_by_day: dict[date, set[int]] = defaultdict(set)
        users_by_day: dict[date, set[str]] = defaultdict(set)
        for row in rows:
            day = row.played_at.date()
            plays_by_day[day].add(row.play_id)
            users_by_day[day].add(row.user_id)

        days_list = [first_day + timedelta(days=i) for i in range(days)]
        return TrendSeries(
            dates=[d.isoformat() for d in days_list],
            streams=[len(plays_by_day.get(d, ())) for d in days_list],
            listeners=[len(users_by_day.get(d, ())) for d in days_list],
        )

    async def totals(
        self, db: AsyncSession, campaign_id: UUID, start: datetime | None = None, end: datetime | None = None,
    ) -> Totals:
        """Clicks in range regardless of outcome; listeners/streams from attributed plays in range."""
        await get_campaign(db, campaign_id)
        return await self._totals(db, campaign_id, start, end)

    async def _totals(self, db, campaign_id, start, end) -> Totals:
        clicks = await self._click_count(db, campaign_id, start, end)
        rows = await self._rows(db, campaign_id, start, end)
        return Totals(
            clicks=clicks,
            listeners=len({r.user_id for r in rows}),
            streams=len({r.play_id for r in rows}),
        )

    async def compare(self, db: AsyncSession, campaign_id: UUID, days: int = 30) -> dict:
        """Current vs previous period: equal length, adjacent, non-overlapping."""
        await get_campaign(db, campaign_id)
        now = self.clock()
        boundary = now - timedelta(days=days)
        current = await self._totals(db, campaign_id, boundary, now)
        previous = await self._totals(db, campaign_id, boundary - timedelta(days=days), boundary)

        return {
            "period_days": days,
            "current": current.as_dict(),
            "previous": previous.as_dict(),
            "pct_change": {
                "clicks": round(pct_delta(current.clicks, previous.clicks), 1),
                "listeners": round(pct_delta(current.listeners, previous.listeners), 1),
                "streams": round(pct_delta(current.streams, previous.streams), 1),
                "streams_per_listener": round(
                    pct_delta(current.streams_per_listener, previous.streams_per_listener), 1),
            },
        }

    async def growth(self, db: AsyncSession, campaign_id: UUID, weeks: int = 8) -> GrowthSeries:
        """Weekly listeners plus the playlist follower count at each week's end."""
        campaign = await get_campaign(db, campaign_id)
        now = self.clock()
        starts = [now - timedelta(weeks=weeks - i) for i in range(weeks)]
        rows = await self._rows(db, campaign_id, starts[0], now)

        listeners = []
        for start in starts:
            end = start + timedelta(weeks=1)
            listeners.append(len({r.user_id for r in rows if start <= r.played_at < end}))

        followers = [0] * weeks
        if campaign.spotify_playlist_id:
            result = await db.execute(
                select(FollowersSnapshot.snapshot_date, FollowersSnapshot.follower_count)
                .where(
                    FollowersSnapshot.spotify_id == campaign.spotify_playlist_id,
                    FollowersSnapshot.spotify_type == "playlist",
                    FollowersSnapshot.snapshot_date <= now.date(),
                )
                .order_by(FollowersSnapshot.snapshot_date)
            )
            snapshots = result.all()
            for i, start in enumerate(starts):
                week_end = (start + timedelta(weeks=1)).date()
                latest = [count for day, count in snapshots if day <= week_end]
                followers[i] = latest[-1] if latest else 0

        return GrowthSeries(
            labels=[s.date().isoformat() for s in starts],
            followers=followers,
            listeners=listeners,
        )

    async def songs(self, db: AsyncSession, campaign_id: UUID) -> list[SongStat]:
        """Attributed tracks, most played first."""
        await get_campaign(db, campaign_id)
        rows = await self._rows(db, campaign_id)

        plays: dict[str, set[int]] = defaultdict(set)
        users: dict[str, set[str]] = defaultdict(set)
        names: dict[str, tuple[str | None, str | None]] = {}
        for row in rows:
            plays[row.track_id].add(row.play_id)
            users[row.track_id].add(row.user_id)
            names.setdefault(row.track_id, (row.track_name, row.artist_name))

        stats = [
            SongStat(
                track_id=track_id,
                track_name=names[track_id][0],
                artist_name=names[track_id][1],
                play_count=len(plays[track_id]),
                unique_listeners=len(users[track_id]),
            )
            for track_id in plays
        ]
        stats.sort(key=lambda s: (-s.play_count, -s.unique_listeners, s.track_name or ""))
        return stats

    async def overview(self, db: AsyncSession, campaign_id: UUID) -> dict:
        """All-time headline numbers plus the confidence-tier breakdown."""
        campaign = await get_campaign(db, campaign_id)
        totals = await self._totals(db, campaign_id, None, None)
        all_rows = await self._rows(db, campaign_id, headline_only=False)

        breakdown = {"high": 0, "medium": 0, "low": 0}
        for row in all_rows:
            breakdown[row.tier] = breakdown.get(row.tier, 0) + 1
        below = sum(1 for r in all_rows if r.confidence < self.headline_min_confidence)
        unique_songs = len({r.track_id for r in all_rows if r.confidence >= self.headline_min_confidence})

        return {
            "campaign_name": campaign.name,
            "status": campaign.status,
            "total_clicks": totals.clicks,
            "total_streams": totals.streams,
            "unique_listeners": totals.listeners,
            "unique_songs": unique_songs,
            "streams_per_listener": round(totals.streams_per_listener, 2),
            "confidence_breakdown": breakdown,
            "below_threshold": below,
        }
