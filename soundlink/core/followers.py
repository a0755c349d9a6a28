"""Daily follower-count snapshots for campaign playlists."""

from datetime import date
from typing import Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from soundlink.core.campaigns import is_active, list_campaigns
from soundlink.core.errors import ProviderUnavailable
from soundlink.models.tables import FollowersSnapshot

import structlog

logger = structlog.get_logger()


async def record_snapshot(
    db: AsyncSession, spotify_id: str, spotify_type: str, follower_count: int, snapshot_date: date,
) -> FollowersSnapshot:
    """One row per (id, type, day); re-recording a day overwrites its count."""
    result = await db.execute(
        select(FollowersSnapshot).where(
            FollowersSnapshot.spotify_id == spotify_id,
            FollowersSnapshot.spotify_type == spotify_type,
            FollowersSnapshot.snapshot_date == snapshot_date,
        )
    )
    snapshot = result.scalar_one_or_none()
    if snapshot is None:
        snapshot = FollowersSnapshot(
            spotify_id=spotify_id,
            spotify_type=spotify_type,
            follower_count=follower_count,
            snapshot_date=snapshot_date,
        )
        db.add(snapshot)
    else:
        snapshot.follower_count = follower_count
    await db.commit()
    return snapshot


async def track_campaign_followers(
    db: AsyncSession, fetch_followers: Callable[[str], Awaitable[int]], today: date,
) -> int:
    """Snapshot every active campaign playlist. Returns how many were recorded."""
    recorded = 0
    playlist_ids = {
        c.spotify_playlist_id for c in await list_campaigns(db)
        if c.spotify_playlist_id and is_active(c)
    }
    for playlist_id in sorted(playlist_ids):
        try:
            count = await fetch_followers(playlist_id)
        except ProviderUnavailable as exc:
            logger.warning("followers_fetch_failed", playlist_id=playlist_id, error=str(exc))
            continue
        await record_snapshot(db, playlist_id, "playlist", count, today)
        recorded += 1
    logger.info("followers_tracked", playlists=len(playlist_ids), recorded=recorded)
    return recorded
