"""
Play ingestion: provider "recently played" batches → Play rows → attribution.

Dedup key: (user_id, track_id, played_at). Re-ingesting a batch is a no-op.
Every failure is scoped to its own record; siblings in the batch carry on.
"""

from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from soundlink.core.attribution import AttributionEngine
from soundlink.core.clock import Clock, as_utc, parse_provider_timestamp, utcnow
from soundlink.core.errors import SoundLinkError
from soundlink.core.provider import ProviderPlay
from soundlink.models.tables import Play

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class IngestError:
    index: int
    track_id: str | None
    reason: str


@dataclass
class IngestResult:
    inserted: int = 0
    attributed: int = 0
    skipped: int = 0
    retried: int = 0
    errors: list[IngestError] = field(default_factory=list)


def coerce_provider_play(raw) -> ProviderPlay:
    """Accept a ProviderPlay or a transport dict; raise ValueError when malformed."""
    if isinstance(raw, ProviderPlay):
        return raw
    if not isinstance(raw, dict):
        raise ValueError("record is not an object")

    track_id = raw.get("track_id") or raw.get("trackId")
    played_at = raw.get("played_at") or raw.get("playedAt")
    if not track_id or not isinstance(track_id, str):
        raise ValueError("missing track_id")
    if isinstance(played_at, str):
        played_at = parse_provider_timestamp(played_at)
    elif isinstance(played_at, datetime):
        played_at = as_utc(played_at)
    else:
        raise ValueError("missing played_at")

    return ProviderPlay(
        track_id=track_id,
        played_at=played_at,
        track_name=raw.get("track_name") or raw.get("trackName"),
        artist_name=raw.get("artist_name") or raw.get("artistName"),
        artist_id=raw.get("artist_id") or raw.get("artistId"),
    )


class PlayIngestor:
    def __init__(self, engine: AttributionEngine, clock: Clock = utcnow):
        self.engine = engine
        self.clock = clock

    async def ingest(self, db: AsyncSession, user_id: str, provider_plays) -> IngestResult:
        result = IngestResult()

        pending = await self.engine.retry_pending(db, user_id)
        result.retried = pending.attempted
        result.attributed += pending.attributed

        for index, raw in enumerate(provider_plays):
            try:
                record = coerce_provider_play(raw)
            except ValueError as exc:
                result.errors.append(IngestError(index=index, track_id=None, reason=str(exc)))
                continue

            if await self._exists(db, user_id, record):
                result.skipped += 1
                continue

            play = Play(
                user_id=user_id,
                spotify_track_id=record.track_id,
                spotify_artist_id=record.artist_id,
                track_name=record.track_name,
                artist_name=record.artist_name,
                played_at=record.played_at,
                ingested_at=self.clock(),
            )
            db.add(play)
            try:
                await db.commit()
            except IntegrityError:
                # Same record landed from a concurrent poll
                await db.rollback()
                result.skipped += 1
                continue
            except SQLAlchemyError as exc:
                await db.rollback()
                logger.error("play_insert_failed", user_id=user_id, track_id=record.track_id,
                             error=str(exc))
                result.errors.append(IngestError(index=index, track_id=record.track_id,
                                                 reason="insert_failed"))
                continue
            result.inserted += 1

            try:
                attribution = await self.engine.attempt(db, play)
            except SoundLinkError as exc:
                result.errors.append(IngestError(index=index, track_id=record.track_id,
                                                 reason=str(exc)))
                continue
            except SQLAlchemyError as exc:
                await db.rollback()
                logger.error("play_attribution_failed", user_id=user_id, track_id=record.track_id,
                             error=str(exc))
                result.errors.append(IngestError(index=index, track_id=record.track_id,
                                                 reason="attribution_failed"))
                continue
            if attribution is not None:
                result.attributed += 1

        logger.info("plays_ingested",
                    user_id=user_id,
                    received=len(provider_plays),
                    inserted=result.inserted,
                    skipped=result.skipped,
                    attributed=result.attributed,
                    retried=result.retried,
                    errors=len(result.errors))
        return result

    async def _exists(self, db: AsyncSession, user_id: str, record: ProviderPlay) -> bool:
        result = await db.execute(
            select(Play.id).where(
                Play.user_id == user_id,
                Play.spotify_track_id == record.track_id,
                Play.played_at == record.played_at,
            )
        )
        return result.first() is not None
