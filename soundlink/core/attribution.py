"""
Attribution engine: links a Play to the campaign click most likely behind it.

For each play:
  1. Candidate sessions = same user, window expiry >= played_at,
     click at or before played_at (and, unless retroactive attribution is
     on, the session already existed when the play was ingested)
  2. No candidate → play stays unattributed for good
  3. Most recent click wins
  4. Playlist membership sets the confidence tier:
       in playlist           → HIGH
       membership unknown    → MEDIUM (provider down, or no target playlist)
       verifiably not in it  → LOW, or rejected when reject_non_members is set
  5. Insert one Attribution. The unique play_id constraint is the source of
     truth under concurrency; losing that race returns the winner's row.
     A failed write is retried once before AttributionWriteError.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt

from soundlink.config import Settings, get_settings
from soundlink.core.clock import Clock, as_utc, utcnow
from soundlink.core.errors import AttributionWriteError, ProviderUnavailable, SoundLinkError
from soundlink.core.playlist_verifier import PlaylistVerifier
from soundlink.models.tables import Attribution, Campaign, Click, ListenerSession, Play

import structlog

logger = structlog.get_logger()


class Tier(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class AttributionPolicy:
    confidence_high: float = 1.0
    confidence_medium: float = 0.6
    confidence_low: float = 0.3
    reject_non_members: bool = False
    headline_min_confidence: float = 0.6
    retroactive: bool = False

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "AttributionPolicy":
        settings = settings or get_settings()
        return cls(
            confidence_high=settings.confidence_high,
            confidence_medium=settings.confidence_medium,
            confidence_low=settings.confidence_low,
            reject_non_members=settings.reject_non_members,
            headline_min_confidence=settings.headline_min_confidence,
            retroactive=settings.retroactive_attribution,
        )

    def confidence(self, tier: Tier) -> float:
        return {
            Tier.HIGH: self.confidence_high,
            Tier.MEDIUM: self.confidence_medium,
            Tier.LOW: self.confidence_low,
        }[tier]


@dataclass(frozen=True)
class _Candidate:
    session_id: int
    click_id: str
    clicked_at: datetime
    window_expires_at: datetime
    campaign_id: object
    playlist_id: str | None


@dataclass
class RetryOutcome:
    attempted: int = 0
    attributed: int = 0
    failed_play_ids: list[int] = field(default_factory=list)


class AttributionEngine:
    def __init__(
        self,
        verifier: PlaylistVerifier,
        policy: AttributionPolicy | None = None,
        clock: Clock = utcnow,
    ):
        self.verifier = verifier
        self.policy = policy or AttributionPolicy.from_settings()
        self.clock = clock

    # --- public ----------------------------------------------------------

    async def attempt(self, db: AsyncSession, play: Play) -> Attribution | None:
        # Rollbacks expire ORM state, so work from plain values from here on
        play_id = play.id
        user_id = play.user_id
        track_id = play.spotify_track_id
        played_at = as_utc(play.played_at)
        ingested_at = as_utc(play.ingested_at)

        existing = await self._existing(db, play_id)
        if existing is not None:
            return existing

        candidate = await self._winning_candidate(db, user_id, played_at, ingested_at)
        if candidate is None:
            await self._mark_attempted(db, play_id)
            logger.debug("play_unattributed", play_id=play_id, user_id=user_id)
            return None

        tier = await self._tier(candidate.playlist_id, track_id)
        if tier is None:
            await self._mark_attempted(db, play_id)
            logger.info("attribution_rejected", play_id=play_id, click_id=candidate.click_id,
                        reason="track_not_in_playlist")
            return None

        return await self._insert(db, play_id, played_at, candidate, tier)

    async def retry_pending(self, db: AsyncSession, user_id: str) -> RetryOutcome:
        """Finish attempts for plays a cancelled cycle inserted but never attributed."""
        result = await db.execute(
            select(Play.id)
            .where(Play.user_id == user_id, Play.attempted_at.is_(None))
            .order_by(Play.played_at)
        )
        return await self._attempt_ids(db, list(result.scalars().all()))

    async def backfill_user(self, db: AsyncSession, user_id: str) -> RetryOutcome:
        """Re-attempt a user's unattributed plays after a late session binding."""
        if not self.policy.retroactive:
            return RetryOutcome()
        result = await db.execute(
            select(Play.id)
            .outerjoin(Attribution, Attribution.play_id == Play.id)
            .where(Play.user_id == user_id, Attribution.id.is_(None))
            .order_by(Play.played_at)
        )
        outcome = await self._attempt_ids(db, list(result.scalars().all()))
        logger.info("attribution_backfill", user_id=user_id, attempted=outcome.attempted,
                    attributed=outcome.attributed)
        return outcome

    def is_headline(self, confidence: float) -> bool:
        return confidence >= self.policy.headline_min_confidence

    # --- internals -------------------------------------------------------

    async def _attempt_ids(self, db: AsyncSession, play_ids: list[int]) -> RetryOutcome:
        outcome = RetryOutcome()
        for play_id in play_ids:
            play = await db.get(Play, play_id)
            if play is None:
                continue
            outcome.attempted += 1
            try:
                if await self.attempt(db, play) is not None:
                    outcome.attributed += 1
            except SoundLinkError as exc:
                logger.error("attribution_retry_failed", play_id=play_id, error=str(exc))
                outcome.failed_play_ids.append(play_id)
            except SQLAlchemyError as exc:
                await db.rollback()
                logger.error("attribution_retry_failed", play_id=play_id, error=str(exc))
                outcome.failed_play_ids.append(play_id)
        return outcome

    async def _existing(self, db: AsyncSession, play_id: int) -> Attribution | None:
        result = await db.execute(select(Attribution).where(Attribution.play_id == play_id))
        return result.scalar_one_or_none()

    async def _winning_candidate(
        self, db: AsyncSession, user_id: str, played_at: datetime, ingested_at: datetime,
    ) -> _Candidate | None:
        stmt = (
            select(
                ListenerSession.id,
                ListenerSession.click_id,
                ListenerSession.window_expires_at,
                Click.clicked_at,
                Campaign.id,
                Campaign.spotify_playlist_id,
            )
            .join(Click, ListenerSession.click_id == Click.id)
            .join(Campaign, Click.campaign_id == Campaign.id)
            .where(
                ListenerSession.user_id == user_id,
                ListenerSession.window_expires_at >= played_at,
                Click.clicked_at <= played_at,
            )
            .order_by(Click.clicked_at.desc(), ListenerSession.id.desc())
            .limit(1)
        )
        if not self.policy.retroactive:
            stmt = stmt.where(ListenerSession.created_at <= ingested_at)

        row = (await db.execute(stmt)).first()
        if row is None:
            return None
        session_id, click_id, window_expires_at, clicked_at, campaign_id, playlist_id = row
        return _Candidate(
            session_id=session_id,
            click_id=click_id,
            clicked_at=as_utc(clicked_at),
            window_expires_at=as_utc(window_expires_at),
            campaign_id=campaign_id,
            playlist_id=playlist_id,
        )

    async def _tier(self, playlist_id: str | None, track_id: str) -> Tier | None:
        if not playlist_id:
            return Tier.MEDIUM
        try:
            member = await self.verifier.is_member(playlist_id, track_id)
        except ProviderUnavailable as exc:
            logger.warning("membership_unknown", playlist_id=playlist_id, track_id=track_id,
                           error=str(exc))
            return Tier.MEDIUM
        if member:
            return Tier.HIGH
        if self.policy.reject_non_members:
            return None
        return Tier.LOW

    async def _mark_attempted(self, db: AsyncSession, play_id: int) -> None:
        await db.execute(
            update(Play).where(Play.id == play_id).values(attempted_at=self.clock())
        )
        await db.commit()

    async def _write(
        self, db: AsyncSession, play_id: int, candidate: _Candidate, tier: Tier, confidence: float, hours: float,
    ) -> tuple[Attribution | None, bool]:
        attribution = Attribution(
            play_id=play_id,
            campaign_id=candidate.campaign_id,
            click_id=candidate.click_id,
            confidence=confidence,
            tier=tier.value,
            hours_after_click=round(hours, 4),
            created_at=self.clock(),
            expires_at=candidate.window_expires_at,
        )
        try:
            db.add(attribution)
            # autoflush: a duplicate play_id surfaces here or at commit
            await db.execute(
                update(Play).where(Play.id == play_id).values(attempted_at=self.clock())
            )
            await db.commit()
        except IntegrityError:
            # Another worker attributed this play first
            await db.rollback()
            logger.info("attribution_race_lost", play_id=play_id)
            await self._mark_attempted(db, play_id)
            return await self._existing(db, play_id), False
        except SQLAlchemyError:
            await db.rollback()
            raise
        return attribution, True

    async def _insert(
        self, db: AsyncSession, play_id: int, played_at: datetime, candidate: _Candidate, tier: Tier,
    ) -> Attribution | None:
        confidence = self.policy.confidence(tier)
        hours = (played_at - candidate.clicked_at).total_seconds() / 3600

        def log_retry(retry_state: RetryCallState) -> None:
            logger.warning("attribution_write_retry", play_id=play_id,
                           error=str(retry_state.outcome.exception()))

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(2),
                retry=retry_if_exception_type(SQLAlchemyError),
                before_sleep=log_retry,
                reraise=True,
            ):
                with attempt:
                    attribution, won = await self._write(db, play_id, candidate, tier, confidence, hours)
        except SQLAlchemyError as exc:
            logger.error("attribution_write_failed", play_id=play_id, error=str(exc))
            raise AttributionWriteError(play_id, exc) from exc

        if won:
            logger.info("play_attributed",
                        play_id=play_id,
                        campaign_id=str(candidate.campaign_id),
                        click_id=candidate.click_id,
                        tier=tier.value,
                        confidence=confidence,
                        hours_after_click=round(hours, 2))
        return attribution
