"""
Background poller: per-user "recently played" → PlayIngestor.

Each cycle polls every user with a live (or recently closed) attribution
window. Users are independent: bounded concurrency, a timeout per user,
and a failure for one user never touches the others. A timed-out or
cancelled user leaves committed plays without a finished attempt; the
next ingest for that user picks them up via retry_pending.
"""

import asyncio
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soundlink.config import Settings, get_settings
from soundlink.core.clock import Clock, utcnow
from soundlink.core.errors import SoundLinkError
from soundlink.core.followers import track_campaign_followers
from soundlink.core.ingestor import IngestResult, PlayIngestor
from soundlink.core.provider import ProviderPlay
from soundlink.models.tables import ListenerSession

import structlog

logger = structlog.get_logger()

# user_id → listener access token (None when the account can't be refreshed)
TokenSource = Callable[[str], Awaitable[str | None]]
RecentPlaysFetcher = Callable[[str], Awaitable[list[ProviderPlay]]]


@dataclass
class CycleReport:
    users: int = 0
    succeeded: int = 0
    failed: int = 0
    timed_out: int = 0
    inserted: int = 0
    attributed: int = 0


class PlayPoller:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        ingestor: PlayIngestor,
        token_source: TokenSource,
        fetch_recent: RecentPlaysFetcher,
        settings: Settings | None = None,
        fetch_followers: Callable[[str], Awaitable[int]] | None = None,
        clock: Clock = utcnow,
    ):
        self.session_maker = session_maker
        self.ingestor = ingestor
        self.token_source = token_source
        self.fetch_recent = fetch_recent  # access token → plays
        self.settings = settings or get_settings()
        self.fetch_followers = fetch_followers
        self.clock = clock
        self._followers_day: date | None = None

    async def users_to_poll(self) -> list[str]:
        # recently-played only reaches back ~50 tracks, so a day of grace is plenty
        cutoff = self.clock() - timedelta(days=1)
        async with self.session_maker() as db:
            result = await db.execute(
                select(ListenerSession.user_id)
                .where(ListenerSession.window_expires_at >= cutoff)
                .distinct()
                .order_by(ListenerSession.user_id)
            )
            return list(result.scalars().all())

    async def poll_user(self, user_id: str) -> IngestResult | None:
        token = await self.token_source(user_id)
        if not token:
            logger.warning("poll_skipped_no_token", user_id=user_id)
            return None
        plays = await self.fetch_recent(token)
        async with self.session_maker() as db:
            return await self.ingestor.ingest(db, user_id, plays)

    async def run_cycle(self) -> CycleReport:
        users = await self.users_to_poll()
        report = CycleReport(users=len(users))
        semaphore = asyncio.Semaphore(self.settings.poll_concurrency)

        async def guarded(user_id: str):
            async with semaphore:
                try:
                    result = await asyncio.wait_for(
                        self.poll_user(user_id), timeout=self.settings.poll_user_timeout_seconds,
                    )
                except asyncio.TimeoutError:
                    report.timed_out += 1
                    logger.warning("poll_user_timeout", user_id=user_id)
                    return
                except (SoundLinkError, SQLAlchemyError) as exc:
                    report.failed += 1
                    logger.error("poll_user_failed", user_id=user_id, error=str(exc))
                    return
                except Exception as exc:
                    report.failed += 1
                    logger.error("poll_user_failed", user_id=user_id,
                                 error_type=type(exc).__name__, error=str(exc))
                    return
                report.succeeded += 1
                if result is not None:
                    report.inserted += result.inserted
                    report.attributed += result.attributed

        await asyncio.gather(*(guarded(u) for u in users))
        logger.info("poll_cycle_complete", **report.__dict__)
        return report

    async def snapshot_followers_daily(self) -> int:
        today = self.clock().date()
        if self.fetch_followers is None or self._followers_day == today:
            return 0
        async with self.session_maker() as db:
            recorded = await track_campaign_followers(db, self.fetch_followers, today)
        self._followers_day = today
        return recorded

    async def run_forever(self, stop: asyncio.Event) -> None:
        logger.info("poller_started", interval_seconds=self.settings.poll_interval_seconds,
                    concurrency=self.settings.poll_concurrency)
        while not stop.is_set():
            await self.run_cycle()
            await self.snapshot_followers_daily()
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.settings.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("poller_stopped")
