"""Pytest configuration."""

import os

# Ensure test environment
os.environ.setdefault("SL_CLICK_ID_SECRET", "test-secret-key-for-testing")
os.environ.setdefault("SL_IP_HASH_SALT", "test-salt")
os.environ.setdefault("SL_DATABASE_URL", "sqlite+aiosqlite:///test.db")
os.environ.setdefault("SL_INTERNAL_API_TOKEN", "test-internal-token")
os.environ.setdefault("SL_DEBUG", "true")

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from soundlink.core.attribution import AttributionEngine, AttributionPolicy
from soundlink.core.campaigns import create_campaign
from soundlink.core.errors import ProviderUnavailable
from soundlink.core.playlist_verifier import PlaylistCache, PlaylistVerifier
from soundlink.core.tracker import bind_session, record_click
from soundlink.models.tables import Base, Play

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)  # a Monday


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakePlaylists:
    """Stands in for the provider's playlist-tracks call."""

    def __init__(self, playlists: dict[str, list[str]] | None = None):
        self.playlists = playlists or {}
        self.calls = 0
        self.failing = False

    async def __call__(self, playlist_id: str) -> list[str]:
        self.calls += 1
        if self.failing:
            raise ProviderUnavailable("provider down")
        return list(self.playlists.get(playlist_id, []))


class FlakyCommits:
    """Replaces a session's commit; the listed calls (1-based) fail like a locked database."""

    def __init__(self, db: AsyncSession, fail_on):
        self.fail_on = set(fail_on)
        self.calls = 0
        self._commit = db.commit

    async def __call__(self):
        self.calls += 1
        if self.calls in self.fail_on:
            raise OperationalError("COMMIT", {}, Exception("database is locked"))
        await self._commit()


class Seeder:
    """Builds rows through the real tracker calls so times stay consistent."""

    def __init__(self, db: AsyncSession, clock: FakeClock):
        self.db = db
        self.clock = clock

    async def campaign(self, playlist_id: str | None = "pl-1", name: str = "Spring Push", **kwargs):
        return await create_campaign(
            self.db, name=name, destination_url="https://open.spotify.com/playlist/x",
            spotify_playlist_id=playlist_id, **kwargs,
        )

    async def click(self, campaign, at: datetime):
        return await record_click(self.db, campaign.id, ip="203.0.113.9", now=at)

    async def session(self, click, user_id: str, at: datetime, hours: int = 48):
        return await bind_session(self.db, click.id, user_id, window=timedelta(hours=hours), now=at)

    async def play(self, user_id: str, track_id: str, played_at: datetime, ingested_at: datetime | None = None):
        play = Play(
            user_id=user_id,
            spotify_track_id=track_id,
            track_name=f"Track {track_id}",
            artist_name="The Artist",
            played_at=played_at,
            ingested_at=ingested_at or self.clock(),
        )
        self.db.add(play)
        await self.db.commit()
        return play


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'soundlink.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def seed(db, clock):
    return Seeder(db, clock)


@pytest.fixture
def playlists():
    return FakePlaylists({"pl-1": ["track-in", "track-also-in"]})


@pytest.fixture
def verifier(playlists, clock):
    cache = PlaylistCache(ttl=timedelta(hours=1), clock=clock)
    return PlaylistVerifier(playlists, cache, retry_attempts=2, retry_backoff_seconds=0)


@pytest.fixture
def policy():
    return AttributionPolicy()


@pytest.fixture
def engine(verifier, policy, clock):
    return AttributionEngine(verifier, policy, clock=clock)


@pytest.fixture
def flaky_commits(db, monkeypatch):
    def install(*fail_on):
        flaky = FlakyCommits(db, fail_on)
        monkeypatch.setattr(db, "commit", flaky)
        return flaky
    return install
