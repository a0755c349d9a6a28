"""
Playlist membership checks with a short-lived track cache.

Playlists change slowly, so a playlist's full track list is fetched once
and reused until the TTL lapses. The cache is an explicit object handed to
the verifier (and the verifier to the attribution engine), with its own
clock, so tests can move time forward deterministically.

Concurrency:
  - At most one in-flight fetch per playlist id; concurrent misses await it
  - No global lock: a refresh of one playlist never blocks reads of another
  - Failed fetches retry with exponential backoff, then fall back to the
    last-known entry, however stale
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from soundlink.core.clock import Clock, utcnow
from soundlink.core.errors import ProviderUnavailable

import structlog

logger = structlog.get_logger()

TrackFetcher = Callable[[str], Awaitable[list[str]]]


@dataclass(frozen=True)
class CacheEntry:
    track_ids: frozenset[str]
    fetched_at: datetime


class PlaylistCache:
    def __init__(self, ttl: timedelta, clock: Clock = utcnow):
        self.ttl = ttl
        self.clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def get(self, playlist_id: str) -> CacheEntry | None:
        """Last-known entry, fresh or not."""
        return self._entries.get(playlist_id)

    def is_fresh(self, entry: CacheEntry) -> bool:
        return self.clock() - entry.fetched_at < self.ttl

    def put(self, playlist_id: str, track_ids) -> CacheEntry:
        entry = CacheEntry(track_ids=frozenset(track_ids), fetched_at=self.clock())
        self._entries[playlist_id] = entry
        return entry

    def invalidate(self, playlist_id: str | None = None) -> None:
        if playlist_id is None:
            self._entries.clear()
        else:
            self._entries.pop(playlist_id, None)


class PlaylistVerifier:
    def __init__(
        self,
        fetch_tracks: TrackFetcher,
        cache: PlaylistCache,
        retry_attempts: int = 2,
        retry_backoff_seconds: float = 0.5,
    ):
        self.fetch_tracks = fetch_tracks
        self.cache = cache
        self.retry_attempts = retry_attempts
        self.retry_backoff_seconds = retry_backoff_seconds
        self._inflight: dict[str, asyncio.Future] = {}

    async def is_member(self, playlist_id: str, track_id: str) -> bool:
        """True if track_id is in the playlist. Raises ProviderUnavailable when nothing is known."""
        track_ids = await self._track_ids(playlist_id)
        return track_id in track_ids

    async def _track_ids(self, playlist_id: str) -> frozenset[str]:
        entry = self.cache.get(playlist_id)
        if entry is not None and self.cache.is_fresh(entry):
            return entry.track_ids

        task = self._inflight.get(playlist_id)
        if task is None:
            task = asyncio.ensure_future(self._refresh(playlist_id))
            self._inflight[playlist_id] = task
            task.add_done_callback(lambda t: self._forget(playlist_id, t))
        # shield: one cancelled caller must not cancel the fetch others await
        return await asyncio.shield(task)

    def _forget(self, playlist_id: str, task: asyncio.Future) -> None:
        if self._inflight.get(playlist_id) is task:
            del self._inflight[playlist_id]

    async def _fetch_once(self, playlist_id: str) -> list[str]:
        try:
            return await self.fetch_tracks(playlist_id)
        except ProviderUnavailable as exc:
            logger.warning("playlist_fetch_failed", playlist_id=playlist_id, error=str(exc))
            raise
        except Exception as exc:
            # Malformed payloads and transport bugs count as a failed attempt too
            logger.warning("playlist_fetch_failed", playlist_id=playlist_id,
                           error=f"{type(exc).__name__}: {exc}")
            raise ProviderUnavailable(f"playlist {playlist_id} fetch failed: {exc!r}") from exc

    async def _refresh(self, playlist_id: str) -> frozenset[str]:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.retry_attempts + 1),
                wait=wait_exponential(multiplier=self.retry_backoff_seconds, max=30),
                retry=retry_if_exception_type(ProviderUnavailable),
                reraise=True,
            ):
                with attempt:
                    track_ids = await self._fetch_once(playlist_id)
        except ProviderUnavailable as exc:
            stale = self.cache.get(playlist_id)
            if stale is not None:
                logger.warning("playlist_serving_stale", playlist_id=playlist_id,
                               fetched_at=stale.fetched_at.isoformat())
                return stale.track_ids
            raise ProviderUnavailable(f"playlist {playlist_id} unavailable: {exc}") from exc

        entry = self.cache.put(playlist_id, track_ids)
        logger.info("playlist_cached", playlist_id=playlist_id, tracks=len(entry.track_ids))
        return entry.track_ids
