"""Explicit wiring of the long-lived objects (no module-level singletons)."""

from dataclasses import dataclass
from datetime import timedelta

from soundlink.config import Settings
from soundlink.core.analytics import AnalyticsAggregator
from soundlink.core.attribution import AttributionEngine, AttributionPolicy
from soundlink.core.clock import Clock, utcnow
from soundlink.core.ingestor import PlayIngestor
from soundlink.core.playlist_verifier import PlaylistCache, PlaylistVerifier
from soundlink.core.provider import SpotifyClient


@dataclass
class Services:
    provider: SpotifyClient
    playlist_cache: PlaylistCache
    verifier: PlaylistVerifier
    engine: AttributionEngine
    ingestor: PlayIngestor
    aggregator: AnalyticsAggregator


def build_services(settings: Settings, provider: SpotifyClient | None = None, clock: Clock = utcnow) -> Services:
    provider = provider or SpotifyClient(settings)
    cache = PlaylistCache(ttl=timedelta(seconds=settings.playlist_cache_ttl_seconds), clock=clock)
    verifier = PlaylistVerifier(
        provider.playlist_track_ids,
        cache,
        retry_attempts=settings.provider_retry_attempts,
    )
    policy = AttributionPolicy.from_settings(settings)
    engine = AttributionEngine(verifier, policy, clock=clock)
    return Services(
        provider=provider,
        playlist_cache=cache,
        verifier=verifier,
        engine=engine,
        ingestor=PlayIngestor(engine, clock=clock),
        aggregator=AnalyticsAggregator(policy.headline_min_confidence, clock=clock),
    )
