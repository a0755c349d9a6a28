"""
Spotify client: the only code that talks to the provider.

Only transport lives here. Token refresh for listener accounts belongs to
the OAuth layer, which hands the poller a per-user access-token source;
catalogue reads (playlist tracks, follower counts) use the app's own
client-credentials token.
"""

import time
from dataclasses import dataclass
from datetime import datetime

import httpx

from soundlink.config import Settings, get_settings
from soundlink.core.clock import parse_provider_timestamp
from soundlink.core.errors import ConfigurationError, ProviderUnavailable

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class ProviderPlay:
    """One "recently played" record as the provider reports it."""
    track_id: str
    played_at: datetime
    track_name: str | None = None
    artist_name: str | None = None
    artist_id: str | None = None


def require_provider_credentials(settings: Settings) -> None:
    """Fail fast at startup when catalogue credentials are missing."""
    if settings.debug:
        return
    if not settings.spotify_client_id or not settings.spotify_client_secret:
        raise ConfigurationError("SL_SPOTIFY_CLIENT_ID and SL_SPOTIFY_CLIENT_SECRET are required")


def parse_recently_played(payload: dict) -> list[ProviderPlay]:
    """Map a /me/player/recently-played response to ProviderPlay records."""
    plays = []
    for item in payload.get("items") or []:
        track = item.get("track") or {}
        if not track.get("id") or not item.get("played_at"):
            continue
        artists = track.get("artists") or []
        plays.append(ProviderPlay(
            track_id=track["id"],
            played_at=parse_provider_timestamp(item["played_at"]),
            track_name=track.get("name"),
            artist_name=", ".join(a["name"] for a in artists if a.get("name")) or None,
            artist_id=artists[0].get("id") if artists else None,
        ))
    return plays


class SpotifyClient:
    def __init__(self, settings: Settings | None = None, http: httpx.AsyncClient | None = None):
        self.settings = settings or get_settings()
        self._http = http or httpx.AsyncClient(timeout=self.settings.provider_timeout_seconds)
        self._app_token: str | None = None
        self._app_token_expires = 0.0

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _app_access_token(self) -> str:
        if self._app_token and time.monotonic() < self._app_token_expires:
            return self._app_token
        try:
            resp = await self._http.post(
                self.settings.spotify_accounts_url,
                data={"grant_type": "client_credentials"},
                auth=(self.settings.spotify_client_id, self.settings.spotify_client_secret),
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(f"token request failed: {exc}") from exc
        try:
            body = resp.json()
            token = body["access_token"]
            expires_in = int(body.get("expires_in", 3600))
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise ProviderUnavailable(f"malformed token response: {exc!r}") from exc
        self._app_token = token
        # Refresh a minute early
        self._app_token_expires = time.monotonic() + expires_in - 60
        return self._app_token

    async def _get(self, url: str, token: str, params: dict | None = None) -> dict:
        try:
            resp = await self._http.get(url, params=params, headers={"Authorization": f"Bearer {token}"})
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("provider_request_failed", url=url, error=str(exc))
            raise ProviderUnavailable(str(exc)) from exc
        try:
            return resp.json()
        except ValueError as exc:
            logger.warning("provider_response_malformed", url=url, error=str(exc))
            raise ProviderUnavailable(f"malformed response from {url}") from exc

    async def playlist_track_ids(self, playlist_id: str) -> list[str]:
        """Every track id in the playlist, following pagination."""
        token = await self._app_access_token()
        url = f"{self.settings.spotify_api_base}/playlists/{playlist_id}/tracks"
        params = {"fields": "items(track(id)),next", "limit": 100}
        track_ids: list[str] = []
        while url:
            page = await self._get(url, token, params)
            for item in page.get("items") or []:
                track = item.get("track") or {}
                if track.get("id"):
                    track_ids.append(track["id"])
            url, params = page.get("next"), None
        return track_ids

    async def playlist_followers(self, playlist_id: str) -> int:
        token = await self._app_access_token()
        body = await self._get(
            f"{self.settings.spotify_api_base}/playlists/{playlist_id}",
            token,
            {"fields": "followers(total)"},
        )
        return int((body.get("followers") or {}).get("total") or 0)

    async def recently_played(self, access_token: str, limit: int | None = None) -> list[ProviderPlay]:
        body = await self._get(
            f"{self.settings.spotify_api_base}/me/player/recently-played",
            access_token,
            {"limit": limit or self.settings.recently_played_limit},
        )
        return parse_recently_played(body)
