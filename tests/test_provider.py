"""Tests for the Spotify client: error mapping, pagination, startup credentials."""

import httpx
import pytest

from soundlink.config import Settings
from soundlink.core.errors import ConfigurationError, ProviderUnavailable
from soundlink.core.provider import SpotifyClient, require_provider_credentials

TOKEN_URL = "https://accounts.spotify.com/api/token"


def _client(handler) -> SpotifyClient:
    settings = Settings(spotify_client_id="id", spotify_client_secret="secret")
    return SpotifyClient(settings, http=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def _token_response() -> httpx.Response:
    return httpx.Response(200, json={"access_token": "app-token", "expires_in": 3600})


class TestSpotifyClient:
    @pytest.mark.asyncio
    async def test_follows_pagination(self):
        def handler(request):
            if str(request.url) == TOKEN_URL:
                return _token_response()
            assert request.headers["authorization"] == "Bearer app-token"
            if request.url.path.endswith("/page-2"):
                return httpx.Response(200, json={"items": [{"track": {"id": "t3"}}], "next": None})
            return httpx.Response(200, json={
                "items": [{"track": {"id": "t1"}}, {"track": None}, {"track": {"id": "t2"}}],
                "next": "https://api.spotify.com/v1/page-2",
            })

        client = _client(handler)
        assert await client.playlist_track_ids("pl-1") == ["t1", "t2", "t3"]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_non_json_body_is_unavailable(self):
        def handler(request):
            if str(request.url) == TOKEN_URL:
                return _token_response()
            return httpx.Response(200, text="<html>upstream error</html>")

        client = _client(handler)
        with pytest.raises(ProviderUnavailable):
            await client.playlist_track_ids("pl-1")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_token_response_without_access_token_is_unavailable(self):
        def handler(request):
            return httpx.Response(200, json={"error": "invalid_client"})

        client = _client(handler)
        with pytest.raises(ProviderUnavailable):
            await client.playlist_followers("pl-1")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_http_error_is_unavailable(self):
        def handler(request):
            if str(request.url) == TOKEN_URL:
                return _token_response()
            return httpx.Response(502)

        client = _client(handler)
        with pytest.raises(ProviderUnavailable):
            await client.recently_played("user-token")
        await client.aclose()


class TestRequireProviderCredentials:
    def test_missing_credentials_fail_outside_debug(self):
        settings = Settings(debug=False, spotify_client_id="", spotify_client_secret="")
        with pytest.raises(ConfigurationError):
            require_provider_credentials(settings)

    def test_debug_skips_check(self):
        require_provider_credentials(Settings(debug=True, spotify_client_id="", spotify_client_secret=""))

    def test_present_credentials_pass(self):
        require_provider_credentials(Settings(debug=False, spotify_client_id="id", spotify_client_secret="s"))
