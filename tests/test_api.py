"""HTTP tests: tracker redirect, session binding, play intake, campaigns, analytics."""

import asyncio
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from soundlink.config import get_settings
from soundlink.core.services import build_services
from soundlink.models.database import get_db
from soundlink.models.tables import Base

TOKEN = {"X-Internal-Token": "test-internal-token"}


class FakeSpotify:
    async def playlist_track_ids(self, playlist_id):
        return ["track-in"]

    async def aclose(self):
        pass


async def _create_schema(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


class _ApiTest:
    @pytest.fixture(autouse=True)
    def _setup(self, tmp_path):
        # Import here so conftest env vars are already set
        from fastapi import FastAPI
        from fastapi.testclient import TestClient
        from soundlink.api.analytics import router as analytics_router
        from soundlink.api.campaigns import router as campaigns_router
        from soundlink.api.plays import router as plays_router
        from soundlink.api.redirect import router as redirect_router
        from soundlink.api.sessions import router as sessions_router
        from soundlink.middleware.security import SecurityHeadersMiddleware

        # TestClient runs each request on its own loop, so no pooled connections
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", poolclass=NullPool)
        asyncio.run(_create_schema(engine))
        maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

        async def override_get_db():
            async with maker() as session:
                yield session

        self.app = FastAPI()
        self.app.add_middleware(SecurityHeadersMiddleware)
        for router in (redirect_router, sessions_router, plays_router, campaigns_router, analytics_router):
            self.app.include_router(router)
        self.app.state.services = build_services(get_settings(), provider=FakeSpotify())
        self.app.dependency_overrides[get_db] = override_get_db
        self.client = TestClient(self.app)

    def _create_campaign(self, **overrides) -> dict:
        body = {
            "name": "Spring Push",
            "destination_url": "https://open.spotify.com/playlist/pl-1",
            "spotify_playlist_id": "pl-1",
        }
        body.update(overrides)
        resp = self.client.post("/v1/campaigns", json=body, headers=TOKEN)
        assert resp.status_code == 201, resp.text
        return resp.json()

    def _click(self, campaign_id: str) -> str:
        resp = self.client.get(
            f"/c/{campaign_id}?utm_source=tiktok&utm_medium=bio",
            headers={"x-forwarded-for": "203.0.113.9, 10.0.0.1"},
            follow_redirects=False,
        )
        assert resp.status_code == 302
        return parse_qs(urlparse(resp.headers["location"]).query)["state"][0]

    def _bind(self, click_id: str, user_id: str = "listener-1"):
        return self.client.post("/v1/sessions", json={"click_id": click_id, "user_id": user_id}, headers=TOKEN)


class TestRedirect(_ApiTest):
    def test_redirects_to_oauth_with_state(self):
        campaign = self._create_campaign()
        resp = self.client.get(f"/c/{campaign['id']}", follow_redirects=False)

        assert resp.status_code == 302
        location = urlparse(resp.headers["location"])
        settings = get_settings()
        assert f"{location.scheme}://{location.netloc}" == settings.base_url
        assert location.path == settings.oauth_start_path
        state = parse_qs(location.query)["state"][0]
        assert "sl_click_id=" in resp.headers["set-cookie"]
        assert "no-store" in resp.headers["cache-control"]
        assert resp.headers["referrer-policy"] == "no-referrer"
        assert len(state.split(":")) == 2

    def test_unknown_campaign_404(self):
        resp = self.client.get(f"/c/{uuid4()}", follow_redirects=False)
        assert resp.status_code == 404

    def test_expired_campaign_410(self):
        campaign = self._create_campaign()
        resp = self.client.patch(f"/v1/campaigns/{campaign['id']}/expire", headers=TOKEN)
        assert resp.json()["status"] == "expired"
        resp = self.client.get(f"/c/{campaign['id']}", follow_redirects=False)
        assert resp.status_code == 410


class TestSessions(_ApiTest):
    def test_requires_internal_token(self):
        resp = self.client.post("/v1/sessions", json={"click_id": "a:b", "user_id": "u"})
        assert resp.status_code == 401
        resp = self.client.post("/v1/sessions", json={"click_id": "a:b", "user_id": "u"},
                                headers={"X-Internal-Token": "wrong"})
        assert resp.status_code == 401

    def test_bind_is_idempotent(self):
        campaign = self._create_campaign()
        click_id = self._click(campaign["id"])
        first = self._bind(click_id)
        second = self._bind(click_id)
        assert first.status_code == 200
        assert first.json()["id"] == second.json()["id"]
        assert first.json()["backfilled"] == 0

        created = datetime.fromisoformat(first.json()["created_at"])
        expires = datetime.fromisoformat(first.json()["window_expires_at"])
        assert expires - created == timedelta(hours=48)

    def test_unknown_click_404(self):
        resp = self._bind("deadbeef:0000000000000000")
        assert resp.status_code == 404


class TestPlaysAndAnalytics(_ApiTest):
    def _listen(self) -> dict:
        campaign = self._create_campaign()
        self._click(campaign["id"])  # a click that never logs in
        assert self._bind(self._click(campaign["id"])).status_code == 200

        played_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        resp = self.client.post("/v1/plays/listener-1", headers=TOKEN, json={"plays": [
            {"track_id": "track-in", "played_at": played_at, "track_name": "Song", "artist_name": "Band"},
            {"trackId": "track-out", "playedAt": played_at},
            {"track_id": "broken"},
        ]})
        assert resp.status_code == 200, resp.text
        self.ingest = resp.json()
        return campaign

    def test_ingest_result(self):
        self._listen()
        assert self.ingest["inserted"] == 2
        assert self.ingest["attributed"] == 2
        assert self.ingest["errors"] == [{"index": 2, "track_id": None, "reason": "missing played_at"}]

    def test_overview(self):
        campaign = self._listen()
        resp = self.client.get(f"/api/campaigns/{campaign['id']}/overview", headers=TOKEN)
        assert resp.status_code == 200
        body = resp.json()
        assert body["total_clicks"] == 2
        assert body["total_streams"] == 1  # the low-tier play is below the headline threshold
        assert body["unique_listeners"] == 1
        assert body["confidence_breakdown"] == {"high": 1, "medium": 0, "low": 1}
        assert body["below_threshold"] == 1
        assert resp.headers["cache-control"] == "private, max-age=60"

    def test_trends_and_songs(self):
        campaign = self._listen()
        trends = self.client.get(f"/api/campaigns/{campaign['id']}/trends?days=7", headers=TOKEN).json()
        assert len(trends["dates"]) == 7
        assert trends["streams"][-1] == 1

        songs = self.client.get(f"/api/campaigns/{campaign['id']}/songs", headers=TOKEN).json()["songs"]
        assert [s["track_name"] for s in songs] == ["Song"]

    def test_compare_and_growth(self):
        campaign = self._listen()
        compare = self.client.get(f"/api/campaigns/{campaign['id']}/compare?days=7", headers=TOKEN).json()
        assert compare["current"]["streams"] == 1
        assert compare["pct_change"]["streams"] == 100.0

        growth = self.client.get(f"/api/campaigns/{campaign['id']}/growth?weeks=4", headers=TOKEN).json()
        assert len(growth["labels"]) == 4
        assert growth["listeners"][-1] == 1

    def test_unknown_campaign_404(self):
        for view in ("trends", "growth", "songs", "overview", "compare"):
            resp = self.client.get(f"/api/campaigns/{uuid4()}/{view}", headers=TOKEN)
            assert resp.status_code == 404

    def test_analytics_requires_token(self):
        resp = self.client.get(f"/api/campaigns/{uuid4()}/overview")
        assert resp.status_code == 401


class TestCampaigns(_ApiTest):
    def test_create_and_list(self):
        created = self._create_campaign(owner_id="artist-9")
        assert created["tracker_url"].endswith(f"/c/{created['id']}")
        assert created["status"] == "active"

        listed = self.client.get("/v1/campaigns?owner_id=artist-9", headers=TOKEN).json()
        assert [c["id"] for c in listed] == [created["id"]]

    @pytest.mark.parametrize("url", ["ftp://files.example.com", "http://localhost/x", "https://10.0.0.2/"])
    def test_rejects_bad_destination(self, url):
        resp = self.client.post("/v1/campaigns", headers=TOKEN, json={"name": "x", "destination_url": url})
        assert resp.status_code == 400

    def test_expire_unknown_404(self):
        resp = self.client.patch(f"/v1/campaigns/{uuid4()}/expire", headers=TOKEN)
        assert resp.status_code == 404

    def test_admin_responses_are_not_cached(self):
        resp = self.client.get("/v1/campaigns", headers=TOKEN)
        assert resp.headers["cache-control"] == "no-store, private"
        assert resp.headers["x-content-type-options"] == "nosniff"
        assert resp.headers["referrer-policy"] == "strict-origin-when-cross-origin"
        assert "x-frame-options" not in resp.headers


class TestCachePolicy:
    @pytest.mark.parametrize("path, expected", [
        ("/c/abc", "no-store, private"),
        ("/v1/plays/listener-1", "no-store, private"),
        ("/api/campaigns/abc/overview", "private, max-age=60"),
        ("/health", None),
    ])
    def test_policy_by_path(self, path, expected):
        from soundlink.middleware.security import cache_policy

        assert cache_policy(path) == expected


def test_health():
    from fastapi.testclient import TestClient
    from soundlink.main import app

    resp = TestClient(app).get("/health")
    assert resp.json() == {"status": "ok", "service": "soundlink", "version": "0.1.0"}
