"""
SoundLink: campaign attribution for Spotify streams.
Main application entry point.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from soundlink.api.analytics import router as analytics_router
from soundlink.api.campaigns import router as campaigns_router
from soundlink.api.plays import router as plays_router
from soundlink.api.redirect import router as redirect_router
from soundlink.api.sessions import router as sessions_router
from soundlink.config import get_settings
from soundlink.core.provider import require_provider_credentials
from soundlink.core.services import build_services
from soundlink.middleware.security import SecurityHeadersMiddleware
from soundlink.models.database import dispose_engine

import structlog

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.dev.ConsoleRenderer() if get_settings().debug else structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    require_provider_credentials(settings)
    app.state.services = build_services(settings)
    logger.info("soundlink_starting", base_url=settings.base_url,
                window_hours=settings.attribution_window_hours)
    yield
    logger.info("soundlink_shutting_down")
    await app.state.services.provider.aclose()
    await dispose_engine()


app = FastAPI(
    title="SoundLink",
    description="Campaign attribution for Spotify streams, from tracker click to listener.",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if get_settings().debug else None,
    redoc_url="/redoc" if get_settings().debug else None,
    openapi_url="/openapi.json" if get_settings().debug else None,
)

app.add_middleware(SecurityHeadersMiddleware)

ALLOWED_ORIGINS = ["*"] if get_settings().debug else [
    "https://soundlink.app",
    "https://app.soundlink.app",
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["X-Internal-Token", "Content-Type"],
)

# --- Routes ---
app.include_router(redirect_router)
app.include_router(sessions_router)
app.include_router(plays_router)
app.include_router(campaigns_router)
app.include_router(analytics_router)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "soundlink", "version": "0.1.0"}
