"""
Campaign management API: create, list and expire tracked campaigns.

Campaign CRUD is an internal surface (the dashboard backend), so it sits
behind the internal token like the other write routes.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from soundlink.config import get_settings
from soundlink.core.campaigns import create_campaign, expire_campaign, list_campaigns
from soundlink.core.errors import CampaignNotFound
from soundlink.middleware.auth import require_internal_token
from soundlink.models.database import get_db
from soundlink.models.tables import Campaign

router = APIRouter(prefix="/v1/campaigns", tags=["campaigns"], dependencies=[Depends(require_internal_token)])


class CreateCampaignRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    destination_url: str
    spotify_playlist_id: str | None = None
    spotify_track_id: str | None = None
    spotify_artist_id: str | None = None
    owner_id: str | None = None
    expires_at: datetime | None = None


class CampaignResponse(BaseModel):
    id: UUID
    name: str
    tracker_url: str
    destination_url: str
    spotify_playlist_id: str | None
    status: str
    expires_at: datetime | None


def _validate_destination_url(url: str):
    """Only http/https destinations, never internal hosts."""
    if not url.startswith(("https://", "http://")):
        raise HTTPException(status_code=400, detail="destination_url must start with https:// or http://")
    host = url.split("//", 1)[1].split("/")[0]
    blocked = ["localhost", "127.0.0.1", "0.0.0.0", "169.254.", "10.", "192.168.", "172.16."]
    for b in blocked:
        if host.startswith(b):
            raise HTTPException(status_code=400, detail="destination_url cannot point to internal addresses")


def _to_response(campaign: Campaign) -> CampaignResponse:
    return CampaignResponse(
        id=campaign.id,
        name=campaign.name,
        tracker_url=f"{get_settings().base_url}/c/{campaign.id}",
        destination_url=campaign.destination_url,
        spotify_playlist_id=campaign.spotify_playlist_id,
        status=campaign.status,
        expires_at=campaign.expires_at,
    )


@router.post("", response_model=CampaignResponse, status_code=201)
async def create(req: CreateCampaignRequest, db: AsyncSession = Depends(get_db)):
    _validate_destination_url(req.destination_url)
    campaign = await create_campaign(
        db,
        name=req.name,
        destination_url=req.destination_url,
        spotify_playlist_id=req.spotify_playlist_id,
        spotify_track_id=req.spotify_track_id,
        spotify_artist_id=req.spotify_artist_id,
        owner_id=req.owner_id,
        expires_at=req.expires_at,
    )
    return _to_response(campaign)


@router.get("", response_model=list[CampaignResponse])
async def list_all(owner_id: str | None = None, db: AsyncSession = Depends(get_db)):
    return [_to_response(c) for c in await list_campaigns(db, owner_id)]


@router.patch("/{campaign_id}/expire", response_model=CampaignResponse)
async def expire(campaign_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        campaign = await expire_campaign(db, campaign_id)
    except CampaignNotFound:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return _to_response(campaign)
