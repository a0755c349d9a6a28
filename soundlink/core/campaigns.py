"""Campaign lookups and the few mutations a campaign allows (status/expiry)."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from soundlink.core.clock import as_utc, utcnow
from soundlink.core.errors import CampaignNotFound
from soundlink.models.tables import Campaign

import structlog

logger = structlog.get_logger()


async def get_campaign(db: AsyncSession, campaign_id: UUID) -> Campaign:
    campaign = await db.get(Campaign, campaign_id)
    if campaign is None:
        raise CampaignNotFound(campaign_id)
    return campaign


def is_active(campaign: Campaign, now: datetime | None = None) -> bool:
    if campaign.status != "active":
        return False
    if campaign.expires_at is not None and as_utc(campaign.expires_at) <= (now or utcnow()):
        return False
    return True


async def create_campaign(
    db: AsyncSession,
    *,
    name: str,
    destination_url: str,
    spotify_playlist_id: str | None = None,
    spotify_track_id: str | None = None,
    spotify_artist_id: str | None = None,
    owner_id: str | None = None,
    expires_at: datetime | None = None,
) -> Campaign:
    campaign = Campaign(
        name=name,
        destination_url=destination_url,
        spotify_playlist_id=spotify_playlist_id,
        spotify_track_id=spotify_track_id,
        spotify_artist_id=spotify_artist_id,
        owner_id=owner_id,
        status="active",
        created_at=utcnow(),
        expires_at=expires_at,
    )
    db.add(campaign)
    await db.commit()
    await db.refresh(campaign)
    logger.info("campaign_created", campaign_id=str(campaign.id), playlist=spotify_playlist_id)
    return campaign


async def list_campaigns(db: AsyncSession, owner_id: str | None = None) -> list[Campaign]:
    stmt = select(Campaign).order_by(Campaign.created_at.desc())
    if owner_id:
        stmt = stmt.where(Campaign.owner_id == owner_id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def expire_campaign(db: AsyncSession, campaign_id: UUID) -> Campaign:
    campaign = await get_campaign(db, campaign_id)
    campaign.status = "expired"
    await db.commit()
    logger.info("campaign_expired", campaign_id=str(campaign_id))
    return campaign
