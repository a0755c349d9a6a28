"""
Campaign analytics API: read-only views consumed by the dashboard.

All counts come from headline attributions (confidence at or above the
configured threshold); /overview also reports how many fell below it.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from soundlink.api.deps import get_aggregator
from soundlink.core.analytics import AnalyticsAggregator
from soundlink.core.errors import AggregationError, CampaignNotFound
from soundlink.middleware.auth import require_internal_token
from soundlink.models.database import get_db

import structlog

logger = structlog.get_logger()
router = APIRouter(
    prefix="/api/campaigns", tags=["analytics"], dependencies=[Depends(require_internal_token)],
)


async def _run(coro, campaign_id: UUID):
    try:
        return await coro
    except CampaignNotFound:
        raise HTTPException(status_code=404, detail="Campaign not found")
    except AggregationError as exc:
        logger.error("analytics_failed", campaign_id=str(campaign_id), error=str(exc))
        raise HTTPException(status_code=500, detail="Failed to aggregate campaign analytics")


@router.get("/{campaign_id}/trends")
async def trends(
    campaign_id: UUID,
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
    aggregator: AnalyticsAggregator = Depends(get_aggregator),
):
    series = await _run(aggregator.trends(db, campaign_id, days), campaign_id)
    return series.as_dict()


@router.get("/{campaign_id}/growth")
async def growth(
    campaign_id: UUID,
    weeks: int = Query(8, ge=1, le=104),
    db: AsyncSession = Depends(get_db),
    aggregator: AnalyticsAggregator = Depends(get_aggregator),
):
    series = await _run(aggregator.growth(db, campaign_id, weeks), campaign_id)
    return series.as_dict()


@router.get("/{campaign_id}/songs")
async def songs(
    campaign_id: UUID,
    db: AsyncSession = Depends(get_db),
    aggregator: AnalyticsAggregator = Depends(get_aggregator),
):
    stats = await _run(aggregator.songs(db, campaign_id), campaign_id)
    return {"songs": [s.as_dict() for s in stats]}


@router.get("/{campaign_id}/overview")
async def overview(
    campaign_id: UUID,
    db: AsyncSession = Depends(get_db),
    aggregator: AnalyticsAggregator = Depends(get_aggregator),
):
    return await _run(aggregator.overview(db, campaign_id), campaign_id)


@router.get("/{campaign_id}/compare")
async def compare(
    campaign_id: UUID,
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
    aggregator: AnalyticsAggregator = Depends(get_aggregator),
):
    return await _run(aggregator.compare(db, campaign_id, days), campaign_id)
