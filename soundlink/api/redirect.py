"""
Tracker link endpoint: /c/{campaign_id}

Flow:
  1. Look up the campaign (404 unknown, 410 expired)
  2. Record the click with UTM params, referrer, hashed IP, user agent
  3. Set the click cookie (sl_click_id)
  4. 302 to the OAuth start URL with the signed click id as `state`;
     the OAuth layer calls POST /v1/sessions once the listener has logged in
"""

from urllib.parse import urlencode
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from soundlink.config import get_settings
from soundlink.core.errors import CampaignExpired, CampaignNotFound
from soundlink.core.tracker import Utm, record_click
from soundlink.models.database import get_db

router = APIRouter()

_PRIVATE_PREFIXES = (
    "10.", "172.16.", "172.17.", "172.18.", "172.19.", "172.20.", "172.21.", "172.22.",
    "172.23.", "172.24.", "172.25.", "172.26.", "172.27.", "172.28.", "172.29.", "172.30.",
    "172.31.", "192.168.", "127.", "::1",
)


def _get_real_ip(request: Request) -> str:
    """Extract real client IP from x-forwarded-for or request."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ips = [ip.strip() for ip in forwarded.split(",")]
        for ip in ips:
            if not ip.startswith(_PRIVATE_PREFIXES):
                return ip
        return ips[0]
    return request.client.host if request.client else "unknown"


@router.get("/c/{campaign_id}")
async def track_click(
    request: Request,
    campaign_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    settings = get_settings()

    try:
        click = await record_click(
            db,
            campaign_id,
            Utm.from_query(request.query_params),
            referrer=request.headers.get("referer"),
            ip=_get_real_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
    except CampaignNotFound:
        raise HTTPException(status_code=404, detail="Not found")
    except CampaignExpired:
        raise HTTPException(status_code=410, detail="Campaign has ended")

    oauth_url = f"{settings.base_url}{settings.oauth_start_path}?{urlencode({'state': click.id})}"
    response = RedirectResponse(url=oauth_url, status_code=302)

    # Click cookie (7 days), a fallback when the OAuth provider drops `state`
    response.set_cookie(
        key="sl_click_id",
        value=click.id,
        max_age=604800,
        path="/",
        samesite="lax",
        secure=True,
        httponly=True,
    )
    return response
