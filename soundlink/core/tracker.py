"""
Click and session bookkeeping.

Flow:
  1. Visitor hits the tracker link → record_click() stores an immutable Click
  2. Visitor finishes OAuth → bind_session() ties the click to their account
     and fixes the attribution window on the new Session
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from soundlink.config import get_settings
from soundlink.core.campaigns import get_campaign, is_active
from soundlink.core.click_id import hash_ip, mint_click_id, verify_click_id
from soundlink.core.clock import utcnow
from soundlink.core.errors import CampaignExpired, ClickNotFound, ConstraintViolation
from soundlink.models.tables import Click, ListenerSession

import structlog

logger = structlog.get_logger()

UTM_KEYS = ("utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term")


@dataclass(frozen=True)
class Utm:
    source: str | None = None
    medium: str | None = None
    campaign: str | None = None
    content: str | None = None
    term: str | None = None

    @classmethod
    def from_query(cls, params) -> "Utm":
        values = {k[len("utm_"):]: (params.get(k) or None) for k in UTM_KEYS}
        return cls(**values)


async def record_click(
    db: AsyncSession,
    campaign_id: UUID,
    utm: Utm | None = None,
    *,
    referrer: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
    now: datetime | None = None,
) -> Click:
    """Store a tracker-link visit. Raises CampaignNotFound / CampaignExpired."""
    now = now or utcnow()
    utm = utm or Utm()
    campaign = await get_campaign(db, campaign_id)
    if not is_active(campaign, now):
        raise CampaignExpired(campaign_id)

    click = Click(
        id=str(mint_click_id()),
        campaign_id=campaign.id,
        utm_source=utm.source,
        utm_medium=utm.medium,
        utm_campaign=utm.campaign,
        utm_content=utm.content,
        utm_term=utm.term,
        referrer=referrer[:2000] if referrer else None,
        ip_hash=hash_ip(ip) if ip else None,
        user_agent=user_agent,
        clicked_at=now,
    )
    db.add(click)
    await db.commit()

    logger.info("click_recorded", click_id=click.id, campaign_id=str(campaign.id),
                utm_source=utm.source, utm_medium=utm.medium)
    return click


async def _session_for_click(db: AsyncSession, click_id: str) -> ListenerSession | None:
    result = await db.execute(select(ListenerSession).where(ListenerSession.click_id == click_id))
    return result.scalar_one_or_none()


async def bind_session(
    db: AsyncSession,
    click_id: str,
    user_id: str,
    *,
    window: timedelta | None = None,
    now: datetime | None = None,
) -> ListenerSession:
    """
    Tie a click to an authenticated user. Idempotent per click: repeated OAuth
    callbacks get the existing session back, never a second one.
    """
    if verify_click_id(click_id) is None:
        raise ClickNotFound(click_id)
    click = await db.get(Click, click_id)
    if click is None:
        raise ClickNotFound(click_id)

    existing = await _session_for_click(db, click_id)
    if existing is not None:
        if existing.user_id != user_id:
            logger.warning("session_rebind_ignored", click_id=click_id,
                           bound_user=existing.user_id, user_id=user_id)
        return existing

    now = now or utcnow()
    if window is None:
        window = timedelta(hours=get_settings().attribution_window_hours)
    session = ListenerSession(
        click_id=click_id,
        user_id=user_id,
        created_at=now,
        window_expires_at=now + window,
    )
    db.add(session)
    try:
        await db.commit()
    except IntegrityError as exc:
        # A concurrent callback bound this click first
        await db.rollback()
        existing = await _session_for_click(db, click_id)
        if existing is None:
            raise ConstraintViolation(f"session for click {click_id} conflicted") from exc
        return existing

    logger.info("session_bound", click_id=click_id, user_id=user_id,
                window_expires_at=session.window_expires_at.isoformat())
    return session
