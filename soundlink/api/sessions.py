"""
Session binding: called by the OAuth callback layer once a listener has
authenticated. Repeated callbacks for the same click return the same session.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from soundlink.api.deps import get_engine
from soundlink.core.attribution import AttributionEngine
from soundlink.core.errors import ClickNotFound
from soundlink.core.tracker import bind_session
from soundlink.middleware.auth import require_internal_token
from soundlink.models.database import get_db

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/v1/sessions", tags=["sessions"], dependencies=[Depends(require_internal_token)])


class BindSessionRequest(BaseModel):
    click_id: str = Field(min_length=1, max_length=100)
    user_id: str = Field(min_length=1, max_length=255)


class SessionResponse(BaseModel):
    id: int
    click_id: str
    user_id: str
    created_at: datetime
    window_expires_at: datetime
    backfilled: int = 0


@router.post("", response_model=SessionResponse)
async def create_session(
    req: BindSessionRequest,
    db: AsyncSession = Depends(get_db),
    engine: AttributionEngine = Depends(get_engine),
):
    try:
        session = await bind_session(db, req.click_id, req.user_id)
    except ClickNotFound:
        raise HTTPException(status_code=404, detail="Click not found")

    response = SessionResponse(
        id=session.id,
        click_id=session.click_id,
        user_id=session.user_id,
        created_at=session.created_at,
        window_expires_at=session.window_expires_at,
    )
    # No-op unless retroactive attribution is switched on
    outcome = await engine.backfill_user(db, session.user_id)
    if outcome.attributed:
        logger.info("session_backfilled", session_id=session.id, attributed=outcome.attributed)
    response.backfilled = outcome.attributed
    return response
