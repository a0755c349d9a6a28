"""
Play batch intake: the transport layer posts a listener's recently-played
records here. Records are validated one by one so a malformed item is
reported back without sinking its batch.
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from soundlink.api.deps import get_ingestor
from soundlink.core.ingestor import PlayIngestor
from soundlink.middleware.auth import require_internal_token
from soundlink.models.database import get_db

router = APIRouter(prefix="/v1/plays", tags=["plays"], dependencies=[Depends(require_internal_token)])


class PlayBatch(BaseModel):
    plays: list[Any]


@router.post("/{user_id}")
async def ingest_plays(
    user_id: str,
    batch: PlayBatch,
    db: AsyncSession = Depends(get_db),
    ingestor: PlayIngestor = Depends(get_ingestor),
):
    result = await ingestor.ingest(db, user_id, batch.plays)
    return {
        "status": "ok",
        "inserted": result.inserted,
        "attributed": result.attributed,
        "skipped": result.skipped,
        "retried": result.retried,
        "errors": [
            {"index": e.index, "track_id": e.track_id, "reason": e.reason}
            for e in result.errors
        ],
    }
