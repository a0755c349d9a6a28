"""
Internal token check for collaborator-facing write routes.

The OAuth callback layer (session binding) and the transport layer (play
batches) are trusted services, not browsers. They present a shared token
in X-Internal-Token. An unset token rejects everything.
"""

import hmac

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader

from soundlink.config import get_settings

import structlog

logger = structlog.get_logger()

_token_header = APIKeyHeader(name="X-Internal-Token", auto_error=False)


async def require_internal_token(token: str | None = Security(_token_header)) -> None:
    expected = get_settings().internal_api_token
    if not expected or not token or not hmac.compare_digest(token, expected):
        logger.warning("internal_token_rejected", presented=bool(token))
        raise HTTPException(status_code=401, detail="Invalid or missing internal token.")
