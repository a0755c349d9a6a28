"""
Click ID minting & verification.

Format:  {uuid}:{hmac_sig}
- uuid      → unique click identifier (UUIDv7 for time-sortability)
- hmac_sig  → HMAC-SHA256(uuid, secret), hex-truncated to 16 chars

The click id doubles as the OAuth `state` value, so the callback layer can
reject forged or mangled ids before touching the database. Clicks never
expire; the attribution window lives on the session instead.
"""

import hashlib
import hmac
import uuid
from dataclasses import dataclass

from soundlink.config import get_settings


def _uuid7() -> str:
    """UUIDv7 hex where the interpreter has it (3.14+), uuid4 otherwise."""
    try:
        return uuid.uuid7().hex
    except AttributeError:
        return uuid.uuid4().hex


def _sign(payload: str, secret: str) -> str:
    """HMAC-SHA256, truncated to 16 hex chars."""
    sig = hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()
    return sig[:16]


@dataclass(frozen=True)
class ClickId:
    uid: str
    signature: str

    def __str__(self) -> str:
        return f"{self.uid}:{self.signature}"


def mint_click_id() -> ClickId:
    """Create a new signed click id."""
    settings = get_settings()
    uid = _uuid7()
    return ClickId(uid=uid, signature=_sign(uid, settings.click_id_secret))


def verify_click_id(raw: str) -> ClickId | None:
    """Parse and verify a click id string. Returns None if tampered or malformed."""
    settings = get_settings()
    parts = raw.split(":")
    if len(parts) != 2:
        return None

    uid, sig = parts
    if not uid or not sig:
        return None

    expected = _sign(uid, settings.click_id_secret)
    if not hmac.compare_digest(sig, expected):
        return None

    return ClickId(uid=uid, signature=sig)


def hash_ip(ip: str) -> str:
    """Salted sha256 of a client IP; raw addresses are never stored."""
    settings = get_settings()
    return hashlib.sha256(f"{settings.ip_hash_salt}:{ip}".encode()).hexdigest()
