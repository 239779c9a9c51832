"""Session token and expiry helpers."""

import re
import secrets
from datetime import datetime, timedelta, timezone

TOKEN_BYTES = 32
_TOKEN_RE = re.compile(r"^[a-f0-9]{64}$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_session_token() -> str:
    """Return an opaque, unguessable 64-char hex token."""
    return secrets.token_hex(TOKEN_BYTES)


def is_valid_session_token(token: object) -> bool:
    return isinstance(token, str) and bool(_TOKEN_RE.match(token))


def session_expiry(now: datetime, ttl_hours: int = 24) -> datetime:
    return now + timedelta(hours=ttl_hours)


def is_expired(expires_at: datetime, now: datetime) -> bool:
    """A session is usable only while now < expires_at."""
    return now >= expires_at
