from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlsplit

STATE_NBYTES = 32  # 256 bits


def utcnow() -> datetime:
    """Seam for tests."""
    return datetime.now(timezone.utc)


def random_state(nbytes: int = STATE_NBYTES) -> str:
    """Hex-encoded CSRF nonce for the OAuth `state` parameter."""
    return secrets.token_hex(nbytes)


def safe_return_path(url: Optional[str]) -> str:
    """Return-after-login target, limited to a same-site path. Anything else falls back to `/`."""
    candidate = "".join(ch for ch in (url or "").strip() if ch not in "\r\n")
    if candidate[:1] != "/" or candidate[1:2] in ("/", "\\"):
        return "/"
    parts = urlsplit(candidate)
    if parts.scheme or parts.netloc:
        return "/"
    return candidate
