from __future__ import annotations

from typing import Dict, Optional, Sequence

ALLOW_METHODS = "GET, POST, OPTIONS"
ALLOW_HEADERS = "Content-Type, Authorization"
MAX_AGE_SECONDS = 86400


def resolve_allow_origin(origin: Optional[str], allowed_origins: Sequence[str]) -> Optional[str]:
    """
    Pick the `Access-Control-Allow-Origin` value for a request.

    - Empty allow-list: any origin (echo it, or `*` when the request has none).
    - Otherwise: echo the origin only when listed; unlisted origins get no header.
    """
    origin = (origin or "").strip()
    if not allowed_origins:
        return origin or "*"
    if origin and origin.rstrip("/") in allowed_origins:
        return origin
    return None


def cors_headers(origin: Optional[str], allowed_origins: Sequence[str]) -> Dict[str, str]:
    headers = {
        "Access-Control-Allow-Methods": ALLOW_METHODS,
        "Access-Control-Allow-Headers": ALLOW_HEADERS,
        "Access-Control-Max-Age": str(MAX_AGE_SECONDS),
        "Vary": "Origin",
    }
    allow_origin = resolve_allow_origin(origin, allowed_origins)
    if allow_origin is not None:
        headers["Access-Control-Allow-Origin"] = allow_origin
    return headers
