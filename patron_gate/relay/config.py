from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional


@dataclass(frozen=True)
class RelayConfig:
    # OAuth client credentials (the secret must never reach the browser)
    client_id: Optional[str]
    client_secret: Optional[str]

    # Operator identity, used for membership classification
    campaign_id: Optional[str]
    creator_id: Optional[str]

    # Default callback when the caller does not pass `redirect_uri`
    redirect_uri: Optional[str]

    # CORS allow-list (empty = any origin)
    allowed_origins: List[str]

    # Outbound provider calls
    upstream_timeout_seconds: float

    @property
    def configured(self) -> bool:
        """The relay serves requests only when the client credentials are present."""
        return bool(self.client_id and self.client_secret)


def _parse_csv(value: str) -> List[str]:
    # Origins are compared verbatim against the `Origin` header; keep case, drop trailing slashes.
    items = [x.strip().rstrip("/") for x in (value or "").split(",")]
    return [x for x in items if x]


def _env_str(name: str) -> Optional[str]:
    return (os.getenv(name, "") or "").strip() or None


@lru_cache(maxsize=1)
def load_relay_config() -> RelayConfig:
    """
    Load relay configuration from environment variables.

    PATREON_CLIENT_ID and PATREON_CLIENT_SECRET are required for the relay to answer
    anything but 500; everything else is optional.
    """
    raw_timeout = (os.getenv("RELAY_UPSTREAM_TIMEOUT_SECONDS", "") or "30").strip() or "30"
    try:
        timeout = float(raw_timeout)
    except ValueError:
        timeout = 30.0
    timeout = min(max(timeout, 1.0), 120.0)

    return RelayConfig(
        client_id=_env_str("PATREON_CLIENT_ID"),
        client_secret=_env_str("PATREON_CLIENT_SECRET"),
        campaign_id=_env_str("PATREON_CAMPAIGN_ID"),
        creator_id=_env_str("PATREON_CREATOR_ID"),
        redirect_uri=_env_str("REDIRECT_URI"),
        allowed_origins=_parse_csv(os.getenv("ALLOWED_ORIGINS", "")),
        upstream_timeout_seconds=timeout,
    )
