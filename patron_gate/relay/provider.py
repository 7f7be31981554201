"""
Identity provider (Patreon) calls made by the relay.

Everything here runs server-side only: the token exchange needs the client secret.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode, urlparse

import requests

from patron_gate.errors import UpstreamError, ValidationError
from patron_gate.relay.config import RelayConfig

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://www.patreon.com/oauth2/authorize"
TOKEN_URL = "https://www.patreon.com/api/oauth2/token"
IDENTITY_URL = "https://www.patreon.com/api/oauth2/v2/identity"

OAUTH_SCOPE = "identity identity.memberships"

IDENTITY_PARAMS = {
    "include": "memberships.campaign",
    "fields[user]": "full_name,image_url,thumb_url",
    "fields[member]": ",".join(
        [
            "patron_status",
            "last_charge_status",
            "last_charge_date",
            "lifetime_support_cents",
            "currently_entitled_amount_cents",
            "pledge_relationship_start",
        ]
    ),
}

# Avatar CDN hosts. A URL host must equal one of these or be a subdomain of one.
IMAGE_HOSTS = ("c10.patreonusercontent.com", "c8.patreon.com", "cdn.patreon.com")

DEFAULT_IMAGE_CONTENT_TYPE = "image/jpeg"


def build_authorize_url(cfg: RelayConfig, *, redirect_uri: Optional[str], state: str) -> str:
    if not cfg.client_id:
        raise ValueError("OAuth client ID not configured")
    params = {
        "response_type": "code",
        "client_id": cfg.client_id,
        "redirect_uri": redirect_uri or cfg.redirect_uri or "",
        "state": state,
        "scope": OAUTH_SCOPE,
    }
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


def _json_or_empty(r: requests.Response) -> Dict[str, Any]:
    try:
        data = r.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def exchange_code_for_tokens(cfg: RelayConfig, *, code: str, redirect_uri: Optional[str]) -> Dict[str, Any]:
    """
    Exchange an authorization code for tokens (access_token, refresh_token, expires_in).

    Raises UpstreamError mirroring the provider's status on non-2xx.
    """
    if not cfg.client_id or not cfg.client_secret:
        raise ValueError("OAuth client ID/secret not configured")

    payload = {
        "code": code,
        "grant_type": "authorization_code",
        "client_id": cfg.client_id,
        "client_secret": cfg.client_secret,
        "redirect_uri": redirect_uri or cfg.redirect_uri or "",
    }
    try:
        r = requests.post(TOKEN_URL, data=payload, timeout=cfg.upstream_timeout_seconds)
    except requests.RequestException as e:
        logger.warning("Token exchange request failed: %s", type(e).__name__)
        raise UpstreamError("Token exchange failed") from e

    data = _json_or_empty(r)
    if r.status_code >= 400:
        # Provider error codes (e.g. `invalid_grant`) are safe to relay; the request body is not.
        message = str(data.get("error") or "Token exchange failed")
        logger.info("Token exchange rejected (status=%d error=%s)", r.status_code, message)
        raise UpstreamError(message, status_code=r.status_code)
    if not data:
        raise UpstreamError("Invalid token response")
    return data


def fetch_identity(cfg: RelayConfig, *, access_token: str) -> Dict[str, Any]:
    """Fetch the raw identity document (user + memberships) for an access token."""
    try:
        r = requests.get(
            IDENTITY_URL,
            params=IDENTITY_PARAMS,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=cfg.upstream_timeout_seconds,
        )
    except requests.RequestException as e:
        logger.warning("Identity request failed: %s", type(e).__name__)
        raise UpstreamError("Failed to fetch user data") from e

    if r.status_code >= 400:
        raise UpstreamError("Failed to fetch user data", status_code=r.status_code)
    data = _json_or_empty(r)
    if not data:
        raise UpstreamError("Failed to fetch user data")
    return data


def is_allowed_image_host(hostname: Optional[str]) -> bool:
    host = (hostname or "").strip().lower().rstrip(".")
    if not host:
        return False
    return any(host == allowed or host.endswith("." + allowed) for allowed in IMAGE_HOSTS)


def validate_image_url(url: Optional[str]) -> str:
    """
    Return `url` if it points at an allow-listed avatar CDN host, else raise ValidationError.
    """
    if not url:
        raise ValidationError("Missing image URL")
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError as e:
        raise ValidationError("Invalid image URL") from e
    if parsed.scheme not in ("http", "https") or not is_allowed_image_host(hostname):
        raise ValidationError("Invalid image URL")
    return url


def open_image(cfg: RelayConfig, url: str) -> requests.Response:
    """Open a streaming GET for an already-validated image URL."""
    try:
        r = requests.get(url, stream=True, timeout=cfg.upstream_timeout_seconds)
    except requests.RequestException as e:
        logger.warning("Image proxy request failed: %s", type(e).__name__)
        raise UpstreamError("Failed to proxy image") from e
    if r.status_code >= 400:
        r.close()
        raise UpstreamError("Failed to proxy image", status_code=r.status_code)
    return r
