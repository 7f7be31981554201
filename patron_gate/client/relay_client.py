"""HTTP client for the relay's `/token` and `/identity` endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from patron_gate.errors import NetworkError, RelayRequestError, RelayTimeoutError
from patron_gate.membership import Identity

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 30.0
TIMEOUT_MESSAGE = "Request timeout - please try again"


class RelayClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = http or requests.Session()

    def _request(self, method: str, path: str, *, fallback_error: str, **kwargs: Any) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            r = self._http.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise RelayTimeoutError(TIMEOUT_MESSAGE) from e
        except requests.RequestException as e:
            raise NetworkError(f"{fallback_error}: {type(e).__name__}") from e

        try:
            data = r.json()
        except ValueError:
            data = None

        if r.status_code >= 400:
            message = fallback_error
            if isinstance(data, dict) and data.get("error"):
                message = str(data["error"])
            logger.debug("Relay %s %s -> %d (%s)", method, path, r.status_code, message)
            raise RelayRequestError(message, status_code=r.status_code)
        if not isinstance(data, dict):
            raise RelayRequestError(f"{fallback_error}: invalid response", status_code=r.status_code)
        return data

    def exchange_code(self, code: str, redirect_uri: str) -> Dict[str, Any]:
        """POST /token. Returns the provider's token payload."""
        return self._request(
            "POST",
            "/token",
            json={"code": code, "redirect_uri": redirect_uri},
            fallback_error="Token exchange failed",
        )

    def get_identity(self, access_token: str) -> Identity:
        """GET /identity with the bearer token. Returns the classified identity."""
        data = self._request(
            "GET",
            "/identity",
            headers={"Authorization": f"Bearer {access_token}"},
            fallback_error="Failed to get user identity",
        )
        return Identity.model_validate(data)

    def proxied_image_url(self, image_url: str) -> str:
        return f"{self.base_url}/proxy-image?url={quote(image_url, safe='')}"
