"""
Error kinds shared by the Relay Service and the Session Controller.

Relay-side errors carry an HTTP status and a stable `kind` so the FastAPI exception
handler can render them as `{"error": message, "kind": kind}`. Controller-side errors
are reported through the configured `on_error` callback; only `ConfigurationError`
is raised to the hosting page.
"""

from __future__ import annotations

from typing import Optional


class PatronGateError(Exception):
    """Base class for all patron_gate errors."""

    kind = "Error"
    status_code = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(PatronGateError):
    """Missing or placeholder configuration. Fatal at construction time."""

    kind = "ConfigurationError"


class OAuthError(PatronGateError):
    """Provider returned an error, or the callback is missing `code` / has a bad `state`."""

    kind = "OAuthError"
    status_code = 400


class NetworkError(PatronGateError):
    """A call to the Relay failed before a response was received."""

    kind = "NetworkError"
    status_code = 502


class RelayTimeoutError(NetworkError):
    """A call to the Relay exceeded its timeout budget. Retryable by logging in again."""

    kind = "Timeout"
    status_code = 504


class RelayRequestError(NetworkError):
    """The Relay answered with a non-2xx status."""

    kind = "RelayRequestError"


class UpstreamError(PatronGateError):
    """The Relay's call to the identity provider failed or returned non-2xx."""

    kind = "UpstreamError"
    status_code = 502


class ValidationError(PatronGateError):
    """A Relay request is missing required fields or names a disallowed resource."""

    kind = "ValidationError"
    status_code = 400


class MissingParameter(ValidationError):
    kind = "MissingParameter"


class Unauthorized(PatronGateError):
    kind = "Unauthorized"
    status_code = 401
