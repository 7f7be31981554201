from __future__ import annotations

import logging
import re
from typing import Any, Callable, List, Mapping, Optional
from urllib.parse import urlparse

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator

from patron_gate.client.page import parse_selector
from patron_gate.client.storage import STORAGE_KEY_RE
from patron_gate.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CALLBACK_PATH = "/patreon-callback"
DEFAULT_AD_SELECTORS = [".ad", ".advertisement", ".pub", "[data-ad]"]
LOOPBACK_HOSTS = ("localhost", "127.0.0.1", "::1")

# Unreplaced template values, e.g. `your-client-id` or `https://your-worker.workers.dev`.
_PLACEHOLDER_RE = re.compile(r"your-|<[^>]*>", re.IGNORECASE)


def is_placeholder(value: str) -> bool:
    return bool(_PLACEHOLDER_RE.search(value or ""))


def _alias(snake: str, camel: str) -> AliasChoices:
    return AliasChoices(snake, camel)


class ControllerConfig(BaseModel):
    """
    Session controller options.

    Keys are accepted in snake_case or in the camelCase spelling used by page
    snippets (`relayBaseUrl`, `clientId`, ...).
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    relay_base_url: str = Field(validation_alias=_alias("relay_base_url", "relayBaseUrl"))
    client_id: str = Field(validation_alias=_alias("client_id", "clientId"))
    redirect_uri: str = Field(validation_alias=_alias("redirect_uri", "redirectUri"))
    session_storage_key: str = Field(
        default="patreon_auth", validation_alias=_alias("session_storage_key", "sessionStorageKey")
    )
    login_button_selector: str = Field(
        default="[data-patreon-login]", validation_alias=_alias("login_button_selector", "loginButtonSelector")
    )
    on_login: Optional[Callable[..., Any]] = Field(default=None, validation_alias=_alias("on_login", "onLogin"))
    on_logout: Optional[Callable[..., Any]] = Field(default=None, validation_alias=_alias("on_logout", "onLogout"))
    on_error: Optional[Callable[..., Any]] = Field(default=None, validation_alias=_alias("on_error", "onError"))
    auto_remove_ads: bool = Field(default=True, validation_alias=_alias("auto_remove_ads", "autoRemoveAds"))
    ad_selectors: List[str] = Field(
        default_factory=lambda: list(DEFAULT_AD_SELECTORS), validation_alias=_alias("ad_selectors", "adSelectors")
    )
    debug: bool = False

    @field_validator("relay_base_url", "client_id")
    @classmethod
    def _required_and_replaced(cls, v: str, info: ValidationInfo) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError(f"{info.field_name} is required")
        if is_placeholder(v):
            raise ValueError(f"{info.field_name} still contains a placeholder value")
        return v

    @field_validator("relay_base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("redirect_uri")
    @classmethod
    def _absolute_uri(cls, v: str) -> str:
        v = (v or "").strip()
        parsed = urlparse(v)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("Invalid redirect URI provided")
        return v

    @field_validator("session_storage_key")
    @classmethod
    def _storable_key(cls, v: str) -> str:
        if not STORAGE_KEY_RE.match(v or ""):
            raise ValueError('session_storage_key may only contain letters, digits, "_", "." and "-"')
        return v

    @field_validator("login_button_selector")
    @classmethod
    def _valid_selector(cls, v: str) -> str:
        parse_selector(v)
        return v

    @field_validator("ad_selectors")
    @classmethod
    def _valid_selectors(cls, v: List[str]) -> List[str]:
        for selector in v:
            parse_selector(selector)
        return v

    @property
    def callback_path(self) -> str:
        return urlparse(self.redirect_uri).path or "/"


def _first_error_message(e: ValidationError) -> str:
    errors = e.errors()
    if not errors:
        return str(e)
    err = errors[0]
    loc = ".".join(str(x) for x in err.get("loc") or ())
    msg = str(err.get("msg") or "invalid value").removeprefix("Value error, ")
    return f"{loc}: {msg}" if loc and loc not in msg else msg


def load_controller_config(options: Mapping[str, Any], *, page_origin: Optional[str] = None) -> ControllerConfig:
    """
    Validate controller options, failing fast with ConfigurationError.

    `redirect_uri` defaults to `<page_origin>/patreon-callback`. A non-HTTPS redirect
    URI on a non-loopback host is allowed but logged as a warning.
    """
    data = dict(options or {})
    if not (data.get("redirect_uri") or data.get("redirectUri")):
        if not page_origin:
            raise ConfigurationError("redirect_uri is required when the page origin is unknown")
        data["redirect_uri"] = f"{page_origin.rstrip('/')}{DEFAULT_CALLBACK_PATH}"

    try:
        cfg = ControllerConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {_first_error_message(e)}") from e

    parsed = urlparse(cfg.redirect_uri)
    if parsed.scheme != "https" and (parsed.hostname or "") not in LOOPBACK_HOSTS:
        logger.warning("Redirect URI should use HTTPS in production: %s", cfg.redirect_uri)
    return cfg
