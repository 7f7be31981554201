from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import pytest

from patron_gate.client.controller import OAUTH_STATE_KEY, RETURN_URL_KEY, SessionController
from patron_gate.client.gating import HIDDEN_MARKER
from patron_gate.client.page import Element, Page
from patron_gate.client.session import Session, SessionUser, save_session
from patron_gate.client.storage import MemoryStorage
from patron_gate.client.ui import AUTHENTICATED_CLASS, MENU_CLASS
from patron_gate.errors import ConfigurationError, RelayRequestError, RelayTimeoutError
from patron_gate.membership import Identity, IdentityUser, MembershipType

NOW = datetime(2026, 10, 1, 12, 0, 0, tzinfo=timezone.utc)
RELAY = "https://relay.site.example"


class FakeRelay:
    """Stands in for RelayClient; records calls."""

    def __init__(
        self,
        identity: Optional[Identity] = None,
        *,
        token_error: Optional[Exception] = None,
        identity_error: Optional[Exception] = None,
    ) -> None:
        self.identity = identity or Identity(
            user=IdentityUser(
                id="u-1",
                full_name="Ada Lovelace",
                image_url="https://c8.patreon.com/full",
                thumb_url="https://c8.patreon.com/thumb",
            ),
            membership_type=MembershipType.ACTIVE_PATRON,
            is_paying_member=True,
        )
        self.token_error = token_error
        self.identity_error = identity_error
        self.calls: List[tuple] = []

    def exchange_code(self, code: str, redirect_uri: str) -> Dict[str, Any]:
        self.calls.append(("exchange_code", code, redirect_uri))
        if self.token_error is not None:
            raise self.token_error
        return {"access_token": "at-1", "refresh_token": "rt-1", "expires_in": 3600}

    def get_identity(self, access_token: str) -> Identity:
        self.calls.append(("get_identity", access_token))
        if self.identity_error is not None:
            raise self.identity_error
        return self.identity

    def proxied_image_url(self, url: str) -> str:
        return f"{RELAY}/proxy-image?url={url}"


class Harness:
    def __init__(self, url: str = "https://site.example/articles/1", relay: Optional[FakeRelay] = None, **opts):
        self.now = NOW
        self.page = Page(url=url)
        self.button = self.page.body.append(
            Element("button", attrs={"data-patreon-login": "", "data-patreon-login-text": "Sign in"})
        )
        self.ad = self.page.body.append(Element("div", classes=["ad"]))
        self.durable = MemoryStorage()
        self.ephemeral = MemoryStorage()
        self.relay = relay or FakeRelay()
        self.logins: List[Session] = []
        self.logouts: List[bool] = []
        self.errors: List[str] = []
        options = {
            "relay_base_url": RELAY,
            "client_id": "client-1",
            "on_login": self.logins.append,
            "on_logout": lambda: self.logouts.append(True),
            "on_error": self.errors.append,
        }
        options.update(opts)
        self.controller = SessionController(
            options,
            page=self.page,
            durable_store=self.durable,
            ephemeral_store=self.ephemeral,
            relay_client=self.relay,
            clock=lambda: self.now,
        )


def _stored_session(h: Harness, membership_type=MembershipType.ACTIVE_PATRON, expires_in: int = 3600) -> None:
    save_session(
        h.durable,
        "patreon_auth",
        Session(
            user=SessionUser(id="u-1", display_name="Ada Lovelace", avatar_thumb_url="https://c8.patreon.com/t"),
            membership_type=membership_type,
            is_paying_member=membership_type in (MembershipType.ACTIVE_PATRON, MembershipType.CREATOR),
            access_token="at",
            expires_at=NOW + timedelta(seconds=expires_in),
        ),
    )


def _callback_url(**params: str) -> str:
    query = "&".join(f"{k}={v}" for k, v in params.items())
    return f"https://site.example/patreon-callback?{query}"


def test_placeholder_config_fails_at_construction() -> None:
    with pytest.raises(ConfigurationError):
        Harness(client_id="your-client-id")


def test_unauthenticated_render() -> None:
    h = Harness()
    h.controller.initialize()
    assert h.button.text == "Sign in"
    assert AUTHENTICATED_CLASS not in h.button.classes
    assert not h.controller.is_authenticated()
    assert "display" not in h.ad.style


def test_login_navigates_to_relay_with_state() -> None:
    h = Harness()
    h.controller.initialize()
    h.page.click(h.button)

    assert len(h.page.navigations) == 1
    target = urlparse(h.page.navigations[0])
    assert f"{target.scheme}://{target.netloc}{target.path}" == f"{RELAY}/"
    q = parse_qs(target.query)
    state = h.ephemeral.get(OAUTH_STATE_KEY)
    assert state is not None and len(state) == 64
    assert q["state"] == [state]
    assert q["redirect_uri"] == ["https://site.example/patreon-callback"]
    assert q["client_id"] == ["client-1"]


def test_login_overwrites_previous_nonce() -> None:
    h = Harness()
    h.controller.login()
    first = h.ephemeral.get(OAUTH_STATE_KEY)
    h.controller.login()
    assert h.ephemeral.get(OAUTH_STATE_KEY) != first


def test_login_sanitizes_return_url() -> None:
    h = Harness()
    h.controller.login(return_url="//evil.example/phish")
    assert h.ephemeral.get(RETURN_URL_KEY) == "/"
    h.controller.login(return_url="/articles/42")
    assert h.ephemeral.get(RETURN_URL_KEY) == "/articles/42"


def test_callback_with_matching_state_creates_session() -> None:
    h = Harness(url=_callback_url(code="code-1", state="s" * 64))
    h.ephemeral.set(OAUTH_STATE_KEY, "s" * 64)
    h.ephemeral.set(RETURN_URL_KEY, "/articles/42")
    h.controller.initialize()

    assert h.relay.calls == [
        ("exchange_code", "code-1", "https://site.example/patreon-callback"),
        ("get_identity", "at-1"),
    ]
    session = h.controller.current_session()
    assert session is not None
    assert session.membership_type == MembershipType.ACTIVE_PATRON
    assert session.expires_at == NOW + timedelta(seconds=3600)
    assert session.refresh_token == "rt-1"
    assert h.durable.get("patreon_auth") is not None
    assert len(h.logins) == 1 and h.logins[0].user.id == "u-1"
    assert h.errors == []
    assert h.ephemeral.get(OAUTH_STATE_KEY) is None
    assert h.ephemeral.get(RETURN_URL_KEY) is None
    assert h.page.navigations == ["/articles/42"]

    assert h.controller.is_authenticated()
    assert h.controller.is_paying_member()
    assert h.button.text.endswith("Hello Ada")
    assert AUTHENTICATED_CLASS in h.button.classes
    assert h.button.children[0].attrs["src"] == f"{RELAY}/proxy-image?url=https://c8.patreon.com/thumb"
    assert h.ad.style["display"] == "none"


def test_callback_defaults_return_url_to_root() -> None:
    h = Harness(url=_callback_url(code="c", state="abc"))
    h.ephemeral.set(OAUTH_STATE_KEY, "abc")
    h.controller.initialize()
    assert h.page.navigations == ["/"]


@pytest.mark.parametrize(
    "stored,params,message",
    [
        ("expected", {"code": "c", "state": "attacker"}, "Invalid state parameter"),
        (None, {"code": "c", "state": "anything"}, "Invalid state parameter"),
        ("expected", {"state": "expected"}, "No authorization code received"),
        ("expected", {"error": "access_denied", "state": "expected"}, "OAuth error: access_denied"),
    ],
)
def test_rejected_callback_makes_no_network_calls(stored, params, message) -> None:
    h = Harness(url=_callback_url(**params))
    if stored is not None:
        h.ephemeral.set(OAUTH_STATE_KEY, stored)
    h.controller.initialize()

    assert h.relay.calls == []
    assert h.errors == [message]
    assert h.logins == []
    assert h.durable.get("patreon_auth") is None
    assert h.ephemeral.get(OAUTH_STATE_KEY) is None
    assert not h.controller.is_authenticated()
    assert h.page.navigations == []


def test_relay_failure_is_reported_and_nothing_persisted() -> None:
    relay = FakeRelay(token_error=RelayRequestError("invalid_grant", status_code=400))
    h = Harness(url=_callback_url(code="c", state="abc"), relay=relay)
    h.ephemeral.set(OAUTH_STATE_KEY, "abc")
    h.controller.initialize()

    assert h.errors == ["Authentication failed: invalid_grant"]
    assert h.durable.get("patreon_auth") is None
    assert h.ephemeral.get(OAUTH_STATE_KEY) is None
    assert [c[0] for c in relay.calls] == ["exchange_code"]


def test_timeout_is_reported_with_retry_message() -> None:
    relay = FakeRelay(identity_error=RelayTimeoutError("Request timeout - please try again"))
    h = Harness(url=_callback_url(code="c", state="abc"), relay=relay)
    h.ephemeral.set(OAUTH_STATE_KEY, "abc")
    h.controller.initialize()
    assert h.errors == ["Authentication failed: Request timeout - please try again"]
    assert not h.controller.is_authenticated()


def test_failing_host_callback_does_not_break_login() -> None:
    h = Harness(url=_callback_url(code="c", state="abc"))

    def boom(_session) -> None:
        raise RuntimeError("host bug")

    h.controller.config = h.controller.config.model_copy(update={"on_login": boom})
    h.ephemeral.set(OAUTH_STATE_KEY, "abc")
    h.controller.initialize()
    assert h.controller.is_authenticated()
    assert h.page.navigations == ["/"]


def test_stored_session_restores_and_expires() -> None:
    h = Harness()
    _stored_session(h, expires_in=60)
    h.controller.initialize()
    assert h.controller.is_authenticated()

    h.now = NOW + timedelta(seconds=61)
    assert not h.controller.is_authenticated()
    assert not h.controller.is_paying_member()


def test_expired_stored_session_is_discarded_on_initialize() -> None:
    h = Harness()
    _stored_session(h, expires_in=-1)
    h.controller.initialize()
    assert not h.controller.is_authenticated()
    assert h.durable.get("patreon_auth") is None


def test_initialize_is_idempotent() -> None:
    h = Harness()
    h.controller.initialize()
    h.controller.initialize()
    h.page.click(h.button)
    assert len(h.page.navigations) == 1


def test_non_paying_member_sees_ads() -> None:
    h = Harness()
    _stored_session(h, membership_type=MembershipType.FORMER_PATRON)
    h.controller.initialize()
    assert h.controller.is_authenticated()
    assert not h.controller.is_paying_member()
    assert "display" not in h.ad.style


def test_auto_remove_ads_disabled() -> None:
    h = Harness(auto_remove_ads=False)
    _stored_session(h)
    h.controller.initialize()
    assert "display" not in h.ad.style


def test_logout_restores_content_and_stops_gating() -> None:
    h = Harness()
    _stored_session(h)
    h.controller.initialize()
    late = h.page.body.append(Element("div", classes=["advertisement"]))
    assert h.ad.style["display"] == "none"
    assert late.style["display"] == "none"

    h.controller.logout()
    assert h.logouts == [True]
    assert h.durable.get("patreon_auth") is None
    assert not h.controller.is_authenticated()
    assert "display" not in h.ad.style and HIDDEN_MARKER not in h.ad.attrs
    assert "display" not in late.style
    assert h.button.text == "Sign in"
    assert AUTHENTICATED_CLASS not in h.button.classes

    after = h.page.body.append(Element("div", classes=["ad"]))
    assert "display" not in after.style


def test_menu_opens_and_closes_on_outside_click() -> None:
    h = Harness()
    _stored_session(h)
    h.controller.initialize()

    h.page.click(h.button)
    menus = h.page.query_all(f".{MENU_CLASS}")
    assert len(menus) == 1
    assert h.page.navigations == []
    assert menus[0].query_all(".patreon-menu-status")[0].text == "Active Patron"

    h.page.click(menus[0].query_all(".patreon-menu-name")[0])
    assert len(h.page.query_all(f".{MENU_CLASS}")) == 1

    outside = h.page.body.append(Element("p"))
    h.page.click(outside)
    assert h.page.query_all(f".{MENU_CLASS}") == []
    assert h.page.document_listeners("click") == []


def test_menu_button_toggles() -> None:
    h = Harness()
    _stored_session(h)
    h.controller.initialize()
    h.page.click(h.button)
    h.page.click(h.button)
    assert h.page.query_all(f".{MENU_CLASS}") == []


def test_menu_logout() -> None:
    h = Harness()
    _stored_session(h)
    h.controller.initialize()
    h.page.click(h.button)
    h.page.click(h.page.query_all(".patreon-logout-btn")[0])
    assert h.page.query_all(f".{MENU_CLASS}") == []
    assert not h.controller.is_authenticated()
    assert h.logouts == [True]


def test_dispose_unbinds_buttons() -> None:
    h = Harness()
    h.controller.initialize()
    h.controller.dispose()
    h.page.click(h.button)
    assert h.page.navigations == []
