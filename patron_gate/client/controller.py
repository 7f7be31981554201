"""
Session controller: drives the login button, completes the OAuth callback,
persists the session and gates page content by membership tier.

One instance per page, constructed by the host and passed to whatever needs auth
state. Lifecycle is explicit: `initialize()` once, `dispose()` when the page goes away.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional, Tuple, Union
from urllib.parse import urlencode

from patron_gate.client.config import ControllerConfig, load_controller_config
from patron_gate.client.gating import ContentGate
from patron_gate.client.page import ClickEvent, Element, Page
from patron_gate.client.relay_client import RelayClient
from patron_gate.client.session import Session, clear_session, load_session, save_session
from patron_gate.client.storage import KeyValueStore
from patron_gate.client.ui import UserMenu, render_authenticated_button, render_unauthenticated_button
from patron_gate.errors import OAuthError, PatronGateError
from patron_gate.util import random_state, safe_return_path, utcnow

logger = logging.getLogger(__name__)

OAUTH_STATE_KEY = "patreon_oauth_state"
RETURN_URL_KEY = "patreon_return_url"


class SessionController:
    def __init__(
        self,
        config: Union[ControllerConfig, Mapping[str, Any]],
        *,
        page: Page,
        durable_store: KeyValueStore,
        ephemeral_store: KeyValueStore,
        relay_client: Optional[RelayClient] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if not isinstance(config, ControllerConfig):
            config = load_controller_config(config, page_origin=page.origin)
        self.config = config
        self.page = page
        self.durable_store = durable_store
        self.ephemeral_store = ephemeral_store
        self.relay = relay_client or RelayClient(config.relay_base_url)
        self.clock = clock

        self.session: Optional[Session] = None
        self.initialized = False
        self._bound: List[Tuple[Element, Callable[[ClickEvent], None]]] = []
        self._gate = ContentGate(page, config.ad_selectors)
        self._menu = UserMenu(page, self.relay.proxied_image_url, on_logout=self.logout)

    def _log(self, msg: str, *args: Any) -> None:
        logger.log(logging.INFO if self.config.debug else logging.DEBUG, msg, *args)

    # ---- lifecycle ----
    def initialize(self) -> None:
        if self.initialized:
            return
        self._log("Initializing session controller")
        self.session = load_session(self.durable_store, self.config.session_storage_key, now=self.clock())
        if self.session is not None:
            self._log("Loaded stored session for user %s", self.session.user.id)
        self._bind_login_buttons()
        if self.is_callback_page():
            self.complete_callback()
        self.render()
        self.initialized = True
        self._log("Session controller initialized")

    def dispose(self) -> None:
        for button, handler in self._bound:
            button.remove_event_listener("click", handler)
        self._bound = []
        self._menu.close()
        self._gate.stop()
        self.initialized = False

    def _bind_login_buttons(self) -> None:
        for button in self.page.query_all(self.config.login_button_selector):

            def handler(_event: ClickEvent, button: Element = button) -> None:
                self._on_button_click(button)

            button.add_event_listener("click", handler)
            self._bound.append((button, handler))

    def _on_button_click(self, button: Element) -> None:
        session = self.current_session()
        if session is not None:
            self._menu.toggle(button, session)
        else:
            self.login()

    # ---- state ----
    def current_session(self) -> Optional[Session]:
        """The session if present and not expired. Expiry is checked on every call."""
        if self.session is None or not self.session.is_valid(self.clock()):
            return None
        return self.session

    def is_authenticated(self) -> bool:
        return self.current_session() is not None

    def is_paying_member(self) -> bool:
        session = self.current_session()
        return bool(session is not None and session.is_paying_member)

    def is_callback_page(self) -> bool:
        return self.page.path == self.config.callback_path

    # ---- login / logout ----
    def login(self, return_url: Optional[str] = None) -> None:
        """Start the authorization flow with a full-page navigation to the relay."""
        self._log("Starting login flow")
        state = random_state()
        self.ephemeral_store.set(OAUTH_STATE_KEY, state)
        if return_url is not None:
            self.ephemeral_store.set(RETURN_URL_KEY, safe_return_path(return_url))
        query = urlencode(
            {"state": state, "redirect_uri": self.config.redirect_uri, "client_id": self.config.client_id}
        )
        self.page.navigate(f"{self.config.relay_base_url}/?{query}")

    def logout(self) -> None:
        self._log("Logging out")
        self.session = None
        clear_session(self.durable_store, self.config.session_storage_key)
        self._menu.close()
        self._invoke_callback("on_logout", self.config.on_logout)
        self.render()
        restored = self._gate.restore()
        self._log("Restored %d gated element(s)", restored)

    # ---- callback ----
    def complete_callback(self) -> Optional[Session]:
        """
        Finish the OAuth flow on the callback page.

        The stored nonce and return URL are consumed whatever the outcome. On failure
        the error is reported through `on_error` and no session is persisted.
        """
        stored_state = self.ephemeral_store.get(OAUTH_STATE_KEY)
        return_url = safe_return_path(self.ephemeral_store.get(RETURN_URL_KEY))
        self.ephemeral_store.remove(OAUTH_STATE_KEY)
        self.ephemeral_store.remove(RETURN_URL_KEY)

        try:
            session = self._exchange_callback(stored_state)
        except OAuthError as e:
            self._handle_error(e.message)
            return None
        except (PatronGateError, ValueError) as e:
            self._handle_error(f"Authentication failed: {getattr(e, 'message', None) or str(e)}")
            return None

        self.session = session
        save_session(self.durable_store, self.config.session_storage_key, session)
        self._log("Authenticated user %s (%s)", session.user.id, session.membership_type.value)
        self._invoke_callback("on_login", self.config.on_login, session)
        self.page.navigate(return_url)
        return session

    def _exchange_callback(self, stored_state: Optional[str]) -> Session:
        error = self.page.query_param("error")
        if error:
            raise OAuthError(f"OAuth error: {error}")
        code = self.page.query_param("code")
        if not code:
            raise OAuthError("No authorization code received")
        state = self.page.query_param("state")
        if not stored_state or state != stored_state:
            raise OAuthError("Invalid state parameter")

        tokens = self.relay.exchange_code(code, self.config.redirect_uri)
        issued_at = self.clock()
        identity = self.relay.get_identity(str(tokens.get("access_token") or ""))
        return Session.from_login(identity, tokens, issued_at=issued_at)

    # ---- rendering ----
    def render(self) -> None:
        session = self.current_session()
        for button in self.page.query_all(self.config.login_button_selector):
            if session is not None:
                render_authenticated_button(button, session, self.relay.proxied_image_url)
            else:
                render_unauthenticated_button(button)

        if self.config.auto_remove_ads and self.is_paying_member():
            hidden = self._gate.start()
            self._log("Hid %d element(s) for paying member", hidden)

    # ---- errors ----
    def _handle_error(self, message: str) -> None:
        logger.error("Session controller error: %s", message)
        self._invoke_callback("on_error", self.config.on_error, message)

    def _invoke_callback(self, name: str, fn: Optional[Callable[..., Any]], *args: Any) -> None:
        if fn is None:
            return
        try:
            fn(*args)
        except Exception:
            # Host callbacks must not break the controller's own state transitions.
            logger.exception("%s callback raised", name)
