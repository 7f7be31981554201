"""Login button and user menu rendering."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from patron_gate.client.page import ClickEvent, Element, Page
from patron_gate.client.session import Session
from patron_gate.membership import membership_emoji, membership_label

logger = logging.getLogger(__name__)

AUTHENTICATED_CLASS = "patreon-authenticated"
AVATAR_CLASS = "patreon-avatar"
LOGIN_TEXT_ATTR = "data-patreon-login-text"
DEFAULT_LOGIN_TEXT = "Login with Patreon"
MENU_CLASS = "patreon-user-menu"

ImageUrl = Callable[[str], str]


def render_authenticated_button(button: Element, session: Session, image_url: ImageUrl) -> None:
    user = session.user
    button.clear()
    button.text = f"{membership_emoji(session.membership_type)} Hello {user.first_name}"
    button.classes.add(AUTHENTICATED_CLASS)
    avatar = user.avatar_thumb_url or user.avatar_url
    if avatar:
        button.prepend(Element("img", classes=[AVATAR_CLASS], attrs={"src": image_url(avatar), "alt": ""}))


def render_unauthenticated_button(button: Element) -> None:
    button.clear()
    button.text = button.attrs.get(LOGIN_TEXT_ATTR) or DEFAULT_LOGIN_TEXT
    button.classes.discard(AUTHENTICATED_CLASS)


class UserMenu:
    """
    Dropdown with the visitor's name, membership label and a logout action.

    Opening is two-phase: the menu is rendered first, and the click-outside watcher is
    registered only after the opening click has finished propagating, so that click
    cannot dismiss the menu it just opened.
    """

    def __init__(self, page: Page, image_url: ImageUrl, on_logout: Callable[[], None]) -> None:
        self._page = page
        self._image_url = image_url
        self._on_logout = on_logout
        self.element: Optional[Element] = None
        self._anchor: Optional[Element] = None
        self._watching = False

    @property
    def is_open(self) -> bool:
        return self.element is not None

    def toggle(self, anchor: Element, session: Session) -> None:
        if self.is_open:
            self.close()
            return
        self.open(anchor, session)

    def open(self, anchor: Element, session: Session) -> Element:
        self.close()
        user = session.user

        header = Element("div", classes=["patreon-menu-header"])
        image = user.avatar_url or user.avatar_thumb_url
        if image:
            header.append(Element("img", attrs={"src": self._image_url(image), "alt": "Avatar"}))
        header.append(
            Element(
                "div",
                children=[
                    Element("div", classes=["patreon-menu-name"], text=user.display_name),
                    Element("div", classes=["patreon-menu-status"], text=membership_label(session.membership_type)),
                ],
            )
        )
        logout_btn = Element("button", classes=["patreon-menu-item", "patreon-logout-btn"], text="Logout")
        logout_btn.add_event_listener("click", self._on_logout_click)

        menu = Element(
            "div",
            classes=[MENU_CLASS],
            children=[header, Element("div", classes=["patreon-menu-divider"]), logout_btn],
        )
        self._page.body.append(menu)
        self.element = menu
        self._anchor = anchor
        self._page.after_dispatch(self._watch_dismissal)
        return menu

    def _watch_dismissal(self) -> None:
        if self.element is None or self._watching:
            return
        self._page.add_event_listener("click", self._on_document_click)
        self._watching = True

    def _on_document_click(self, event: ClickEvent) -> None:
        if self.element is None:
            return
        if self.element.contains(event.target) or event.target is self._anchor:
            return
        self.close()

    def _on_logout_click(self, _event: ClickEvent) -> None:
        self.close()
        self._on_logout()

    def close(self) -> None:
        if self._watching:
            self._page.remove_event_listener("click", self._on_document_click)
            self._watching = False
        if self.element is not None:
            self.element.remove()
        self.element = None
        self._anchor = None
