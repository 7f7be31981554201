from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from patron_gate.client.page import Element, InsertionObserver, Page

logger = logging.getLogger(__name__)

HIDDEN_MARKER = "data-patreon-removed"


class ContentGate:
    """
    Hide elements matching a selector set, including ones inserted later.

    Elements are hidden (not removed) and marked so `restore()` can bring them back.
    Starting is idempotent; `restore()` also stops observing insertions.
    """

    def __init__(self, page: Page, selectors: Sequence[str]) -> None:
        self._page = page
        self._selectors: List[str] = list(selectors)
        self._observer: Optional[InsertionObserver] = None
        self._previous_display: Dict[Element, Optional[str]] = {}

    @property
    def active(self) -> bool:
        return self._observer is not None

    def start(self) -> int:
        """Hide current matches and watch for new ones. Returns the number of elements hidden now."""
        hidden = 0
        for selector in self._selectors:
            for el in self._page.query_all(selector):
                hidden += self._hide(el)
        if self._observer is None:
            self._observer = self._page.observe_insertions(self._on_inserted)
        logger.debug("Content gate started (%d hidden)", hidden)
        return hidden

    def _hide(self, el: Element) -> int:
        if el.attrs.get(HIDDEN_MARKER) == "true":
            return 0
        self._previous_display[el] = el.style.get("display")
        el.style["display"] = "none"
        el.attrs[HIDDEN_MARKER] = "true"
        return 1

    def _on_inserted(self, node: Element) -> None:
        for selector in self._selectors:
            if node.matches(selector):
                self._hide(node)
            for child in node.query_all(selector):
                self._hide(child)

    def stop(self) -> None:
        if self._observer is not None:
            self._observer.disconnect()
            self._observer = None

    def restore(self) -> int:
        """Unhide every marked element and stop observing. Returns the number restored."""
        restored = 0
        for el in self._page.query_all(f'[{HIDDEN_MARKER}="true"]'):
            previous = self._previous_display.pop(el, None)
            if previous is None:
                el.style.pop("display", None)
            else:
                el.style["display"] = previous
            el.attrs.pop(HIDDEN_MARKER, None)
            restored += 1
        self._previous_display.clear()
        self.stop()
        logger.debug("Content gate restored %d element(s)", restored)
        return restored
