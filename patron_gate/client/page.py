"""
Host page adapter used by the session controller.

A small element tree with the pieces the controller needs from a browser page:
- simple CSS selectors (`tag`, `.class`, `#id`, `[attr]`, `[attr="value"]`, compounds)
- click dispatch with bubbling, plus callbacks deferred until dispatch completes
- insertion notifications for elements attached after load
- current location and full-page navigation

Hosts embedding the controller in a real page implement the same surface.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Callable, Dict, Iterator, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

logger = logging.getLogger(__name__)

_SIMPLE_PART_RE = re.compile(
    r"""
    \.(?P<cls>[A-Za-z0-9_-]+)
    | \#(?P<id>[A-Za-z0-9_-]+)
    | \[(?P<attr>[A-Za-z0-9_-]+)(?:=(?P<quote>["']?)(?P<value>[^"'\]]*)(?P=quote))?\]
    """,
    re.VERBOSE,
)
_TAG_RE = re.compile(r"^[A-Za-z][A-Za-z0-9-]*")


@dataclass(frozen=True)
class Selector:
    tag: Optional[str]
    ids: Tuple[str, ...]
    classes: Tuple[str, ...]
    attrs: Tuple[Tuple[str, Optional[str]], ...]


@lru_cache(maxsize=256)
def parse_selector(selector: str) -> Selector:
    """Parse a compound selector. Combinators and selector lists are not supported."""
    s = (selector or "").strip()
    if not s:
        raise ValueError("Empty selector")
    tag = None
    pos = 0
    m = _TAG_RE.match(s)
    if m:
        tag = m.group(0).lower()
        pos = m.end()
    ids: List[str] = []
    classes: List[str] = []
    attrs: List[Tuple[str, Optional[str]]] = []
    while pos < len(s):
        m = _SIMPLE_PART_RE.match(s, pos)
        if not m:
            raise ValueError(f"Unsupported selector: {selector!r}")
        if m.group("cls"):
            classes.append(m.group("cls"))
        elif m.group("id"):
            ids.append(m.group("id"))
        else:
            attrs.append((m.group("attr"), m.group("value")))
        pos = m.end()
    return Selector(tag=tag, ids=tuple(ids), classes=tuple(classes), attrs=tuple(attrs))


@dataclass
class ClickEvent:
    target: "Element"


Listener = Callable[[ClickEvent], None]


class Element:
    def __init__(
        self,
        tag: str = "div",
        *,
        classes: Optional[List[str]] = None,
        attrs: Optional[Dict[str, str]] = None,
        text: str = "",
        children: Optional[List["Element"]] = None,
    ) -> None:
        self.tag = tag.lower()
        self.classes = set(classes or [])
        self.attrs: Dict[str, str] = dict(attrs or {})
        self.text = text
        self.style: Dict[str, str] = {}
        self.children: List[Element] = []
        self.parent: Optional[Element] = None
        self._page: Optional[Page] = None
        self._listeners: Dict[str, List[Listener]] = {}
        for child in children or []:
            self.append(child)

    def __repr__(self) -> str:
        cls = "".join(f".{c}" for c in sorted(self.classes))
        return f"<{self.tag}{cls}>"

    # ---- tree ----
    @property
    def page(self) -> Optional["Page"]:
        node: Optional[Element] = self
        while node is not None:
            if node._page is not None:
                return node._page
            node = node.parent
        return None

    def append(self, child: "Element") -> "Element":
        return self._insert(len(self.children), child)

    def prepend(self, child: "Element") -> "Element":
        return self._insert(0, child)

    def _insert(self, index: int, child: "Element") -> "Element":
        if child.parent is not None:
            child.parent.children.remove(child)
        child.parent = self
        self.children.insert(index, child)
        page = self.page
        if page is not None:
            page._notify_inserted(child)
        return child

    def remove(self) -> None:
        if self.parent is not None:
            self.parent.children.remove(self)
            self.parent = None

    def clear(self) -> None:
        for child in list(self.children):
            child.remove()
        self.text = ""

    def contains(self, other: Optional["Element"]) -> bool:
        node = other
        while node is not None:
            if node is self:
                return True
            node = node.parent
        return False

    def iter_descendants(self) -> Iterator["Element"]:
        for child in self.children:
            yield child
            yield from child.iter_descendants()

    # ---- selectors ----
    def matches(self, selector: str) -> bool:
        sel = parse_selector(selector)
        if sel.tag and sel.tag != self.tag:
            return False
        if any(self.attrs.get("id") != i for i in sel.ids):
            return False
        if any(c not in self.classes for c in sel.classes):
            return False
        for name, value in sel.attrs:
            if name not in self.attrs:
                return False
            if value is not None and self.attrs[name] != value:
                return False
        return True

    def query_all(self, selector: str) -> List["Element"]:
        parse_selector(selector)
        return [el for el in self.iter_descendants() if el.matches(selector)]

    # ---- events ----
    def add_event_listener(self, event: str, listener: Listener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def remove_event_listener(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event) or []
        if listener in listeners:
            listeners.remove(listener)

    def listeners(self, event: str) -> List[Listener]:
        return list(self._listeners.get(event) or [])


@dataclass(eq=False)
class InsertionObserver:
    """Handle returned by `Page.observe_insertions`; call `disconnect()` to stop."""

    page: "Page"
    callback: Callable[[Element], None]
    connected: bool = True

    def disconnect(self) -> None:
        if self.connected:
            self.page._observers.remove(self)
            self.connected = False


@dataclass(eq=False)
class Page:
    url: str
    body: Element = field(default_factory=lambda: Element("body"))
    navigations: List[str] = field(default_factory=list)
    on_navigate: Optional[Callable[[str], None]] = None

    def __post_init__(self) -> None:
        self.body._page = self
        self._observers: List[InsertionObserver] = []
        self._document_listeners: Dict[str, List[Listener]] = {}
        self._dispatch_depth = 0
        self._deferred: List[Callable[[], None]] = []

    # ---- location ----
    @property
    def path(self) -> str:
        return urlparse(self.url).path or "/"

    @property
    def origin(self) -> str:
        p = urlparse(self.url)
        return f"{p.scheme}://{p.netloc}"

    def query_param(self, name: str) -> Optional[str]:
        values = parse_qs(urlparse(self.url).query, keep_blank_values=True).get(name)
        return values[0] if values else None

    def navigate(self, url: str) -> None:
        """Full-page navigation. The current page is considered gone afterwards."""
        logger.debug("Navigating to %s", url)
        self.navigations.append(url)
        if self.on_navigate is not None:
            self.on_navigate(url)

    # ---- queries ----
    def query_all(self, selector: str) -> List[Element]:
        return self.body.query_all(selector)

    # ---- insertions ----
    def observe_insertions(self, callback: Callable[[Element], None]) -> InsertionObserver:
        observer = InsertionObserver(page=self, callback=callback)
        self._observers.append(observer)
        return observer

    def _notify_inserted(self, node: Element) -> None:
        for observer in list(self._observers):
            if observer.connected:
                observer.callback(node)

    # ---- events ----
    def add_event_listener(self, event: str, listener: Listener) -> None:
        self._document_listeners.setdefault(event, []).append(listener)

    def remove_event_listener(self, event: str, listener: Listener) -> None:
        listeners = self._document_listeners.get(event) or []
        if listener in listeners:
            listeners.remove(listener)

    def document_listeners(self, event: str) -> List[Listener]:
        return list(self._document_listeners.get(event) or [])

    def after_dispatch(self, fn: Callable[[], None]) -> None:
        """Run `fn` once the event currently being dispatched has finished propagating."""
        if self._dispatch_depth:
            self._deferred.append(fn)
        else:
            fn()

    def click(self, target: Element) -> None:
        """Dispatch a click: target, its ancestors, then document-level listeners."""
        event = ClickEvent(target=target)
        self._dispatch_depth += 1
        try:
            node: Optional[Element] = target
            while node is not None:
                for listener in node.listeners("click"):
                    listener(event)
                node = node.parent
            for listener in self.document_listeners("click"):
                listener(event)
        finally:
            self._dispatch_depth -= 1
        if not self._dispatch_depth:
            deferred, self._deferred = self._deferred, []
            for fn in deferred:
                fn()
