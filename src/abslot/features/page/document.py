from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString

from abslot.core.logging import get_logger

logger = get_logger(__name__)

Listener = Callable[["Element"], Any]


class Element:
    """
    Stable handle around a bs4 Tag.

    bs4 Tags compare by markup, so two identical buttons would be "equal".
    Documents hand out one Element per Tag; identity checks (`is`, sets of
    Elements) therefore mean "same node in the tree".
    """

    __slots__ = ("_tag", "_listeners", "document")

    def __init__(self, tag: Tag, document: Document) -> None:
        self._tag = tag
        self._listeners: dict[str, list[Listener]] = {}
        self.document = document

    def __repr__(self) -> str:
        return f"<Element {self.tag_name} id={self.id!r}>"

    @property
    def tag(self) -> Tag:
        return self._tag

    @property
    def tag_name(self) -> str:
        return (self._tag.name or "").lower()

    @property
    def id(self) -> str:
        return self.get_attribute("id") or ""

    @property
    def class_list(self) -> list[str]:
        value = self._tag.get("class") or []
        if isinstance(value, str):
            return value.split()
        return list(value)

    # ----- attributes -----
    def get_attribute(self, name: str) -> str | None:
        value = self._tag.get(name)
        if value is None:
            return None
        if isinstance(value, list):
            return " ".join(value)
        return str(value)

    def has_attribute(self, name: str) -> bool:
        return self._tag.has_attr(name)

    def set_attribute(self, name: str, value: str) -> None:
        self._tag[name] = str(value)

    def remove_attribute(self, name: str) -> None:
        if self._tag.has_attr(name):
            del self._tag[name]

    # ----- text -----
    @property
    def text_content(self) -> str:
        return self._tag.get_text()

    def set_text_content(self, value: str) -> None:
        self._tag.string = value

    def text_nodes(self) -> list[NavigableString]:
        """Direct child text nodes (comments, CDATA etc. excluded)."""
        return [
            child
            for child in self._tag.children
            if isinstance(child, NavigableString) and not isinstance(child, PreformattedString)
        ]

    # ----- events -----
    def add_event_listener(self, kind: str, listener: Listener) -> None:
        self._listeners.setdefault(kind, []).append(listener)

    def listener_count(self, kind: str) -> int:
        return len(self._listeners.get(kind, []))

    def dispatch(self, kind: str) -> None:
        # listener failures never reach the code that triggered the event
        for listener in list(self._listeners.get(kind, [])):
            try:
                listener(self)
            except Exception:  # noqa: BLE001
                logger.exception("listener_failed", extra={"event": kind})

    def click(self) -> None:
        self.dispatch("click")


@dataclass(frozen=True)
class ScriptInfo:
    src: str
    text: str


@dataclass(frozen=True)
class MutationRecord:
    added: list[Element]
    removed: list[Element]


@dataclass(eq=False)
class MutationSubscription:
    document: Document
    callback: Callable[[MutationRecord], Any]
    active: bool = field(default=True)

    def disconnect(self) -> None:
        if not self.active:
            return
        self.active = False
        self.document._unsubscribe(self)


class Document:
    """
    The rendered page's DOM, parsed with BeautifulSoup (html.parser).

    Structural changes made through append_html()/remove() are reported to
    subscribers registered with observe(). Attribute and text edits are not.
    """

    def __init__(self, soup: BeautifulSoup) -> None:
        self._soup = soup
        self._elements: dict[int, Element] = {}
        self._subscriptions: list[MutationSubscription] = []

    @classmethod
    def from_html(cls, html: str) -> Document:
        return cls(BeautifulSoup(html, "html.parser"))

    def html(self) -> str:
        return str(self._soup)

    def _wrap(self, tag: Tag) -> Element:
        el = self._elements.get(id(tag))
        if el is None or el.tag is not tag:
            el = Element(tag, self)
            self._elements[id(tag)] = el
        return el

    # ----- queries -----
    def query_selector_all(self, selector: str) -> list[Element]:
        return [self._wrap(tag) for tag in self._soup.select(selector)]

    def query_selector(self, selector: str) -> Element | None:
        tag = self._soup.select_one(selector)
        return self._wrap(tag) if tag is not None else None

    def get_element_by_id(self, element_id: str) -> Element | None:
        tag = self._soup.find(id=element_id)
        return self._wrap(tag) if isinstance(tag, Tag) else None

    @property
    def body(self) -> Element | None:
        tag = self._soup.body
        return self._wrap(tag) if tag is not None else None

    def scripts(self) -> list[ScriptInfo]:
        return [
            ScriptInfo(src=str(tag.get("src") or ""), text=tag.get_text() or "")
            for tag in self._soup.find_all("script")
        ]

    # ----- structural mutations -----
    def append_html(self, html: str, parent_selector: str = "body") -> list[Element]:
        parent = self._soup.select_one(parent_selector)
        if parent is None:
            parent = self._soup

        fragment = BeautifulSoup(html, "html.parser")
        added: list[Element] = []
        for node in list(fragment.contents):
            parent.append(node.extract())
            if isinstance(node, Tag):
                added.append(self._wrap(node))

        self._notify(MutationRecord(added=added, removed=[]))
        return added

    def remove(self, element: Element) -> None:
        element.tag.extract()
        self._notify(MutationRecord(added=[], removed=[element]))

    # ----- observation -----
    def observe(self, callback: Callable[[MutationRecord], Any]) -> MutationSubscription:
        sub = MutationSubscription(document=self, callback=callback)
        self._subscriptions.append(sub)
        return sub

    @property
    def observer_count(self) -> int:
        return len(self._subscriptions)

    def _unsubscribe(self, sub: MutationSubscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    def _notify(self, record: MutationRecord) -> None:
        for sub in list(self._subscriptions):
            if not sub.active:
                continue
            try:
                sub.callback(record)
            except Exception:  # noqa: BLE001
                logger.exception("mutation_callback_failed")
