"""Read-only views over UI elements.

Parsing code asks an element for its text, whether a child exists, an
attribute value, its matching descendants and its neighbouring siblings.
``PageElement`` answers for a live playwright handle, ``MarkupElement`` for a
markup snapshot parsed with BeautifulSoup, so heuristics run against either.
"""
from __future__ import annotations

from typing import List, Optional, Protocol

from bs4 import BeautifulSoup, Tag

from .utils import logger

try:
    import lxml  # type: ignore  # noqa: F401
    _bs_parser = "lxml"
except ImportError:
    _bs_parser = "html.parser"


class ElementView(Protocol):
    def get_text(self, selector: Optional[str] = None) -> str: ...

    def exists(self, selector: str) -> bool: ...

    def get_attribute(self, name: str, selector: Optional[str] = None) -> Optional[str]: ...

    def find_all(self, selector: str) -> List["ElementView"]: ...

    def next_sibling(self) -> Optional["ElementView"]: ...

    def previous_sibling(self) -> Optional["ElementView"]: ...


class PageElement:
    """Adapter over a playwright ``ElementHandle``."""

    def __init__(self, handle):
        self.handle = handle

    def _target(self, selector):
        return self.handle if selector is None else self.handle.query_selector(selector)

    def get_text(self, selector=None) -> str:
        el = self._target(selector)
        if el is None:
            return ""
        try:
            return (el.inner_text() or "").strip()
        except Exception as e:
            logger.debug("inner_text failed for %s: %s", selector, e)
            return ""

    def exists(self, selector) -> bool:
        return self.handle.query_selector(selector) is not None

    def get_attribute(self, name, selector=None) -> Optional[str]:
        el = self._target(selector)
        return None if el is None else el.get_attribute(name)

    def find_all(self, selector) -> List[PageElement]:
        return [PageElement(h) for h in self.handle.query_selector_all(selector)]

    def _sibling(self, script):
        el = self.handle.evaluate_handle(script).as_element()
        return None if el is None else PageElement(el)

    def next_sibling(self) -> Optional[PageElement]:
        return self._sibling("el => el.nextElementSibling")

    def previous_sibling(self) -> Optional[PageElement]:
        return self._sibling("el => el.previousElementSibling")


class MarkupElement:
    """Adapter over a parsed markup fragment (the detail surface snapshot)."""

    def __init__(self, tag: Tag):
        self.tag = tag

    @classmethod
    def from_html(cls, html: str) -> "MarkupElement":
        soup = BeautifulSoup(html or "", _bs_parser)
        for tag in soup(["script", "style"]):
            tag.decompose()
        return cls(soup)

    def _target(self, selector):
        return self.tag if selector is None else self.tag.select_one(selector)

    def get_text(self, selector=None) -> str:
        el = self._target(selector)
        return "" if el is None else el.get_text(" ", strip=True)

    def exists(self, selector) -> bool:
        return self.tag.select_one(selector) is not None

    def get_attribute(self, name, selector=None) -> Optional[str]:
        el = self._target(selector)
        if el is None:
            return None
        value = el.get(name)
        if isinstance(value, list):
            return " ".join(value)
        return value

    def find_all(self, selector) -> List[MarkupElement]:
        return [MarkupElement(t) for t in self.tag.select(selector)]

    def next_sibling(self) -> Optional[MarkupElement]:
        el = self.tag.find_next_sibling()
        return None if el is None else MarkupElement(el)

    def previous_sibling(self) -> Optional[MarkupElement]:
        el = self.tag.find_previous_sibling()
        return None if el is None else MarkupElement(el)
