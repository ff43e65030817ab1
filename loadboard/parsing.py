"""Field heuristics for load-board rows.

Every multi-pattern heuristic is an ordered tuple of ``(name, function)``
strategies; :func:`first_match` runs them in order and the first one that
returns a :class:`Match` wins. ``None`` means no strategy matched.
"""
from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Callable, NamedTuple, Optional, Sequence, Tuple

from .elements import ElementView

EMPTY_MARKERS = {"", "-", "–", "—", "N/A"}


@dataclass(frozen=True)
class Match:
    value: str
    strategy: str


Strategy = Tuple[str, Callable[..., Optional[str]]]


def first_match(strategies: Sequence[Strategy], *args) -> Optional[Match]:
    for name, fn in strategies:
        value = fn(*args)
        if value:
            return Match(value, name)
    return None


def normalize_value(value):
    if value is None:
        return None
    value = str(value).strip()
    if value in EMPTY_MARKERS:
        return None
    return value


# --- rate -------------------------------------------------------------------

class Rate(NamedTuple):
    total: Optional[int]
    per_mile: Optional[float]


_COMBINED_RATE = re.compile(r"\$([\d,]+)\$([\d.]+)\*?/mi")
_TOTAL_RATE = re.compile(r"^\$?([\d,]+)$")
_PER_MILE_RATE = re.compile(r"\$?([\d.]+)\*?/mi")


def _to_int(text):
    try:
        return int(text.replace(",", ""))
    except ValueError:
        return None


def _to_float(text):
    try:
        return float(text)
    except ValueError:
        return None


def parse_rate(text) -> Rate:
    """``"$2,700$2.17*/mi"`` -> ``Rate(2700, 2.17)``; unknown shapes -> both None."""
    text = normalize_value(text)
    if text is None:
        return Rate(None, None)
    text = re.sub(r"\s+", "", text)

    m = _COMBINED_RATE.search(text)
    if m:
        return Rate(_to_int(m.group(1)), _to_float(m.group(2)))
    m = _TOTAL_RATE.match(text)
    if m:
        return Rate(_to_int(m.group(1)), None)
    m = _PER_MILE_RATE.search(text)
    if m:
        return Rate(None, _to_float(m.group(1)))
    return Rate(None, None)


# --- origin / destination ---------------------------------------------------

# "San Leandro, CALoveland, CO": region code glued to the next place name
_LOCATION_BOUNDARY = re.compile(r",\s*[A-Z]{2}(?=[A-Z])")


def split_locations(origin_text, destination_text=None) -> Tuple[str, str]:
    """Only the origin cell is ever split; an empty origin stays empty."""
    origin = normalize_value(origin_text) or ""
    destination = normalize_value(destination_text) or ""

    if not origin:
        return "", destination
    if destination and origin != destination:
        return origin, destination

    m = _LOCATION_BOUNDARY.search(origin)
    if m is None:
        # same city on both ends, or a single place we cannot split
        return origin, destination
    return origin[: m.end()].strip(), origin[m.end():].strip()


# --- identifier -------------------------------------------------------------

_REFERENCE_LABEL = re.compile(r"reference", re.I)
_LABELLED_TOKEN = re.compile(r"reference\s*(?:id|number|no\.?|#)?\s*[:#]?\s*([A-Za-z0-9]{4,})", re.I)
_BOARD_ID = re.compile(r"\b(\d{2}[A-Z]\d{4})\b")
_GENERIC_ID = re.compile(r"^[A-Za-z0-9]{6,}$")
_ID_STOPWORDS = re.compile(r"reference|load|freight|transport|logistics|company|equipment", re.I)
_PHONE_LIKE = re.compile(r"^\+?1?\d{10}$")


def _is_id_token(token: str) -> bool:
    return (
        len(token) >= 4
        and token.isalnum()
        and any(c.isdigit() for c in token)
        and not _ID_STOPWORDS.search(token)
        and not _PHONE_LIKE.match(token)
    )


def _mentions_reference(el: ElementView) -> bool:
    return bool(_REFERENCE_LABEL.search(el.get_text()))


def _label_adjacent(detail: ElementView) -> Optional[str]:
    for el in detail.find_all("*"):
        # innermost elements carrying the label text
        if not _mentions_reference(el) or any(_mentions_reference(c) for c in el.find_all("*")):
            continue
        m = _LABELLED_TOKEN.search(" ".join(el.get_text().split()))
        if m and _is_id_token(m.group(1)):
            return m.group(1)
        nxt = el.next_sibling()
        if nxt is not None:
            tokens = nxt.get_text().split()
            if tokens and _is_id_token(tokens[0]):
                return tokens[0]
    return None


def _structural_pair(detail: ElementView) -> Optional[str]:
    for label in detail.find_all(".data-label"):
        if not _mentions_reference(label):
            continue
        for sibling in (label.previous_sibling(), label.next_sibling()):
            if sibling is None or "data-item" not in (sibling.get_attribute("class") or "").split():
                continue
            ref = sibling.get_text()
            if len(ref) >= 4:
                return ref
    return None


def _generic_token(detail: ElementView) -> Optional[str]:
    m = _BOARD_ID.search(detail.get_text())
    if m:
        return m.group(1)
    for el in detail.find_all("*"):
        if el.exists("*"):
            continue
        token = el.get_text()
        if _GENERIC_ID.match(token) and _is_id_token(token):
            return token
    return None


IDENTIFIER_STRATEGIES: Tuple[Strategy, ...] = (
    ("label_adjacent", _label_adjacent),
    ("structural_pair", _structural_pair),
    ("generic_token", _generic_token),
)


def synthesize_identifier(origin, destination, company, rate_total, rate_per_mile) -> str:
    """Stable surrogate id for a listing that exposes none."""
    parts = (origin, destination, company, rate_total, rate_per_mile)
    key = "|".join("" if p is None else str(p).strip().lower() for p in parts)
    return "AUTO_" + hashlib.sha1(key.encode("utf-8")).hexdigest()[:8].upper()


def find_identifier(detail: Optional[ElementView]) -> Optional[Match]:
    if detail is None:
        return None
    return first_match(IDENTIFIER_STRATEGIES, detail)


# --- contact ----------------------------------------------------------------

def _pattern(regex, transform=None):
    compiled = re.compile(regex)

    def search(text):
        m = compiled.search(text)
        if m is None:
            return None
        value = m.group(0).strip()
        return transform(value) if transform else value

    return search


# phones before emails; within each group the most specific shape first
CONTACT_STRATEGIES: Tuple[Strategy, ...] = (
    ("phone_international", _pattern(r"\+1[-\s]?\d{3}[-\s]?\d{3}[-\s]?\d{4}")),
    ("phone_parenthesized", _pattern(r"\(\d{3}\)\s*\d{3}[-\s]?\d{4}")),
    ("phone_separated", _pattern(r"\b\d{3}[-.]\d{3}[-.]\d{4}\b")),
    ("phone_spaced", _pattern(r"\b\d{3}\s\d{3}\s\d{4}\b")),
    ("phone_compact", _pattern(r"\b\d{10}\b")),
    ("email", _pattern(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}", str.lower)),
)


def find_contact(detail: Optional[ElementView]) -> Optional[Match]:
    """Scan the detail surface text only; never the rest of the page."""
    if detail is None:
        return None
    text = detail.get_text()
    if not text:
        return None
    return first_match(CONTACT_STRATEGIES, text)
