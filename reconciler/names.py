"""Place-name canonicalization and fuzzy equivalence.

Names extracted from itinerary text rarely agree verbatim with the names an
LLM or geocoder returns ("West Lake" vs "West Lake Scenic Area (Hangzhou)"),
so matching is graded: raw comparisons first, then comparisons on a
normalized form with generic affixes removed.
"""
from __future__ import annotations

import re
from typing import Tuple

# Bracketed qualifiers, ASCII and full-width.
_BRACKETED = re.compile(r"\([^()]*\)|\[[^\[\]]*\]|\{[^{}]*\}|（[^（）]*）|【[^【】]*】|「[^「」]*」|〔[^〔〕]*〕")
_NON_WORD = re.compile(r"[\W_]+", re.UNICODE)

# Closed set of generic affixes, stored in compacted (lower-case, no spaces) form.
_SUFFIXES: Tuple[str, ...] = (
    "headingthere",
    "scenicarea",
    "scenicspot",
    "checkin",
    "checkout",
    "museum",
    "hotel",
    "park",
    "景区",
    "景点",
    "公园",
    "博物馆",
    "纪念馆",
    "酒店",
    "宾馆",
    "入住",
)
_PREFIXES: Tuple[str, ...] = (
    "headingto",
    "checkinat",
    "checkin",
    "visit",
    "前往",
    "游览",
    "参观",
    "打卡",
    "入住",
)

_MIN_RATIO = 0.6


def _strip_affixes(text: str) -> str:
    changed = True
    while changed:
        changed = False
        for suffix in sorted(_SUFFIXES, key=len, reverse=True):
            if text.endswith(suffix) and len(text) > len(suffix):
                text = text[: -len(suffix)]
                changed = True
                break
        if changed:
            continue
        for prefix in sorted(_PREFIXES, key=len, reverse=True):
            if text.startswith(prefix) and len(text) > len(prefix):
                text = text[len(prefix):]
                changed = True
                break
    return text


def normalize(name: str) -> str:
    """Return the canonical comparison form of a place name.

    Lower-cases, drops bracketed qualifiers, punctuation and whitespace, then
    strips generic affixes until none applies. An affix is never stripped when
    it is all that is left, so "Park" normalizes to "park", not "".
    """
    if not name:
        return ""
    text = str(name).lower()
    previous = None
    while previous != text:
        previous = text
        text = _BRACKETED.sub("", text)
    text = _NON_WORD.sub("", text)
    return _strip_affixes(text)


def is_match(a: str, b: str) -> bool:
    """Decide whether two place names refer to the same place."""
    a = (a or "").strip()
    b = (b or "").strip()
    if not a or not b:
        return False
    if a == b or a in b or b in a:
        return True

    na, nb = normalize(a), normalize(b)
    if not na or not nb:
        return False
    if na == nb:
        return True
    if len(na) <= 2 or len(nb) <= 2:
        return False

    shorter, longer = (na, nb) if len(na) <= len(nb) else (nb, na)
    return shorter in longer and len(shorter) >= _MIN_RATIO * len(longer)


def composite_key(name: str, lng: float, lat: float) -> str:
    """Identity of a place: normalized name plus coordinates at 6 decimals."""
    return f"{normalize(name)}|{lng:.6f}|{lat:.6f}"


def place_key(place) -> str:
    return composite_key(place.name, place.lng, place.lat)
