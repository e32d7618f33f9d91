"""
Rule-based extraction of place names from itinerary text.

Two entry points:
- ``parse_route_sequence``: names grouped by day, in the order they appear.
- ``parse_places``: a flat list of Place hints, used when no structured
  extraction is available.
"""
from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Tuple

from workflows.schemas import Place, parse_cn_numeral

logger = logging.getLogger(__name__)

_NUMERAL = r"[一二三四五六七八九十百零两\d]+"
_DAY_HEADER = re.compile(
    rf"^\s*(?:第\s*({_NUMERAL})\s*(?:天行程|天|日|晚)"
    rf"|行程第\s*({_NUMERAL})\s*(?:天|日)"
    r"|day\s*(\d+))",
    re.IGNORECASE,
)
_HEADER_TAIL = re.compile(r"^[:：\-—–|｜*_\s]+")

_PLACE_SUFFIXES = "景点|景区|公园|博物馆|纪念馆|寺|庙|塔|广场|大街|路|酒店|餐厅|饭店|小吃|美食"
_SUFFIXED_NAME = re.compile(rf"([^\s\n，,。.；;、:：→|｜]+?(?:{_PLACE_SUFFIXES}))")
_QUOTED_NAME = re.compile(r"[\"“”‘’《》「」]([^\"“”‘’《》「」\n]+)[\"“”‘’《》「」]")
_TIMED_NAME = re.compile(
    r"(\d{1,2}[:：]\d{2})(?:\s*[-~–～]\s*\d{1,2}[:：]\d{2})?\s*[-~–～:：]?\s*([^\n，,。；;]+)"
)

_NOT_A_PLACE = re.compile(r"^(?:交通|住宿|餐饮|门票|费用|预算|总计|合计|元|人民币)")
_LEADING_ACTION = re.compile(
    r"^(?:上午|下午|早上|晚上|中午|前往|打卡|游览|参观|途经|集合于|抵达|到达|出发至|出发到|入住于|入住|退房后前往"
    r"|visit|head(?:ing)? to|go to|explore|check[- ]in at)\s*",
    re.IGNORECASE,
)
_TRAILING_ACTION = re.compile(r"\s*(?:集合|结束|返回|入住|用餐|自由活动|休息|酒店|青旅|旅馆|宾馆)$")
_LOOSE_BLACKLIST = re.compile(
    r"(早上|上午|中午|下午|晚上|早餐|午餐|晚餐|用餐|返回|入住|退房|集合|出发|抵达|门票|费用|预算|交通|打车"
    r"|地铁|公交|步行|乘坐|乘车|到达|前往|游览|参观|购物|休息|自由活动|酒店|青旅|旅馆|宾馆|机场|车站|火车站"
    r"|高铁站|码头|站|路程|公里|小时|分钟|安排|路线|行程|第.*天"
    r"|\bday\b|\bbreakfast\b|\blunch\b|\bdinner\b|\bfree time\b|\breturn\b|\bcheck[- ]?out\b)",
    re.IGNORECASE,
)
_CLOCK = re.compile(r"\d{1,2}[:：]\d{2}")

_MARKDOWN_PREFIXES = (
    re.compile(r"^>+\s*"),
    re.compile(r"^#+\s*"),
    re.compile(r"^[•‣●○■□\-–—*+]+\s+"),
    re.compile(r"^\d+[.)、]\s*"),
)
_EMPHASIS = re.compile(r"^[*_~`]+|[*_~`]+$")


def strip_formatting(line: str) -> str:
    """Drop quote, heading, list and emphasis markers around one line."""
    text = (line or "").strip()
    for pattern in _MARKDOWN_PREFIXES:
        text = pattern.sub("", text)
    return _EMPHASIS.sub("", text).strip()


def parse_day_number(token: str) -> int:
    if token.isdigit():
        return int(token)
    return parse_cn_numeral(token) or 1


def _clean_name(raw: str) -> str:
    name = raw.strip().strip("*_`~")
    previous = None
    while previous != name:
        previous = name
        name = _LEADING_ACTION.sub("", name).strip()
    return name


def _acceptable(name: str) -> bool:
    return 1 < len(name) < 50 and not _NOT_A_PLACE.match(name)


def extract_names_strict(text: str) -> List[str]:
    """Names carrying a typical place suffix, plus anything quoted."""
    found: List[str] = []
    for pattern, group in ((_SUFFIXED_NAME, 1), (_QUOTED_NAME, 1)):
        for match in pattern.finditer(text):
            name = _clean_name(match.group(group))
            if _acceptable(name) and name not in found:
                found.append(name)
    return found


def extract_names_loose(text: str) -> List[str]:
    """Split list-like text ("A → B → C", "A、B、C") and keep segments that look like names."""
    segments: List[str] = []
    for chunk in re.split(r"[\n。；;]+", re.sub(r"[\t ]+", " ", text)):
        for piece in re.split(r"→|->|\s[-–—]\s|[·~～]", chunk):
            segments.extend(re.split(r"[、，,|｜]", piece))

    found: List[str] = []
    for segment in segments:
        name = _TRAILING_ACTION.sub("", _clean_name(segment)).strip()
        if not name or not (1 < len(name) < 50):
            continue
        if _LOOSE_BLACKLIST.search(name) or _CLOCK.search(name):
            continue
        if name not in found:
            found.append(name)
    return found


def _extract(text: str) -> List[str]:
    return extract_names_strict(text) or extract_names_loose(text)


def split_days(text: str) -> List[Tuple[int, str]]:
    """(day number, body) for every day header found, in document order."""
    sections: List[Tuple[int, List[str]]] = []
    for raw_line in (text or "").splitlines():
        cleaned = strip_formatting(raw_line)
        if not cleaned:
            continue
        header = _DAY_HEADER.match(cleaned)
        if header:
            token = next(group for group in header.groups() if group)
            sections.append((parse_day_number(token), []))
            remainder = _HEADER_TAIL.sub("", cleaned[header.end():]).strip()
            if remainder:
                sections[-1][1].append(remainder)
        elif sections:
            sections[-1][1].append(cleaned)
    return [(day, "\n".join(lines)) for day, lines in sections]


def parse_route_sequence(text: str) -> List[List[str]]:
    """Group place names by itinerary day.

    Without any day header the whole text is treated as a single day. Days
    that yield no names are dropped; the rest are sorted by day number.
    """
    if not text or not text.strip():
        return []

    days: Dict[int, List[str]] = {}
    for day, body in split_days(text):
        names = _extract(body)
        if not names:
            continue
        merged = days.setdefault(day, [])
        merged.extend(name for name in names if name not in merged)

    if not days:
        names = _extract(text)
        return [names] if names else []

    logger.debug(f"Parsed {len(days)} itinerary days")
    return [days[day] for day in sorted(days)]


def parse_places(text: str, destination: str = "") -> List[Place]:
    """Regex fallback extraction of Place hints from itinerary text."""
    if not text or not text.strip():
        return []
    destination = (destination or "").strip()

    found: Dict[str, Optional[str]] = {}
    for match in _TIMED_NAME.finditer(text):
        name = _clean_name(match.group(2))
        if _acceptable(name) and not _LOOSE_BLACKLIST.search(name):
            found.setdefault(name, match.group(1).replace("：", ":"))
    for name in extract_names_strict(text):
        found.setdefault(name, None)

    return [
        Place(name=name, address=f"{destination}{name}" if destination else name, time=time)
        for name, time in found.items()
    ]
