"""Pydantic schemas for itinerary places, map overlays and snapshots."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

Strategy = Literal["driving", "walking", "transit"]

_CN_DIGITS = {"零": 0, "一": 1, "二": 2, "两": 2, "三": 3, "四": 4, "五": 5, "六": 6, "七": 7, "八": 8, "九": 9}
_CN_UNITS = {"十": 10, "百": 100}


# ============================================================================
# Place Schemas
# ============================================================================

class Coordinate(BaseModel):
    """Geographic coordinate in decimal degrees."""
    lng: float
    lat: float


class Place(BaseModel):
    """A named point of interest extracted from itinerary text."""

    name: str
    address: Optional[str] = None
    day: Optional[int] = Field(None, description="Authoritative 1-based day hint")
    time: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v: Any) -> str:
        if v is None:
            raise ValueError("name is required")
        name = str(v).strip()
        if not name:
            raise ValueError("name must not be empty")
        return name

    @field_validator("address", "time", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        text = str(v).strip()
        return text or None

    @field_validator("day", mode="before")
    @classmethod
    def coerce_day(cls, v: Any) -> Optional[int]:
        """Accept ints, numeric strings, "Day 2" and "第二天" style hints."""
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, (int, float)):
            day = int(v)
            return day if day > 0 else None
        text = str(v).strip()
        match = re.search(r"\d+", text)
        if match:
            day = int(match.group(0))
        elif text and all(ch in _CN_DIGITS or ch in _CN_UNITS or ch in "第天日" for ch in text):
            day = parse_cn_numeral(text)
        else:
            return None
        return day if day > 0 else None


def parse_cn_numeral(text: str) -> int:
    """Chinese numerals below one thousand: 三 -> 3, 十二 -> 12, 一百零五 -> 105.

    Characters that are not numerals ("第", "天") are ignored.
    """
    total, current = 0, 0
    for ch in text:
        if ch in _CN_DIGITS:
            current = _CN_DIGITS[ch]
        elif ch in _CN_UNITS:
            total += (current or 1) * _CN_UNITS[ch]
            current = 0
    return total + current


class GeocodedPlace(Place):
    """A place with resolved coordinates."""
    lng: float
    lat: float

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(lng=self.lng, lat=self.lat)


class SnapshotPlace(GeocodedPlace):
    """A drawn place together with the day it was styled for."""
    day_index: Optional[int] = None


# ============================================================================
# Overlay Schemas
# ============================================================================

class Polyline(BaseModel):
    """A drawn route line."""
    path: List[Coordinate] = Field(default_factory=list)
    stroke_color: str
    stroke_weight: float = 6
    stroke_opacity: float = Field(0.85, ge=0, le=1)
    stroke_style: Literal["solid", "dashed"] = "solid"
    day_index: Optional[int] = None
    degraded: bool = False


class MarkerSpec(BaseModel):
    """Everything a backend needs to draw one marker."""
    place: SnapshotPlace
    label: str
    color: str
    pattern: Literal["solid", "hatched"] = "solid"


class MapSnapshot(BaseModel):
    """Serializable, provider-tagged capture of a completed render."""
    provider: str
    places: List[SnapshotPlace] = Field(default_factory=list)
    polylines: List[Polyline] = Field(default_factory=list)
    viewport_coords: List[Coordinate] = Field(default_factory=list)
    signature: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format for JSON transport."""
        return self.model_dump(exclude_none=True)


class ProgressState(BaseModel):
    """Progress indicator shown while a render cycle runs."""
    active: bool = False
    percent: int = Field(0, ge=0, le=100)
    message: str = ""


# ============================================================================
# API Schemas
# ============================================================================

class RenderRequest(BaseModel):
    """Inputs for one render cycle."""
    destination: str = ""
    places: List[Place] = Field(default_factory=list)
    route_sequence: List[List[str]] = Field(default_factory=list)
    strategy: Strategy = "driving"
    itinerary_text: Optional[str] = Field(None, description="Parsed when places/route_sequence are empty")

    @field_validator("route_sequence", mode="before")
    @classmethod
    def drop_blank_names(cls, v: Any) -> List[List[str]]:
        if not v:
            return []
        days: List[List[str]] = []
        for day in v:
            if isinstance(day, str):
                day = [day]
            days.append([str(name).strip() for name in (day or []) if str(name).strip()])
        return days


class RenderResponse(BaseModel):
    snapshot: Optional[MapSnapshot] = None
    restored: bool = False
    skipped: bool = False
    superseded: bool = False
    progress: List[ProgressState] = Field(default_factory=list)


class ParseRequest(BaseModel):
    text: str
    destination: str = ""


class ParseResponse(BaseModel):
    places: List[Place] = Field(default_factory=list)
    route_sequence: List[List[str]] = Field(default_factory=list)


class DestinationLookupRequest(BaseModel):
    destination: str


class DestinationLookupResponse(BaseModel):
    destination: str
    center: Optional[Coordinate] = None
    address: Optional[str] = None
