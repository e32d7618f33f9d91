"""Pytest fixtures for offline engine tests."""

from __future__ import annotations

import os
from typing import Any, Dict, List, Optional, Tuple

import pytest

# Pin the provider and keep storage in memory so modules that read env on import behave.
os.environ["MAP_PROVIDER"] = "osm"
os.environ.pop("REDIS_URL", None)
os.environ.setdefault("AMAP_API_KEY", "test-amap-key")
os.environ.setdefault("BAIDU_MAP_AK", "test-baidu-ak")

from tools.geocoding import GeocodeNotFound  # noqa: E402
from workflows.schemas import GeocodedPlace, Place  # noqa: E402


class FakeGeocoder:
    """Async stand-in for tools.geocoding.geocode driven by a lookup table."""

    def __init__(self, table: Dict[str, Tuple[float, float]]):
        self.table = dict(table)
        self.calls: List[str] = []

    async def __call__(self, query: str, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(query)
        if query not in self.table:
            raise GeocodeNotFound(query)
        lng, lat = self.table[query]
        return {"lng": lng, "lat": lat, "address": f"addr:{query}"}


class FakeRouter:
    """Async stand-in for tools.routes.plan_route that can be told to fail."""

    def __init__(self, fail: bool = False, exc: Optional[Exception] = None):
        self.fail = fail
        self.exc = exc
        self.calls: List[Tuple[List[Dict[str, float]], str]] = []

    async def __call__(self, points, strategy: str = "driving", **kwargs: Any) -> List[Dict[str, float]]:
        self.calls.append((list(points), strategy))
        if self.exc is not None:
            raise self.exc
        if self.fail:
            return []
        # Insert a midpoint between each pair to look like a real path
        path: List[Dict[str, float]] = []
        for start, end in zip(points, points[1:]):
            path.append(dict(start))
            path.append({"lng": (start["lng"] + end["lng"]) / 2, "lat": (start["lat"] + end["lat"]) / 2})
        path.append(dict(points[-1]))
        return path


@pytest.fixture
def fake_geocoder():
    """Factory that returns FakeGeocoder objects."""

    def _factory(table: Dict[str, Tuple[float, float]]) -> FakeGeocoder:
        return FakeGeocoder(table)

    return _factory


@pytest.fixture
def fake_router():
    def _factory(fail: bool = False, exc: Optional[Exception] = None) -> FakeRouter:
        return FakeRouter(fail=fail, exc=exc)

    return _factory


@pytest.fixture
def geo():
    """Build GeocodedPlace values tersely: geo("Hall", 120.1, 30.2, day=2)."""

    def _factory(name: str, lng: float, lat: float, **kw: Any) -> GeocodedPlace:
        return GeocodedPlace(name=name, lng=lng, lat=lat, **kw)

    return _factory


@pytest.fixture
def hangzhou_places() -> List[Place]:
    return [
        Place(name="West Lake"),
        Place(name="Lingyin Temple"),
        Place(name="Hefang Street"),
        Place(name="Leifeng Pagoda"),
    ]


@pytest.fixture
def hangzhou_table() -> Dict[str, Tuple[float, float]]:
    return {
        "Hangzhou": (120.1551, 30.2741),
        "West Lake": (120.1485, 30.2424),
        "Lingyin Temple": (120.1010, 30.2408),
        "Hefang Street": (120.1690, 30.2416),
        "Leifeng Pagoda": (120.1488, 30.2315),
    }
