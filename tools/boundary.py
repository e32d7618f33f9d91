# tools/boundary.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import config
from tools.http_client import request_json as _request

logger = logging.getLogger(__name__)

NOMINATIM_SEARCH = "https://nominatim.openstreetmap.org/search"

# Nominatim is rate limited; remember both hits and misses for the process lifetime
_boundary_cache: Dict[str, Optional[Dict[str, Any]]] = {}


class BoundaryUnavailable(Exception):
    """No administrative polygon is known for a place. Never fatal."""


def _is_area(feature: Dict[str, Any]) -> bool:
    geometry = (feature or {}).get("geometry") or {}
    return geometry.get("type") in ("Polygon", "MultiPolygon")


def _pick_feature(features: list) -> Optional[Dict[str, Any]]:
    areas = [f for f in features if isinstance(f, dict) and _is_area(f)]
    for feature in areas:
        props = feature.get("properties") or {}
        if (
            props.get("category") == "boundary"
            or props.get("type") == "administrative"
            or (props.get("class") == "boundary" and props.get("type") == "administrative")
        ):
            return feature
    return areas[0] if areas else None


async def get_boundary_geometry(place_name: str) -> Optional[Dict[str, Any]]:
    """
    Provider: OpenStreetMap Nominatim (polygon_geojson).
    Returns the administrative boundary GeoJSON Feature for ``place_name``,
    or None when no polygon is available. Never raises.
    """
    key = (place_name or "").strip()
    if not key:
        return None
    if key in _boundary_cache:
        return _boundary_cache[key]

    try:
        data = await _request(
            "GET",
            NOMINATIM_SEARCH,
            params={"q": key, "format": "geojson", "polygon_geojson": 1},
            headers={
                "User-Agent": config.NOMINATIM_USER_AGENT,
                "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8",
            },
        )
    except Exception as exc:
        logger.warning(f"Boundary lookup failed for '{key}': {exc}")
        _boundary_cache[key] = None
        return None

    features = (data or {}).get("features") if isinstance(data, dict) else None
    feature = _pick_feature(features or [])
    if feature is None:
        logger.info(f"No boundary polygon for '{key}'")
    _boundary_cache[key] = feature
    return feature


def clear_cache() -> None:
    _boundary_cache.clear()
