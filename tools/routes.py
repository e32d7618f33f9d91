# tools/routes.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import config
from tools.http_client import request_json as _request

logger = logging.getLogger(__name__)

OSRM_ENDPOINT = "https://router.project-osrm.org/route/v1"
AMAP_DIRECTION = "https://restapi.amap.com/v3/direction"
BAIDU_DIRECTION = "https://api.map.baidu.com/direction/v2"

# OSRM profile per strategy; the public demo server has no transit profile
OSRM_PROFILES = {"driving": "driving", "walking": "foot"}


class RoutesAPIError(Exception):
    """Raised when the routing provider errors or cannot route."""


Point = Dict[str, float]


def _lnglat(p: Point) -> str:
    return f"{float(p['lng']):.6f},{float(p['lat']):.6f}"


def _latlng(p: Point) -> str:
    return f"{float(p['lat']):.6f},{float(p['lng']):.6f}"


def _parse_path(text: str) -> List[Point]:
    """Parse "lng,lat;lng,lat" strings used by AMap and Baidu."""
    out: List[Point] = []
    for pair in (text or "").split(";"):
        parts = pair.split(",")
        if len(parts) < 2:
            continue
        try:
            out.append({"lng": float(parts[0]), "lat": float(parts[1])})
        except ValueError:
            continue
    return out


def _merge_segments(segments: List[List[Point]]) -> List[Point]:
    merged: List[Point] = []
    for i, segment in enumerate(segments):
        # Each segment starts where the previous one ended
        merged.extend(segment[1:] if i > 0 and merged else segment)
    return merged


async def plan_route(
    points: Sequence[Point],
    strategy: str = "driving",
    provider: Optional[str] = None,
    *,
    key: Optional[str] = None,
) -> List[Point]:
    """
    Compute path geometry through ``points`` in the given order and return
    [{"lng", "lat"}, ...]. Travel semantics are provider-defined.
    Providers: osm (OSRM) | amap | baidu.
    """
    if not points or len(points) < 2:
        raise RoutesAPIError("at least two points are required")

    provider = (provider or config.MAP_PROVIDER).lower()
    if provider != "osm":
        key = key or config.get_map_api_key(provider)
        if not key:
            raise RoutesAPIError(f"No API key configured for map provider '{provider}'")

    if provider == "osm":
        return await _route_osrm(points, strategy)
    if provider == "baidu":
        return await _route_baidu(points, strategy, key)
    if provider == "amap":
        return await _route_amap(points, strategy, key)
    raise RoutesAPIError(f"Unsupported map provider '{provider}'")


async def _route_osrm(points: Sequence[Point], strategy: str) -> List[Point]:
    profile = OSRM_PROFILES.get(strategy)
    if not profile:
        raise RoutesAPIError(f"OSRM has no '{strategy}' profile")
    coords = ";".join(_lnglat(p) for p in points)
    data = await _request(
        "GET",
        f"{OSRM_ENDPOINT}/{profile}/{coords}",
        params={"overview": "full", "geometries": "geojson"},
        headers={"User-Agent": config.NOMINATIM_USER_AGENT},
    )
    if data.get("code") != "Ok" or not data.get("routes"):
        raise RoutesAPIError(f"OSRM: {data.get('code')} {data.get('message', '')}".strip())
    geometry = data["routes"][0].get("geometry") or {}
    return [{"lng": float(c[0]), "lat": float(c[1])} for c in geometry.get("coordinates", []) if len(c) >= 2]


async def _route_amap(points: Sequence[Point], strategy: str, key: str) -> List[Point]:
    if strategy == "transit":
        # Integrated transit needs a city code per request; leave it to the caller's fallback
        raise RoutesAPIError("AMap transit routing is not supported without a city code")

    if strategy == "walking":
        # Walking has no waypoint support, so route leg by leg
        segments = []
        for start, end in zip(points, points[1:]):
            segments.append(await _amap_leg("walking", start, end, key))
        return _merge_segments(segments)

    params: Dict[str, Any] = {
        "origin": _lnglat(points[0]),
        "destination": _lnglat(points[-1]),
        "key": key,
        "strategy": 0,  # fastest
        "extensions": "base",
    }
    if len(points) > 2:
        params["waypoints"] = ";".join(_lnglat(p) for p in points[1:-1])
    data = await _request("GET", f"{AMAP_DIRECTION}/driving", params=params)
    return _amap_path(data)


async def _amap_leg(mode: str, start: Point, end: Point, key: str) -> List[Point]:
    data = await _request(
        "GET",
        f"{AMAP_DIRECTION}/{mode}",
        params={"origin": _lnglat(start), "destination": _lnglat(end), "key": key},
    )
    return _amap_path(data) or [dict(start), dict(end)]


def _amap_path(data: Dict[str, Any]) -> List[Point]:
    if str(data.get("status")) != "1":
        raise RoutesAPIError(f"AMap direction failed: {data.get('info', 'unknown error')}")
    paths = (data.get("route") or {}).get("paths") or []
    if not paths:
        raise RoutesAPIError("AMap returned no path")
    out: List[Point] = []
    for step in paths[0].get("steps", []):
        out.extend(_parse_path(step.get("polyline", "")))
    return out


async def _route_baidu(points: Sequence[Point], strategy: str, key: str) -> List[Point]:
    mode = strategy if strategy in ("walking", "transit") else "driving"
    segments = []
    if mode == "driving":
        # Driving accepts waypoints; walking and transit are origin/destination only
        params: Dict[str, Any] = {
            "origin": _latlng(points[0]),
            "destination": _latlng(points[-1]),
            "ak": key,
            "tactics": 11,
        }
        if len(points) > 2:
            params["waypoints"] = "|".join(_latlng(p) for p in points[1:-1])
        segments.append(_baidu_path(await _request("GET", f"{BAIDU_DIRECTION}/driving", params=params)))
    else:
        for start, end in zip(points, points[1:]):
            data = await _request(
                "GET",
                f"{BAIDU_DIRECTION}/{mode}",
                params={"origin": _latlng(start), "destination": _latlng(end), "ak": key},
            )
            segments.append(_baidu_path(data) or [dict(start), dict(end)])
    return _merge_segments(segments)


def _baidu_path(data: Dict[str, Any]) -> List[Point]:
    if data.get("status") != 0:
        raise RoutesAPIError(f"Baidu direction failed: {data.get('message', 'unknown error')}")
    routes = (data.get("result") or {}).get("routes") or []
    if not routes:
        raise RoutesAPIError("Baidu returned no route")
    out: List[Point] = []
    for step in routes[0].get("steps", []):
        # Transit steps are lists of alternative schemes; take the first
        if isinstance(step, list):
            step = step[0] if step else {}
        out.extend(_parse_path(step.get("path", "")))
    return out
