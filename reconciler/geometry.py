"""Plain geometry helpers: distances, polygon containment, grid dedupe."""
from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

EARTH_RADIUS_KM = 6371.0088

P = TypeVar("P")


def valid_coordinate(lng: Any, lat: Any) -> bool:
    """True for finite numbers inside WGS84 ranges."""
    try:
        lng_f, lat_f = float(lng), float(lat)
    except (TypeError, ValueError):
        return False
    if isinstance(lng, bool) or isinstance(lat, bool):
        return False
    return math.isfinite(lng_f) and math.isfinite(lat_f) and -180 <= lng_f <= 180 and -90 <= lat_f <= 90


def haversine_km(lng1: float, lat1: float, lng2: float, lat2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def _point_in_ring(lng: float, lat: float, ring: Sequence[Sequence[float]]) -> bool:
    # Ray casting; GeoJSON positions are [lng, lat]
    inside = False
    n = len(ring)
    j = n - 1
    for i in range(n):
        xi, yi = ring[i][0], ring[i][1]
        xj, yj = ring[j][0], ring[j][1]
        if (yi > lat) != (yj > lat):
            x_cross = (xj - xi) * (lat - yi) / (yj - yi) + xi
            if lng < x_cross:
                inside = not inside
        j = i
    return inside


def _point_in_polygon(lng: float, lat: float, rings: Sequence[Sequence[Sequence[float]]]) -> bool:
    if not rings or not _point_in_ring(lng, lat, rings[0]):
        return False
    # Remaining rings are holes
    return not any(_point_in_ring(lng, lat, hole) for hole in rings[1:])


def as_geometry(feature_or_geometry: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Accept a GeoJSON Feature or bare geometry; return an area geometry or None."""
    if not feature_or_geometry:
        return None
    geometry = feature_or_geometry
    if feature_or_geometry.get("type") == "Feature":
        geometry = feature_or_geometry.get("geometry") or {}
    if geometry.get("type") in ("Polygon", "MultiPolygon") and geometry.get("coordinates"):
        return geometry
    return None


def point_in_geometry(lng: float, lat: float, geometry: Dict[str, Any]) -> bool:
    """Point-in-polygon for GeoJSON Polygon / MultiPolygon, holes respected."""
    geometry = as_geometry(geometry)
    if geometry is None:
        return False
    if geometry["type"] == "Polygon":
        return _point_in_polygon(lng, lat, geometry["coordinates"])
    return any(_point_in_polygon(lng, lat, polygon) for polygon in geometry["coordinates"])


def geometry_center(geometry: Dict[str, Any]) -> Optional[Tuple[float, float]]:
    """Center of the bounding box of an area geometry as (lng, lat)."""
    geometry = as_geometry(geometry)
    if geometry is None:
        return None
    polygons = [geometry["coordinates"]] if geometry["type"] == "Polygon" else geometry["coordinates"]
    xs = [pos[0] for polygon in polygons for ring in polygon[:1] for pos in ring]
    ys = [pos[1] for polygon in polygons for ring in polygon[:1] for pos in ring]
    if not xs:
        return None
    return (min(xs) + max(xs)) / 2, (min(ys) + max(ys)) / 2


def grid_key(lng: float, lat: float, precision: int = 5) -> Tuple[float, float]:
    return round(lng, precision), round(lat, precision)


def dedupe_by_grid(points: Iterable[P], precision: int = 5) -> List[P]:
    """Collapse points sharing a grid cell, keeping the first of each cell.

    Points are any objects with ``lng``/``lat`` attributes.
    """
    seen = set()
    out: List[P] = []
    for point in points:
        cell = grid_key(point.lng, point.lat, precision)
        if cell in seen:
            continue
        seen.add(cell)
        out.append(point)
    return out


def bounding_box(coords: Iterable[Tuple[float, float]]) -> Optional[Tuple[float, float, float, float]]:
    """(west, south, east, north) over valid (lng, lat) pairs, or None."""
    valid = [(lng, lat) for lng, lat in coords if valid_coordinate(lng, lat)]
    if not valid:
        return None
    lngs = [c[0] for c in valid]
    lats = [c[1] for c in valid]
    return min(lngs), min(lats), max(lngs), max(lats)
