"""Drop geocoded points that do not belong to the trip destination."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import config
from reconciler.geometry import (
    as_geometry,
    dedupe_by_grid,
    geometry_center,
    haversine_km,
    point_in_geometry,
)
from tools.boundary import BoundaryUnavailable
from workflows.schemas import GeocodedPlace

logger = logging.getLogger(__name__)

BoundaryFn = Callable[[str], Awaitable[Optional[Dict[str, Any]]]]
GeocodeFn = Callable[..., Awaitable[Dict[str, Any]]]

STAGE_BOUNDARY = "boundary"
STAGE_RADIUS = "radius"
STAGE_RELAXED = "relaxed"
STAGE_UNFILTERED = "unfiltered"


@dataclass
class FilterResult:
    places: List[GeocodedPlace] = field(default_factory=list)
    stage: str = STAGE_UNFILTERED
    center: Optional[Tuple[float, float]] = None


def _within(place: GeocodedPlace, center: Tuple[float, float], radius_km: float) -> bool:
    return haversine_km(center[0], center[1], place.lng, place.lat) <= radius_km


def _needs_relaxation(kept: int, total: int) -> bool:
    return kept < 2 or (total - kept) > total * 0.5


def filter_points(
    places: Sequence[GeocodedPlace],
    center: Optional[Tuple[float, float]],
    geometry: Optional[Dict[str, Any]] = None,
    radius_km: float = 60.0,
) -> FilterResult:
    """Apply the strict pass and graduated relaxation to already-deduped points.

    strict  -> polygon containment, or radius around ``center`` without one
    relaxed -> strict survivors plus everything within 2x radius
    unfiltered -> the whole input, when fewer than two points would survive
    """
    places = list(places)
    total = len(places)
    geometry = as_geometry(geometry)
    if center is None and geometry is not None:
        center = geometry_center(geometry)

    if geometry is not None:
        strict = [p for p in places if point_in_geometry(p.lng, p.lat, geometry)]
        stage = STAGE_BOUNDARY
    elif center is not None:
        strict = [p for p in places if _within(p, center, radius_km)]
        stage = STAGE_RADIUS
    else:
        logger.info("No center or boundary for destination; skipping range filter")
        return FilterResult(places, STAGE_UNFILTERED, None)

    if not _needs_relaxation(len(strict), total):
        return FilterResult(strict, stage, center)

    logger.info(
        f"{stage} pass kept {len(strict)}/{total} points; relaxing to {radius_km * 2:g} km radius"
    )
    if center is not None:
        strict_ids = {id(p) for p in strict}
        relaxed = [p for p in places if id(p) in strict_ids or _within(p, center, radius_km * 2)]
        if len(relaxed) >= 2:
            return FilterResult(relaxed, STAGE_RELAXED, center)

    logger.warning(f"Range filter would leave {len(strict)} point(s); keeping all {total}")
    return FilterResult(places, STAGE_UNFILTERED, center)


class BoundaryFilter:
    """Restrict places to the destination's administrative area or a radius."""

    def __init__(
        self,
        geocode_fn: GeocodeFn,
        boundary_fn: BoundaryFn,
        *,
        radius_km: Optional[float] = None,
        precision: Optional[int] = None,
    ) -> None:
        self._geocode = geocode_fn
        self._boundary = boundary_fn
        self.radius_km = radius_km if radius_km is not None else config.BOUNDARY_RADIUS_KM
        self.precision = precision if precision is not None else config.DEDUPE_PRECISION

    async def _center(self, destination: str) -> Optional[Tuple[float, float]]:
        try:
            result = await self._geocode(destination)
        except Exception as exc:
            logger.info(f"Could not geocode destination '{destination}': {exc}")
            return None
        return float(result["lng"]), float(result["lat"])

    async def _geometry(self, destination: str) -> Optional[Dict[str, Any]]:
        try:
            feature = await self._boundary(destination)
            geometry = as_geometry(feature)
            if geometry is None:
                raise BoundaryUnavailable(destination)
            return geometry
        except BoundaryUnavailable:
            logger.info(f"No boundary for '{destination}'; using {self.radius_km:g} km radius")
            return None

    async def filter(
        self,
        destination: str,
        places: Sequence[GeocodedPlace],
        *,
        center: Optional[Tuple[float, float]] = None,
    ) -> FilterResult:
        """Dedupe, then filter; ``center`` skips geocoding the destination."""
        deduped = dedupe_by_grid(places, self.precision)
        if len(deduped) < len(places):
            logger.debug(f"Dedupe merged {len(places) - len(deduped)} near-duplicate points")
        destination = (destination or "").strip()
        if not destination or not deduped:
            return FilterResult(deduped, STAGE_UNFILTERED, center)

        if center is None:
            center = await self._center(destination)
        geometry = await self._geometry(destination)
        result = filter_points(deduped, center, geometry, self.radius_km)
        logger.info(f"Range filter ({result.stage}) kept {len(result.places)}/{len(deduped)} points")
        return result
