"""Resolve itinerary places to coordinates with widening queries."""
from __future__ import annotations

import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import config
from reconciler.cancel import LookupCancelled
from reconciler.geometry import valid_coordinate
from reconciler.pool import BoundedPool
from tools.geocoding import GeocodeNotFound
from workflows.schemas import GeocodedPlace, Place

logger = logging.getLogger(__name__)

GeocodeFn = Callable[..., Awaitable[Dict[str, Any]]]

# Longest first inside each alternation
_ADMIN_WORDS = ("autonomous region", "prefecture", "province", "district", "county", "state", "city")
_ADMIN_CJK = ("特别行政区", "自治区", "自治州", "省", "市", "县", "区")
_ADMIN_SUFFIX_RE = re.compile(
    r"(?:\s+(?:" + "|".join(_ADMIN_WORDS) + r")|(?:" + "|".join(_ADMIN_CJK) + r"))+$",
    re.IGNORECASE,
)


def strip_admin_suffix(destination: str) -> str:
    """Drop trailing administrative suffixes: "Hangzhou City" -> "Hangzhou"."""
    text = (destination or "").strip()
    stripped = _ADMIN_SUFFIX_RE.sub("", text).strip(" ,")
    return stripped or text


def candidate_queries(place: Place, destination: str = "") -> List[str]:
    """Ordered, de-duplicated geocoding queries for one place."""
    name = place.name.strip()
    destination = (destination or "").strip()
    queries = [place.address or "", name]
    if destination:
        queries.append(f"{destination} {name}")
        queries.append(f"{strip_admin_suffix(destination)} {name}")

    seen = set()
    out: List[str] = []
    for query in queries:
        query = query.strip()
        if query and query not in seen:
            seen.add(query)
            out.append(query)
    return out


class GeocodeResolver:
    """Turns places into GeocodedPlace values through the active geocoder.

    Stateless apart from its configuration, so concurrent ``resolve`` calls
    are safe.
    """

    def __init__(self, geocode_fn: GeocodeFn, *, max_concurrency: Optional[int] = None) -> None:
        self._geocode = geocode_fn
        self.max_concurrency = max_concurrency or config.GEOCODE_MAX_CONCURRENCY

    async def resolve(self, place: Place, destination: str = "") -> GeocodedPlace:
        for query in candidate_queries(place, destination):
            try:
                result = await self._geocode(query)
            except LookupCancelled:
                raise
            except GeocodeNotFound:
                continue
            except Exception as exc:
                logger.debug(f"Geocoder error for '{query}': {exc}")
                continue
            lng, lat = (result or {}).get("lng"), (result or {}).get("lat")
            if isinstance(lng, (int, float)) and isinstance(lat, (int, float)) and valid_coordinate(lng, lat):
                return GeocodedPlace(
                    **place.model_dump(exclude={"address"}),
                    address=place.address or result.get("address"),
                    lng=float(lng),
                    lat=float(lat),
                )
        raise GeocodeNotFound(f"No candidate query resolved '{place.name}'")

    async def resolve_all(
        self,
        places: Sequence[Place],
        destination: str = "",
        *,
        pool: Optional[BoundedPool] = None,
    ) -> List[GeocodedPlace]:
        """Resolve every place under a bounded pool; failures are dropped."""
        pool = pool or BoundedPool(self.max_concurrency)
        results = await pool.map(lambda place: self.resolve(place, destination), places)

        resolved: List[GeocodedPlace] = []
        for place, result in zip(places, results):
            if isinstance(result, LookupCancelled):
                raise result
            if isinstance(result, GeocodeNotFound):
                logger.info(f"Skipping '{place.name}': {result}")
                continue
            if isinstance(result, Exception):
                logger.warning(f"Skipping '{place.name}' after unexpected error: {result}")
                continue
            resolved.append(result)
        logger.info(f"Geocoded {len(resolved)}/{len(places)} places")
        return resolved
