# tools/geocoding.py
from __future__ import annotations

import logging
import math
from typing import Any, Dict, Optional

import config
from reconciler.cancel import CancelToken
from tools.http_client import request_json as _request

logger = logging.getLogger(__name__)

NOMINATIM_SEARCH = "https://nominatim.openstreetmap.org/search"
AMAP_GEOCODE = "https://restapi.amap.com/v3/geocode/geo"
BAIDU_GEOCODE = "https://api.map.baidu.com/geocoding/v3/"


class GeocodeNotFound(Exception):
    """Raised when a query (or every candidate query) resolves to nothing."""


class GeocodingAPIError(Exception):
    """Raised when the geocoding provider rejects the request."""


def _valid(lng: Any, lat: Any) -> bool:
    return (
        isinstance(lng, (int, float))
        and isinstance(lat, (int, float))
        and not isinstance(lng, bool)
        and not isinstance(lat, bool)
        and math.isfinite(lng)
        and math.isfinite(lat)
    )


async def geocode(
    query: str,
    provider: Optional[str] = None,
    *,
    key: Optional[str] = None,
    cancel_token: Optional[CancelToken] = None,
) -> Dict[str, Any]:
    """
    Resolve a free-text query to {"lng", "lat", "address"}.
    Providers: osm (Nominatim, no key) | amap | baidu.
    Raises GeocodeNotFound when the provider has no result.
    """
    if not query or not query.strip():
        raise GeocodeNotFound("empty query")

    provider = (provider or config.MAP_PROVIDER).lower()
    if provider != "osm":
        key = key or config.get_map_api_key(provider)
        if not key:
            raise GeocodingAPIError(f"No API key configured for map provider '{provider}'")

    if cancel_token:
        cancel_token.raise_if_cancelled()

    if provider == "osm":
        result = await _geocode_osm(query)
    elif provider == "baidu":
        result = await _geocode_baidu(query, key)
    elif provider == "amap":
        result = await _geocode_amap(query, key)
    else:
        raise GeocodingAPIError(f"Unsupported map provider '{provider}'")

    if cancel_token:
        cancel_token.raise_if_cancelled()

    if not _valid(result.get("lng"), result.get("lat")):
        raise GeocodeNotFound(f"No numeric coordinates for '{query}'")
    return result


async def _geocode_osm(query: str) -> Dict[str, Any]:
    data = await _request(
        "GET",
        NOMINATIM_SEARCH,
        params={"q": query, "format": "jsonv2", "limit": 1},
        headers={"User-Agent": config.NOMINATIM_USER_AGENT, "Accept": "application/json"},
    )
    if not isinstance(data, list) or not data:
        raise GeocodeNotFound(f"Nominatim found nothing for '{query}'")
    item = data[0]
    try:
        lng, lat = float(item["lon"]), float(item["lat"])
    except (KeyError, TypeError, ValueError) as exc:
        raise GeocodeNotFound(f"Malformed Nominatim result for '{query}'") from exc
    return {"lng": lng, "lat": lat, "address": item.get("display_name") or query}


async def _geocode_amap(query: str, key: str) -> Dict[str, Any]:
    data = await _request("GET", AMAP_GEOCODE, params={"address": query, "key": key, "output": "JSON"})
    if str(data.get("status")) != "1":
        info = data.get("info") or "unknown error"
        # INVALID_USER_KEY / USERKEY_PLAT_NOMATCH mean a wrong key type, not a missing place
        if "KEY" in str(info).upper():
            raise GeocodingAPIError(f"AMap rejected the key: {info}")
        raise GeocodeNotFound(f"AMap geocode failed for '{query}': {info}")
    geocodes = data.get("geocodes") or []
    if not geocodes:
        raise GeocodeNotFound(f"AMap found nothing for '{query}'")
    first = geocodes[0]
    try:
        lng_s, lat_s = str(first.get("location", "")).split(",")
        lng, lat = float(lng_s), float(lat_s)
    except ValueError as exc:
        raise GeocodeNotFound(f"Malformed AMap location for '{query}'") from exc
    return {"lng": lng, "lat": lat, "address": first.get("formatted_address") or query}


async def _geocode_baidu(query: str, key: str) -> Dict[str, Any]:
    data = await _request("GET", BAIDU_GEOCODE, params={"address": query, "output": "json", "ak": key})
    status = data.get("status")
    location = (data.get("result") or {}).get("location") or {}
    if status != 0 or not location:
        message = data.get("message") or data.get("msg") or "not found"
        if status in (101, 102, 200, 210, 211, 220, 240):
            raise GeocodingAPIError(f"Baidu rejected the AK (status {status}): {message}")
        raise GeocodeNotFound(f"Baidu geocode failed for '{query}': {message}")
    return {
        "lng": location.get("lng"),
        "lat": location.get("lat"),
        "address": (data.get("result") or {}).get("formatted_address") or query,
    }
