"""
Map backends: one overlay model, three ways to draw it.

Every backend records the markers and polylines it owns so the render
manager can remove or clear them; ``to_html`` turns the current overlays
into a standalone page. OSM pages are produced with folium; AMap and Baidu
pages load the vendor's JS SDK with the configured key.
"""
from __future__ import annotations

import asyncio
import html
import itertools
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

import folium
import httpx

import config
from reconciler.geometry import bounding_box
from rendering.styles import marker_css
from workflows.schemas import Coordinate, MarkerSpec, Polyline

logger = logging.getLogger(__name__)


class BackendLoadTimeout(Exception):
    """The map SDK did not become available in time."""


class BackendLoadError(Exception):
    """The map SDK cannot be used with the current configuration."""


# Strings the vendor SDK endpoints return instead of a script when the key is wrong
AUTH_FAILURE_MARKERS = (
    "INVALID_USER_KEY",
    "USERKEY_PLAT_NOMATCH",
    "INVALID_USER_SCODE",
    "INVALID_USER_DOMAIN",
    "APP不存在",
    "AK有误",
    "APP被您禁用",
)


class MapBackend(ABC):
    """Common overlay bookkeeping shared by every provider."""

    provider: str = ""
    key_env: Optional[str] = None
    sdk_url_template: Optional[str] = None
    sdk_ready_token: Optional[str] = None

    def __init__(self, key: Optional[str] = None) -> None:
        self.key = key
        self.loaded = False
        self.markers: Dict[str, MarkerSpec] = {}
        self.polylines: Dict[str, Polyline] = {}
        self.viewport: Optional[Tuple[float, float, float, float]] = None
        self.padding_px = config.VIEWPORT_PADDING_PX
        self._ids = itertools.count(1)

    # ---- loading -----------------------------------------------------------

    @property
    def sdk_url(self) -> Optional[str]:
        if not self.sdk_url_template:
            return None
        return self.sdk_url_template.format(key=self.key or "")

    def _check_key(self) -> None:
        if self.key_env and not self.key:
            raise BackendLoadError(
                f"{self.provider} map needs an API key: set {self.key_env} in .env "
                f"or switch MAP_PROVIDER to 'osm'"
            )

    async def load(
        self,
        timeout_s: Optional[float] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        poll_interval_s: float = 0.5,
    ) -> None:
        """Wait until the SDK is reachable and accepts the key.

        Raises BackendLoadError for configuration problems and
        BackendLoadTimeout when the SDK never answers within ``timeout_s``.
        """
        if self.loaded:
            return
        self._check_key()
        if self.sdk_url:
            timeout_s = config.BACKEND_LOAD_TIMEOUT_S if timeout_s is None else timeout_s
            owns_client = client is None
            client = client or httpx.AsyncClient(follow_redirects=True)
            try:
                await self._poll_sdk(client, timeout_s, poll_interval_s)
            finally:
                if owns_client:
                    await client.aclose()
        self.loaded = True
        logger.info(f"{self.provider} backend ready")

    async def _poll_sdk(self, client: httpx.AsyncClient, timeout_s: float, poll_interval_s: float) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_s
        last_problem = "no response"
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise BackendLoadTimeout(
                    f"{self.provider} map SDK did not load within {timeout_s:g}s "
                    f"({last_problem}); check the network connection"
                )
            try:
                response = await client.get(self.sdk_url, timeout=min(remaining, config.HTTP_TIMEOUT_S))
            except httpx.HTTPError as exc:
                last_problem = f"{type(exc).__name__}: {exc}"
            else:
                self._raise_for_auth(response)
                if response.status_code == 200 and self._sdk_ready(response.text):
                    return
                last_problem = f"HTTP {response.status_code}"
            logger.debug(f"{self.provider} SDK not ready: {last_problem}")
            await asyncio.sleep(min(poll_interval_s, max(0.0, deadline - loop.time())))

    def _raise_for_auth(self, response: httpx.Response) -> None:
        body = response.text or ""
        if response.status_code in (401, 403) or any(marker in body for marker in AUTH_FAILURE_MARKERS):
            raise BackendLoadError(
                f"{self.provider} rejected the configured key; make sure {self.key_env} is a "
                f"browser (JS API) key enabled for this domain"
            )

    def _sdk_ready(self, body: str) -> bool:
        return not self.sdk_ready_token or self.sdk_ready_token in body

    # ---- overlays ----------------------------------------------------------

    def add_marker(self, spec: MarkerSpec) -> str:
        handle = f"marker-{next(self._ids)}"
        self.markers[handle] = spec
        return handle

    def add_polyline(self, polyline: Polyline) -> str:
        handle = f"polyline-{next(self._ids)}"
        self.polylines[handle] = polyline
        return handle

    def remove(self, handle: str) -> None:
        self.markers.pop(handle, None)
        self.polylines.pop(handle, None)

    def clear(self) -> None:
        self.markers.clear()
        self.polylines.clear()
        self.viewport = None

    def fit_viewport(self, coords: Sequence[Coordinate], padding_px: Optional[int] = None) -> None:
        self.viewport = bounding_box((c.lng, c.lat) for c in coords)
        if padding_px is not None:
            self.padding_px = padding_px

    def _marker_payload(self) -> List[Dict[str, Any]]:
        return [
            {
                "lng": spec.place.lng,
                "lat": spec.place.lat,
                "name": html.escape(spec.place.name),
                "label": html.escape(spec.label),
                "css": marker_css(spec.color, spec.pattern),
            }
            for spec in self.markers.values()
        ]

    def _polyline_payload(self) -> List[Dict[str, Any]]:
        return [
            {
                "path": [[c.lng, c.lat] for c in line.path],
                "color": line.stroke_color,
                "weight": line.stroke_weight,
                "opacity": line.stroke_opacity,
                "style": line.stroke_style,
            }
            for line in self.polylines.values()
        ]

    @abstractmethod
    def to_html(self) -> str:
        """Render the current overlays as a standalone HTML document."""


class OsmBackend(MapBackend):
    """OpenStreetMap tiles drawn through folium (Leaflet)."""

    provider = "osm"

    def build_map(self) -> folium.Map:
        if self.viewport:
            west, south, east, north = self.viewport
            center = [(south + north) / 2, (west + east) / 2]
        else:
            center = [0.0, 0.0]
        m = folium.Map(location=center, zoom_start=12 if self.viewport else 2, tiles="OpenStreetMap")

        for spec in self.markers.values():
            folium.Marker(
                [spec.place.lat, spec.place.lng],
                tooltip=html.escape(spec.place.name),
                popup=folium.Popup(html.escape(spec.place.address or spec.place.name), max_width=300),
                icon=folium.DivIcon(
                    html=f'<div style="{marker_css(spec.color, spec.pattern)}">{html.escape(spec.label)}</div>',
                    icon_anchor=(12, 12),
                ),
            ).add_to(m)

        for line in self.polylines.values():
            folium.PolyLine(
                [[c.lat, c.lng] for c in line.path],
                color=line.stroke_color,
                weight=line.stroke_weight,
                opacity=line.stroke_opacity,
                dash_array="8, 6" if line.stroke_style == "dashed" else None,
            ).add_to(m)

        if self.viewport:
            west, south, east, north = self.viewport
            m.fit_bounds([[south, west], [north, east]], padding=(self.padding_px, self.padding_px))
        return m

    def to_html(self) -> str:
        return self.build_map().get_root().render()


_PAGE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<style>html, body, #map {{ margin: 0; width: 100%; height: 100%; }}</style>
<script src="{sdk_url}"></script>
</head>
<body>
<div id="map"></div>
<script>
var markers = {markers};
var lines = {lines};
var viewport = {viewport};
var padding = {padding};
{body}
</script>
</body>
</html>
"""

_AMAP_BODY = """var map = new AMap.Map('map', {zoom: 11});
var overlays = [];
markers.forEach(function (m) {
  overlays.push(new AMap.Marker({
    position: [m.lng, m.lat], title: m.name, map: map,
    content: '<div style="' + m.css + '">' + m.label + '</div>'
  }));
});
lines.forEach(function (l) {
  overlays.push(new AMap.Polyline({
    path: l.path, strokeColor: l.color, strokeWeight: l.weight,
    strokeOpacity: l.opacity, strokeStyle: l.style, map: map
  }));
});
if (viewport) {
  map.setBounds(new AMap.Bounds([viewport[0], viewport[1]], [viewport[2], viewport[3]]),
                false, [padding, padding, padding, padding]);
} else if (overlays.length) {
  map.setFitView(overlays, false, [padding, padding, padding, padding]);
}"""

_BAIDU_BODY = """var map = new BMapGL.Map('map');
map.enableScrollWheelZoom(true);
var points = [];
markers.forEach(function (m) {
  var pt = new BMapGL.Point(m.lng, m.lat);
  points.push(pt);
  var marker = new BMapGL.Marker(pt, {title: m.name});
  marker.setLabel(new BMapGL.Label('<div style="' + m.css + '">' + m.label + '</div>',
                                   {offset: new BMapGL.Size(10, -10)}));
  map.addOverlay(marker);
});
lines.forEach(function (l) {
  var path = l.path.map(function (p) { return new BMapGL.Point(p[0], p[1]); });
  map.addOverlay(new BMapGL.Polyline(path, {
    strokeColor: l.color, strokeWeight: l.weight,
    strokeOpacity: l.opacity, strokeStyle: l.style
  }));
});
if (viewport) {
  points = [new BMapGL.Point(viewport[0], viewport[1]), new BMapGL.Point(viewport[2], viewport[3])];
}
if (points.length) {
  map.setViewport(points, {margins: [padding, padding, padding, padding]});
} else {
  map.centerAndZoom(new BMapGL.Point(116.404, 39.915), 5);
}"""


def _js(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False).replace("</", "<\\/")


class _SdkPageBackend(MapBackend):
    page_body = ""

    def to_html(self) -> str:
        return _PAGE.format(
            sdk_url=html.escape(self.sdk_url or "", quote=True),
            markers=_js(self._marker_payload()),
            lines=_js(self._polyline_payload()),
            viewport=_js(list(self.viewport) if self.viewport else None),
            padding=int(self.padding_px),
            body=self.page_body,
        )


class AmapBackend(_SdkPageBackend):
    """AMap (Gaode) JS API 2.0."""

    provider = "amap"
    key_env = "AMAP_API_KEY"
    sdk_url_template = "https://webapi.amap.com/maps?v=2.0&key={key}"
    sdk_ready_token = "AMap"
    page_body = _AMAP_BODY


class BaiduBackend(_SdkPageBackend):
    """Baidu Maps WebGL API."""

    provider = "baidu"
    key_env = "BAIDU_MAP_AK"
    sdk_url_template = "https://api.map.baidu.com/api?v=1.0&type=webgl&ak={key}"
    sdk_ready_token = "api.map.baidu.com"
    page_body = _BAIDU_BODY


BACKENDS = {"osm": OsmBackend, "amap": AmapBackend, "baidu": BaiduBackend}


def get_backend(provider: Optional[str] = None, key: Optional[str] = None) -> MapBackend:
    provider = (provider or config.MAP_PROVIDER).lower()
    if provider not in BACKENDS:
        raise BackendLoadError(
            f"Unsupported map provider '{provider}'; choose one of {', '.join(sorted(BACKENDS))}"
        )
    if key is None:
        key = config.get_map_api_key(provider)
    return BACKENDS[provider](key)
