"""Tests for the session runtime used by the API."""

from __future__ import annotations

import asyncio

import pytest

from reconciler.cancel import LookupCancelled
from tools.geocoding import GeocodingAPIError
from workflows.runtime import MapRuntime
from workflows.schemas import MapSnapshot, RenderRequest
from workflows.storage import SnapshotStorage


async def no_boundary(place_name):
    return None


ITINERARY = """
Day 1: West Lake → Leifeng Pagoda
Day 2: Lingyin Temple → Hefang Street
"""


@pytest.fixture
def storage():
    return SnapshotStorage(redis_url=None)


def _runtime(storage, geocoder, router, provider="osm", **kw):
    return MapRuntime(
        provider=provider,
        key="",
        storage=storage,
        geocode_fn=geocoder,
        boundary_fn=no_boundary,
        plan_route_fn=router,
        **kw,
    )


def test_render_from_text_stores_snapshot(storage, fake_geocoder, fake_router, hangzhou_table):
    runtime = _runtime(storage, fake_geocoder(hangzhou_table), fake_router())

    response = asyncio.run(runtime.render("s1", RenderRequest(destination="Hangzhou", itinerary_text=ITINERARY)))

    snapshot = response.snapshot
    assert not response.restored
    assert [p.name for p in snapshot.places] == ["West Lake", "Leifeng Pagoda", "Lingyin Temple", "Hefang Street"]
    assert len(snapshot.polylines) == 2
    assert response.progress[-1].percent == 100
    assert runtime.get_snapshot("s1") == snapshot


def test_new_runtime_restores_from_storage(storage, fake_geocoder, fake_router, hangzhou_table):
    request = RenderRequest(destination="Hangzhou", itinerary_text=ITINERARY)
    asyncio.run(_runtime(storage, fake_geocoder(hangzhou_table), fake_router()).render("s1", request))

    geocoder = fake_geocoder(hangzhou_table)
    response = asyncio.run(_runtime(storage, geocoder, fake_router()).render("s1", request))

    assert response.restored
    assert geocoder.calls == []
    assert len(response.snapshot.places) == 4


def test_repeated_request_is_skipped(storage, fake_geocoder, fake_router, hangzhou_table, hangzhou_places):
    runtime = _runtime(storage, fake_geocoder(hangzhou_table), fake_router())
    request = RenderRequest(destination="Hangzhou", places=hangzhou_places)

    asyncio.run(runtime.render("s1", request))
    response = asyncio.run(runtime.render("s1", request))

    assert response.skipped
    assert response.progress == []


def test_sessions_do_not_share_drawings(storage, fake_geocoder, fake_router, hangzhou_table, hangzhou_places):
    runtime = _runtime(storage, fake_geocoder(hangzhou_table), fake_router())

    asyncio.run(runtime.render("a", RenderRequest(destination="Hangzhou", places=hangzhou_places)))
    response = asyncio.run(runtime.render("b", RenderRequest(destination="Hangzhou", places=hangzhou_places[:2])))

    assert len(response.snapshot.places) == 2
    assert len(runtime.get_snapshot("a").places) == 4


def test_map_html_redraws_stored_snapshot(storage, fake_geocoder, fake_router, hangzhou_table, hangzhou_places):
    request = RenderRequest(destination="Hangzhou", places=hangzhou_places)
    asyncio.run(_runtime(storage, fake_geocoder(hangzhou_table), fake_router()).render("s1", request))

    fresh = _runtime(storage, fake_geocoder({}), fake_router())
    html = asyncio.run(fresh.map_html("s1"))

    assert "leaflet" in html.lower()
    assert asyncio.run(fresh.map_html("unknown")) is None


def test_map_html_ignores_other_provider(storage, fake_geocoder, fake_router):
    storage.set("s1", MapSnapshot(provider="amap", signature="sig"))

    assert asyncio.run(_runtime(storage, fake_geocoder({}), fake_router()).map_html("s1")) is None


def test_clear_snapshot(storage, fake_geocoder, fake_router, hangzhou_table, hangzhou_places):
    runtime = _runtime(storage, fake_geocoder(hangzhou_table), fake_router())
    asyncio.run(runtime.render("s1", RenderRequest(destination="Hangzhou", places=hangzhou_places)))

    runtime.clear_snapshot("s1")

    assert runtime.get_snapshot("s1") is None
    assert asyncio.run(runtime.map_html("s1")) is None


def test_idle_sessions_are_evicted(storage, fake_geocoder, fake_router, hangzhou_table, hangzhou_places):
    geocoder = fake_geocoder(hangzhou_table)
    runtime = _runtime(storage, geocoder, fake_router(), max_sessions=2)
    request = RenderRequest(destination="Hangzhou", places=hangzhou_places)

    for session_id in ("a", "b", "a", "c"):
        asyncio.run(runtime.render(session_id, request))

    assert list(runtime._managers) == ["a", "c"]
    assert runtime.get_snapshot("b") is not None

    calls = len(geocoder.calls)
    html = asyncio.run(runtime.map_html("b"))

    assert "leaflet" in html.lower()
    assert len(geocoder.calls) == calls
    assert list(runtime._managers) == ["c", "b"]


class TestDestinationLookup:
    def test_returns_center(self, storage, fake_geocoder, fake_router, hangzhou_table):
        runtime = _runtime(storage, fake_geocoder(hangzhou_table), fake_router())

        response = asyncio.run(runtime.lookup_destination("Hangzhou"))

        assert (response.center.lng, response.center.lat) == hangzhou_table["Hangzhou"]
        assert response.address == "addr:Hangzhou"

    def test_unknown_destination_has_no_center(self, storage, fake_geocoder, fake_router):
        response = asyncio.run(_runtime(storage, fake_geocoder({}), fake_router()).lookup_destination("Atlantis"))

        assert response.center is None

    def test_newer_lookup_cancels_older(self, storage, fake_router):
        async def slow_geocoder(query, **kw):
            if query == "Hangzhou":
                await asyncio.sleep(0.05)
            return {"lng": 1.0, "lat": 2.0, "address": query}

        runtime = _runtime(storage, slow_geocoder, fake_router())

        async def _both():
            first = asyncio.ensure_future(runtime.lookup_destination("Hangzhou"))
            await asyncio.sleep(0)
            second = await runtime.lookup_destination("Suzhou")
            return await asyncio.gather(first, return_exceptions=True), second

        (first,), second = asyncio.run(_both())

        assert isinstance(first, LookupCancelled)
        assert second.destination == "Suzhou"
        assert second.center is not None

    def test_provider_error_has_no_center(self, storage, fake_router):
        async def rejecting_geocoder(query, **kw):
            raise GeocodingAPIError("AMap rejected the key: INVALID_USER_KEY")

        runtime = _runtime(storage, rejecting_geocoder, fake_router())

        response = asyncio.run(runtime.lookup_destination("Hangzhou"))

        assert response.destination == "Hangzhou"
        assert response.center is None
        assert runtime._lookup_token is None
