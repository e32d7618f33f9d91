"""Tests for the geocode resolver and bounded pool."""

from __future__ import annotations

import asyncio

import pytest

from reconciler.cancel import CancelToken, LookupCancelled
from reconciler.geocode_resolver import GeocodeResolver, candidate_queries, strip_admin_suffix
from reconciler.pool import BoundedPool
from tools.geocoding import GeocodeNotFound
from workflows.schemas import Place


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Hangzhou City", "Hangzhou"),
        ("Zhejiang Province", "Zhejiang"),
        ("杭州市", "杭州"),
        ("浙江省杭州市", "浙江省杭州"),
        ("香港特别行政区", "香港"),
        ("Felicity", "Felicity"),
        ("市", "市"),
    ],
)
def test_strip_admin_suffix(raw, expected):
    assert strip_admin_suffix(raw) == expected


def test_candidate_queries_order_and_dedupe():
    place = Place(name="West Lake", address="1 Lakeside Rd")

    assert candidate_queries(place, "Hangzhou City") == [
        "1 Lakeside Rd",
        "West Lake",
        "Hangzhou City West Lake",
        "Hangzhou West Lake",
    ]
    assert candidate_queries(Place(name="West Lake"), "Hangzhou") == ["West Lake", "Hangzhou West Lake"]
    assert candidate_queries(Place(name="West Lake"), "") == ["West Lake"]


def test_resolve_falls_through_candidates(fake_geocoder):
    geocoder = fake_geocoder({"Hangzhou Broken Bridge": (120.15, 30.26)})
    resolver = GeocodeResolver(geocoder)

    place = asyncio.run(resolver.resolve(Place(name="Broken Bridge", day=1), "Hangzhou City"))

    assert (place.lng, place.lat) == (120.15, 30.26)
    assert place.day == 1
    assert place.address == "addr:Hangzhou Broken Bridge"
    assert geocoder.calls == ["Broken Bridge", "Hangzhou City Broken Bridge", "Hangzhou Broken Bridge"]


def test_resolve_keeps_given_address(fake_geocoder):
    resolver = GeocodeResolver(fake_geocoder({"West Lake": (120.14, 30.24)}))

    place = asyncio.run(resolver.resolve(Place(name="West Lake", address="Lakeside"), ""))

    assert place.address == "Lakeside"


def test_resolve_skips_backend_errors_and_bad_coordinates():
    calls = []

    async def _geocode(query, **kwargs):
        calls.append(query)
        if query == "Gate":
            raise RuntimeError("HTTP 500")
        if query == "Town Gate":
            return {"lng": float("nan"), "lat": 1.0}
        return {"lng": 10.0, "lat": 20.0, "address": "ok"}

    resolver = GeocodeResolver(_geocode)
    place = asyncio.run(resolver.resolve(Place(name="Gate", address="Town Gate"), "Town County"))

    assert (place.lng, place.lat) == (10.0, 20.0)
    assert calls == ["Town Gate", "Gate", "Town County Gate"]


def test_resolve_raises_when_nothing_resolves(fake_geocoder):
    resolver = GeocodeResolver(fake_geocoder({}))

    with pytest.raises(GeocodeNotFound):
        asyncio.run(resolver.resolve(Place(name="Atlantis"), "Ocean"))


def test_resolve_propagates_cancellation():
    token = CancelToken()
    token.cancel()

    async def _geocode(query, **kwargs):
        token.raise_if_cancelled()
        return {"lng": 1.0, "lat": 1.0}

    with pytest.raises(LookupCancelled):
        asyncio.run(GeocodeResolver(_geocode).resolve(Place(name="Anywhere"), ""))


def test_resolve_all_drops_failures_and_keeps_order(fake_geocoder, hangzhou_places, hangzhou_table):
    table = dict(hangzhou_table)
    del table["Hefang Street"]
    resolver = GeocodeResolver(fake_geocoder(table))

    resolved = asyncio.run(resolver.resolve_all(hangzhou_places, "Hangzhou"))

    assert [p.name for p in resolved] == ["West Lake", "Lingyin Temple", "Leifeng Pagoda"]


def test_resolve_all_respects_concurrency_limit():
    in_flight = 0
    peak = 0

    async def _geocode(query, **kwargs):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return {"lng": 1.0, "lat": 1.0}

    places = [Place(name=f"Stop {i}") for i in range(20)]
    pool = BoundedPool(6)
    resolved = asyncio.run(GeocodeResolver(_geocode).resolve_all(places, "", pool=pool))

    assert len(resolved) == 20
    assert peak == 6
    assert pool.peak_in_flight == 6
    assert pool.in_flight == 0


def test_pool_releases_permit_on_error():
    async def _boom(item):
        raise ValueError(item)

    async def _ok(item):
        return item * 2

    async def _run():
        pool = BoundedPool(1)
        failed = await pool.map(_boom, [1, 2])
        ok = await pool.map(_ok, [1, 2, 3])
        return pool, failed, ok

    pool, failed, ok = asyncio.run(_run())

    assert all(isinstance(result, ValueError) for result in failed)
    assert ok == [2, 4, 6]
    assert pool.in_flight == 0
