"""Tests for full render cycles, restore and short-circuiting."""

from __future__ import annotations

import asyncio

import pytest

from rendering.backends import AmapBackend, BackendLoadError, OsmBackend
from rendering.manager import RenderManager, marker_specs, order_for_display
from rendering.styles import DAY_COLORS, UNDATED_COLOR
from reconciler.names import place_key
from tools.routes import RoutesAPIError
from workflows.schemas import Coordinate, MapSnapshot, Place

SEQUENCE = [["West Lake", "Leifeng Pagoda"], ["Lingyin Temple", "Hefang Street"]]


async def _no_boundary(name):
    return None


def _manager(geocoder, router, backend=None, **kw):
    return RenderManager(
        backend or OsmBackend(),
        geocode_fn=geocoder,
        boundary_fn=_no_boundary,
        plan_route_fn=router,
        **kw,
    )


def _render(manager, places, sequence=SEQUENCE, **kw):
    return asyncio.run(manager.render("Hangzhou", places, sequence, "driving", **kw))


def test_full_cycle_draws_markers_and_routes(fake_geocoder, fake_router, hangzhou_places, hangzhou_table):
    progress = []
    ready = []
    manager = _manager(
        fake_geocoder(hangzhou_table),
        fake_router(),
        on_progress=progress.append,
        on_snapshot_ready=ready.append,
    )

    outcome = _render(manager, hangzhou_places)
    snapshot = outcome.snapshot

    assert not outcome.restored and not outcome.skipped and not outcome.superseded
    assert [p.name for p in snapshot.places] == ["West Lake", "Leifeng Pagoda", "Lingyin Temple", "Hefang Street"]
    assert [p.day_index for p in snapshot.places] == [0, 0, 1, 1]
    assert [line.day_index for line in snapshot.polylines] == [0, 1]
    assert not any(line.degraded for line in snapshot.polylines)
    assert [line.stroke_color for line in snapshot.polylines] == [DAY_COLORS[0], DAY_COLORS[1]]
    assert len(snapshot.viewport_coords) == 4
    assert ready == [snapshot]
    assert progress[-1].percent == 100 and not progress[-1].active
    assert [p.percent for p in progress] == sorted(p.percent for p in progress)
    assert len(manager.backend.markers) == 4
    assert manager.backend.viewport is not None


def test_restore_reproduces_drawing_without_network(fake_geocoder, fake_router, hangzhou_places, hangzhou_table):
    first = _manager(fake_geocoder(hangzhou_table), fake_router())
    snapshot = _render(first, hangzhou_places).snapshot
    persisted = MapSnapshot.model_validate_json(snapshot.model_dump_json())

    geocoder = fake_geocoder(hangzhou_table)
    router = fake_router()
    second = _manager(geocoder, router)
    outcome = _render(second, hangzhou_places, persisted_snapshot=persisted)

    assert outcome.restored
    assert geocoder.calls == []
    assert router.calls == []
    assert len(second.backend.markers) == len(first.backend.markers)
    assert len(second.backend.polylines) == len(first.backend.polylines)
    assert [m.color for m in second.backend.markers.values()] == [m.color for m in first.backend.markers.values()]
    assert [m.label for m in second.backend.markers.values()] == ["1-1", "1-2", "2-1", "2-2"]


def test_stale_snapshot_is_not_restored(fake_geocoder, fake_router, hangzhou_places, hangzhou_table):
    snapshot = _render(_manager(fake_geocoder(hangzhou_table), fake_router()), hangzhou_places).snapshot
    geocoder = fake_geocoder(hangzhou_table)

    outcome = _render(_manager(geocoder, fake_router()), hangzhou_places[:3], persisted_snapshot=snapshot)

    assert not outcome.restored
    assert geocoder.calls


def test_snapshot_from_other_provider_is_not_restored(fake_geocoder, fake_router, hangzhou_places, hangzhou_table):
    snapshot = _render(_manager(fake_geocoder(hangzhou_table), fake_router()), hangzhou_places).snapshot
    foreign = snapshot.model_copy(update={"provider": "amap"})
    geocoder = fake_geocoder(hangzhou_table)

    outcome = _render(_manager(geocoder, fake_router()), hangzhou_places, persisted_snapshot=foreign)

    assert not outcome.restored
    assert geocoder.calls


def test_identical_second_render_is_skipped(fake_geocoder, fake_router, hangzhou_places, hangzhou_table):
    geocoder = fake_geocoder(hangzhou_table)
    manager = _manager(geocoder, fake_router())
    first = _render(manager, hangzhou_places)
    calls = len(geocoder.calls)

    second = _render(manager, hangzhou_places)

    assert second.skipped
    assert second.snapshot is first.snapshot
    assert len(geocoder.calls) == calls


def test_concurrent_identical_render_is_skipped(fake_geocoder, fake_router, hangzhou_places, hangzhou_table):
    manager = _manager(fake_geocoder(hangzhou_table), fake_router())

    async def _both():
        return await asyncio.gather(
            manager.render("Hangzhou", hangzhou_places, SEQUENCE),
            manager.render("Hangzhou", hangzhou_places, SEQUENCE),
        )

    first, second = asyncio.run(_both())

    assert not first.skipped
    assert second.skipped
    assert len(manager.backend.markers) == 4


def test_newer_render_supersedes_one_in_flight(fake_geocoder, fake_router, hangzhou_places, hangzhou_table):
    geocoder = fake_geocoder(hangzhou_table)

    async def yielding_geocoder(query, **kw):
        await asyncio.sleep(0)
        return await geocoder(query, **kw)

    ready = []
    manager = _manager(yielding_geocoder, fake_router(), on_snapshot_ready=ready.append)
    south = [["West Lake", "Leifeng Pagoda"]]
    north = [["Lingyin Temple", "Hefang Street"]]

    async def _both():
        first = asyncio.ensure_future(manager.render("Hangzhou", hangzhou_places[::3], south))
        await asyncio.sleep(0)
        second = await manager.render("Hangzhou", hangzhou_places[1:3], north)
        return await first, second

    first, second = asyncio.run(_both())

    assert first.superseded and first.snapshot is None
    assert [p.name for p in second.snapshot.places] == ["Lingyin Temple", "Hefang Street"]
    assert sorted(m.place.name for m in manager.backend.markers.values()) == ["Hefang Street", "Lingyin Temple"]
    assert len(manager.backend.polylines) == len(second.snapshot.polylines) == 1
    assert list(manager.backend.polylines.values()) == second.snapshot.polylines
    assert ready == [second.snapshot]
    assert manager.state.in_flight_signature is None


def test_new_inputs_replace_previous_overlays(fake_geocoder, fake_router, hangzhou_places, hangzhou_table):
    manager = _manager(fake_geocoder(hangzhou_table), fake_router())
    _render(manager, hangzhou_places)

    outcome = _render(manager, hangzhou_places[:2], sequence=[["West Lake", "Lingyin Temple"]])

    assert len(manager.backend.markers) == 2
    assert len(manager.backend.polylines) == 1
    assert set(manager.state.markers) == set(manager.backend.markers)
    assert len(outcome.snapshot.places) == 2


def test_route_failure_draws_degraded_line_through_places(fake_geocoder, fake_router, hangzhou_table):
    places = [Place(name="West Lake"), Place(name="Leifeng Pagoda"), Place(name="Hefang Street")]
    manager = _manager(fake_geocoder(hangzhou_table), fake_router(exc=RoutesAPIError("boom")))

    snapshot = _render(manager, places, sequence=[["West Lake", "Leifeng Pagoda", "Hefang Street"]]).snapshot

    (line,) = snapshot.polylines
    assert line.degraded
    assert (line.stroke_weight, line.stroke_opacity) == (3, 0.5)
    assert [(c.lng, c.lat) for c in line.path] == [
        hangzhou_table["West Lake"],
        hangzhou_table["Leifeng Pagoda"],
        hangzhou_table["Hefang Street"],
    ]


def test_progress_reported_after_each_day_route(fake_geocoder, fake_router, hangzhou_places, hangzhou_table):
    progress = []
    manager = _manager(fake_geocoder(hangzhou_table), fake_router(), on_progress=progress.append)

    _render(manager, hangzhou_places)

    routed = [p for p in progress if p.message.startswith("Routed")]
    assert [p.message for p in routed] == ["Routed day 1 (1/2)", "Routed day 2 (2/2)"]
    assert [p.percent for p in routed] == [80, 90]


def test_far_point_is_dropped_but_others_render(fake_geocoder, fake_router, hangzhou_table):
    table = dict(hangzhou_table, Shanghai=(121.47, 31.23))
    places = [Place(name="West Lake"), Place(name="Lingyin Temple"), Place(name="Shanghai")]

    snapshot = _render(_manager(fake_geocoder(table), fake_router()), places, sequence=[]).snapshot

    assert [p.name for p in snapshot.places] == ["West Lake", "Lingyin Temple"]
    # No day data at all: one undated route through everything that survived
    (line,) = snapshot.polylines
    assert line.day_index is None
    assert line.stroke_color == UNDATED_COLOR


def test_markers_are_added_in_batches(fake_geocoder, fake_router):
    table = {"Hangzhou": (120.0, 30.0)}
    places = []
    for i in range(30):
        name = f"Stop {i}"
        table[name] = (120.0 + i * 0.001, 30.0)
        places.append(Place(name=name))
    manager = _manager(fake_geocoder(table), fake_router(), batch_size=24)
    sizes = []
    original = manager.backend.add_marker

    def _add(spec):
        sizes.append(len(manager.backend.markers))
        return original(spec)

    manager.backend.add_marker = _add
    yielded = []

    async def _watch():
        while len(sizes) < 30:
            yielded.append(len(sizes))
            await asyncio.sleep(0)

    async def _run():
        watcher = asyncio.ensure_future(_watch())
        await manager.render("Hangzhou", places, [])
        watcher.cancel()

    asyncio.run(_run())

    assert len(manager.backend.markers) == 30
    assert 24 in yielded


def test_backend_load_error_propagates(fake_geocoder, fake_router, hangzhou_places):
    geocoder = fake_geocoder({})
    manager = _manager(geocoder, fake_router(), backend=AmapBackend(None))

    with pytest.raises(BackendLoadError):
        _render(manager, hangzhou_places)

    assert geocoder.calls == []
    assert manager.state.in_flight_signature is None
    assert not manager.state.progress.active


def test_explicit_day_hint_controls_marker_style(fake_geocoder, fake_router, hangzhou_table):
    places = [Place(name="West Lake", day=9), Place(name="Lingyin Temple")]

    snapshot = _render(_manager(fake_geocoder(hangzhou_table), fake_router()), places, sequence=[]).snapshot
    specs = marker_specs(snapshot.places)

    by_name = {spec.place.name: spec for spec in specs}
    assert by_name["West Lake"].color == DAY_COLORS[1]
    assert by_name["West Lake"].pattern == "hatched"
    assert by_name["Lingyin Temple"].color == UNDATED_COLOR


def test_order_for_display_puts_undated_last(geo):
    places = [geo("Loose", 1, 1), geo("Hall", 2, 2), geo("Gate", 3, 3)]
    assignment = {place_key(places[1]): 0, place_key(places[2]): 0}

    ordered = order_for_display(places, assignment, [["Gate", "Hall"]])

    assert [p.name for p in ordered] == ["Gate", "Hall", "Loose"]
    assert [p.day_index for p in ordered] == [0, 0, None]


def test_destination_center_used_for_empty_viewport(fake_geocoder, fake_router):
    manager = _manager(fake_geocoder({}), fake_router())

    snapshot = asyncio.run(
        manager.render("Hangzhou", [], [], destination_center=Coordinate(lng=120.0, lat=30.0))
    ).snapshot

    assert snapshot.places == []
    assert snapshot.viewport_coords == [Coordinate(lng=120.0, lat=30.0)]
