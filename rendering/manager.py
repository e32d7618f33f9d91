"""
Render manager: runs one reconciliation cycle against a map backend.

A cycle geocodes the itinerary places, filters them to the destination,
assigns days, draws markers in batches, draws one polyline per routable
day and fits the viewport. The result is captured as a MapSnapshot that a
later call can replay without any network work.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import config
from reconciler.boundary_filter import BoundaryFilter, BoundaryFn, GeocodeFn
from reconciler.day_assigner import assign_days, sequence_position
from reconciler.geocode_resolver import GeocodeResolver
from reconciler.names import place_key
from reconciler.route_composer import PlanRouteFn, RouteComposer, group_by_day
from rendering.backends import MapBackend
from rendering.snapshot import compute_signature, should_restore, snapshot_of
from rendering.styles import day_style, marker_label, polyline_style
from workflows.schemas import (
    Coordinate,
    GeocodedPlace,
    MapSnapshot,
    MarkerSpec,
    Place,
    Polyline,
    ProgressState,
    SnapshotPlace,
)
from workflows.state import RenderState

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressState], None]
SnapshotCallback = Callable[[MapSnapshot], None]


class RenderSuperseded(Exception):
    """A newer cycle started on the same map while this one was waiting."""


@dataclass
class RenderOutcome:
    snapshot: Optional[MapSnapshot]
    restored: bool = False
    skipped: bool = False
    superseded: bool = False


def marker_specs(places: Sequence[SnapshotPlace]) -> List[MarkerSpec]:
    """Style every place by its day; labels count stops within each day in list order."""
    counters: Dict[Optional[int], int] = {}
    specs: List[MarkerSpec] = []
    for place in places:
        position = counters.get(place.day_index, 0)
        counters[place.day_index] = position + 1
        color, pattern = day_style(place.day_index)
        specs.append(
            MarkerSpec(place=place, label=marker_label(place.day_index, position), color=color, pattern=pattern)
        )
    return specs


def order_for_display(
    places: Sequence[GeocodedPlace],
    assignment: Dict[str, int],
    route_sequence: Sequence[Sequence[str]],
) -> List[SnapshotPlace]:
    """Dated places first, by day then sequence position; undated last in input order."""
    keyed = []
    for idx, place in enumerate(places):
        day = assignment.get(place_key(place))
        if day is None:
            rank: Tuple[int, int, int, int] = (1, 0, 0, idx)
        else:
            names = route_sequence[day] if day < len(route_sequence) else []
            position = sequence_position(place, names)
            rank = (0, day, position if position is not None else len(names), idx)
        keyed.append((rank, SnapshotPlace(**place.model_dump(), day_index=day)))
    return [place for _, place in sorted(keyed, key=lambda item: item[0])]


class RenderManager:
    """Owns the overlays of one map and keeps them consistent with its inputs."""

    def __init__(
        self,
        backend: MapBackend,
        *,
        geocode_fn: GeocodeFn,
        boundary_fn: BoundaryFn,
        plan_route_fn: PlanRouteFn,
        on_progress: Optional[ProgressCallback] = None,
        on_snapshot_ready: Optional[SnapshotCallback] = None,
        batch_size: Optional[int] = None,
        max_concurrency: Optional[int] = None,
        load_timeout_s: Optional[float] = None,
    ) -> None:
        self.backend = backend
        self.state = RenderState()
        self.resolver = GeocodeResolver(geocode_fn, max_concurrency=max_concurrency)
        self.filter = BoundaryFilter(geocode_fn, boundary_fn)
        self.composer = RouteComposer(plan_route_fn)
        self.on_progress = on_progress
        self.on_snapshot_ready = on_snapshot_ready
        self.batch_size = max(1, batch_size or config.MARKER_BATCH_SIZE)
        self.load_timeout_s = load_timeout_s
        self.progress_history: List[ProgressState] = []
        self._generation = 0

    @property
    def provider(self) -> str:
        return self.backend.provider

    def _emit(self, percent: int, message: str, active: bool = True) -> None:
        progress = ProgressState(active=active, percent=percent, message=message)
        self.state.progress = progress
        self.progress_history.append(progress)
        if self.on_progress:
            self.on_progress(progress)

    # ---- entry point ---------------------------------------------------------

    async def render(
        self,
        destination: str,
        places: Sequence[Any],
        route_sequence: Sequence[Sequence[str]],
        strategy: str = "driving",
        persisted_snapshot: Optional[MapSnapshot] = None,
        destination_center: Optional[Coordinate] = None,
    ) -> RenderOutcome:
        places = [p if isinstance(p, Place) else Place.model_validate(p) for p in places or []]
        route_sequence = [list(day or []) for day in route_sequence or []]
        signature = compute_signature(destination, strategy, self.provider, places, route_sequence)

        if signature == self.state.in_flight_signature:
            logger.debug(f"Render {signature} already in flight; skipping")
            return RenderOutcome(self.state.last_snapshot, skipped=True)
        if signature == self.state.signature and self.state.has_drawing:
            logger.debug(f"Render {signature} already drawn; skipping")
            return RenderOutcome(self.state.last_snapshot, skipped=True)

        generation = self._begin()
        self.state.in_flight_signature = signature
        try:
            await self.backend.load(self.load_timeout_s)
            self._check_current(generation)
            if should_restore(persisted_snapshot, self.provider, signature):
                snapshot = await self.restore(persisted_snapshot, generation=generation)
                return RenderOutcome(snapshot, restored=True)
            snapshot = await self._full_cycle(
                destination, places, route_sequence, strategy, signature, destination_center, generation
            )
            return RenderOutcome(snapshot)
        except RenderSuperseded:
            logger.info(f"Render {signature} superseded by a newer cycle; dropping it")
            return RenderOutcome(None, superseded=True)
        except Exception:
            if generation == self._generation:
                self._emit(0, "Map rendering failed", active=False)
            raise
        finally:
            if generation == self._generation:
                self.state.in_flight_signature = None

    # ---- cycles ----------------------------------------------------------------

    def _begin(self) -> int:
        """Start a new cycle; every older cycle stops at its next await."""
        self._generation += 1
        self.progress_history = []
        return self._generation

    def _check_current(self, generation: int) -> None:
        if generation != self._generation:
            raise RenderSuperseded(f"cycle {generation} replaced by {self._generation}")

    async def restore(self, snapshot: MapSnapshot, generation: Optional[int] = None) -> MapSnapshot:
        """Redraw a snapshot exactly, without geocoding or routing."""
        if generation is None:
            generation = self._begin()
        self._emit(10, "Restoring saved map")
        self._clear()
        await self._draw_markers(snapshot.places, generation)
        for line in snapshot.polylines:
            self._draw_polyline(line)
        self._fit(snapshot.viewport_coords)
        self.state.signature = snapshot.signature
        self.state.last_snapshot = snapshot
        self._emit(100, "Map restored", active=False)
        logger.info(f"Restored {len(snapshot.places)} markers and {len(snapshot.polylines)} routes")
        return snapshot

    async def _full_cycle(
        self,
        destination: str,
        places: List[Place],
        route_sequence: List[List[str]],
        strategy: str,
        signature: str,
        destination_center: Optional[Coordinate],
        generation: int,
    ) -> MapSnapshot:
        self._emit(5, f"Locating {len(places)} places")
        self._clear()
        geocoded = await self.resolver.resolve_all(places, destination)
        self._check_current(generation)

        self._emit(45, "Filtering places outside the destination")
        center = (destination_center.lng, destination_center.lat) if destination_center else None
        filtered = await self.filter.filter(destination, geocoded, center=center)
        self._check_current(generation)

        self._emit(55, "Assigning places to days")
        assignment = assign_days(filtered.places, route_sequence)
        drawn = order_for_display(filtered.places, assignment, route_sequence)

        self._emit(60, f"Drawing {len(drawn)} markers")
        await self._draw_markers(drawn, generation)

        groups = group_by_day(filtered.places, assignment, route_sequence)
        self._emit(70, f"Planning {len(groups)} routes")
        lines: List[Polyline] = []

        def _on_day_routed(group, result) -> None:
            self._check_current(generation)
            line = Polyline(
                path=result.points,
                day_index=group.day_index,
                degraded=result.degraded,
                **polyline_style(group.day_index, result.degraded),
            )
            self._draw_polyline(line)
            lines.append(line)
            day = "undated stops" if group.day_index is None else f"day {group.day_index + 1}"
            self._emit(70 + 20 * len(lines) // len(groups), f"Routed {day} ({len(lines)}/{len(groups)})")

        await self.composer.compose_all(groups, strategy, on_result=_on_day_routed)
        self._check_current(generation)

        self._emit(90, "Fitting map view")
        viewport = [p.coordinate for p in drawn]
        if not viewport and filtered.center:
            viewport = [Coordinate(lng=filtered.center[0], lat=filtered.center[1])]
        self._fit(viewport)

        snapshot = snapshot_of(self.provider, drawn, lines, viewport, signature)
        self.state.signature = signature
        self.state.last_snapshot = snapshot
        self._emit(100, f"Map ready: {len(drawn)} places, {len(groups)} routes", active=False)
        if self.on_snapshot_ready:
            self.on_snapshot_ready(snapshot)
        return snapshot

    # ---- drawing -----------------------------------------------------------------

    def _clear(self) -> None:
        self.backend.clear()
        self.state.clear()

    async def _draw_markers(self, places: Sequence[SnapshotPlace], generation: int) -> None:
        specs = marker_specs(places)
        for start in range(0, len(specs), self.batch_size):
            for spec in specs[start:start + self.batch_size]:
                handle = self.backend.add_marker(spec)
                self.state.markers[handle] = spec.place
            # Let other tasks run between batches
            await asyncio.sleep(0)
            self._check_current(generation)

    def _draw_polyline(self, line: Polyline) -> None:
        handle = self.backend.add_polyline(line)
        self.state.polylines[handle] = line

    def _fit(self, coords: Sequence[Coordinate]) -> None:
        self.state.viewport_coords = list(coords)
        if coords:
            self.backend.fit_viewport(coords, config.VIEWPORT_PADDING_PX)

    def to_html(self) -> str:
        return self.backend.to_html()
