"""Per-day route geometry with straight-line fallback."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from reconciler.day_assigner import sequence_position
from reconciler.names import place_key
from tools.routes import RoutesAPIError
from workflows.schemas import Coordinate, GeocodedPlace

logger = logging.getLogger(__name__)

PlanRouteFn = Callable[..., Awaitable[List[Dict[str, float]]]]


class RouteComposeFailed(Exception):
    """The routing backend could not produce a usable path."""


@dataclass
class RouteResult:
    points: List[Coordinate] = field(default_factory=list)
    degraded: bool = False


@dataclass
class DayGroup:
    """Places drawn as one polyline; ``day_index`` is None for the undated group."""
    day_index: Optional[int]
    places: List[GeocodedPlace] = field(default_factory=list)


def group_by_day(
    places: Sequence[GeocodedPlace],
    assignment: Dict[str, int],
    route_sequence: Sequence[Sequence[str]] = (),
) -> List[DayGroup]:
    """Group assigned places into routable days.

    Only days with at least two places are returned. Within a day places are
    ordered by their position in that day's sequence, then by input order.
    When no place has a day at all, every place forms one undated group.
    """
    buckets: Dict[int, List[tuple]] = {}
    for idx, place in enumerate(places):
        day = assignment.get(place_key(place))
        if day is None:
            continue
        buckets.setdefault(day, []).append((idx, place))

    if not buckets:
        if len(places) >= 2:
            return [DayGroup(None, list(places))]
        return []

    groups: List[DayGroup] = []
    for day in sorted(buckets):
        members = buckets[day]
        if len(members) < 2:
            continue
        names = route_sequence[day] if day < len(route_sequence) else []

        def _order(item: tuple) -> tuple:
            position = sequence_position(item[1], names)
            return (position if position is not None else len(names), item[0])

        groups.append(DayGroup(day, [place for _, place in sorted(members, key=_order)]))
    return groups


def _as_coordinate(point: Any) -> Coordinate:
    if isinstance(point, Coordinate):
        return point
    if isinstance(point, dict):
        return Coordinate(lng=point["lng"], lat=point["lat"])
    return Coordinate(lng=point.lng, lat=point.lat)


class RouteComposer:
    """Turns an ordered list of coordinates into a drawable path."""

    def __init__(self, plan_route_fn: PlanRouteFn) -> None:
        self._plan_route = plan_route_fn

    async def _routed(self, day_coords: List[Coordinate], strategy: str) -> List[Coordinate]:
        try:
            path = await self._plan_route([c.model_dump() for c in day_coords], strategy)
        except RoutesAPIError as exc:
            raise RouteComposeFailed(str(exc)) from exc
        except Exception as exc:
            raise RouteComposeFailed(f"routing backend error: {exc}") from exc
        points = [Coordinate(lng=p["lng"], lat=p["lat"]) for p in path or []]
        if len(points) < 2:
            raise RouteComposeFailed(f"routing returned {len(points)} point(s)")
        return points

    async def compose(self, day_coords: Sequence[Any], strategy: str = "driving") -> RouteResult:
        coords = [_as_coordinate(c) for c in day_coords]
        if len(coords) < 2:
            return RouteResult(coords, degraded=True)
        try:
            return RouteResult(await self._routed(coords, strategy), degraded=False)
        except RouteComposeFailed as exc:
            logger.info(f"Falling back to straight line through {len(coords)} points: {exc}")
            return RouteResult(coords, degraded=True)

    async def compose_all(
        self,
        groups: Sequence[DayGroup],
        strategy: str = "driving",
        on_result: Optional[Callable[[DayGroup, RouteResult], None]] = None,
    ) -> List[RouteResult]:
        """Route each day in order; ``on_result`` sees every day as soon as it is routed."""
        results: List[RouteResult] = []
        for group in groups:
            result = await self.compose([p.coordinate for p in group.places], strategy)
            results.append(result)
            if on_result:
                on_result(group, result)
        return results
