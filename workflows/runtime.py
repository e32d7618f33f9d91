from __future__ import annotations

import functools
import logging
from collections import OrderedDict
from typing import Callable, List, Optional

import config
from itinerary.route_parser import parse_places, parse_route_sequence
from reconciler.boundary_filter import BoundaryFn, GeocodeFn
from reconciler.cancel import CancelToken, LookupCancelled
from reconciler.route_composer import PlanRouteFn
from rendering.backends import MapBackend, get_backend
from rendering.manager import RenderManager, RenderSuperseded
from tools import boundary, geocoding, routes
from tools.geocoding import GeocodeNotFound
from workflows.schemas import (
    Coordinate,
    DestinationLookupResponse,
    MapSnapshot,
    Place,
    RenderRequest,
    RenderResponse,
)
from workflows.storage import SnapshotStorage, get_snapshot_storage

logger = logging.getLogger(__name__)


def _places_from_sequence(route_sequence: List[List[str]]) -> List[Place]:
    """One undated Place per distinct name; the sequence itself carries the days."""
    seen = set()
    places: List[Place] = []
    for names in route_sequence:
        for name in names:
            if name not in seen:
                seen.add(name)
                places.append(Place(name=name))
    return places


class MapRuntime:
    """Runtime helper that owns one render manager per session and the snapshot store."""

    def __init__(
        self,
        *,
        provider: Optional[str] = None,
        key: Optional[str] = None,
        storage: Optional[SnapshotStorage] = None,
        geocode_fn: Optional[GeocodeFn] = None,
        boundary_fn: Optional[BoundaryFn] = None,
        plan_route_fn: Optional[PlanRouteFn] = None,
        backend_factory: Optional[Callable[[], MapBackend]] = None,
        max_sessions: Optional[int] = None,
    ) -> None:
        self.provider = (provider or config.MAP_PROVIDER).lower()
        self.key = key if key is not None else config.get_map_api_key(self.provider)
        self.storage = storage or get_snapshot_storage()

        self.geocode_fn = geocode_fn or functools.partial(geocoding.geocode, provider=self.provider, key=self.key)
        self.boundary_fn = boundary_fn or boundary.get_boundary_geometry
        self.plan_route_fn = plan_route_fn or functools.partial(
            routes.plan_route, provider=self.provider, key=self.key
        )
        self.backend_factory = backend_factory or functools.partial(get_backend, self.provider, self.key)

        self.max_sessions = max(1, max_sessions or config.MAX_ACTIVE_SESSIONS)
        self._managers: OrderedDict[str, RenderManager] = OrderedDict()
        self._lookup_token: Optional[CancelToken] = None

    def _manager(self, session_id: str) -> RenderManager:
        manager = self._managers.get(session_id)
        if manager is not None:
            self._managers.move_to_end(session_id)
            return manager
        manager = RenderManager(
            self.backend_factory(),
            geocode_fn=self.geocode_fn,
            boundary_fn=self.boundary_fn,
            plan_route_fn=self.plan_route_fn,
            on_snapshot_ready=functools.partial(self.storage.set, session_id),
        )
        self._managers[session_id] = manager
        while len(self._managers) > self.max_sessions:
            evicted_id, evicted = self._managers.popitem(last=False)
            evicted.backend.clear()
            logger.info(f"Dropped live map for session {evicted_id}; its snapshot stays in storage")
        return manager

    async def render(self, session_id: str, request: RenderRequest) -> RenderResponse:
        """Run (or restore) the map for a session and return the resulting snapshot."""
        places = list(request.places)
        route_sequence = [list(day) for day in request.route_sequence]
        if request.itinerary_text:
            if not route_sequence:
                route_sequence = parse_route_sequence(request.itinerary_text)
            if not places:
                places = parse_places(request.itinerary_text, request.destination)
        if not places and route_sequence:
            places = _places_from_sequence(route_sequence)

        manager = self._manager(session_id)
        outcome = await manager.render(
            request.destination,
            places,
            route_sequence,
            request.strategy,
            persisted_snapshot=self.storage.get(session_id),
        )
        return RenderResponse(
            snapshot=outcome.snapshot,
            restored=outcome.restored,
            skipped=outcome.skipped,
            superseded=outcome.superseded,
            progress=[] if outcome.skipped or outcome.superseded else list(manager.progress_history),
        )

    async def lookup_destination(self, destination: str) -> DestinationLookupResponse:
        """Center the map on a destination. A newer lookup cancels this one.

        Raises LookupCancelled when superseded; the caller discards the result.
        """
        if self._lookup_token is not None:
            self._lookup_token.cancel()
        token = CancelToken()
        self._lookup_token = token

        try:
            result = await self.geocode_fn(destination, cancel_token=token)
        except LookupCancelled:
            raise
        except GeocodeNotFound:
            token.raise_if_cancelled()
            logger.info(f"Destination '{destination}' not found")
            return DestinationLookupResponse(destination=destination)
        except Exception as exc:
            token.raise_if_cancelled()
            logger.warning(f"Destination lookup for '{destination}' failed: {exc}")
            return DestinationLookupResponse(destination=destination)
        finally:
            if self._lookup_token is token:
                self._lookup_token = None
        token.raise_if_cancelled()
        return DestinationLookupResponse(
            destination=destination,
            center=Coordinate(lng=result["lng"], lat=result["lat"]),
            address=result.get("address"),
        )

    def get_snapshot(self, session_id: str) -> Optional[MapSnapshot]:
        return self.storage.get(session_id)

    def clear_snapshot(self, session_id: str) -> None:
        self.storage.delete(session_id)
        manager = self._managers.pop(session_id, None)
        if manager is not None:
            manager.backend.clear()

    async def map_html(self, session_id: str) -> Optional[str]:
        """HTML for the session's map, redrawn from the stored snapshot if needed."""
        manager = self._managers.get(session_id)
        if manager is not None and manager.state.has_drawing:
            return manager.to_html()
        snapshot = self.storage.get(session_id)
        if snapshot is None:
            return None
        if snapshot.provider != self.provider:
            logger.info(f"Stored snapshot for {session_id} was drawn with {snapshot.provider}; ignoring")
            return None
        manager = self._manager(session_id)
        try:
            await manager.restore(snapshot)
        except RenderSuperseded:
            logger.info(f"Render for {session_id} started while its map was being restored")
        return manager.to_html()
