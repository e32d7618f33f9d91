"""Mutable drawing state owned by one render manager."""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from workflows.schemas import Coordinate, MapSnapshot, Polyline, ProgressState, SnapshotPlace


class RenderState(BaseModel):
    """Markers and polylines currently drawn, keyed by backend handle.

    Only the render manager writes here; a cycle always clears both
    collections before repopulating them.
    """

    markers: Dict[str, SnapshotPlace] = Field(default_factory=dict)
    polylines: Dict[str, Polyline] = Field(default_factory=dict)
    viewport_coords: List[Coordinate] = Field(default_factory=list)
    signature: Optional[str] = None
    in_flight_signature: Optional[str] = None
    progress: ProgressState = Field(default_factory=ProgressState)
    last_snapshot: Optional[MapSnapshot] = None

    @property
    def has_drawing(self) -> bool:
        return bool(self.markers)

    def clear(self) -> None:
        self.markers.clear()
        self.polylines.clear()
        self.viewport_coords = []
        self.signature = None

    def places(self) -> List[SnapshotPlace]:
        return list(self.markers.values())

    def lines(self) -> List[Polyline]:
        return list(self.polylines.values())
