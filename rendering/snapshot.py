"""Render signatures and snapshot capture / restore decisions."""
from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Optional, Sequence

from reconciler.names import normalize
from workflows.schemas import Coordinate, MapSnapshot, Place, Polyline, SnapshotPlace


def _place_fingerprint(place: Any) -> Dict[str, Any]:
    if isinstance(place, dict):
        place = Place.model_validate(place)
    return {
        "name": normalize(place.name),
        "day": place.day,
        "address": (place.address or "").strip().lower(),
    }


def compute_signature(
    destination: str,
    strategy: str,
    provider: str,
    places: Sequence[Any],
    route_sequence: Sequence[Sequence[str]],
) -> str:
    """Deterministic hash of everything that determines what gets drawn."""
    payload = {
        "destination": (destination or "").strip().lower(),
        "strategy": strategy,
        "provider": (provider or "").lower(),
        "places": [_place_fingerprint(p) for p in places or []],
        "sequence": [[normalize(name) for name in day or []] for day in route_sequence or []],
    }
    blob = json.dumps(payload, sort_keys=True, ensure_ascii=False)
    return hashlib.sha1(blob.encode("utf-8")).hexdigest()[:16]


def snapshot_of(
    provider: str,
    places: Sequence[SnapshotPlace],
    polylines: Sequence[Polyline],
    viewport_coords: Sequence[Coordinate],
    signature: str,
) -> MapSnapshot:
    """Capture a completed render; models are copied so later mutation cannot leak in."""
    return MapSnapshot(
        provider=provider,
        places=[p.model_copy(deep=True) for p in places],
        polylines=[line.model_copy(deep=True) for line in polylines],
        viewport_coords=[c.model_copy() for c in viewport_coords],
        signature=signature,
    )


def should_restore(snapshot: Optional[MapSnapshot], provider: str, signature: str) -> bool:
    """Replay ``snapshot`` only when it was drawn by this provider for these exact inputs.

    An empty map is not enough on its own: a snapshot with another signature
    belongs to another itinerary. To replay whatever was stored, call
    ``RenderManager.restore`` directly.
    """
    if snapshot is None:
        return False
    return snapshot.provider == (provider or "").lower() and snapshot.signature == signature

