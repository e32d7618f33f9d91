"""Assign geocoded places to itinerary days."""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from reconciler.names import is_match, normalize, place_key
from workflows.schemas import GeocodedPlace

logger = logging.getLogger(__name__)


def assign_days(
    places: Sequence[GeocodedPlace],
    route_sequence: Sequence[Sequence[str]],
) -> Dict[str, int]:
    """Map each place's composite key to a zero-based day index.

    Explicit ``place.day`` hints win and are never revisited. The remaining
    places are matched against ``route_sequence`` slot by slot; once a place
    fills a slot it is consumed and cannot fill a slot on another day. Slots
    without any candidate are skipped, so the result may be sparse.

    The loose fallback takes the first unconsumed place (input order) that
    ``is_match``-es the slot name, even if a closer same-named place exists
    further down the list.
    """
    result: Dict[str, int] = {}
    consumed = set()
    keys = [place_key(place) for place in places]

    for idx, place in enumerate(places):
        if place.day is not None and place.day > 0:
            result.setdefault(keys[idx], place.day - 1)
            consumed.add(idx)

    by_name: Dict[str, List[int]] = {}
    for idx, place in enumerate(places):
        if idx in consumed:
            continue
        by_name.setdefault(normalize(place.name), []).append(idx)

    for day_index, names in enumerate(route_sequence or []):
        for target in names or []:
            chosen = _pick_candidate(places, target, by_name, consumed)
            if chosen is None:
                logger.debug(f"No unconsumed place for '{target}' on day {day_index + 1}")
                continue
            consumed.add(chosen)
            result.setdefault(keys[chosen], day_index)

    return result


def _pick_candidate(
    places: Sequence[GeocodedPlace],
    target: str,
    by_name: Dict[str, List[int]],
    consumed: set,
) -> Optional[int]:
    target = (target or "").strip()
    if not target:
        return None

    candidates = [idx for idx in by_name.get(normalize(target), []) if idx not in consumed]
    for idx in candidates:
        if places[idx].name == target:
            return idx
    if candidates:
        # Longest raw name is the most specific; max() keeps the first on ties.
        return max(candidates, key=lambda idx: len(places[idx].name))

    for idx, place in enumerate(places):
        if idx not in consumed and is_match(place.name, target):
            return idx
    return None


def sequence_position(place: GeocodedPlace, names: Sequence[str]) -> Optional[int]:
    """Index of the first slot in one day's ``names`` that refers to ``place``."""
    for position, name in enumerate(names or []):
        if name == place.name:
            return position
    norm = normalize(place.name)
    for position, name in enumerate(names or []):
        if normalize(name) == norm:
            return position
    for position, name in enumerate(names or []):
        if is_match(place.name, name):
            return position
    return None
