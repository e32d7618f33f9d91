"""Day colors, marker patterns and polyline strokes."""
from __future__ import annotations

from typing import Dict, Optional, Tuple

# One color per day; the cycle repeats after a week
DAY_COLORS: Tuple[str, ...] = (
    "#E53935",  # red
    "#1E88E5",  # blue
    "#43A047",  # green
    "#FB8C00",  # orange
    "#8E24AA",  # purple
    "#00ACC1",  # cyan
    "#6D4C41",  # brown
)
UNDATED_COLOR = "#757575"

ROUTED_STROKE = {"stroke_weight": 6, "stroke_opacity": 0.85, "stroke_style": "solid"}
DEGRADED_STROKE = {"stroke_weight": 3, "stroke_opacity": 0.5, "stroke_style": "dashed"}


def day_color(day_index: Optional[int]) -> str:
    if day_index is None or day_index < 0:
        return UNDATED_COLOR
    return DAY_COLORS[day_index % len(DAY_COLORS)]


def day_pattern(day_index: Optional[int]) -> str:
    """Solid on the first pass through the palette, hatched on the next, and so on."""
    if day_index is None or day_index < 0:
        return "solid"
    return "hatched" if (day_index // len(DAY_COLORS)) % 2 else "solid"


def day_style(day_index: Optional[int]) -> Tuple[str, str]:
    return day_color(day_index), day_pattern(day_index)


def polyline_style(day_index: Optional[int], degraded: bool) -> Dict[str, object]:
    stroke = dict(DEGRADED_STROKE if degraded else ROUTED_STROKE)
    stroke["stroke_color"] = day_color(day_index)
    return stroke


def marker_label(day_index: Optional[int], position: int) -> str:
    """Badge text: ``2-3`` is the third stop of day two; undated stops get their ordinal only."""
    if day_index is None:
        return str(position + 1)
    return f"{day_index + 1}-{position + 1}"


def marker_css(color: str, pattern: str) -> str:
    """Inline CSS for an HTML marker badge."""
    if pattern == "hatched":
        background = (
            f"repeating-linear-gradient(45deg, {color}, {color} 4px, "
            f"rgba(255,255,255,0.85) 4px, rgba(255,255,255,0.85) 7px)"
        )
    else:
        background = color
    return (
        f"background:{background};border:2px solid {color};border-radius:12px;"
        "color:#fff;font:600 11px sans-serif;padding:2px 6px;white-space:nowrap;"
        "text-shadow:0 0 2px rgba(0,0,0,0.8);box-shadow:0 1px 4px rgba(0,0,0,0.3);"
    )
