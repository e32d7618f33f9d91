"""Streamlit front end for the itinerary map API."""

from __future__ import annotations

import html
import uuid
from typing import Any, Dict, List, Mapping

import httpx
import streamlit as st
import streamlit.components.v1 as components

import config
from rendering.styles import day_color

STRATEGIES = ("driving", "walking", "transit")


@st.cache_resource
def get_http_client() -> httpx.Client:
    return httpx.Client(base_url=config.ITINERARY_MAP_API_URL, timeout=120.0)


def _session_id() -> str:
    if not st.session_state.get("session_id"):
        st.session_state["session_id"] = uuid.uuid4().hex
    return st.session_state["session_id"]


def _error_detail(response: httpx.Response) -> str:
    try:
        return response.json().get("detail") or response.text
    except ValueError:
        return response.text


def _needs_parse(state: Mapping[str, Any], text: str, destination: str) -> bool:
    """The extracted places are stale once the text or destination they came from changes."""
    return not state.get("route_sequence") or state.get("parsed_from") != [text, destination]


def _parse(client: httpx.Client, text: str, destination: str) -> None:
    response = client.post("/itinerary/parse", json={"text": text, "destination": destination})
    response.raise_for_status()
    data = response.json()
    st.session_state["route_sequence"] = data.get("route_sequence", [])
    st.session_state["places"] = data.get("places", [])
    st.session_state["parsed_from"] = [text, destination]


def _render(client: httpx.Client, text: str, destination: str, strategy: str) -> None:
    payload: Dict[str, Any] = {
        "destination": destination,
        "strategy": strategy,
        "itinerary_text": text,
        "route_sequence": st.session_state.get("route_sequence", []),
        "places": st.session_state.get("places", []),
    }
    response = client.post(f"/sessions/{_session_id()}/render", json=payload)
    if response.status_code == 503:
        st.error(_error_detail(response))
        return
    response.raise_for_status()
    data = response.json()
    st.session_state["snapshot"] = data.get("snapshot")
    st.session_state["progress"] = data.get("progress", [])
    if data.get("restored"):
        st.toast("Restored the saved map")


def _lookup(client: httpx.Client, destination: str) -> None:
    response = client.post("/destinations/lookup", json={"destination": destination})
    if response.status_code == 409:
        return
    response.raise_for_status()
    center = response.json().get("center")
    if center:
        st.sidebar.caption(f"Center: {center['lat']:.4f}, {center['lng']:.4f}")
    else:
        st.sidebar.warning(f"Could not locate {destination}")


def _render_sidebar() -> Dict[str, Any]:
    with st.sidebar:
        st.header("Trip")
        destination = st.text_input("Destination", key="destination")
        strategy = st.selectbox("Route mode", STRATEGIES, key="strategy")
        st.caption(f"Map provider: {config.MAP_PROVIDER}")
        missing = config.validate_api_keys()
        if missing:
            st.warning("Missing configuration: " + ", ".join(missing))
    return {"destination": destination, "strategy": strategy}


def _render_days(sequence: List[List[str]]) -> None:
    if not sequence:
        return
    st.subheader("Days")
    for day_index, names in enumerate(sequence):
        color = day_color(day_index)
        st.markdown(
            f"<span style='color:{color};font-weight:600'>Day {day_index + 1}</span>: "
            + " → ".join(html.escape(name) for name in names),
            unsafe_allow_html=True,
        )


def _render_snapshot_summary(snapshot: Dict[str, Any]) -> None:
    places = snapshot.get("places", [])
    polylines = snapshot.get("polylines", [])
    degraded = sum(1 for line in polylines if line.get("degraded"))
    st.caption(
        f"{len(places)} places, {len(polylines)} routes"
        + (f" ({degraded} drawn as straight lines)" if degraded else "")
    )


def main() -> None:
    st.set_page_config(page_title="Itinerary Map", page_icon="🗺️", layout="wide")
    st.title("🗺️ Itinerary Map")

    st.session_state.setdefault("route_sequence", [])
    st.session_state.setdefault("places", [])
    st.session_state.setdefault("snapshot", None)
    st.session_state.setdefault("progress", [])

    client = get_http_client()
    options = _render_sidebar()
    destination = options["destination"].strip()

    if destination and destination != st.session_state.get("looked_up"):
        st.session_state["looked_up"] = destination
        try:
            _lookup(client, destination)
        except httpx.HTTPError as exc:  # pragma: no cover - network failure feedback
            st.sidebar.error(f"Lookup failed: {exc}")

    text = st.text_area("Itinerary", height=240, placeholder="Day 1: West Lake → Lingyin Temple\nDay 2: ...")
    parse_col, render_col, clear_col = st.columns(3)

    try:
        if parse_col.button("Extract places", disabled=not text.strip()):
            _parse(client, text, destination)
        if render_col.button("Draw map", type="primary", disabled=not text.strip()):
            if _needs_parse(st.session_state, text, destination):
                _parse(client, text, destination)
            with st.spinner("Drawing map..."):
                _render(client, text, destination, options["strategy"])
        if clear_col.button("Clear map"):
            client.delete(f"/sessions/{_session_id()}/snapshot").raise_for_status()
            st.session_state["snapshot"] = None
            st.session_state["route_sequence"] = []
            st.session_state["places"] = []
            st.session_state["parsed_from"] = None
    except httpx.HTTPError as exc:  # pragma: no cover - network failure feedback
        st.error(f"Request failed: {exc}")

    _render_days(st.session_state["route_sequence"])

    for progress in st.session_state["progress"][-1:]:
        st.progress(progress.get("percent", 0) / 100, text=progress.get("message", ""))

    snapshot = st.session_state.get("snapshot")
    if snapshot:
        _render_snapshot_summary(snapshot)
        response = client.get(f"/sessions/{_session_id()}/map")
        if response.status_code == 200:
            components.html(response.text, height=620)


if __name__ == "__main__":
    main()
