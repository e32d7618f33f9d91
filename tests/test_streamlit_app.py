"""Tests for the Streamlit front end's itinerary bookkeeping."""

from __future__ import annotations

from streamlit_app import _needs_parse

TEXT = "Day 1: West Lake → Leifeng Pagoda"


def test_nothing_extracted_yet():
    assert _needs_parse({}, TEXT, "Hangzhou")
    assert _needs_parse({"route_sequence": [], "parsed_from": [TEXT, "Hangzhou"]}, TEXT, "Hangzhou")


def test_unchanged_text_reuses_extraction():
    state = {"route_sequence": [["West Lake", "Leifeng Pagoda"]], "parsed_from": [TEXT, "Hangzhou"]}

    assert not _needs_parse(state, TEXT, "Hangzhou")


def test_edited_text_or_destination_forces_parse():
    state = {"route_sequence": [["West Lake", "Leifeng Pagoda"]], "parsed_from": [TEXT, "Hangzhou"]}

    assert _needs_parse(state, "Day 1: Lingyin Temple → Hefang Street", "Hangzhou")
    assert _needs_parse(state, TEXT, "Suzhou")
    assert _needs_parse(dict(state, parsed_from=None), TEXT, "Hangzhou")
