from __future__ import annotations

from enum import Enum
from typing import Any, Dict

from hear_and_there.graph.state import StateField, StateSchema, merge_slots, replace


class AudioguideStep(str, Enum):
    LOAD_TOUR_DATA = "load_tour_data"
    PRELOAD_LOCATION_SUMMARIES = "preload_location_summaries"
    GENERATE_SCRIPTS = "generate_scripts"
    SYNTHESIZE_AUDIO = "synthesize_audio"
    FINALIZE = "finalize"


class TourDataRoute(str, Enum):
    READY = "ready"
    MISSING = "missing"


def empty_slots() -> Dict[str, Any]:
    return {"intro": None, "stops": []}


def thread_id_for(session_id: str, tour_id: str) -> str:
    return f"{session_id}_audioguide_{tour_id}"


class AudioguideState(StateSchema):
    """
    State of one audioguide run.

    `scripts` and `audio_files` hold one slot for the intro and one per stop; slots
    written by independent work items are merged, never overwritten by an absent slot.
    """

    session_id = StateField()
    tour_id = StateField()
    language = StateField(default="english")
    voice = StateField()

    tour = StateField()
    area_context = StateField()
    location_summaries = StateField(default_factory=dict, reducer=replace)
    stop_locations = StateField(default_factory=list, reducer=replace)

    scripts = StateField(default_factory=empty_slots, reducer=merge_slots)
    audio_files = StateField(default_factory=empty_slots, reducer=merge_slots)

    status = StateField(reducer=replace)
    error = StateField(reducer=replace)
