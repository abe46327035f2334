from __future__ import annotations

from enum import Enum

from hear_and_there.graph.state import StateField, StateSchema, append_items, replace


class TourStep(str, Enum):
    CHECK_TOUR_CACHE = "check_tour_cache"
    REVERSE_GEOCODE = "reverse_geocode"
    CHECK_POI_CACHE = "check_poi_cache"
    FETCH_POIS = "fetch_pois"
    QUERY_POIS = "query_pois"
    GENERATE_AREA_SUMMARIES = "generate_area_summaries"
    ASSEMBLE_AREA_CONTEXT = "assemble_area_context"
    GENERATE_CANDIDATE_TOURS = "generate_candidate_tours"
    VALIDATE_WALKING_TIMES = "validate_walking_times"
    RANK_TOURS = "rank_tours"
    SAVE_TOUR_SUGGESTIONS = "save_tour_suggestions"


class CacheRoute(str, Enum):
    HIT = "hit"
    MISS = "miss"


class PoiRoute(str, Enum):
    SUFFICIENT = "sufficient"
    FETCH = "fetch"


class CandidateRoute(str, Enum):
    VALIDATE = "validate"
    STOP = "stop"


class TourState(StateSchema):
    """State of one candidate-generation run. All values are JSON-compatible."""

    session_id = StateField()
    latitude = StateField()
    longitude = StateField()
    duration_minutes = StateField()
    language = StateField(default="english")
    customization = StateField()

    country = StateField()
    city = StateField()
    neighborhood = StateField()
    city_data = StateField()
    neighborhood_data = StateField()

    pois = StateField(default_factory=list, reducer=replace)
    poi_cache_hit = StateField(default=False)
    pois_count = StateField(default=0)
    google_maps_fetched = StateField(default=False)
    search_radius_m = StateField()
    area_context = StateField()

    candidate_tours = StateField(default_factory=list, reducer=replace)
    final_tours = StateField(default_factory=list, reducer=replace)
    cache_hit = StateField(default=False)

    messages = StateField(default_factory=list, reducer=append_items)
    error = StateField()
