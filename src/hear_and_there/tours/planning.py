from __future__ import annotations

import copy
import math
import uuid
from typing import Any, Mapping, Optional, Sequence

from hear_and_there.core.models import RouteLeg
from hear_and_there.tours.models import CandidateTour

HEURISTIC_THEMES = ("History", "Hidden Gems", "Food & Culture")
_HEURISTIC_DWELL_MINUTES = 15
_HEURISTIC_WALK_MINUTES = 8


def minimum_stops(duration_minutes: int) -> int:
    """Two stops per half hour of touring."""
    return max(1, (duration_minutes * 2) // 30)


def tour_from_candidate(candidate: CandidateTour) -> dict[str, Any]:
    """Convert a validated candidate to the state representation with a fresh, unique id."""
    data = candidate.model_dump()
    data["original_tour_id"] = data.pop("id")
    data["id"] = str(uuid.uuid4())
    for stop in data["stops"]:
        stop.setdefault("street_names", [])
    return data


def heuristic_tours(
    *,
    latitude: float,
    longitude: float,
    duration_minutes: int,
    city: Optional[str],
    pois: Sequence[Mapping[str, Any]],
) -> list[dict[str, Any]]:
    """
    Deterministic tours built straight from the point list, used when the model yields nothing.

    Points are split into up to three consecutive chunks, one per theme.
    """
    area = city or "Your Area"
    if not pois:
        return [
            {
                "id": str(uuid.uuid4()),
                "original_tour_id": "tour_1",
                "title": f"Stroll Around {area}",
                "abstract": "A relaxed loop around your starting point with a few nearby highlights.",
                "theme": "General Highlights",
                "estimated_total_minutes": duration_minutes,
                "stops": [
                    {
                        "name": "Start Point",
                        "latitude": latitude,
                        "longitude": longitude,
                        "dwell_minutes": 10,
                        "walk_minutes_from_previous": 0,
                        "place_id": None,
                        "street_names": [],
                    }
                ],
            }
        ]

    chunk_size = max(2, min(5, math.ceil(len(pois) / 3)))
    tours: list[dict[str, Any]] = []
    for index, theme in enumerate(HEURISTIC_THEMES):
        chunk = pois[index * chunk_size : (index + 1) * chunk_size]
        if not chunk:
            break
        stops = [
            {
                "name": poi["name"],
                "latitude": poi["latitude"],
                "longitude": poi["longitude"],
                "dwell_minutes": _HEURISTIC_DWELL_MINUTES,
                "walk_minutes_from_previous": 0 if i == 0 else _HEURISTIC_WALK_MINUTES,
                "place_id": poi.get("id"),
                "street_names": [],
            }
            for i, poi in enumerate(chunk)
        ]
        tours.append(
            {
                "id": str(uuid.uuid4()),
                "original_tour_id": f"tour_{index + 1}",
                "title": f"{theme} Walk in {area}",
                "abstract": f"A {theme.lower()}-flavored route visiting {len(stops)} nearby spots.",
                "theme": theme,
                "estimated_total_minutes": sum(s["dwell_minutes"] + s["walk_minutes_from_previous"] for s in stops),
                "stops": stops,
            }
        )
    return tours


def score_tour(tour: Mapping[str, Any], duration_minutes: int) -> float:
    total = tour.get("estimated_total_minutes")
    if not isinstance(total, (int, float)):
        total = duration_minutes
    stop_count = len(tour.get("stops") or [])
    return -abs(total - duration_minutes) + 0.5 * stop_count


def rank_tours(tours: Sequence[Mapping[str, Any]], duration_minutes: int, *, limit: int) -> list[dict[str, Any]]:
    """Best tours first: closest to the requested duration, with a bonus for more stops."""
    scored = [(score_tour(tour, duration_minutes), index, tour) for index, tour in enumerate(tours)]
    scored.sort(key=lambda entry: (-entry[0], entry[1]))
    return [dict(tour) for _, _, tour in scored[: max(0, limit)]]


def within_duration(tour: Mapping[str, Any], duration_minutes: int, *, tolerance_minutes: int) -> bool:
    total = tour.get("estimated_total_minutes")
    if not isinstance(total, (int, float)):
        return True
    return abs(total - duration_minutes) <= tolerance_minutes


def apply_route_legs(tour: Mapping[str, Any], legs: Sequence[RouteLeg]) -> Optional[dict[str, Any]]:
    """
    Replace the model's walking estimates with routed ones.

    Leg i is the walk into stop i (leg 0 starts at the user's position). Returns None
    when the leg count does not match the stop count.
    """
    stops = list(tour.get("stops") or [])
    if len(legs) != len(stops):
        return None

    updated_stops = []
    for stop, leg in zip(stops, legs):
        updated = copy.deepcopy(dict(stop))
        updated["llm_walk_minutes"] = stop.get("walk_minutes_from_previous")
        updated["walk_minutes_from_previous"] = int(math.ceil(leg.duration_seconds / 60))
        updated["distance_meters"] = leg.distance_meters
        if leg.steps:
            updated["walking_directions"] = {
                "distance_meters": leg.distance_meters,
                "duration_seconds": leg.duration_seconds,
                "steps": [{"instruction": s.instruction, "distance": s.distance} for s in leg.steps],
            }
        updated["street_names"] = list(dict.fromkeys(leg.street_names))
        updated_stops.append(updated)

    dwell = sum(int(s.get("dwell_minutes") or 0) for s in updated_stops)
    walking = sum(s["walk_minutes_from_previous"] for s in updated_stops)
    validated = copy.deepcopy(dict(tour))
    validated["stops"] = updated_stops
    validated["llm_estimated_total_minutes"] = tour.get("estimated_total_minutes")
    validated["estimated_total_minutes"] = dwell + walking
    return validated
