from __future__ import annotations

import json
from typing import Any, Mapping, Optional, Sequence

from hear_and_there.tours.planning import minimum_stops


def _poi_for_model(poi: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "name": poi.get("name"),
        "latitude": poi.get("latitude"),
        "longitude": poi.get("longitude"),
        "types": list(poi.get("types") or []),
        "rating": poi.get("rating"),
    }


def _language_instruction(language: str) -> str:
    if language == "hebrew":
        return "Generate all tour titles, abstracts, themes, and stop names in HEBREW."
    return "Generate all tour titles, abstracts, themes, and stop names in ENGLISH."


def build_candidate_prompt(
    *,
    latitude: float,
    longitude: float,
    duration_minutes: int,
    language: str,
    customization: Optional[str],
    area_context: Mapping[str, Any],
    food_pois: Sequence[Mapping[str, Any]] = (),
) -> str:
    """User prompt for candidate tour generation, with the area context inlined as JSON."""
    instructions = [
        "Given a starting point, nearby points of interest and context, propose up to 10 candidate "
        "walking tours with clear, distinct themes.",
        "Tours must not repeat the same points of interest; at most one point may appear in two tours.",
        f"Each tour should have at least {minimum_stops(duration_minutes)} stops.",
        f"IMPORTANT: Each tour MUST fit within {duration_minutes} minutes total, walking and dwell time included.",
        f"Target tours between {round(duration_minutes * 0.8)} and {duration_minutes} minutes; "
        "be conservative with time estimates.",
        _language_instruction(language),
    ]
    if customization and customization.strip():
        instructions.append(
            f'User customization request: "{customization.strip()}". '
            "Incorporate this preference into the tour themes and stop selection."
        )

    payload: dict[str, Any] = {
        "latitude": latitude,
        "longitude": longitude,
        "durationMinutes": duration_minutes,
        "city": area_context.get("city"),
        "neighborhood": area_context.get("neighborhood"),
        "pois": [_poi_for_model(p) for p in area_context.get("pois") or []],
        "cityData": area_context.get("city_data"),
        "neighborhoodData": area_context.get("neighborhood_data"),
        "language": language,
    }
    if customization and customization.strip():
        payload["customization"] = customization.strip()

    parts = [
        " ".join(instructions),
        "",
        "Here is the JSON input describing the user context:",
        json.dumps(payload, ensure_ascii=False),
        "",
    ]
    if food_pois:
        parts.extend(
            [
                "Since this is a longer tour, include at least one highly rated food place from the list below "
                "that fits naturally into the route.",
                json.dumps([_poi_for_model(p) for p in food_pois], ensure_ascii=False),
                "",
            ]
        )
    parts.append(
        "Respond ONLY with a JSON array of tour objects. Each tour has: id, title, abstract, theme, "
        "estimatedTotalMinutes, stops. Each stop has: name, latitude, longitude, dwellMinutes, "
        "walkMinutesFromPrevious."
    )
    return "\n".join(parts)
