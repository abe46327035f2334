from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence


def _language_instruction(language: str) -> str:
    if language == "hebrew":
        return "Write the ENTIRE script in HEBREW. Use natural, conversational Hebrew."
    return "Write the ENTIRE script in ENGLISH."


def _facts(facts: Optional[Sequence[str]]) -> str:
    return "\n".join(f"- {fact}" for fact in facts or [])


def _summary_block(name: Optional[str], data: Optional[Mapping[str, Any]]) -> str:
    if not name or not data or not data.get("summary"):
        return ""
    block = f"\n{name}:\n{data['summary']}"
    if data.get("key_facts"):
        block += f"\nKey Facts:\n{_facts(data['key_facts'])}"
    return block + "\n"


def tour_areas_text(location_summaries: Mapping[str, Mapping[str, Any]]) -> str:
    """Every city and neighborhood visited by the tour, each described once."""
    cities: dict[str, Mapping[str, Any]] = {}
    neighborhoods: dict[str, Mapping[str, Any]] = {}
    for location in location_summaries.values():
        city, neighborhood = location.get("city"), location.get("neighborhood")
        if city and location.get("city_data") and city not in cities:
            cities[city] = location["city_data"]
        if neighborhood and location.get("neighborhood_data") and neighborhood not in neighborhoods:
            neighborhoods[neighborhood] = location["neighborhood_data"]

    text = ""
    city_blocks = "".join(_summary_block(name, data) for name, data in cities.items())
    if city_blocks:
        text += "\nCities on this tour:\n" + city_blocks
    neighborhood_blocks = "".join(_summary_block(name, data) for name, data in neighborhoods.items())
    if neighborhood_blocks:
        text += "\nNeighborhoods on this tour:\n" + neighborhood_blocks
    return text or "\nNo additional context available"


def build_intro_prompt(
    tour: Mapping[str, Any],
    *,
    location_summaries: Mapping[str, Mapping[str, Any]],
    language: str,
) -> str:
    return f"""You are creating an engaging audio introduction for a walking tour.

Tour Details:
- Title: {tour.get("title")}
- Theme: {tour.get("theme")}
- Abstract: {tour.get("abstract")}
- Number of stops: {len(tour.get("stops") or [])}
- Estimated duration: {tour.get("estimated_total_minutes")} minutes

Context about the areas you'll visit:{tour_areas_text(location_summaries)}

Create a warm, engaging two-minute introduction that:
1. Introduces the tour theme and what makes it special
2. Gives a brief overview of what the visitor will experience and the areas they'll explore
3. Sets an enthusiastic, friendly tone
4. Mentions the number of stops and the approximate duration

{_language_instruction(language)}
Write in a natural, conversational style as if speaking directly to the visitor.
Do NOT include stage directions or speaker labels, just the script text."""


def _area_text(area: Mapping[str, Any]) -> str:
    text = ""
    city, neighborhood = area.get("city"), area.get("neighborhood")
    city_data = area.get("city_data") or {}
    neighborhood_data = area.get("neighborhood_data") or {}
    if city_data.get("summary"):
        text += f"\nCity Context ({city}):\n{city_data['summary']}"
    if city_data.get("key_facts"):
        text += f"\n\nKey Facts about {city}:\n{_facts(city_data['key_facts'])}"
    if neighborhood_data.get("summary"):
        text += f"\n\nNeighborhood Context ({neighborhood}):\n{neighborhood_data['summary']}"
    if neighborhood_data.get("key_facts"):
        text += f"\n\nKey Facts about {neighborhood}:\n{_facts(neighborhood_data['key_facts'])}"
    return text


def _walking_text(next_stop: Mapping[str, Any]) -> str:
    minutes = int(next_stop.get("walk_minutes_from_previous") or 0)
    distance = next_stop.get("distance_meters")
    text = f"\n\nWalking Directions to Next Stop ({next_stop.get('name')}):\n- Walking time: {minutes} minute"
    text += "" if minutes == 1 else "s"
    if distance:
        text += f" ({round(distance)}m)"
    if next_stop.get("street_names"):
        text += f"\n- Streets you'll walk on: {', '.join(next_stop['street_names'])}"
    steps = (next_stop.get("walking_directions") or {}).get("steps") or []
    if steps:
        lines = "\n".join(f"  {i}. {s['instruction']} ({s['distance']})" for i, s in enumerate(steps, start=1))
        text += f"\n- Turn-by-turn directions:\n{lines}"
    return text


def build_stop_prompt(
    tour: Mapping[str, Any],
    index: int,
    *,
    area: Mapping[str, Any],
    language: str,
) -> str:
    stops = tour.get("stops") or []
    stop = stops[index]
    total = len(stops)
    is_first, is_last = index == 0, index == total - 1

    position = []
    if is_first:
        position.append("- This is the FIRST stop")
    else:
        position.append(f"- Previous stop: {stops[index - 1].get('name')}")
    if is_last:
        position.append("- This is the LAST stop, include closing remarks")

    opening = "Welcomes the visitor to the first stop" if is_first else f"Introduces stop {index + 1}"
    closing = (
        "Concludes the tour with warm closing remarks and thanks the visitor for joining"
        if is_last
        else "Guides the visitor to the next stop using the walking directions, mentioning the streets "
        "and anything interesting about them"
    )
    return f"""You are creating an engaging audio script for stop {index + 1} of {total} on a walking tour.

Stop Details:
- Name: {stop.get("name")}
- Location: {area.get("neighborhood") or area.get("city") or "the area"}
- Tour theme: {tour.get("theme")}
{chr(10).join(position)}

Context about the area:{_area_text(area)}{"" if is_last else _walking_text(stops[index + 1])}

Create an engaging one to five minute script that:
1. {opening}
2. Shares historical facts, stories or cultural significance about {stop.get("name")}
3. Points out architectural or visual details worth noticing
4. Includes surprising or little-known facts
5. {closing}
The richer the stop, the longer the script.

{_language_instruction(language)}
Write in a natural, conversational, enthusiastic style as if walking with the visitor.
Do NOT include stage directions or speaker labels, just the script text.
Keep it between 500 and 750 words."""
