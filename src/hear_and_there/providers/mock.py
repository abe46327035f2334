from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Mapping, Optional, Sequence

from hear_and_there.core.models import (
    GeoPoint,
    Location,
    PointOfInterest,
    RouteLeg,
    RouteStep,
    SummaryData,
    haversine_m,
)
from hear_and_there.service import Collaborators


@dataclass(frozen=True, slots=True)
class MockReverseGeocoder:
    """Returns the same location for every coordinate."""

    location: Optional[Location] = Location(country="Israel", city="Tel Aviv-Yafo", neighborhood="Neve Tzedek")

    async def lookup(self, *, latitude: float, longitude: float) -> Optional[Location]:
        return self.location


@dataclass(frozen=True, slots=True)
class MockPointSearchProvider:
    """
    Places `per_group` points on a small spiral around the center for each search.

    Ids are derived from the first category so repeated searches return the same points.
    Secondary points are typed as food.
    """

    per_group: int = 8
    step_degrees: float = 0.0007

    async def search_nearby(
        self,
        *,
        latitude: float,
        longitude: float,
        radius_m: float,
        categories: Sequence[str],
        primary: bool,
        max_results: int = 20,
    ) -> list[PointOfInterest]:
        group = categories[0] if categories else "place"
        types = (group, "point_of_interest") if primary else (group, "food", "point_of_interest")
        directions = ((1, 0), (0, 1), (-1, 0), (0, -1))
        pois = []
        for i in range(min(self.per_group, max_results)):
            dlat, dlon = directions[i % 4]
            distance = self.step_degrees * (i // 4 + 1) + (0.0002 if not primary else 0.0)
            poi = PointOfInterest(
                id=f"mock_{group}_{i}",
                name=f"{group.replace('_', ' ').title()} {i + 1}",
                latitude=round(latitude + dlat * distance, 6),
                longitude=round(longitude + dlon * distance, 6),
                types=types,
                rating=round(3.5 + (i % 5) * 0.3, 1),
                primary=primary,
            )
            if haversine_m(GeoPoint(latitude, longitude), GeoPoint(poi.latitude, poi.longitude)) <= radius_m:
                pois.append(poi)
        return pois


@dataclass(frozen=True, slots=True)
class MockSummaryGenerator:
    async def summarize(self, *, place_name: str, context: str) -> SummaryData:
        return SummaryData(
            summary=f"Mock summary of {place_name}. {context}.",
            key_facts=(f"{place_name} has a long history.", f"{place_name} is good for walking."),
        )


def _context_from_prompt(prompt: str) -> Mapping[str, Any]:
    for line in prompt.splitlines():
        if not line.startswith("{"):
            continue
        try:
            return json.loads(line)
        except json.JSONDecodeError:
            continue
    return {}


@dataclass(frozen=True, slots=True)
class MockCandidateLLM:
    """
    Streams a fenced JSON array of tours built from the points listed in the prompt.

    When `text` is set it is streamed verbatim instead.
    """

    text: Optional[str] = None
    chunk_size: int = 23
    tour_count: int = 3
    stops_per_tour: int = 3

    def build_text(self, prompt: str) -> str:
        context = _context_from_prompt(prompt)
        pois = list(context.get("pois") or [])
        area = context.get("neighborhood") or context.get("city") or "the area"
        tours = []
        for index in range(self.tour_count):
            chunk = pois[index * self.stops_per_tour : (index + 1) * self.stops_per_tour]
            if not chunk:
                break
            stops = [
                {
                    "name": poi["name"],
                    "latitude": poi["latitude"],
                    "longitude": poi["longitude"],
                    "dwellMinutes": 10,
                    "walkMinutesFromPrevious": 0 if i == 0 else 5,
                }
                for i, poi in enumerate(chunk)
            ]
            tours.append(
                {
                    "id": f"mock-tour-{index + 1}",
                    "title": f"Mock Walk {index + 1} in {area}",
                    "abstract": "A deterministic tour used for testing.",
                    "theme": "Mock",
                    "estimatedTotalMinutes": sum(s["dwellMinutes"] + s["walkMinutesFromPrevious"] for s in stops),
                    "stops": stops,
                }
            )
        return "```json\n" + json.dumps(tours, ensure_ascii=False) + "\n```"

    async def stream_generate(self, *, prompt: str, schema: Mapping[str, Any]) -> AsyncIterator[str]:
        text = self.text if self.text is not None else self.build_text(prompt)
        size = max(1, self.chunk_size)
        for start in range(0, len(text), size):
            yield text[start : start + size]


@dataclass(frozen=True, slots=True)
class MockScriptLLM:
    async def generate(self, *, prompt: str, use_fallback: bool = False) -> str:
        first_line = prompt.strip().splitlines()[0] if prompt.strip() else ""
        model = "fallback" if use_fallback else "primary"
        return f"Mock narration from the {model} model. {first_line}"


@dataclass(frozen=True, slots=True)
class MockSpeechSynthesizer:
    base_url: str = "https://storage.example.invalid/audio"

    async def synthesize(self, *, text: str, voice: str, language: str, output_name: str) -> str:
        return f"{self.base_url}/{output_name}"


@dataclass(frozen=True, slots=True)
class MockRouteValidator:
    """Straight-line legs at walking speed, one per consecutive pair of points."""

    speed_m_per_min: float = 83.0

    async def walking_route(
        self,
        *,
        origin: GeoPoint,
        destination: GeoPoint,
        waypoints: Sequence[GeoPoint],
    ) -> list[RouteLeg]:
        points = [origin, *waypoints, destination]
        legs = []
        for i, (a, b) in enumerate(zip(points, points[1:]), start=1):
            distance = haversine_m(a, b)
            street = f"Mock Street {i}"
            legs.append(
                RouteLeg(
                    distance_meters=round(distance, 1),
                    duration_seconds=round(distance / self.speed_m_per_min * 60, 1),
                    steps=(RouteStep(instruction=f"Head along {street}", distance=f"{round(distance)} m"),),
                    street_names=(street,),
                )
            )
        return legs


def mock_collaborators() -> Collaborators:
    """Deterministic stand-ins for every external capability."""
    return Collaborators(
        geocoder=MockReverseGeocoder(),
        poi_search=MockPointSearchProvider(),
        summary_generator=MockSummaryGenerator(),
        candidate_llm=MockCandidateLLM(),
        script_llm=MockScriptLLM(),
        synthesizer=MockSpeechSynthesizer(),
        route_validator=MockRouteValidator(),
    )
