from __future__ import annotations

from typing import Any, AsyncIterator, Mapping, Optional, Protocol, Sequence

from hear_and_there.core.models import GeoPoint, Location, PointOfInterest, RouteLeg, SummaryData


class ReverseGeocoder(Protocol):
    async def lookup(self, *, latitude: float, longitude: float) -> Optional[Location]:
        """Return the country/city/neighborhood of a coordinate, or None when unknown."""


class PointSearchProvider(Protocol):
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
        """Return points of the given categories around a center, tagged with `primary`."""


class SummaryGenerator(Protocol):
    async def summarize(self, *, place_name: str, context: str) -> SummaryData:
        """Return a short summary and key facts about a place."""


class CandidateLLM(Protocol):
    def stream_generate(self, *, prompt: str, schema: Mapping[str, Any]) -> AsyncIterator[str]:
        """Stream raw text chunks of a JSON array of candidate tours."""


class ScriptLLM(Protocol):
    async def generate(self, *, prompt: str, use_fallback: bool = False) -> str:
        """Return narration text. `use_fallback` selects the secondary model."""


class SpeechSynthesizer(Protocol):
    async def synthesize(self, *, text: str, voice: str, language: str, output_name: str) -> str:
        """Render text to speech and return a reference (URL) to the stored audio."""


class RouteValidator(Protocol):
    async def walking_route(
        self,
        *,
        origin: GeoPoint,
        destination: GeoPoint,
        waypoints: Sequence[GeoPoint],
    ) -> list[RouteLeg]:
        """Return one leg per consecutive pair of points on the walking route."""
