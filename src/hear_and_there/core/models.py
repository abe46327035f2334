from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Literal, Mapping, Optional, Sequence

Language = Literal["english", "hebrew"]

EARTH_RADIUS_M = 6_371_000.0


@dataclass(frozen=True, slots=True)
class GeoPoint:
    latitude: float
    longitude: float


@dataclass(frozen=True, slots=True)
class Location:
    country: Optional[str]
    city: Optional[str]
    neighborhood: Optional[str]


@dataclass(frozen=True, slots=True)
class PointOfInterest:
    id: str
    name: str
    latitude: float
    longitude: float
    types: Sequence[str] = ()
    rating: Optional[float] = None
    primary: bool = True
    country: Optional[str] = None
    city: Optional[str] = None
    neighborhood: Optional[str] = None
    pinned: bool = False
    notes: Optional[str] = None
    tags: Sequence[str] = ()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["types"] = list(self.types)
        data["tags"] = list(self.tags)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PointOfInterest":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            types=tuple(data.get("types") or ()),
            rating=float(data["rating"]) if data.get("rating") is not None else None,
            primary=bool(data.get("primary", True)),
            country=data.get("country"),
            city=data.get("city"),
            neighborhood=data.get("neighborhood"),
            pinned=bool(data.get("pinned", False)),
            notes=data.get("notes"),
            tags=tuple(data.get("tags") or ()),
        )


@dataclass(frozen=True, slots=True)
class SummaryData:
    summary: Optional[str]
    key_facts: Sequence[str] = ()
    derived_assets: Optional[Mapping[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "key_facts": list(self.key_facts),
            "derived_assets": dict(self.derived_assets) if self.derived_assets else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SummaryData":
        return cls(
            summary=data.get("summary"),
            key_facts=tuple(data.get("key_facts") or ()),
            derived_assets=data.get("derived_assets"),
        )


EMPTY_SUMMARY = SummaryData(summary=None)


@dataclass(frozen=True, slots=True)
class RouteStep:
    instruction: str
    distance: str


@dataclass(frozen=True, slots=True)
class RouteLeg:
    distance_meters: float
    duration_seconds: float
    steps: Sequence[RouteStep] = ()
    street_names: Sequence[str] = ()


@dataclass(frozen=True, slots=True)
class CandidateRequest:
    """Inputs of one candidate-generation run."""

    session_id: str
    latitude: float
    longitude: float
    duration_minutes: int
    language: Language = "english"
    customization: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    neighborhood: Optional[str] = None


@dataclass(frozen=True, slots=True)
class AudioguideRequest:
    session_id: str
    tour_id: str
    language: Language = "english"
    voice: Optional[str] = None


def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points, in metres."""
    lat1, lat2 = math.radians(a.latitude), math.radians(b.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(b.longitude - a.longitude)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))
