from __future__ import annotations

import logging
import re
from typing import Any, Mapping, Optional, Sequence

import aiohttp

from hear_and_there.config.models import GoogleMapsSettings
from hear_and_there.core.models import GeoPoint, Location, PointOfInterest, RouteLeg, RouteStep
from hear_and_there.errors import TransientProviderError
from hear_and_there.runtime.retry import RetryPolicy, is_retryable_status, retry_async

logger = logging.getLogger(__name__)

GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
PLACES_NEARBY_URL = "https://places.googleapis.com/v1/places:searchNearby"
DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"

_PLACES_FIELD_MASK = "places.id,places.displayName,places.types,places.location,places.rating"
_HTML_TAG = re.compile(r"<[^>]*>")
_STREET_PATTERNS = (
    re.compile(r"on\s+<b>([^<]+)</b>", re.IGNORECASE),
    re.compile(r"onto\s+<b>([^<]+)</b>", re.IGNORECASE),
    re.compile(r"toward\s+<b>([^<]+)</b>", re.IGNORECASE),
)
_NEIGHBORHOOD_TYPES = ("neighborhood", "sublocality_level_1", "sublocality")


class ProviderResponseError(RuntimeError):
    pass


def strip_html(text: str) -> str:
    return _HTML_TAG.sub("", text).strip()


def extract_street_names(instructions: Sequence[str]) -> list[str]:
    """Street names mentioned as `on/onto/toward <b>Name</b>`, first occurrence order, no duplicates."""
    names: list[str] = []
    for instruction in instructions:
        for pattern in _STREET_PATTERNS:
            match = pattern.search(instruction)
            if match:
                names.append(match.group(1).strip())
                break
    return list(dict.fromkeys(names))


def parse_geocode_response(payload: Mapping[str, Any]) -> Optional[Location]:
    results = payload.get("results") or []
    if not results:
        return None

    country = city = neighborhood = None
    for result in results:
        for component in result.get("address_components") or []:
            types = component.get("types") or []
            name = component.get("long_name")
            if not name:
                continue
            if country is None and "country" in types:
                country = name
            if city is None and "locality" in types:
                city = name
            if neighborhood is None and any(t in types for t in _NEIGHBORHOOD_TYPES):
                neighborhood = name
        if country and city and neighborhood:
            break

    if city is None and neighborhood is not None:
        city, neighborhood = neighborhood, None
    if country is None and city is None:
        return None
    return Location(country=country, city=city, neighborhood=neighborhood)


def parse_places_response(payload: Mapping[str, Any], *, primary: bool, center: GeoPoint) -> list[PointOfInterest]:
    places = payload.get("places") or []
    pois: list[PointOfInterest] = []
    for index, place in enumerate(places):
        location = place.get("location") or {}
        pois.append(
            PointOfInterest(
                id=place.get("id") or f"poi_{index + 1}",
                name=(place.get("displayName") or {}).get("text") or "Unknown Place",
                latitude=float(location.get("latitude", center.latitude)),
                longitude=float(location.get("longitude", center.longitude)),
                types=tuple(place.get("types") or ()),
                rating=place.get("rating"),
                primary=primary,
            )
        )
    return pois


def parse_directions_response(payload: Mapping[str, Any]) -> list[RouteLeg]:
    status = payload.get("status")
    if status != "OK":
        raise ProviderResponseError(f"Directions request was not successful. status={status}")
    routes = payload.get("routes") or []
    if not routes:
        raise ProviderResponseError("Directions response has no routes.")

    legs: list[RouteLeg] = []
    for leg in routes[0].get("legs") or []:
        raw_steps = leg.get("steps") or []
        instructions = [s.get("html_instructions") or "" for s in raw_steps]
        legs.append(
            RouteLeg(
                distance_meters=float((leg.get("distance") or {}).get("value") or 0),
                duration_seconds=float((leg.get("duration") or {}).get("value") or 0),
                steps=tuple(
                    RouteStep(
                        instruction=strip_html(instruction),
                        distance=(step.get("distance") or {}).get("text") or "",
                    )
                    for step, instruction in zip(raw_steps, instructions)
                ),
                street_names=tuple(extract_street_names(instructions)),
            )
        )
    return legs


def _latlng(point: GeoPoint) -> str:
    return f"{point.latitude},{point.longitude}"


class GoogleMapsClient:
    """
    Reverse geocoding, nearby search and walking directions over the Google Maps web APIs.

    Implements the ReverseGeocoder, PointSearchProvider and RouteValidator protocols.
    The HTTP session is owned by the caller.
    """

    def __init__(
        self,
        *,
        settings: GoogleMapsSettings,
        session: aiohttp.ClientSession,
        retry: Optional[RetryPolicy] = None,
    ) -> None:
        if not settings.api_key:
            raise ValueError("Google Maps API key is not configured (google_maps.api_key).")
        self._settings = settings
        self._session = session
        self._retry = retry or RetryPolicy(max_attempts=settings.max_retries, base_delay_seconds=0.5)

    async def lookup(self, *, latitude: float, longitude: float) -> Optional[Location]:
        payload = await self._request(
            "reverse_geocode",
            "GET",
            GEOCODE_URL,
            params={"latlng": f"{latitude},{longitude}", "key": self._settings.api_key},
        )
        return parse_geocode_response(payload)

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
        body = {
            "includedTypes": list(categories),
            "maxResultCount": max_results,
            "locationRestriction": {
                "circle": {
                    "center": {"latitude": latitude, "longitude": longitude},
                    "radius": float(radius_m),
                }
            },
        }
        payload = await self._request(
            "places_search_nearby",
            "POST",
            PLACES_NEARBY_URL,
            json_body=body,
            headers={"X-Goog-Api-Key": self._settings.api_key, "X-Goog-FieldMask": _PLACES_FIELD_MASK},
        )
        return parse_places_response(payload, primary=primary, center=GeoPoint(latitude, longitude))

    async def walking_route(
        self,
        *,
        origin: GeoPoint,
        destination: GeoPoint,
        waypoints: Sequence[GeoPoint],
    ) -> list[RouteLeg]:
        params = {
            "origin": _latlng(origin),
            "destination": _latlng(destination),
            "mode": "walking",
            "key": self._settings.api_key,
        }
        if waypoints:
            params["waypoints"] = "|".join(_latlng(p) for p in waypoints)
        payload = await self._request("directions", "GET", DIRECTIONS_URL, params=params)
        return parse_directions_response(payload)

    async def _request(
        self,
        operation: str,
        method: str,
        url: str,
        *,
        params: Optional[Mapping[str, str]] = None,
        json_body: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Mapping[str, Any]:
        timeout = aiohttp.ClientTimeout(total=self._settings.timeout_seconds)

        async def _call() -> Mapping[str, Any]:
            async with self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=headers,
                timeout=timeout,
            ) as response:
                if response.status != 200:
                    text = await response.text()
                    if is_retryable_status(response.status):
                        raise TransientProviderError(
                            f"{operation} failed with status {response.status}.",
                            status=response.status,
                        )
                    raise ProviderResponseError(
                        f"{operation} failed with status {response.status}. body={text[:200]}"
                    )
                return await response.json()

        return await retry_async(operation, policy=self._retry, make_call=_call, log_context=f"url={url}")
