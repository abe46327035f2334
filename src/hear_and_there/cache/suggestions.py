from __future__ import annotations

import copy
import logging
from typing import Any, Mapping, Sequence

from hear_and_there.core.models import GeoPoint, haversine_m
from hear_and_there.storage.ttl_store import TTLStore

logger = logging.getLogger(__name__)

_KEY_PREFIX = "suggestion:"


class TourSuggestionCache:
    """
    Previously ranked tours, reusable for a later request from (almost) the same spot.

    A cached tour matches when its duration and language are equal and its start
    point lies within `match_radius_m` of the requested start.
    """

    def __init__(self, *, store: TTLStore, match_radius_m: float = 50.0) -> None:
        self._store = store
        self._match_radius_m = match_radius_m

    def find(self, start: GeoPoint, *, duration_minutes: int, language: str, limit: int = 10) -> list[dict[str, Any]]:
        matches: list[tuple[float, dict[str, Any]]] = []
        for _, raw in self._store.scan(_KEY_PREFIX):
            if raw.get("duration_minutes") != duration_minutes or raw.get("language") != language:
                continue
            distance = haversine_m(start, GeoPoint(raw["latitude"], raw["longitude"]))
            if distance > self._match_radius_m:
                continue
            matches.append((distance, raw["tour"]))
        matches.sort(key=lambda m: m[0])
        return [copy.deepcopy(tour) for _, tour in matches[: max(0, limit)]]

    def save(
        self,
        start: GeoPoint,
        *,
        duration_minutes: int,
        language: str,
        tours: Sequence[Mapping[str, Any]],
    ) -> int:
        saved = 0
        for tour in tours:
            tour_id = tour.get("id")
            if not tour_id:
                continue
            self._store.set(
                _KEY_PREFIX + str(tour_id),
                {
                    "latitude": start.latitude,
                    "longitude": start.longitude,
                    "duration_minutes": duration_minutes,
                    "language": language,
                    "tour": dict(tour),
                },
            )
            saved += 1
        logger.info("Tour suggestions cached. count=%d duration_minutes=%s language=%s", saved, duration_minutes, language)
        return saved
