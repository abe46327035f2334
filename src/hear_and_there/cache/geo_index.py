from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional

from hear_and_there.core.models import GeoPoint, PointOfInterest, haversine_m
from hear_and_there.storage.ttl_store import DEFAULT_TTL, TTLStore

logger = logging.getLogger(__name__)

_KEY_PREFIX = "poi:"


@dataclass(frozen=True, slots=True)
class PoiHit:
    poi: PointOfInterest
    distance_m: float


class GeoPointIndex:
    """
    Cache of points of interest searchable by distance from a center.

    Entries expire after the store's retention window, except pinned entries which
    never expire. Upserting an existing entry keeps its user-curated fields
    (`pinned`, `notes`, `tags`) and any location context already filled in.
    """

    def __init__(self, *, store: TTLStore) -> None:
        self._store = store

    def upsert(self, poi: PointOfInterest) -> PointOfInterest:
        existing = self.get(poi.id)
        if existing is not None:
            poi = replace(
                poi,
                pinned=existing.pinned or poi.pinned,
                notes=existing.notes if existing.notes is not None else poi.notes,
                tags=tuple(existing.tags) or tuple(poi.tags),
                country=poi.country or existing.country,
                city=poi.city or existing.city,
                neighborhood=poi.neighborhood or existing.neighborhood,
            )
        self._store.set(_KEY_PREFIX + poi.id, poi.to_dict(), ttl=None if poi.pinned else DEFAULT_TTL)
        return poi

    def get(self, poi_id: str) -> Optional[PointOfInterest]:
        raw = self._store.get(_KEY_PREFIX + poi_id)
        if raw is None:
            return None
        return PointOfInterest.from_dict(raw)

    def update_location(
        self,
        poi_id: str,
        *,
        country: Optional[str],
        city: Optional[str],
        neighborhood: Optional[str],
    ) -> Optional[PointOfInterest]:
        """Fill in location context on an existing entry. Returns None if the entry is gone."""
        existing = self.get(poi_id)
        if existing is None:
            return None
        updated = replace(
            existing,
            country=country or existing.country,
            city=city or existing.city,
            neighborhood=neighborhood or existing.neighborhood,
        )
        self._store.set(_KEY_PREFIX + poi_id, updated.to_dict(), ttl=None if updated.pinned else DEFAULT_TTL)
        logger.debug(
            "POI location context updated. poi_id=%s city=%s neighborhood=%s",
            poi_id,
            updated.city,
            updated.neighborhood,
        )
        return updated

    def query(
        self,
        center: GeoPoint,
        radius_m: float,
        *,
        primary_only: bool,
        limit: int,
    ) -> list[PoiHit]:
        """Entries within `radius_m` of `center`, nearest first, at most `limit`."""
        hits: list[PoiHit] = []
        for _, raw in self._store.scan(_KEY_PREFIX):
            if primary_only and not raw.get("primary", True):
                continue
            distance = haversine_m(center, GeoPoint(float(raw["latitude"]), float(raw["longitude"])))
            if distance > radius_m:
                continue
            hits.append(PoiHit(poi=PointOfInterest.from_dict(raw), distance_m=distance))
        hits.sort(key=lambda h: (h.distance_m, h.poi.id))
        return hits[: max(0, limit)]

    def query_food(self, center: GeoPoint, radius_m: float, *, limit: int = 15) -> list[PoiHit]:
        """Secondary entries typed as food within the radius, best rated first."""
        hits = [
            hit
            for hit in self.query(center, radius_m, primary_only=False, limit=len(self._store) or 0)
            if not hit.poi.primary and "food" in hit.poi.types
        ]
        hits.sort(key=lambda h: (-(h.poi.rating or 0.0), h.distance_m))
        return hits[: max(0, limit)]

    def __len__(self) -> int:
        return sum(1 for _ in self._store.scan(_KEY_PREFIX))
