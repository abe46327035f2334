from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from hear_and_there.cache.geo_index import GeoPointIndex, PoiHit
from hear_and_there.core.models import GeoPoint, PointOfInterest
from hear_and_there.providers.interfaces import PointSearchProvider

logger = logging.getLogger(__name__)

# Average walking speed in metres per minute.
WALKING_SPEED_M_PER_MIN = 83
# Share of a tour spent walking; the rest is dwell time at stops.
WALKING_SHARE = 0.4

PRIMARY_CATEGORIES_CULTURE: tuple[str, ...] = (
    "historical_place", "historical_landmark", "monument", "cultural_landmark", "museum",
    "art_gallery", "sculpture", "performing_arts_theater", "opera_house", "philharmonic_hall",
    "concert_hall", "cultural_center", "community_center", "library",
    "city_hall", "courthouse", "embassy", "church", "amusement_park",
    "hindu_temple", "mosque", "synagogue", "market",
)  # fmt: skip

PRIMARY_CATEGORIES_OUTDOORS: tuple[str, ...] = (
    "park", "national_park", "state_park", "botanical_garden", "garden",
    "plaza", "visitor_center", "beach", "wildlife_park", "wildlife_refuge",
    "zoo", "aquarium", "marina", "hiking_area", "observation_deck",
    "athletic_field", "playground", "dog_park", "skateboard_park", "picnic_ground",
    "campground", "rv_park", "tourist_attraction",
)  # fmt: skip

SECONDARY_CATEGORIES: tuple[str, ...] = (
    "restaurant", "cafe", "coffee_shop", "ice_cream_shop", "bakery",
    "bar", "pub", "wine_bar", "tea_house", "fast_food_restaurant",
    "pizza_restaurant", "hamburger_restaurant", "seafood_restaurant", "steak_house", "sushi_restaurant",
    "breakfast_restaurant", "brunch_restaurant", "mexican_restaurant", "indian_restaurant", "chinese_restaurant",
    "japanese_restaurant", "thai_restaurant", "mediterranean_restaurant", "middle_eastern_restaurant",
    "turkish_restaurant", "greek_restaurant", "italian_restaurant", "spanish_restaurant", "vegan_restaurant",
    "vegetarian_restaurant", "bagel_shop", "donut_shop", "dessert_shop", "dessert_restaurant", "confectionery",
    "candy_store", "acai_shop", "juice_shop", "cat_cafe", "dog_cafe",
    "bar_and_grill", "food_court", "fine_dining_restaurant", "shopping_mall", "gift_shop",
    "spa", "local_government_office", "auditorium", "movie_theater",
)  # fmt: skip


def search_radius_m(duration_minutes: int, *, min_radius_m: int = 500, max_radius_m: int = 3000) -> int:
    """Half the distance walkable in the tour's walking share, clamped to the configured bounds."""
    radius = round(duration_minutes * WALKING_SHARE * WALKING_SPEED_M_PER_MIN / 2)
    return max(min_radius_m, min(max_radius_m, radius))


@dataclass(frozen=True, slots=True)
class QueryTier:
    tier: int
    radius_m: float
    primary_only: bool
    count: int


@dataclass(frozen=True, slots=True)
class EscalatedQuery:
    hits: list[PoiHit]
    tiers: tuple[QueryTier, ...]

    @property
    def final_tier(self) -> QueryTier:
        return self.tiers[-1]


def escalating_query(
    index: GeoPointIndex,
    center: GeoPoint,
    radius_m: float,
    *,
    min_count: int,
    radius_multiplier: float,
) -> EscalatedQuery:
    """
    Query the index in up to three tiers until at least `min_count` points are found.

    1. primary points within `radius_m`
    2. all points within `radius_m`
    3. all points within `radius_m * radius_multiplier`

    Every tier is capped at `min_count` and ordered nearest first.
    """
    plan = (
        (radius_m, True),
        (radius_m, False),
        (radius_m * radius_multiplier, False),
    )
    tiers: list[QueryTier] = []
    hits: list[PoiHit] = []
    for number, (radius, primary_only) in enumerate(plan, start=1):
        hits = index.query(center, radius, primary_only=primary_only, limit=min_count)
        tiers.append(QueryTier(tier=number, radius_m=radius, primary_only=primary_only, count=len(hits)))
        logger.debug(
            "POI query tier finished. tier=%d radius_m=%.0f primary_only=%s count=%d",
            number,
            radius,
            primary_only,
            len(hits),
        )
        if len(hits) >= min_count:
            break
    return EscalatedQuery(hits=hits, tiers=tuple(tiers))


def _dedupe(groups: Iterable[Sequence[PointOfInterest]]) -> list[PointOfInterest]:
    seen: set[str] = set()
    unique: list[PointOfInterest] = []
    for group in groups:
        for poi in group:
            if poi.id in seen:
                continue
            seen.add(poi.id)
            unique.append(poi)
    return unique


async def search_area(
    provider: PointSearchProvider,
    center: GeoPoint,
    radius_m: float,
    *,
    max_results_per_group: int = 20,
) -> list[PointOfInterest]:
    """
    Search the two primary category groups and the secondary group concurrently.

    Results are deduplicated by id; the first occurrence wins, so a point found by a
    primary group keeps its primary flag.
    """
    groups = await asyncio.gather(
        provider.search_nearby(
            latitude=center.latitude,
            longitude=center.longitude,
            radius_m=radius_m,
            categories=PRIMARY_CATEGORIES_CULTURE,
            primary=True,
            max_results=max_results_per_group,
        ),
        provider.search_nearby(
            latitude=center.latitude,
            longitude=center.longitude,
            radius_m=radius_m,
            categories=PRIMARY_CATEGORIES_OUTDOORS,
            primary=True,
            max_results=max_results_per_group,
        ),
        provider.search_nearby(
            latitude=center.latitude,
            longitude=center.longitude,
            radius_m=radius_m,
            categories=SECONDARY_CATEGORIES,
            primary=False,
            max_results=max_results_per_group,
        ),
    )
    return _dedupe(groups)
