import unittest
from datetime import timedelta

from hear_and_there.cache.geo_index import GeoPointIndex
from hear_and_there.core.models import GeoPoint, PointOfInterest
from hear_and_there.providers.mock import MockPointSearchProvider
from hear_and_there.storage.ttl_store import TTLStore
from hear_and_there.tours.poi_search import escalating_query, search_area, search_radius_m

CENTER = GeoPoint(32.0603, 34.7657)
# Roughly 111 m of latitude per 0.001 degree.
_DEG_PER_M = 0.001 / 111.0


class _Clock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _poi(poi_id: str, north_m: float, *, primary: bool = True, **extra) -> PointOfInterest:
    return PointOfInterest(
        id=poi_id,
        name=poi_id.title(),
        latitude=CENTER.latitude + north_m * _DEG_PER_M,
        longitude=CENTER.longitude,
        primary=primary,
        **extra,
    )


def _index(clock: _Clock | None = None) -> GeoPointIndex:
    store = TTLStore(name="pois", default_ttl=timedelta(days=7), clock=clock or _Clock())
    return GeoPointIndex(store=store)


class GeoPointIndexTests(unittest.TestCase):
    def test_query_is_nearest_first_and_capped(self) -> None:
        index = _index()
        for i, distance in enumerate((300, 100, 200, 900)):
            index.upsert(_poi(f"p{i}", distance))

        hits = index.query(CENTER, 500, primary_only=True, limit=2)

        self.assertEqual([h.poi.id for h in hits], ["p1", "p2"])
        self.assertLess(hits[0].distance_m, hits[1].distance_m)

    def test_primary_only_filters_secondary_points(self) -> None:
        index = _index()
        index.upsert(_poi("museum", 100))
        index.upsert(_poi("cafe", 50, primary=False, types=("cafe", "food")))

        self.assertEqual([h.poi.id for h in index.query(CENTER, 500, primary_only=True, limit=10)], ["museum"])
        self.assertEqual(len(index.query(CENTER, 500, primary_only=False, limit=10)), 2)

    def test_entries_expire_unless_pinned(self) -> None:
        clock = _Clock()
        index = _index(clock)
        index.upsert(_poi("regular", 100))
        index.upsert(_poi("favorite", 120, pinned=True))

        clock.now += timedelta(days=8).total_seconds()

        self.assertIsNone(index.get("regular"))
        self.assertIsNotNone(index.get("favorite"))

    def test_upsert_keeps_curated_fields(self) -> None:
        index = _index()
        index.upsert(_poi("square", 100, pinned=True, notes="meet here", tags=("start",), city="Jaffa"))

        updated = index.upsert(_poi("square", 100, city=None))

        self.assertTrue(updated.pinned)
        self.assertEqual(updated.notes, "meet here")
        self.assertEqual(tuple(updated.tags), ("start",))
        self.assertEqual(updated.city, "Jaffa")

    def test_update_location_on_missing_entry_returns_none(self) -> None:
        self.assertIsNone(_index().update_location("ghost", country="Israel", city="Tel Aviv", neighborhood=None))

    def test_query_food_orders_by_rating(self) -> None:
        index = _index()
        index.upsert(_poi("bakery", 50, primary=False, types=("bakery", "food"), rating=4.1))
        index.upsert(_poi("bistro", 150, primary=False, types=("restaurant", "food"), rating=4.8))
        index.upsert(_poi("shop", 60, primary=False, types=("gift_shop",), rating=5.0))

        hits = index.query_food(CENTER, 500, limit=5)

        self.assertEqual([h.poi.id for h in hits], ["bistro", "bakery"])


class EscalatingQueryTests(unittest.TestCase):
    def test_third_tier_is_not_reached_when_second_suffices(self) -> None:
        index = _index()
        for i in range(10):
            index.upsert(_poi(f"primary{i}", 10 + i * 50))
        for i in range(45):
            index.upsert(_poi(f"secondary{i}", 20 + i * 15, primary=False))

        result = escalating_query(index, CENTER, 800, min_count=40, radius_multiplier=1.5)

        self.assertEqual(len(result.hits), 40)
        self.assertEqual(result.final_tier.tier, 2)
        self.assertEqual([t.count for t in result.tiers], [10, 40])

    def test_widened_radius_is_used_as_last_resort(self) -> None:
        index = _index()
        index.upsert(_poi("near", 100))
        index.upsert(_poi("far", 1000))

        result = escalating_query(index, CENTER, 800, min_count=5, radius_multiplier=1.5)

        self.assertEqual(result.final_tier.tier, 3)
        self.assertEqual(result.final_tier.radius_m, 1200)
        self.assertEqual([h.poi.id for h in result.hits], ["near", "far"])

    def test_first_tier_suffices(self) -> None:
        index = _index()
        for i in range(5):
            index.upsert(_poi(f"p{i}", 50 * (i + 1)))

        result = escalating_query(index, CENTER, 800, min_count=3, radius_multiplier=1.5)

        self.assertEqual(len(result.tiers), 1)
        self.assertEqual(len(result.hits), 3)


class SearchAreaTests(unittest.IsolatedAsyncioTestCase):
    async def test_search_area_merges_three_groups_without_duplicates(self) -> None:
        pois = await search_area(MockPointSearchProvider(per_group=4), CENTER, 1000)

        ids = [p.id for p in pois]
        self.assertEqual(len(ids), 12)
        self.assertEqual(len(set(ids)), 12)
        self.assertEqual(sum(1 for p in pois if not p.primary), 4)

    def test_search_radius_is_clamped(self) -> None:
        self.assertEqual(search_radius_m(10), 500)
        self.assertEqual(search_radius_m(60), 996)
        self.assertEqual(search_radius_m(600), 3000)


if __name__ == "__main__":
    unittest.main()
