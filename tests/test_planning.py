import unittest

from hear_and_there.core.models import RouteLeg, RouteStep
from hear_and_there.tours.models import CandidateTour
from hear_and_there.tours.planning import (
    HEURISTIC_THEMES,
    apply_route_legs,
    heuristic_tours,
    minimum_stops,
    rank_tours,
    tour_from_candidate,
    within_duration,
)
from hear_and_there.tours.prompts import build_candidate_prompt


def _pois(count: int) -> list[dict]:
    return [
        {"id": f"p{i}", "name": f"Place {i}", "latitude": 32.06 + i * 0.001, "longitude": 34.77, "types": ["museum"]}
        for i in range(count)
    ]


def _tour(total: int, stops: int) -> dict:
    return {
        "id": f"tour-{total}-{stops}",
        "title": "T",
        "estimated_total_minutes": total,
        "stops": [{"name": f"S{i}", "latitude": 32.0, "longitude": 34.0, "dwell_minutes": 10} for i in range(stops)],
    }


class PlanningTests(unittest.TestCase):
    def test_minimum_stops(self) -> None:
        self.assertEqual(minimum_stops(60), 4)
        self.assertEqual(minimum_stops(90), 6)
        self.assertEqual(minimum_stops(10), 1)

    def test_candidate_conversion_assigns_fresh_unique_ids(self) -> None:
        candidate = CandidateTour.model_validate(
            {
                "id": "tour_1",
                "title": "Old Jaffa",
                "estimatedTotalMinutes": 50,
                "stops": [{"name": "Clock Tower", "latitude": 32.05, "longitude": 34.75}],
            }
        )

        first = tour_from_candidate(candidate)
        second = tour_from_candidate(candidate)

        self.assertEqual(first["original_tour_id"], "tour_1")
        self.assertNotEqual(first["id"], second["id"])
        self.assertEqual(first["stops"][0]["dwell_minutes"], 10)
        self.assertEqual(first["stops"][0]["street_names"], [])

    def test_heuristic_tours_without_pois_start_at_user(self) -> None:
        tours = heuristic_tours(latitude=32.0, longitude=34.0, duration_minutes=45, city=None, pois=[])

        self.assertEqual(len(tours), 1)
        self.assertEqual(tours[0]["title"], "Stroll Around Your Area")
        self.assertEqual(tours[0]["stops"][0]["name"], "Start Point")
        self.assertEqual(tours[0]["estimated_total_minutes"], 45)

    def test_heuristic_tours_split_points_by_theme(self) -> None:
        tours = heuristic_tours(latitude=32.0, longitude=34.0, duration_minutes=60, city="Haifa", pois=_pois(7))

        self.assertEqual([t["theme"] for t in tours], list(HEURISTIC_THEMES))
        self.assertEqual([len(t["stops"]) for t in tours], [3, 3, 1])
        self.assertEqual(tours[0]["title"], "History Walk in Haifa")
        self.assertEqual(tours[0]["stops"][0]["place_id"], "p0")
        self.assertEqual(tours[0]["estimated_total_minutes"], 15 * 3 + 8 * 2)

    def test_rank_prefers_duration_fit_then_stop_count(self) -> None:
        ranked = rank_tours([_tour(90, 5), _tour(60, 2), _tour(55, 4)], 60, limit=2)

        self.assertEqual([t["id"] for t in ranked], ["tour-60-2", "tour-55-4"])

    def test_rank_keeps_input_order_on_ties(self) -> None:
        first, second = _tour(60, 3), _tour(60, 3)
        first["id"], second["id"] = "a", "b"

        self.assertEqual([t["id"] for t in rank_tours([first, second], 60, limit=3)], ["a", "b"])

    def test_within_duration(self) -> None:
        self.assertTrue(within_duration(_tour(85, 3), 60, tolerance_minutes=30))
        self.assertFalse(within_duration(_tour(95, 3), 60, tolerance_minutes=30))

    def test_route_legs_replace_model_estimates(self) -> None:
        tour = _tour(40, 2)
        tour["stops"][1]["walk_minutes_from_previous"] = 5
        legs = [
            RouteLeg(distance_meters=250, duration_seconds=181, street_names=("Herzl St", "Herzl St")),
            RouteLeg(
                distance_meters=400,
                duration_seconds=300,
                steps=(RouteStep(instruction="Turn left onto Allenby", distance="0.4 km"),),
                street_names=("Allenby",),
            ),
        ]

        validated = apply_route_legs(tour, legs)

        self.assertEqual([s["walk_minutes_from_previous"] for s in validated["stops"]], [4, 5])
        self.assertEqual(validated["stops"][1]["llm_walk_minutes"], 5)
        self.assertEqual(validated["stops"][0]["street_names"], ["Herzl St"])
        self.assertIn("walking_directions", validated["stops"][1])
        self.assertNotIn("walking_directions", validated["stops"][0])
        self.assertEqual(validated["estimated_total_minutes"], 10 + 10 + 4 + 5)
        self.assertEqual(validated["llm_estimated_total_minutes"], 40)
        self.assertNotIn("llm_walk_minutes", tour["stops"][0])

    def test_route_leg_count_mismatch_returns_none(self) -> None:
        self.assertIsNone(apply_route_legs(_tour(40, 2), [RouteLeg(distance_meters=1, duration_seconds=1)]))


class CandidatePromptTests(unittest.TestCase):
    def test_prompt_carries_context_and_customization(self) -> None:
        prompt = build_candidate_prompt(
            latitude=32.06,
            longitude=34.77,
            duration_minutes=120,
            language="hebrew",
            customization="  street art  ",
            area_context={"city": "Tel Aviv", "neighborhood": "Florentin", "pois": _pois(2)},
            food_pois=[{"name": "Hummus Place", "latitude": 32.06, "longitude": 34.77, "types": ["food"]}],
        )

        self.assertIn("at least 8 stops", prompt)
        self.assertIn("HEBREW", prompt)
        self.assertIn('"street art"', prompt)
        self.assertIn("Hummus Place", prompt)
        self.assertIn('"neighborhood": "Florentin"', prompt)


if __name__ == "__main__":
    unittest.main()
