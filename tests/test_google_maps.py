import unittest

from hear_and_there.config.models import GoogleMapsSettings
from hear_and_there.core.models import GeoPoint
from hear_and_there.providers.google_maps import (
    GoogleMapsClient,
    ProviderResponseError,
    extract_street_names,
    parse_directions_response,
    parse_geocode_response,
    parse_places_response,
)


def _component(name: str, *types: str) -> dict:
    return {"long_name": name, "short_name": name, "types": list(types)}


class GeocodeParsingTests(unittest.TestCase):
    def test_country_city_and_neighborhood(self) -> None:
        payload = {
            "status": "OK",
            "results": [
                {
                    "address_components": [
                        _component("12", "street_number"),
                        _component("Shabazi", "route"),
                        _component("Neve Tzedek", "neighborhood", "political"),
                        _component("Tel Aviv-Yafo", "locality", "political"),
                        _component("Israel", "country", "political"),
                    ]
                }
            ],
        }

        location = parse_geocode_response(payload)

        self.assertEqual(location.country, "Israel")
        self.assertEqual(location.city, "Tel Aviv-Yafo")
        self.assertEqual(location.neighborhood, "Neve Tzedek")

    def test_components_are_collected_across_results(self) -> None:
        payload = {
            "results": [
                {"address_components": [_component("Israel", "country")]},
                {"address_components": [_component("Haifa", "locality"), _component("Hadar", "sublocality_level_1")]},
            ]
        }

        location = parse_geocode_response(payload)

        self.assertEqual((location.country, location.city, location.neighborhood), ("Israel", "Haifa", "Hadar"))

    def test_neighborhood_stands_in_for_missing_city(self) -> None:
        payload = {"results": [{"address_components": [_component("Old City", "neighborhood"), _component("Israel", "country")]}]}

        location = parse_geocode_response(payload)

        self.assertEqual(location.city, "Old City")
        self.assertIsNone(location.neighborhood)

    def test_no_results(self) -> None:
        self.assertIsNone(parse_geocode_response({"status": "ZERO_RESULTS", "results": []}))
        self.assertIsNone(parse_geocode_response({"results": [{"address_components": [_component("x", "route")]}]}))


class PlacesParsingTests(unittest.TestCase):
    def test_places_become_points_of_interest(self) -> None:
        payload = {
            "places": [
                {
                    "id": "ChIJ1",
                    "displayName": {"text": "Jaffa Clock Tower", "languageCode": "en"},
                    "types": ["historical_landmark", "point_of_interest"],
                    "location": {"latitude": 32.0545, "longitude": 34.7563},
                    "rating": 4.5,
                },
                {"types": ["park"]},
            ]
        }

        pois = parse_places_response(payload, primary=True, center=GeoPoint(32.05, 34.75))

        self.assertEqual(pois[0].id, "ChIJ1")
        self.assertEqual(pois[0].name, "Jaffa Clock Tower")
        self.assertEqual(pois[0].rating, 4.5)
        self.assertTrue(pois[0].primary)
        self.assertEqual(pois[1].id, "poi_2")
        self.assertEqual(pois[1].name, "Unknown Place")
        self.assertEqual((pois[1].latitude, pois[1].longitude), (32.05, 34.75))

    def test_empty_payload(self) -> None:
        self.assertEqual(parse_places_response({}, primary=False, center=GeoPoint(0, 0)), [])


class DirectionsParsingTests(unittest.TestCase):
    def test_legs_with_steps_and_street_names(self) -> None:
        payload = {
            "status": "OK",
            "routes": [
                {
                    "legs": [
                        {
                            "distance": {"value": 420, "text": "0.4 km"},
                            "duration": {"value": 330, "text": "6 mins"},
                            "steps": [
                                {
                                    "html_instructions": "Head <b>north</b> on <b>Herzl St</b>",
                                    "distance": {"text": "0.2 km"},
                                },
                                {
                                    "html_instructions": "Turn <b>left</b> onto <b>Rothschild Blvd</b>",
                                    "distance": {"text": "0.2 km"},
                                },
                            ],
                        },
                        {"distance": {"value": 100}, "duration": {"value": 80}, "steps": []},
                    ]
                }
            ],
        }

        legs = parse_directions_response(payload)

        self.assertEqual(len(legs), 2)
        self.assertEqual(legs[0].distance_meters, 420)
        self.assertEqual(legs[0].duration_seconds, 330)
        self.assertEqual(legs[0].steps[0].instruction, "Head north on Herzl St")
        self.assertEqual(list(legs[0].street_names), ["Herzl St", "Rothschild Blvd"])
        self.assertEqual(list(legs[1].steps), [])

    def test_unsuccessful_status_raises(self) -> None:
        with self.assertRaises(ProviderResponseError):
            parse_directions_response({"status": "ZERO_RESULTS", "routes": []})

    def test_street_names_are_deduplicated_in_order(self) -> None:
        names = extract_street_names(
            [
                "Walk toward <b>Allenby St</b>",
                "Continue on <b>Allenby St</b>",
                "Slight right onto <b>King George St</b>",
                "Destination will be on the right",
            ]
        )

        self.assertEqual(names, ["Allenby St", "King George St"])


class GoogleMapsClientTests(unittest.TestCase):
    def test_api_key_is_required(self) -> None:
        with self.assertRaises(ValueError):
            GoogleMapsClient(settings=GoogleMapsSettings(api_key=""), session=None)  # type: ignore[arg-type]


if __name__ == "__main__":
    unittest.main()
