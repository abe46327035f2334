import unittest

from hear_and_there.audioguide.prompts import build_intro_prompt, build_stop_prompt, tour_areas_text
from hear_and_there.audioguide.speech import (
    audio_file_name,
    language_code_for_voice,
    resolve_voice,
    trim_to_bytes,
)
from hear_and_there.config.models import AudioguideSettings

_TOUR = {
    "id": "t1",
    "title": "Bauhaus Walk",
    "theme": "Architecture",
    "abstract": "White City highlights.",
    "estimated_total_minutes": 60,
    "stops": [
        {"name": "Dizengoff Square", "latitude": 32.078, "longitude": 34.774, "dwell_minutes": 10},
        {"name": "Rothschild Boulevard", "latitude": 32.064, "longitude": 34.774, "dwell_minutes": 15},
    ],
}


class TrimToBytesTests(unittest.TestCase):
    def test_short_text_is_unchanged(self) -> None:
        self.assertEqual(trim_to_bytes("Shalom", 4998), "Shalom")

    def test_long_ascii_text_fits_with_ellipsis(self) -> None:
        trimmed = trim_to_bytes("a" * 6000, 4998)

        self.assertTrue(trimmed.endswith("..."))
        self.assertLessEqual(len(trimmed.encode("utf-8")), 4998)

    def test_multibyte_text_is_measured_in_bytes(self) -> None:
        text = "ש" * 3000
        self.assertEqual(len(text), 3000)

        trimmed = trim_to_bytes(text, 4998)

        self.assertLessEqual(len(trimmed.encode("utf-8")), 4998)
        self.assertTrue(trimmed.endswith("..."))


    def test_limit_smaller_than_the_ellipsis_is_never_exceeded(self) -> None:
        self.assertEqual(trim_to_bytes("Shalom", 2), "Sh")
        self.assertEqual(trim_to_bytes("Shalom", 0), "")
        self.assertEqual(trim_to_bytes("שלום", 3), "ש")


class VoiceTests(unittest.TestCase):
    def test_language_code_follows_voice_prefix(self) -> None:
        self.assertEqual(language_code_for_voice("he-IL-Standard-D"), "he-IL")
        self.assertEqual(language_code_for_voice("en-GB-Wavenet-B"), "en-GB")
        self.assertEqual(language_code_for_voice("en-US-Neural2-F"), "en-US")

    def test_voice_defaults_by_language(self) -> None:
        settings = AudioguideSettings()

        self.assertEqual(resolve_voice(None, "hebrew", settings), "he-IL-Standard-D")
        self.assertEqual(resolve_voice(None, "english", settings), "en-GB-Wavenet-B")
        self.assertEqual(resolve_voice("en-US-Neural2-F", "hebrew", settings), "en-US-Neural2-F")

    def test_audio_file_names(self) -> None:
        self.assertEqual(audio_file_name("t1"), "t1_intro.mp3")
        self.assertEqual(audio_file_name("t1", 0), "t1_stop_0.mp3")


class NarrationPromptTests(unittest.TestCase):
    def test_areas_text_lists_each_city_once(self) -> None:
        summaries = {
            "Israel:Tel Aviv:Lev HaIr": {
                "city": "Tel Aviv",
                "neighborhood": "Lev HaIr",
                "city_data": {"summary": "Coastal city.", "key_facts": ["Founded 1909"]},
                "neighborhood_data": {"summary": "Historic center."},
            },
            "Israel:Tel Aviv:unknown": {
                "city": "Tel Aviv",
                "neighborhood": None,
                "city_data": {"summary": "Coastal city.", "key_facts": ["Founded 1909"]},
            },
        }

        text = tour_areas_text(summaries)

        self.assertEqual(text.count("Coastal city."), 1)
        self.assertIn("Historic center.", text)
        self.assertIn("- Founded 1909", text)

    def test_areas_text_without_summaries(self) -> None:
        self.assertIn("No additional context available", tour_areas_text({}))

    def test_intro_and_stop_prompts(self) -> None:
        intro = build_intro_prompt(_TOUR, location_summaries={}, language="hebrew")
        stop = build_stop_prompt(_TOUR, 1, area={"city": "Tel Aviv"}, language="english")

        self.assertIn("Bauhaus Walk", intro)
        self.assertIn("HEBREW", intro)
        self.assertIn("Rothschild Boulevard", stop)
        self.assertIn("ENGLISH", stop)


if __name__ == "__main__":
    unittest.main()
