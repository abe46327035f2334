import unittest
from dataclasses import dataclass, field, replace
from typing import Callable, Optional

from hear_and_there.audioguide import thread_id_for
from hear_and_there.config.models import AppConfig, CancellationSettings, RetrySettings
from hear_and_there.core.models import AudioguideRequest, CandidateRequest
from hear_and_there.providers.mock import mock_collaborators
from hear_and_there.service import Collaborators, TourService
from hear_and_there.storage.records import TourRecord

_CONFIG = AppConfig(
    cancellation=CancellationSettings(poll_interval_seconds=0.01),
    retry=RetrySettings(max_attempts=2, base_delay_seconds=0.0),
)


@dataclass
class _RecordingSynthesizer:
    fail_names: tuple = ()
    on_first_call: Optional[Callable[[], None]] = None
    calls: list = field(default_factory=list)

    async def synthesize(self, *, text: str, voice: str, language: str, output_name: str) -> str:
        self.calls.append(output_name)
        if self.on_first_call is not None:
            hook, self.on_first_call = self.on_first_call, None
            hook()
        if output_name in self.fail_names:
            raise ValueError(f"voice rejected for {output_name}")
        return f"https://audio.example.invalid/{output_name}"


@dataclass
class _CountingScriptLLM:
    fail: bool = False
    calls: int = 0

    async def generate(self, *, prompt: str, use_fallback: bool = False) -> str:
        self.calls += 1
        if self.fail:
            raise ValueError("prompt rejected")
        return f"Narration number {self.calls}."


class AudioguideWorkflowTests(unittest.IsolatedAsyncioTestCase):
    def _service(self, **overrides) -> TourService:
        collaborators: Collaborators = replace(mock_collaborators(), **overrides)
        self.service = TourService(config=_CONFIG, collaborators=collaborators)
        return self.service

    async def asyncTearDown(self) -> None:
        await self.service.aclose()

    async def _suggested_tour(self) -> dict:
        result = await self.service.suggest_tours(
            CandidateRequest(session_id="s1", latitude=32.0603, longitude=34.7657, duration_minutes=60)
        )
        return result.state.final_tours[0]

    async def _audioguide(self, tour_id: str, language: str = "english"):
        return await self.service.generate_audioguide(
            AudioguideRequest(session_id="s1", tour_id=tour_id, language=language)
        )

    async def test_complete_audioguide_for_a_suggested_tour(self) -> None:
        self._service()
        tour = await self._suggested_tour()

        result = await self._audioguide(tour["id"])

        self.assertTrue(result.completed)
        state = result.state
        stop_count = len(tour["stops"])
        self.assertEqual(state.status, "complete")
        self.assertEqual(state.voice, "en-GB-Wavenet-B")
        self.assertEqual(state.scripts["intro"]["model_used"], _CONFIG.llm.model)
        self.assertEqual(len(state.scripts["stops"]), stop_count)
        self.assertTrue(state.audio_files["intro"]["url"].endswith(f"{tour['id']}_intro.mp3"))
        self.assertTrue(state.audio_files["stops"][-1]["url"].endswith(f"_stop_{stop_count - 1}.mp3"))
        self.assertIn("Israel:Tel Aviv-Yafo:Neve Tzedek", state.location_summaries)

        record = self.service.get_tour(tour["id"])
        self.assertEqual(record.status, "complete")
        self.assertEqual(record.session_id, "s1")
        self.assertEqual(record.audio_files["intro"]["status"], "complete")

    async def test_hebrew_uses_hebrew_voice(self) -> None:
        synthesizer = _RecordingSynthesizer()
        self._service(synthesizer=synthesizer)
        tour = await self._suggested_tour()

        result = await self._audioguide(tour["id"], language="hebrew")

        self.assertEqual(result.state.voice, "he-IL-Standard-D")

    async def test_unknown_tour_fails_without_generating(self) -> None:
        script_llm = _CountingScriptLLM()
        self._service(script_llm=script_llm)

        result = await self._audioguide("missing")

        self.assertTrue(result.completed)
        self.assertEqual(result.state.error, "tour_not_found")
        self.assertEqual(result.state.status, "failed")
        self.assertEqual(list(result.steps_run), ["load_tour_data"])
        self.assertEqual(script_llm.calls, 0)

    async def test_retry_after_missing_tour_generates_once_the_tour_exists(self) -> None:
        self._service()
        tour = dict(await self._suggested_tour(), id="t-late")

        first = await self._audioguide("t-late")
        self.service.stores.tours.save(TourRecord(tour_id="t-late", session_id="s1", tour=tour))
        second = await self._audioguide("t-late")

        self.assertEqual(first.state.error, "tour_not_found")
        self.assertTrue(second.completed)
        self.assertIsNone(second.state.error)
        self.assertEqual(second.state.status, "complete")
        self.assertIn("synthesize_audio", second.steps_run)
        self.assertEqual(self.service.get_tour("t-late").status, "complete")

    async def test_failed_audio_item_gives_partial_result(self) -> None:
        synthesizer = _RecordingSynthesizer()
        self._service(synthesizer=synthesizer)
        tour = await self._suggested_tour()
        synthesizer.fail_names = (f"{tour['id']}_stop_1.mp3",)

        result = await self._audioguide(tour["id"])

        self.assertTrue(result.completed)
        self.assertEqual(result.state.status, "partial")
        self.assertEqual(result.state.audio_files["stops"][1]["status"], "failed")
        self.assertEqual(result.state.audio_files["stops"][0]["status"], "complete")
        self.assertEqual(result.state.audio_files["intro"]["status"], "complete")
        self.assertEqual(self.service.get_tour(tour["id"]).status, "partial")

    async def test_failed_scripts_skip_audio_and_fail_the_tour(self) -> None:
        synthesizer = _RecordingSynthesizer()
        self._service(script_llm=_CountingScriptLLM(fail=True), synthesizer=synthesizer)
        tour = await self._suggested_tour()

        result = await self._audioguide(tour["id"])

        self.assertTrue(result.completed)
        self.assertEqual(result.state.status, "failed")
        self.assertEqual(result.state.scripts["intro"]["status"], "failed")
        self.assertEqual(result.state.audio_files["intro"]["status"], "skipped")
        self.assertEqual(synthesizer.calls, [])

    async def test_completed_slots_are_not_generated_again(self) -> None:
        script_llm = _CountingScriptLLM()
        synthesizer = _RecordingSynthesizer()
        self._service(script_llm=script_llm, synthesizer=synthesizer)
        tour = await self._suggested_tour()

        await self._audioguide(tour["id"])
        scripts_after_first, audio_after_first = script_llm.calls, len(synthesizer.calls)
        again = await self._audioguide(tour["id"])

        self.assertEqual(scripts_after_first, len(tour["stops"]) + 1)
        self.assertEqual(script_llm.calls, scripts_after_first)
        self.assertEqual(len(synthesizer.calls), audio_after_first)
        self.assertEqual(again.state.status, "complete")

    async def test_cancelled_run_resumes_from_checkpoint(self) -> None:
        synthesizer = _RecordingSynthesizer()
        script_llm = _CountingScriptLLM()
        service = self._service(synthesizer=synthesizer, script_llm=script_llm)
        tour = await self._suggested_tour()
        synthesizer.on_first_call = lambda: service.cancel("s1")

        first = await self._audioguide(tour["id"])

        self.assertTrue(first.cancelled)
        self.assertEqual(service.get_tour(tour["id"]).status, "pending")
        checkpoint = service.stores.checkpoints.load(thread_id_for("s1", tour["id"]))
        self.assertIn(checkpoint.next_step, ("synthesize_audio", "finalize"))

        service.clear_cancellation("s1")
        second = await self._audioguide(tour["id"])

        self.assertTrue(second.completed)
        self.assertNotIn("load_tour_data", second.steps_run)
        self.assertNotIn("generate_scripts", second.steps_run)
        self.assertEqual(script_llm.calls, len(tour["stops"]) + 1)
        self.assertEqual(second.state.status, "complete")
        self.assertEqual(service.get_tour(tour["id"]).status, "complete")


if __name__ == "__main__":
    unittest.main()
