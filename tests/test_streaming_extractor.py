import json
import unittest
from typing import AsyncIterator, Iterable

from hear_and_there.streaming.extractor import JsonArrayExtractor, extract_models, extract_objects
from hear_and_there.tours.models import CandidateTour


async def _stream(chunks: Iterable[str]) -> AsyncIterator[str]:
    for chunk in chunks:
        yield chunk


def _feed_all(chunks: Iterable[str]) -> list[dict]:
    extractor = JsonArrayExtractor()
    out = []
    for chunk in chunks:
        out.extend(extractor.feed(chunk))
    extractor.finish()
    return out


class JsonArrayExtractorTests(unittest.TestCase):
    def test_element_split_across_chunks_is_emitted_once_complete(self) -> None:
        extractor = JsonArrayExtractor()

        self.assertEqual(extractor.feed('[{"id":"a","ti'), [])
        self.assertTrue(extractor.pending)
        self.assertEqual(extractor.feed('tle":"X"}]'), [{"id": "a", "title": "X"}])
        self.assertTrue(extractor.closed)

    def test_output_does_not_depend_on_chunk_boundaries(self) -> None:
        text = json.dumps(
            [
                {"title": "Old Town", "stops": [{"name": "Clock {Tower}"}]},
                {"title": 'Quote "and" brace }', "stops": []},
                {"title": "Port", "nested": {"a": [1, 2, {"b": "]"}]}},
            ]
        )
        whole = _feed_all([text])

        for size in (1, 2, 3, 7, 50):
            chunks = [text[i : i + size] for i in range(0, len(text), size)]
            self.assertEqual(_feed_all(chunks), whole, msg=f"chunk size {size}")
        self.assertEqual(len(whole), 3)

    def test_leading_markdown_fence_and_wrapper_are_skipped(self) -> None:
        text = '```json\n{"tours": [{"id": 1}, {"id": 2}]}\n```'

        self.assertEqual(_feed_all([text]), [{"id": 1}, {"id": 2}])

    def test_malformed_element_is_dropped_and_stream_continues(self) -> None:
        text = '[{"a": 1}, {"b": }, {"c": 3}]'

        with self.assertLogs("hear_and_there.streaming.extractor", level="WARNING"):
            objects = _feed_all([text])

        self.assertEqual(objects, [{"a": 1}, {"c": 3}])

    def test_text_after_array_close_is_ignored(self) -> None:
        extractor = JsonArrayExtractor()

        self.assertEqual(extractor.feed('[{"a": 1}] trailing {"b": 2}'), [{"a": 1}])
        self.assertEqual(extractor.feed('{"c": 3}'), [])

    def test_unterminated_element_is_discarded_on_finish(self) -> None:
        extractor = JsonArrayExtractor()
        extractor.feed('[{"a": 1}, {"b": ')

        with self.assertLogs("hear_and_there.streaming.extractor", level="WARNING"):
            extractor.finish()

        self.assertFalse(extractor.pending)
        self.assertEqual(extractor.emitted, 1)

    def test_partial_title_is_reported_before_element_closes(self) -> None:
        hints = []
        extractor = JsonArrayExtractor(on_partial=hints.append)

        extractor.feed('[{"title": "Old Town", "stops": [')
        extractor.feed('{"name": "Gate"}')

        self.assertEqual(len(hints), 1)
        self.assertEqual(hints[0].index, 0)
        self.assertEqual(hints[0].field, "title")
        self.assertEqual(hints[0].value, "Old Town")


class ExtractAsyncTests(unittest.IsolatedAsyncioTestCase):
    async def test_extract_objects_yields_in_stream_order(self) -> None:
        chunks = ['[{"n"', ": 1},", '{"n": 2}', ",{", '"n": 3}]']

        objects = [obj async for obj in extract_objects(_stream(chunks))]

        self.assertEqual([o["n"] for o in objects], [1, 2, 3])

    async def test_extract_models_skips_invalid_objects(self) -> None:
        valid = {
            "id": "t1",
            "title": "Harbor Walk",
            "estimatedTotalMinutes": 45.2,
            "stops": [{"name": "Pier", "latitude": 32.0, "longitude": 34.7, "dwellMinutes": 10}],
        }
        invalid = {"id": "t2", "title": "No stops", "estimatedTotalMinutes": 30, "stops": []}
        text = json.dumps([valid, invalid])

        tours = [tour async for tour in extract_models(_stream([text[:20], text[20:]]), CandidateTour)]

        self.assertEqual(len(tours), 1)
        self.assertEqual(tours[0].title, "Harbor Walk")
        self.assertEqual(tours[0].estimated_total_minutes, 46)
        self.assertEqual(tours[0].stops[0].dwell_minutes, 10)


if __name__ == "__main__":
    unittest.main()
