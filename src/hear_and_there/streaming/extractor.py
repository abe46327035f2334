from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Callable, Dict, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


@dataclass(frozen=True, slots=True)
class PartialHint:
    """A scalar peeked from an element that has not closed yet. Not authoritative."""

    index: int
    field: str
    value: str


PartialCallback = Callable[[PartialHint], None]


def _peek_pattern(field: str) -> re.Pattern[str]:
    return re.compile(r'"' + re.escape(field) + r'"\s*:\s*"((?:[^"\\]|\\.)*)"')


class JsonArrayExtractor:
    """
    Incremental extractor of the objects of a top-level JSON array.

    Feed text chunks in order; each call returns the objects whose closing brace
    was seen in that chunk. Text before the opening `[` (markdown fences, a
    wrapping `{"tours":` key) is skipped. Only the text of the one pending object
    is retained between calls.
    """

    def __init__(self, *, on_partial: Optional[PartialCallback] = None, peek_fields: Sequence[str] = ("title",)) -> None:
        self._on_partial = on_partial
        self._peek = {name: _peek_pattern(name) for name in peek_fields}
        self._peeked: Dict[str, str] = {}

        self._buffer = ""
        self._pos = 0
        self._start: Optional[int] = None
        self._depth = 0
        self._in_string = False
        self._escape = False
        self._array_started = False
        self._array_closed = False
        self._emitted = 0
        self._dropped = 0

    @property
    def emitted(self) -> int:
        return self._emitted

    @property
    def closed(self) -> bool:
        return self._array_closed

    @property
    def pending(self) -> bool:
        return self._start is not None

    def feed(self, chunk: str) -> list[Dict[str, Any]]:
        if self._array_closed or not chunk:
            return []
        self._buffer += chunk
        out: list[Dict[str, Any]] = []

        i = self._pos
        while i < len(self._buffer):
            ch = self._buffer[i]

            if not self._array_started:
                if ch == "[":
                    self._array_started = True
                i += 1
                continue

            if self._in_string:
                if self._escape:
                    self._escape = False
                elif ch == "\\":
                    self._escape = True
                elif ch == '"':
                    self._in_string = False
                i += 1
                continue

            if ch == '"':
                self._in_string = True
            elif ch == "{":
                if self._depth == 0:
                    self._start = i
                self._depth += 1
            elif ch == "}" and self._depth > 0:
                self._depth -= 1
                if self._depth == 0 and self._start is not None:
                    obj = self._parse(self._buffer[self._start : i + 1])
                    if obj is not None:
                        out.append(obj)
                    self._buffer = self._buffer[i + 1 :]
                    self._start = None
                    self._peeked = {}
                    i = 0
                    continue
            elif ch == "]" and self._depth == 0:
                self._array_closed = True
                self._buffer = ""
                i = 0
                break
            i += 1

        self._compact(i)
        self._peek_pending()
        return out

    def finish(self) -> None:
        """Signal end of input. An unterminated element is logged and discarded."""
        if self._start is not None:
            logger.warning(
                "Stream ended inside an unterminated array element. emitted=%d pending_chars=%d",
                self._emitted,
                len(self._buffer),
            )
        elif not self._array_closed and self._array_started:
            logger.debug("Stream ended without closing the array. emitted=%d", self._emitted)
        self._buffer = ""
        self._start = None
        self._pos = 0

    def _parse(self, text: str) -> Optional[Dict[str, Any]]:
        try:
            obj = json.loads(text)
        except json.JSONDecodeError as exc:
            self._dropped += 1
            logger.warning("Dropping malformed array element. index=%d error=%s", self._emitted + self._dropped - 1, exc)
            return None
        if not isinstance(obj, dict):
            return None
        self._emitted += 1
        return obj

    def _compact(self, scanned_to: int) -> None:
        if self._start is None:
            # Nothing pending: everything scanned so far can go.
            self._buffer = self._buffer[scanned_to:]
            self._pos = 0
            return
        if self._start > 0:
            self._buffer = self._buffer[self._start :]
            scanned_to -= self._start
            self._start = 0
        self._pos = scanned_to

    def _peek_pending(self) -> None:
        if self._on_partial is None or self._start is None:
            return
        pending = self._buffer[self._start :]
        for name, pattern in self._peek.items():
            if name in self._peeked:
                continue
            match = pattern.search(pending)
            if match is None:
                continue
            try:
                value = json.loads(f'"{match.group(1)}"')
            except json.JSONDecodeError:
                continue
            self._peeked[name] = value
            self._on_partial(PartialHint(index=self._emitted, field=name, value=value))


async def extract_objects(
    chunks: AsyncIterable[str],
    *,
    on_partial: Optional[PartialCallback] = None,
) -> AsyncIterator[Dict[str, Any]]:
    """Yield each object of a streamed top-level JSON array as soon as it closes."""
    extractor = JsonArrayExtractor(on_partial=on_partial)
    async for chunk in chunks:
        for obj in extractor.feed(chunk):
            yield obj
        if extractor.closed:
            break
    extractor.finish()


async def extract_models(
    chunks: AsyncIterable[str],
    model: Type[T],
    *,
    on_partial: Optional[PartialCallback] = None,
) -> AsyncIterator[T]:
    """Like `extract_objects`, validating each object against `model`; invalid ones are skipped."""
    async for obj in extract_objects(chunks, on_partial=on_partial):
        try:
            yield model.model_validate(obj)
        except SchemaValidationError as exc:
            logger.warning(
                "Skipping streamed object that failed validation. model=%s errors=%d",
                model.__name__,
                exc.error_count(),
            )
