from __future__ import annotations

import logging
from typing import Optional

from hear_and_there.config.models import AudioguideSettings

logger = logging.getLogger(__name__)

_ELLIPSIS = "..."


def trim_to_bytes(text: str, max_bytes: int) -> str:
    """
    Fit `text` into `max_bytes` of UTF-8 for the speech provider.

    Oversized text loses its last 10% of characters until it fits, then gets an
    ellipsis. The ellipsis is counted in the limit.
    """
    size = len(text.encode("utf-8"))
    if size <= max_bytes:
        return text
    if max_bytes < len(_ELLIPSIS):
        # No room for the ellipsis; cut on a character boundary instead.
        return text.encode("utf-8")[: max(0, max_bytes)].decode("utf-8", errors="ignore")

    budget = max_bytes - len(_ELLIPSIS)
    trimmed = text
    while len(trimmed.encode("utf-8")) > budget:
        trimmed = trimmed[: int(len(trimmed) * 0.9)]
    result = trimmed.rstrip() + _ELLIPSIS
    logger.warning(
        "Script exceeds the speech byte limit and was trimmed. original_bytes=%d final_bytes=%d limit=%d",
        size,
        len(result.encode("utf-8")),
        max_bytes,
    )
    return result


def default_voice(language: str, settings: AudioguideSettings) -> str:
    return settings.hebrew_voice if language == "hebrew" else settings.default_voice


def resolve_voice(voice: Optional[str], language: str, settings: AudioguideSettings) -> str:
    return voice or default_voice(language, settings)


def language_code_for_voice(voice: str) -> str:
    """Language code derived from the voice name prefix, e.g. `en-GB-Wavenet-B` -> `en-GB`."""
    if voice.startswith("he-"):
        return "he-IL"
    if voice.startswith("en-GB-"):
        return "en-GB"
    return "en-US"


def audio_file_name(tour_id: str, stop_index: Optional[int] = None) -> str:
    if stop_index is None:
        return f"{tour_id}_intro.mp3"
    return f"{tour_id}_stop_{stop_index}.mp3"
