"""Incremental extraction of objects from streamed model output."""

from hear_and_there.streaming.extractor import JsonArrayExtractor, PartialHint, extract_models, extract_objects

__all__ = ["JsonArrayExtractor", "PartialHint", "extract_models", "extract_objects"]
