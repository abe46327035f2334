"""Audioguide generation: per-stop narration scripts and speech, fanned out and merged back by slot."""

from hear_and_there.audioguide.graph import build_audioguide_graph
from hear_and_there.audioguide.state import AudioguideState, AudioguideStep, thread_id_for
from hear_and_there.audioguide.steps import AudioguideSteps

__all__ = ["AudioguideState", "AudioguideStep", "AudioguideSteps", "build_audioguide_graph", "thread_id_for"]
