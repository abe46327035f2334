"""Candidate tour generation: POI discovery, area context, streamed candidates, validation and ranking."""

from hear_and_there.tours.graph import build_candidate_graph
from hear_and_there.tours.state import TourState, TourStep
from hear_and_there.tours.steps import CandidateSteps

__all__ = ["CandidateSteps", "TourState", "TourStep", "build_candidate_graph"]
