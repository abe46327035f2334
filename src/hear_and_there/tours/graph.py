from __future__ import annotations

from typing import Optional

from hear_and_there.graph.checkpoint import CheckpointStore
from hear_and_there.graph.engine import END, CompiledGraph, StepGraph
from hear_and_there.graph.state import GraphState
from hear_and_there.tours.state import CacheRoute, CandidateRoute, PoiRoute, TourState, TourStep
from hear_and_there.tours.steps import NO_POIS_AVAILABLE, CandidateSteps


def route_after_tour_cache(state: GraphState) -> CacheRoute:
    return CacheRoute.HIT if state.cache_hit else CacheRoute.MISS


def route_after_poi_cache(state: GraphState) -> PoiRoute:
    return PoiRoute.SUFFICIENT if state.poi_cache_hit else PoiRoute.FETCH


def route_after_candidates(state: GraphState) -> CandidateRoute:
    return CandidateRoute.STOP if state.error == NO_POIS_AVAILABLE else CandidateRoute.VALIDATE


def build_candidate_graph(steps: CandidateSteps, *, checkpointer: Optional[CheckpointStore] = None) -> CompiledGraph:
    graph = StepGraph(name="candidate_tours", schema=TourState, step_ids=TourStep)
    graph.add_step(TourStep.CHECK_TOUR_CACHE, steps.check_tour_cache)
    graph.add_step(TourStep.REVERSE_GEOCODE, steps.reverse_geocode)
    graph.add_step(TourStep.CHECK_POI_CACHE, steps.check_poi_cache)
    graph.add_step(TourStep.FETCH_POIS, steps.fetch_pois)
    graph.add_step(TourStep.QUERY_POIS, steps.query_pois)
    graph.add_step(TourStep.GENERATE_AREA_SUMMARIES, steps.generate_area_summaries)
    graph.add_step(TourStep.ASSEMBLE_AREA_CONTEXT, steps.assemble_area_context)
    graph.add_step(TourStep.GENERATE_CANDIDATE_TOURS, steps.generate_candidate_tours)
    graph.add_step(TourStep.VALIDATE_WALKING_TIMES, steps.validate_walking_times)
    graph.add_step(TourStep.RANK_TOURS, steps.rank_tours)
    graph.add_step(TourStep.SAVE_TOUR_SUGGESTIONS, steps.save_tour_suggestions)

    graph.add_conditional_edges(
        TourStep.CHECK_TOUR_CACHE,
        route_after_tour_cache,
        {CacheRoute.HIT: END, CacheRoute.MISS: TourStep.REVERSE_GEOCODE},
    )
    graph.add_edge(TourStep.REVERSE_GEOCODE, TourStep.CHECK_POI_CACHE)
    graph.add_conditional_edges(
        TourStep.CHECK_POI_CACHE,
        route_after_poi_cache,
        {PoiRoute.SUFFICIENT: TourStep.QUERY_POIS, PoiRoute.FETCH: TourStep.FETCH_POIS},
    )
    graph.add_edge(TourStep.FETCH_POIS, TourStep.QUERY_POIS)
    graph.add_edge(TourStep.QUERY_POIS, TourStep.GENERATE_AREA_SUMMARIES)
    graph.add_edge(TourStep.GENERATE_AREA_SUMMARIES, TourStep.ASSEMBLE_AREA_CONTEXT)
    graph.add_edge(TourStep.ASSEMBLE_AREA_CONTEXT, TourStep.GENERATE_CANDIDATE_TOURS)
    graph.add_conditional_edges(
        TourStep.GENERATE_CANDIDATE_TOURS,
        route_after_candidates,
        {CandidateRoute.VALIDATE: TourStep.VALIDATE_WALKING_TIMES, CandidateRoute.STOP: END},
    )
    graph.add_edge(TourStep.VALIDATE_WALKING_TIMES, TourStep.RANK_TOURS)
    graph.add_edge(TourStep.RANK_TOURS, TourStep.SAVE_TOUR_SUGGESTIONS)
    graph.add_edge(TourStep.SAVE_TOUR_SUGGESTIONS, END)
    return graph.compile(TourStep.CHECK_TOUR_CACHE, checkpointer=checkpointer)
