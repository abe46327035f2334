from __future__ import annotations

from typing import Optional

from hear_and_there.audioguide.state import AudioguideState, AudioguideStep, TourDataRoute
from hear_and_there.audioguide.steps import AudioguideSteps
from hear_and_there.graph.checkpoint import CheckpointStore
from hear_and_there.graph.engine import END, CompiledGraph, Edge, build
from hear_and_there.graph.state import GraphState


def route_after_load(state: GraphState) -> TourDataRoute:
    if state.tour and state.tour.get("stops") and not state.error:
        return TourDataRoute.READY
    return TourDataRoute.MISSING


def build_audioguide_graph(steps: AudioguideSteps, *, checkpointer: Optional[CheckpointStore] = None) -> CompiledGraph:
    return build(
        name="audioguide",
        schema=AudioguideState,
        step_ids=AudioguideStep,
        steps={
            AudioguideStep.LOAD_TOUR_DATA: steps.load_tour_data,
            AudioguideStep.PRELOAD_LOCATION_SUMMARIES: steps.preload_location_summaries,
            AudioguideStep.GENERATE_SCRIPTS: steps.generate_scripts,
            AudioguideStep.SYNTHESIZE_AUDIO: steps.synthesize_audio,
            AudioguideStep.FINALIZE: steps.finalize,
        },
        edges=[
            Edge(
                source=AudioguideStep.LOAD_TOUR_DATA,
                router=route_after_load,
                path_map={
                    TourDataRoute.READY: AudioguideStep.PRELOAD_LOCATION_SUMMARIES,
                    TourDataRoute.MISSING: END,
                },
            ),
            Edge(source=AudioguideStep.PRELOAD_LOCATION_SUMMARIES, target=AudioguideStep.GENERATE_SCRIPTS),
            Edge(source=AudioguideStep.GENERATE_SCRIPTS, target=AudioguideStep.SYNTHESIZE_AUDIO),
            Edge(source=AudioguideStep.SYNTHESIZE_AUDIO, target=AudioguideStep.FINALIZE),
            Edge(source=AudioguideStep.FINALIZE, target=END),
        ],
        entry=AudioguideStep.LOAD_TOUR_DATA,
        checkpointer=checkpointer,
    )
