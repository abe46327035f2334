"""Step graph execution: declared state, engine and checkpoints."""

from hear_and_there.graph.checkpoint import CheckpointRecord, CheckpointStore
from hear_and_there.graph.engine import END, CompiledGraph, Edge, RunContext, RunResult, StepGraph, build
from hear_and_there.graph.state import GraphState, StateField, StateSchema

__all__ = [
    "END",
    "CheckpointRecord",
    "CheckpointStore",
    "CompiledGraph",
    "Edge",
    "GraphState",
    "RunContext",
    "RunResult",
    "StateField",
    "StateSchema",
    "StepGraph",
    "build",
]
