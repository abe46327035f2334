from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Hashable,
    Iterable,
    Literal,
    Mapping,
    Optional,
    Sequence,
    Union,
)

from hear_and_there.errors import ConfigurationError, RunCancelled, StepFailure
from hear_and_there.graph.checkpoint import CheckpointStore
from hear_and_there.graph.state import GraphState, StateSchema
from hear_and_there.runtime.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class _End:
    __slots__ = ()

    def __repr__(self) -> str:
        return "END"


END = _End()

Target = Union[Enum, _End]
Router = Callable[[GraphState], Hashable]
RunStatus = Literal["completed", "cancelled", "configuration_error"]


@dataclass(frozen=True, slots=True)
class RunContext:
    thread_id: Optional[str]
    cancellation: CancellationToken


StepFn = Callable[[GraphState, RunContext], Awaitable[Optional[Mapping[str, Any]]]]


@dataclass(frozen=True, slots=True)
class Edge:
    """An unconditional edge (`target`) or a conditional one (`router` + `path_map`)."""

    source: Enum
    target: Optional[Target] = None
    router: Optional[Router] = None
    path_map: Mapping[Hashable, Target] = field(default_factory=dict)

    @property
    def conditional(self) -> bool:
        return self.router is not None

    def targets(self) -> list[Target]:
        if self.conditional:
            return list(self.path_map.values())
        return [self.target] if self.target is not None else []


@dataclass(frozen=True, slots=True)
class RunResult:
    status: RunStatus
    state: GraphState
    steps_run: Sequence[str]
    thread_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.status == "completed"

    @property
    def cancelled(self) -> bool:
        return self.status == "cancelled"


class StepGraph:
    """
    Builder for a fixed workflow topology.

    Step identifiers are members of one Enum; `compile` checks that every member
    has a step, every edge target exists, every step is reachable from the entry,
    END is reachable, and conditional path maps keyed by an Enum cover all members.
    """

    def __init__(self, *, name: str, schema: type[StateSchema], step_ids: type[Enum]) -> None:
        self._name = name
        self._schema = schema
        self._step_ids = step_ids
        self._steps: Dict[Enum, StepFn] = {}
        self._edges: Dict[Enum, Edge] = {}

    def add_step(self, step_id: Enum, fn: StepFn) -> "StepGraph":
        self._require_member(step_id)
        if step_id in self._steps:
            raise ConfigurationError(f"Step declared twice: {step_id.value}")
        self._steps[step_id] = fn
        return self

    def add_edge(self, source: Enum, target: Target) -> "StepGraph":
        return self._add(Edge(source=source, target=target))

    def add_conditional_edges(
        self,
        source: Enum,
        router: Router,
        path_map: Mapping[Hashable, Target],
    ) -> "StepGraph":
        if not path_map:
            raise ConfigurationError(f"Conditional edge from {source.value} has an empty path map.")
        return self._add(Edge(source=source, router=router, path_map=dict(path_map)))

    def compile(
        self,
        entry: Enum,
        *,
        checkpointer: Optional[CheckpointStore] = None,
        max_steps: int = 100,
    ) -> "CompiledGraph":
        self._validate(entry)
        return CompiledGraph(
            name=self._name,
            schema=self._schema,
            step_ids=self._step_ids,
            steps=dict(self._steps),
            edges=dict(self._edges),
            entry=entry,
            checkpointer=checkpointer,
            max_steps=max_steps,
        )

    def _add(self, edge: Edge) -> "StepGraph":
        self._require_member(edge.source)
        if edge.source in self._edges:
            raise ConfigurationError(f"Step has more than one outgoing edge: {edge.source.value}")
        self._edges[edge.source] = edge
        return self

    def _require_member(self, step_id: Any) -> None:
        if not isinstance(step_id, self._step_ids):
            raise ConfigurationError(f"Unknown step identifier for {self._step_ids.__name__}: {step_id!r}")

    def _validate(self, entry: Enum) -> None:
        self._require_member(entry)
        missing = [m.value for m in self._step_ids if m not in self._steps]
        if missing:
            raise ConfigurationError(f"Steps declared in {self._step_ids.__name__} without an implementation: {missing}")

        for step_id in self._steps:
            if step_id not in self._edges:
                raise ConfigurationError(f"Step has no outgoing edge: {step_id.value}")

        for edge in self._edges.values():
            for target in edge.targets():
                if target is not END and target not in self._steps:
                    raise ConfigurationError(
                        f"Edge from {edge.source.value} references an undeclared step: {target!r}"
                    )
            if edge.conditional:
                self._check_path_map_coverage(edge)

        reachable = self._reachable_from(entry)
        unreachable = [s.value for s in self._steps if s not in reachable]
        if unreachable:
            raise ConfigurationError(f"Steps unreachable from entry {entry.value}: {unreachable}")
        if END not in reachable:
            raise ConfigurationError(f"END is unreachable from entry {entry.value}")

    def _check_path_map_coverage(self, edge: Edge) -> None:
        keys = list(edge.path_map)
        route_types = {type(k) for k in keys}
        if len(route_types) != 1:
            return
        route_type = route_types.pop()
        if not issubclass(route_type, Enum):
            return
        uncovered = [m.value for m in route_type if m not in edge.path_map]
        if uncovered:
            raise ConfigurationError(
                f"Conditional edge from {edge.source.value} does not map every {route_type.__name__} "
                f"route: {uncovered}"
            )

    def _reachable_from(self, entry: Enum) -> set:
        seen: set = {entry}
        queue: deque = deque([entry])
        while queue:
            current = queue.popleft()
            edge = self._edges.get(current)
            if edge is None:
                continue
            for target in edge.targets():
                if target in seen:
                    continue
                seen.add(target)
                if target is not END:
                    queue.append(target)
        return seen


class CompiledGraph:
    def __init__(
        self,
        *,
        name: str,
        schema: type[StateSchema],
        step_ids: type[Enum],
        steps: Dict[Enum, StepFn],
        edges: Dict[Enum, Edge],
        entry: Enum,
        checkpointer: Optional[CheckpointStore],
        max_steps: int,
    ) -> None:
        self._name = name
        self._schema = schema
        self._step_ids = step_ids
        self._steps = steps
        self._edges = edges
        self._entry = entry
        self._checkpointer = checkpointer
        self._max_steps = max_steps

    @property
    def name(self) -> str:
        return self._name

    @property
    def schema(self) -> type[StateSchema]:
        return self._schema

    async def invoke(
        self,
        initial: Optional[Mapping[str, Any]] = None,
        *,
        thread_id: Optional[str] = None,
        cancellation: Optional[CancellationToken] = None,
        checkpoint_each_step: bool = False,
    ) -> RunResult:
        """
        Run the graph to END and return the final state.

        With a checkpointer and a thread id, a saved snapshot for the thread becomes the
        base state (the `initial` values are merged over it) and an interrupted run
        resumes from its recorded next step.
        """
        token = cancellation or CancellationToken.never()
        ctx = RunContext(thread_id=thread_id, cancellation=token)
        state, current = self._starting_point(initial, thread_id)
        steps_run: list[str] = []
        run_started = time.monotonic()

        logger.info("Graph run started. graph=%s thread_id=%s entry=%s", self._name, thread_id, current.value)
        while True:
            if len(steps_run) >= self._max_steps:
                return self._configuration_error(
                    state, steps_run, thread_id, f"Run exceeded max_steps={self._max_steps}"
                )
            if token.is_cancelled():
                return self._cancelled(state, steps_run, thread_id, where=str(current.value))

            try:
                state = await self._run_step(current, state, ctx)
            except RunCancelled as exc:
                return self._cancelled(state, steps_run, thread_id, where=exc.where)
            steps_run.append(str(current.value))

            try:
                nxt = self._resolve_next(current, state)
            except ConfigurationError as exc:
                return self._configuration_error(state, steps_run, thread_id, str(exc))

            if checkpoint_each_step and self._checkpointer is not None and thread_id:
                self._checkpointer.save(
                    thread_id,
                    state.to_dict(),
                    next_step=None if nxt is END else str(nxt.value),  # type: ignore[union-attr]
                )
            if nxt is END:
                break
            current = nxt  # type: ignore[assignment]

        if self._checkpointer is not None and thread_id:
            self._checkpointer.save(thread_id, state.to_dict(), next_step=None)
        logger.info(
            "Graph run completed. graph=%s thread_id=%s steps=%d elapsed_ms=%d",
            self._name,
            thread_id,
            len(steps_run),
            int((time.monotonic() - run_started) * 1000),
        )
        return RunResult(status="completed", state=state, steps_run=tuple(steps_run), thread_id=thread_id)

    def _starting_point(self, initial: Optional[Mapping[str, Any]], thread_id: Optional[str]) -> tuple[GraphState, Enum]:
        if self._checkpointer is None or not thread_id:
            return self._schema.initial(initial), self._entry
        record = self._checkpointer.load(thread_id)
        if record is None:
            return self._schema.initial(initial), self._entry

        state = self._schema.merge(self._schema.initial(record.state), initial)
        if record.next_step is None:
            logger.info("Loaded completed checkpoint as base state. graph=%s thread_id=%s", self._name, thread_id)
            return state, self._entry
        try:
            resume_at = self._step_ids(record.next_step)
        except ValueError:
            logger.warning(
                "Checkpoint references an unknown step, starting from entry. graph=%s thread_id=%s step=%s",
                self._name,
                thread_id,
                record.next_step,
            )
            return state, self._entry
        logger.info("Resuming from checkpoint. graph=%s thread_id=%s step=%s", self._name, thread_id, resume_at.value)
        return state, resume_at

    async def _run_step(self, step_id: Enum, state: GraphState, ctx: RunContext) -> GraphState:
        started = time.monotonic()
        fn = self._steps[step_id]
        try:
            update = await fn(state, ctx)
        except StepFailure as exc:
            logger.warning(
                "Graph step failed with a partial result. graph=%s step=%s error=%s",
                self._name,
                step_id.value,
                exc,
            )
            state = self._schema.merge(state, exc.partial)
            return self._schema.merge(state, {"errors": [{"step": str(step_id.value), "error": str(exc)}]})
        except Exception as exc:
            logger.exception("Graph step failed. graph=%s step=%s", self._name, step_id.value)
            return self._schema.merge(
                state,
                {"errors": [{"step": str(step_id.value), "error": f"{type(exc).__name__}: {exc}"}]},
            )

        logger.debug(
            "Graph step completed. graph=%s step=%s elapsed_ms=%d",
            self._name,
            step_id.value,
            int((time.monotonic() - started) * 1000),
        )
        return self._schema.merge(state, update)

    def _resolve_next(self, current: Enum, state: GraphState) -> Target:
        edge = self._edges[current]
        if not edge.conditional:
            assert edge.target is not None
            return edge.target
        assert edge.router is not None
        try:
            route = edge.router(state)
        except Exception as exc:
            raise ConfigurationError(f"Router for {current.value} raised {type(exc).__name__}: {exc}") from exc
        try:
            return edge.path_map[route]
        except (KeyError, TypeError):
            raise ConfigurationError(f"Router for {current.value} returned an unmapped route: {route!r}") from None

    def _cancelled(self, state: GraphState, steps_run: list[str], thread_id: Optional[str], *, where: str) -> RunResult:
        logger.info(
            "Graph run cancelled. graph=%s thread_id=%s where=%s steps=%d",
            self._name,
            thread_id,
            where,
            len(steps_run),
        )
        return RunResult(status="cancelled", state=state, steps_run=tuple(steps_run), thread_id=thread_id)

    def _configuration_error(
        self,
        state: GraphState,
        steps_run: list[str],
        thread_id: Optional[str],
        message: str,
    ) -> RunResult:
        logger.error("Graph run aborted by configuration error. graph=%s thread_id=%s error=%s", self._name, thread_id, message)
        return RunResult(
            status="configuration_error",
            state=state,
            steps_run=tuple(steps_run),
            thread_id=thread_id,
            error=message,
        )


def build(
    *,
    name: str,
    schema: type[StateSchema],
    step_ids: type[Enum],
    steps: Mapping[Enum, StepFn],
    edges: Iterable[Edge],
    entry: Enum,
    checkpointer: Optional[CheckpointStore] = None,
) -> CompiledGraph:
    """Validate and compile a graph from a step table and an edge list."""
    graph = StepGraph(name=name, schema=schema, step_ids=step_ids)
    for step_id, fn in steps.items():
        graph.add_step(step_id, fn)
    for edge in edges:
        if edge.conditional:
            assert edge.router is not None
            graph.add_conditional_edges(edge.source, edge.router, edge.path_map)
        elif edge.target is not None:
            graph.add_edge(edge.source, edge.target)
        else:
            raise ConfigurationError(f"Edge from {edge.source.value} has neither a target nor a router.")
    return graph.compile(entry, checkpointer=checkpointer)
