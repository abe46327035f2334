import unittest
from enum import Enum

from hear_and_there.errors import ConfigurationError, RunCancelled, StepFailure
from hear_and_there.graph.checkpoint import CheckpointStore
from hear_and_there.graph.engine import END, Edge, StepGraph, build
from hear_and_there.graph.state import StateField, StateSchema, append_items
from hear_and_there.runtime.cancellation import CancellationRegistry
from hear_and_there.storage.ttl_store import TTLStore


class _Step(str, Enum):
    FIRST = "first"
    SECOND = "second"
    THIRD = "third"


class _Route(str, Enum):
    LEFT = "left"
    RIGHT = "right"


class _State(StateSchema):
    trail = StateField(default_factory=list, reducer=append_items)
    direction = StateField(default="left")
    value = StateField()


def _recorder(name: str):
    async def _step(state, ctx):
        return {"trail": [name]}

    return _step


def _linear_graph(**overrides) -> StepGraph:
    steps = {
        _Step.FIRST: _recorder("first"),
        _Step.SECOND: _recorder("second"),
        _Step.THIRD: _recorder("third"),
    }
    steps.update(overrides)
    graph = StepGraph(name="test", schema=_State, step_ids=_Step)
    for step_id, fn in steps.items():
        graph.add_step(step_id, fn)
    graph.add_edge(_Step.FIRST, _Step.SECOND)
    graph.add_edge(_Step.SECOND, _Step.THIRD)
    graph.add_edge(_Step.THIRD, END)
    return graph


def _checkpoints() -> CheckpointStore:
    return CheckpointStore(store=TTLStore(name="checkpoints", default_ttl=None))


class GraphValidationTests(unittest.TestCase):
    def test_missing_step_implementation_is_rejected(self) -> None:
        graph = StepGraph(name="test", schema=_State, step_ids=_Step)
        graph.add_step(_Step.FIRST, _recorder("first"))
        graph.add_edge(_Step.FIRST, END)

        with self.assertRaises(ConfigurationError):
            graph.compile(_Step.FIRST)

    def test_edge_to_unknown_identifier_is_rejected(self) -> None:
        graph = StepGraph(name="test", schema=_State, step_ids=_Step)

        with self.assertRaises(ConfigurationError):
            graph.add_edge(_Route.LEFT, END)

    def test_unreachable_step_is_rejected(self) -> None:
        graph = StepGraph(name="test", schema=_State, step_ids=_Step)
        for step_id in _Step:
            graph.add_step(step_id, _recorder(step_id.value))
        graph.add_edge(_Step.FIRST, END)
        graph.add_edge(_Step.SECOND, _Step.THIRD)
        graph.add_edge(_Step.THIRD, END)

        with self.assertRaises(ConfigurationError):
            graph.compile(_Step.FIRST)

    def test_path_map_must_cover_every_route(self) -> None:
        graph = StepGraph(name="test", schema=_State, step_ids=_Step)
        for step_id in _Step:
            graph.add_step(step_id, _recorder(step_id.value))
        graph.add_conditional_edges(_Step.FIRST, lambda s: _Route.LEFT, {_Route.LEFT: _Step.SECOND})
        graph.add_edge(_Step.SECOND, _Step.THIRD)
        graph.add_edge(_Step.THIRD, END)

        with self.assertRaises(ConfigurationError):
            graph.compile(_Step.FIRST)

    def test_duplicate_step_is_rejected(self) -> None:
        graph = StepGraph(name="test", schema=_State, step_ids=_Step)
        graph.add_step(_Step.FIRST, _recorder("first"))

        with self.assertRaises(ConfigurationError):
            graph.add_step(_Step.FIRST, _recorder("again"))

    def test_build_rejects_edge_without_target(self) -> None:
        with self.assertRaises(ConfigurationError):
            build(
                name="test",
                schema=_State,
                step_ids=_Step,
                steps={step_id: _recorder(step_id.value) for step_id in _Step},
                edges=[Edge(source=_Step.FIRST)],
                entry=_Step.FIRST,
            )


class GraphRunTests(unittest.IsolatedAsyncioTestCase):
    async def test_linear_run_visits_every_step_in_order(self) -> None:
        result = await _linear_graph().compile(_Step.FIRST).invoke()

        self.assertTrue(result.completed)
        self.assertEqual(result.state.trail, ["first", "second", "third"])
        self.assertEqual(list(result.steps_run), ["first", "second", "third"])

    async def test_conditional_edge_follows_router(self) -> None:
        graph = StepGraph(name="test", schema=_State, step_ids=_Step)
        for step_id in _Step:
            graph.add_step(step_id, _recorder(step_id.value))
        graph.add_conditional_edges(
            _Step.FIRST,
            lambda state: _Route(state.direction),
            {_Route.LEFT: _Step.SECOND, _Route.RIGHT: _Step.THIRD},
        )
        graph.add_edge(_Step.SECOND, END)
        graph.add_edge(_Step.THIRD, END)
        compiled = graph.compile(_Step.FIRST)

        left = await compiled.invoke({"direction": "left"})
        right = await compiled.invoke({"direction": "right"})

        self.assertEqual(left.state.trail, ["first", "second"])
        self.assertEqual(right.state.trail, ["first", "third"])

    async def test_unmapped_route_aborts_with_configuration_error(self) -> None:
        graph = StepGraph(name="test", schema=_State, step_ids=_Step)
        for step_id in _Step:
            graph.add_step(step_id, _recorder(step_id.value))
        graph.add_conditional_edges(_Step.FIRST, lambda state: "sideways", {"left": _Step.SECOND, "right": _Step.THIRD})
        graph.add_edge(_Step.SECOND, END)
        graph.add_edge(_Step.THIRD, END)

        result = await graph.compile(_Step.FIRST).invoke()

        self.assertEqual(result.status, "configuration_error")
        self.assertIn("sideways", result.error)

    async def test_failing_step_is_recorded_and_run_continues(self) -> None:
        async def _boom(state, ctx):
            raise RuntimeError("provider down")

        result = await _linear_graph(**{_Step.SECOND: _boom}).compile(_Step.FIRST).invoke()

        self.assertTrue(result.completed)
        self.assertEqual(result.state.trail, ["first", "third"])
        self.assertEqual(result.state.errors[0]["step"], "second")
        self.assertIn("provider down", result.state.errors[0]["error"])

    async def test_step_failure_partial_update_is_merged(self) -> None:
        async def _partial(state, ctx):
            raise StepFailure("half done", partial={"value": 42})

        result = await _linear_graph(**{_Step.SECOND: _partial}).compile(_Step.FIRST).invoke()

        self.assertTrue(result.completed)
        self.assertEqual(result.state.value, 42)
        self.assertEqual(len(result.state.errors), 1)

    async def test_cancelled_before_start_runs_nothing(self) -> None:
        registry = CancellationRegistry()
        registry.cancel("s1")

        result = await _linear_graph().compile(_Step.FIRST).invoke(cancellation=registry.token("s1"))

        self.assertTrue(result.cancelled)
        self.assertEqual(list(result.steps_run), [])

    async def test_run_cancelled_inside_step_stops_run(self) -> None:
        async def _cancelled(state, ctx):
            raise RunCancelled("s1", "second")

        result = await _linear_graph(**{_Step.SECOND: _cancelled}).compile(_Step.FIRST).invoke()

        self.assertTrue(result.cancelled)
        self.assertEqual(result.state.trail, ["first"])

    async def test_completed_run_writes_final_checkpoint(self) -> None:
        checkpoints = _checkpoints()

        await _linear_graph().compile(_Step.FIRST, checkpointer=checkpoints).invoke(thread_id="t1")

        record = checkpoints.load("t1")
        self.assertIsNotNone(record)
        self.assertTrue(record.completed)
        self.assertEqual(record.state["trail"], ["first", "second", "third"])

    async def test_interrupted_run_resumes_at_next_step(self) -> None:
        registry = CancellationRegistry()
        checkpoints = _checkpoints()

        async def _second_then_cancel(state, ctx):
            registry.cancel("s1")
            return {"trail": ["second"]}

        compiled = _linear_graph(**{_Step.SECOND: _second_then_cancel}).compile(_Step.FIRST, checkpointer=checkpoints)

        first = await compiled.invoke(thread_id="t1", cancellation=registry.token("s1"), checkpoint_each_step=True)
        self.assertTrue(first.cancelled)
        self.assertEqual(checkpoints.load("t1").next_step, "third")

        registry.clear("s1")
        second = await compiled.invoke(thread_id="t1", cancellation=registry.token("s1"), checkpoint_each_step=True)

        self.assertTrue(second.completed)
        self.assertEqual(list(second.steps_run), ["third"])
        self.assertEqual(second.state.trail, ["first", "second", "third"])

    async def test_runs_without_checkpointer_are_independent(self) -> None:
        compiled = _linear_graph().compile(_Step.FIRST)

        await compiled.invoke({"trail": ["seed"]}, thread_id="t1")
        result = await compiled.invoke(thread_id="t1")

        self.assertEqual(result.state.trail, ["first", "second", "third"])


if __name__ == "__main__":
    unittest.main()
