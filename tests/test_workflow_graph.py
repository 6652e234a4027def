"""
Tests for WorkflowGraph: routing, loop protection and failure folding.
Nodes here are fakes returning scripted decisions.
"""

import pytest

from plangraph.errors import GraphConfigurationError, StepAborted
from plangraph.graph.decision import DecisionType, NodeDecision
from plangraph.graph.executor import WorkflowGraph
from plangraph.graph.node import NodeResult
from plangraph.graph.state import ThreadState
from plangraph.runtime.abort import AbortSignal
from plangraph.runtime.event_bus import EventBus, EventType


# ---- Fake node returning scripted decisions ----
class ScriptedNode:
    def __init__(self, node_id, decisions=None, action=None, error=None):
        self.id = node_id
        self.name = node_id
        self.decisions = list(decisions or [])
        self.action = action
        self.error = error
        self.calls = 0
        self.initialized = False
        self.destroyed = False

    async def initialize(self):
        self.initialized = True

    async def destroy(self):
        self.destroyed = True

    async def execute(self, state):
        self.calls += 1
        if self.action:
            self.action(state)
        if self.error:
            raise self.error
        decision = self.decisions.pop(0) if self.decisions else NodeDecision.next()
        return NodeResult(state=state, decision=decision)


def linear_graph(**kwargs) -> WorkflowGraph:
    return (
        WorkflowGraph(**kwargs)
        .add_node(ScriptedNode("a"))
        .add_node(ScriptedNode("b"))
        .add_node(ScriptedNode("c"))
        .add_edge("a", "b")
        .add_edge("b", "c")
        .set_entry_point("a")
    )


class TestLinearExecution:
    @pytest.mark.asyncio
    async def test_follows_static_edges_to_end_point(self):
        graph = linear_graph().set_end_points("c")

        state = await graph.execute(ThreadState(thread_id="t1"))

        assert state.run.path == ["a", "b", "c"]
        assert state.run.iterations == 3
        assert state.run.error is None
        assert state.run.max_iterations_reached is False

    @pytest.mark.asyncio
    async def test_no_outgoing_edge_ends_normally(self):
        graph = WorkflowGraph().add_node(ScriptedNode("a")).set_entry_point("a")

        state = await graph.execute(ThreadState(thread_id="t1"))

        assert state.run.path == ["a"]
        assert state.run.error is None
        assert state.run.stop_reason is None

    @pytest.mark.asyncio
    async def test_end_decision_stops_immediately(self):
        graph = (
            WorkflowGraph()
            .add_node(ScriptedNode("a", [NodeDecision.end()]))
            .add_node(ScriptedNode("b"))
            .add_edge("a", "b")
            .set_entry_point("a")
        )

        state = await graph.execute(ThreadState(thread_id="t1"))

        assert state.run.path == ["a"]

    @pytest.mark.asyncio
    async def test_end_point_terminates_whatever_it_decided(self):
        graph = linear_graph().set_end_points("b")

        state = await graph.execute(ThreadState(thread_id="t1"))

        assert state.run.path == ["a", "b"]

    @pytest.mark.asyncio
    async def test_continue_follows_default_edge(self):
        graph = (
            WorkflowGraph()
            .add_node(ScriptedNode("a", [NodeDecision.cont()]))
            .add_node(ScriptedNode("b", [NodeDecision.end()]))
            .add_edge("a", "b")
            .set_entry_point("a")
        )

        state = await graph.execute(ThreadState(thread_id="t1"))

        assert state.run.path == ["a", "b"]


class TestRouting:
    @pytest.mark.asyncio
    async def test_first_matching_conditional_edge_wins(self):
        graph = (
            WorkflowGraph()
            .add_node(ScriptedNode("a"))
            .add_node(ScriptedNode("b"))
            .add_node(ScriptedNode("c"))
            .add_conditional_edge("a", lambda s: None)
            .add_conditional_edge("a", lambda s: "c")
            .add_edge("a", "b")
            .set_entry_point("a")
            .set_end_points("b", "c")
        )

        state = await graph.execute(ThreadState(thread_id="t1"))

        assert state.run.path == ["a", "c"]

    @pytest.mark.asyncio
    async def test_conditional_to_unknown_node_falls_through(self):
        graph = (
            WorkflowGraph()
            .add_node(ScriptedNode("a"))
            .add_node(ScriptedNode("b"))
            .add_conditional_edge("a", lambda s: "nowhere")
            .add_conditional_edge("a", lambda s: "end")
            .add_edge("a", "b")
            .set_entry_point("a")
            .set_end_points("b")
        )

        state = await graph.execute(ThreadState(thread_id="t1"))

        assert state.run.path == ["a", "b"]
        assert state.run.error is None

    @pytest.mark.asyncio
    async def test_resolver_sees_state(self):
        def route(state):
            return "b" if state.plan.has_remaining_todos else "c"

        def build():
            return (
                WorkflowGraph()
                .add_node(ScriptedNode("a"))
                .add_node(ScriptedNode("b"))
                .add_node(ScriptedNode("c"))
                .add_conditional_edge("a", route)
                .set_entry_point("a")
                .set_end_points("b", "c")
            )

        busy = ThreadState(thread_id="t1")
        busy.plan.has_remaining_todos = True
        assert (await build().execute(busy)).run.path == ["a", "b"]
        assert (await build().execute(ThreadState(thread_id="t2"))).run.path == ["a", "c"]

    @pytest.mark.asyncio
    async def test_revise_follows_revision_edge(self):
        planner = ScriptedNode("plan")
        worker = ScriptedNode("work", [NodeDecision.revise(), NodeDecision.end()])
        graph = (
            WorkflowGraph()
            .add_node(planner)
            .add_node(worker)
            .add_edge("plan", "work")
            .add_revision_edge("work", "plan")
            .set_entry_point("plan")
        )

        state = await graph.execute(ThreadState(thread_id="t1"))

        assert state.run.path == ["plan", "work", "plan", "work"]
        assert planner.calls == 2

    @pytest.mark.asyncio
    async def test_revise_without_revision_edge_records_error(self):
        graph = (
            WorkflowGraph()
            .add_node(ScriptedNode("a", [NodeDecision.revise()]))
            .add_node(ScriptedNode("b"))
            .add_edge("a", "b")
            .set_entry_point("a")
        )

        state = await graph.execute(ThreadState(thread_id="t1"))

        assert state.run.path == ["a"]
        assert "no revision edge" in state.run.error

    @pytest.mark.asyncio
    async def test_goto_registered_node(self):
        graph = (
            WorkflowGraph()
            .add_node(ScriptedNode("a", [NodeDecision.goto("c")]))
            .add_node(ScriptedNode("b"))
            .add_node(ScriptedNode("c", [NodeDecision.end()]))
            .add_edge("a", "b")
            .set_entry_point("a")
        )

        state = await graph.execute(ThreadState(thread_id="t1"))

        assert state.run.path == ["a", "c"]

    @pytest.mark.asyncio
    async def test_goto_unknown_node_records_error_instead_of_raising(self):
        graph = (
            WorkflowGraph()
            .add_node(ScriptedNode("a", [NodeDecision.goto("ghost")]))
            .set_entry_point("a")
        )

        state = await graph.execute(ThreadState(thread_id="t1"))

        assert state.run.path == ["a"]
        assert "ghost" in state.run.error


class TestFailureFolding:
    @pytest.mark.asyncio
    async def test_node_exception_is_recorded_and_run_ends(self):
        graph = (
            WorkflowGraph()
            .add_node(ScriptedNode("a", error=ValueError("boom")))
            .add_node(ScriptedNode("b"))
            .add_edge("a", "b")
            .set_entry_point("a")
        )

        state = await graph.execute(ThreadState(thread_id="t1"))

        assert state.run.path == ["a"]
        assert state.run.error == "Node 'a' failed: boom"

    @pytest.mark.asyncio
    async def test_failed_node_is_not_retried(self):
        failing = ScriptedNode("a", error=RuntimeError("nope"))
        graph = WorkflowGraph().add_node(failing).set_entry_point("a")

        await graph.execute(ThreadState(thread_id="t1"))

        assert failing.calls == 1


class TestLoopProtection:
    @pytest.mark.asyncio
    async def test_iteration_cap_sets_flag_and_reason(self):
        graph = (
            WorkflowGraph(max_iterations=5)
            .add_node(ScriptedNode("a"))
            .add_node(ScriptedNode("b"))
            .add_edge("a", "b")
            .add_edge("b", "a")
            .set_entry_point("a")
        )

        state = await graph.execute(ThreadState(thread_id="t1"))

        assert state.run.iterations == 5
        assert len(state.run.path) == 5
        assert state.run.max_iterations_reached is True
        assert "without finishing" in state.run.stop_reason

    @pytest.mark.asyncio
    async def test_self_loop_is_bounded(self):
        node = ScriptedNode("a")
        graph = (
            WorkflowGraph(max_iterations=50, max_consecutive_same_node=3)
            .add_node(node)
            .add_conditional_edge("a", lambda s: "a")
            .set_entry_point("a")
        )

        state = await graph.execute(ThreadState(thread_id="t1"))

        assert node.calls == 4
        assert state.run.max_iterations_reached is True
        assert "re-entered itself" in state.run.stop_reason

    @pytest.mark.asyncio
    async def test_counters_start_fresh_after_reset_run(self):
        graph = (
            WorkflowGraph(max_iterations=3)
            .add_node(ScriptedNode("a"))
            .add_edge("a", "a")
            .set_entry_point("a")
        )
        state = ThreadState(thread_id="t1")

        state = await graph.execute(state)
        assert state.run.max_iterations_reached is True

        state.reset_run()
        assert state.run.iterations == 0
        assert state.run.max_iterations_reached is False


class TestDeterminism:
    @pytest.mark.asyncio
    async def test_same_inputs_visit_same_nodes(self):
        def build():
            counter = {"n": 0}

            def bump(state):
                counter["n"] += 1
                state.metadata["work.count"] = counter["n"]

            return (
                WorkflowGraph()
                .add_node(ScriptedNode("plan"))
                .add_node(ScriptedNode("work", action=bump))
                .add_node(ScriptedNode("done"))
                .add_edge("plan", "work")
                .add_conditional_edge(
                    "work", lambda s: "work" if s.metadata["work.count"] < 3 else "done"
                )
                .set_entry_point("plan")
                .set_end_points("done")
            )

        first = await build().execute(ThreadState(thread_id="t1"))
        second = await build().execute(ThreadState(thread_id="t1"))

        assert first.run.path == second.run.path
        assert first.run.path == ["plan", "work", "work", "work", "done"]


class TestAbort:
    @pytest.mark.asyncio
    async def test_abort_before_start(self):
        signal = AbortSignal()
        signal.abort("user pressed stop")
        graph = linear_graph()

        state = await graph.execute(ThreadState(thread_id="t1"), abort=signal)

        assert state.run.path == []
        assert "user pressed stop" in state.run.stop_reason

    @pytest.mark.asyncio
    async def test_abort_observed_at_next_node_boundary(self):
        signal = AbortSignal()
        graph = (
            WorkflowGraph()
            .add_node(ScriptedNode("a", action=lambda s: signal.abort("enough")))
            .add_node(ScriptedNode("b"))
            .add_edge("a", "b")
            .set_entry_point("a")
        )

        state = await graph.execute(ThreadState(thread_id="t1"), abort=signal)

        assert state.run.path == ["a"]
        assert "cancelled before 'b'" in state.run.stop_reason

    @pytest.mark.asyncio
    async def test_step_aborted_inside_node_becomes_stop_reason(self):
        graph = (
            WorkflowGraph()
            .add_node(ScriptedNode("a", error=StepAborted("shutdown")))
            .set_entry_point("a")
        )

        state = await graph.execute(ThreadState(thread_id="t1"))

        assert state.run.error is None
        assert "shutdown" in state.run.stop_reason


class TestStructure:
    def test_duplicate_node_rejected(self):
        graph = WorkflowGraph().add_node(ScriptedNode("a"))
        with pytest.raises(GraphConfigurationError):
            graph.add_node(ScriptedNode("a"))

    def test_entry_point_must_exist(self):
        with pytest.raises(GraphConfigurationError):
            WorkflowGraph().set_entry_point("missing")

    def test_validate_reports_structural_errors(self):
        graph = (
            WorkflowGraph()
            .add_node(ScriptedNode("a"))
            .add_edge("a", "ghost")
            .add_revision_edge("a", "phantom")
            .set_end_points("nobody")
        )

        errors = graph.validate()

        assert any("no entry point" in e for e in errors)
        assert any("ghost" in e for e in errors)
        assert any("phantom" in e for e in errors)
        assert any("nobody" in e for e in errors)

    def test_valid_graph_has_no_errors(self):
        assert linear_graph().set_end_points("c").validate() == []

    @pytest.mark.asyncio
    async def test_initialize_rejects_invalid_graph(self):
        graph = WorkflowGraph().add_node(ScriptedNode("a")).add_edge("a", "ghost")
        graph.set_entry_point("a")
        with pytest.raises(GraphConfigurationError):
            await graph.initialize()

    @pytest.mark.asyncio
    async def test_execute_without_entry_point_raises(self):
        graph = WorkflowGraph().add_node(ScriptedNode("a"))
        with pytest.raises(GraphConfigurationError):
            await graph.execute(ThreadState(thread_id="t1"))

    @pytest.mark.asyncio
    async def test_lifecycle_reaches_every_node(self):
        graph = linear_graph()

        await graph.initialize()
        await graph.destroy()

        assert all(n.initialized and n.destroyed for n in graph.nodes.values())

    def test_invalid_iteration_cap(self):
        with pytest.raises(GraphConfigurationError):
            WorkflowGraph(max_iterations=0)


class TestEvents:
    @pytest.mark.asyncio
    async def test_lifecycle_events_published(self):
        bus = EventBus()
        graph = linear_graph(event_bus=bus).set_end_points("c")

        await graph.execute(ThreadState(thread_id="t1"))

        assert len(bus.get_history(EventType.RUN_STARTED)) == 1
        assert len(bus.get_history(EventType.NODE_STARTED)) == 3
        assert len(bus.get_history(EventType.NODE_COMPLETED)) == 3
        edges = bus.get_history(EventType.EDGE_TRAVERSED)
        assert [e.data["target_node"] for e in reversed(edges)] == ["b", "c"]
        completed = bus.get_history(EventType.RUN_COMPLETED)[0]
        assert completed.data["path"] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_forced_stop_published(self):
        bus = EventBus()
        graph = (
            WorkflowGraph(max_iterations=2, event_bus=bus)
            .add_node(ScriptedNode("a"))
            .add_edge("a", "a")
            .set_entry_point("a")
        )

        await graph.execute(ThreadState(thread_id="t1"))

        stopped = bus.get_history(EventType.RUN_STOPPED)
        assert len(stopped) == 1
        assert stopped[0].data["reason"]


def test_decision_constructors():
    assert NodeDecision.end().type == DecisionType.END
    assert NodeDecision.next().type == DecisionType.NEXT
    assert NodeDecision.revise().type == DecisionType.REVISE
    assert NodeDecision.goto("x").target == "x"
