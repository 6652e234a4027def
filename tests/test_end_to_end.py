"""End-to-end runs of the default workflow against a scripted text backend."""

import asyncio

import pytest

from plangraph.config import RuntimeConfig
from plangraph.graph.builder import create_default_graph
from plangraph.graph.decision import NodeDecision
from plangraph.graph.executor import WorkflowGraph
from plangraph.graph.node import NodeResult
from plangraph.graph.state import MessageRole
from plangraph.llm.mock import MockTextGenerator
from plangraph.runtime.agent_runtime import AgentRuntime
from plangraph.runtime.event_bus import ProgressPhase
from plangraph.runtime.thread import ConversationThread
from plangraph.schemas.plan import PlanEventType, PlanStatus

PLAN = {
    "goal": "Weekly report",
    "plan_needed": True,
    "todos": [
        {"title": "fetch data", "description": "pull sales rows"},
        {"title": "summarize", "description": "write it up"},
    ],
}


class ScriptedBackend:
    """Answers by role, recognised from the opening line of each prompt."""

    def __init__(self, critic=None, final=None):
        self.critic = critic or {"success_score": 9, "reason": "looks complete"}
        self.final = final or {"decision": "approve", "reason": "goal met"}
        self.calls: dict[str, int] = {}

    def __call__(self, prompt: str):
        role = self._role(prompt)
        self.calls[role] = self.calls.get(role, 0) + 1
        if role == "planner":
            return PLAN
        if role == "executor":
            return {"action": "fetch_data", "args": {"source": "crm"}, "mark_done": True}
        if role == "critic":
            return self.critic
        if role == "final_critic":
            return self.final
        if role == "summary":
            return {"summary": "Built the report", "response": "Your report is ready."}
        return "ok"

    @staticmethod
    def _role(prompt: str) -> str:
        for marker, role in (
            ("You are the Planner", "planner"),
            ("You are the Executor", "executor"),
            ("You are the Final Critic", "final_critic"),
            ("You are the Critic", "critic"),
            ("Summarize this conversation", "summary"),
        ):
            if prompt.startswith(marker):
                return role
        return "other"


async def run_default_graph(deps, make_state):
    graph = create_default_graph(deps)
    return await graph.execute(make_state())


class TestDefaultWorkflow:
    @pytest.mark.asyncio
    async def test_two_todo_plan_runs_to_completion(
        self, deps, generator, store, event_bus, awareness, make_state
    ):
        generator.default = ScriptedBackend()

        state = await run_default_graph(deps, make_state)

        assert state.run.path == [
            "planner",
            "executor",
            "critic",
            "executor",
            "critic",
            "final_critic",
            "summary",
        ]
        assert state.run.error is None
        assert state.run.stop_reason is None
        assert state.response == "Your report is ready."
        assert state.revisions.final_critic_decision == "approve"
        assert state.plan.active_plan_id is None
        assert awareness.active_plans.get("t1") is None

        plans = await store.list_plans("t1")
        assert len(plans) == 1
        loaded = await store.get_plan(plans[0].id)
        assert loaded.plan.status == PlanStatus.COMPLETED
        first = loaded.todos[0].id
        statuses = [
            e.data["status"]
            for e in reversed(event_bus.get_history(phase=ProgressPhase.TODO_STATUS))
            if e.data["todo_id"] == first
        ]
        assert statuses == ["in_progress", "done"]
        assert loaded.events[-1].type == PlanEventType.FINAL_REVIEW

    @pytest.mark.asyncio
    async def test_rejecting_critic_is_bounded(self, deps, generator, store, make_state):
        backend = ScriptedBackend(critic={"success_score": 2, "reason": "numbers look wrong"})
        generator.default = backend

        state = await run_default_graph(deps, make_state)

        assert backend.calls["planner"] == 3
        assert state.revisions.revision_count == 2
        assert state.run.max_iterations_reached is False
        assert state.run.path[-1] == "summary"
        plans = await store.list_plans("t1")
        assert len(plans) == 1
        loaded = await store.get_plan(plans[0].id)
        assert loaded.plan.revision == 3
        assert loaded.plan.status == PlanStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_rejecting_final_critic_is_bounded(self, deps, generator, store, make_state):
        backend = ScriptedBackend(
            final={
                "decision": "revise",
                "reason": "chart missing",
                "suggested_todos": [{"title": "draw chart"}],
            }
        )
        generator.default = backend

        state = await run_default_graph(deps, make_state)

        assert state.revisions.final_revision_count == 2
        assert backend.calls["final_critic"] == 2
        assert state.revisions.final_critic_reason == "Max final revisions (2) reached"
        assert state.run.path[-1] == "summary"
        plans = await store.list_plans("t1")
        loaded = await store.get_plan(plans[0].id)
        assert loaded.plan.revision == 3
        assert loaded.plan.status == PlanStatus.COMPLETED
        assert "draw chart" in {t.title for t in loaded.todos}

    @pytest.mark.asyncio
    async def test_backend_down_still_ends_with_a_reply(self, deps, generator):
        generator.default = None
        thread = ConversationThread("t1", create_default_graph(deps))

        state = await thread.handle_message("Build the weekly report")

        assert state.run.path == ["planner", "executor", "critic", "planner"]
        assert state.run.max_iterations_reached is False
        assert "failed 3 times" in state.run.stop_reason
        assert state.response.startswith("I stopped before finishing:")


class TestAgentRuntime:
    @pytest.mark.asyncio
    async def test_conversational_message(self, store):
        generator = MockTextGenerator(
            [
                {"goal": "Say hi", "plan_needed": False},
                "Hi!",
                {"summary": "Greeted the user", "response": "Hello there"},
            ]
        )
        runtime = AgentRuntime(RuntimeConfig(), generator=generator, store=store)
        await runtime.start()
        try:
            state = await runtime.handle_message("thread-1", "hello")
        finally:
            await runtime.stop()

        assert state.response == "Hi!"
        assert state.run.path == ["planner", "executor", "critic", "final_critic", "summary"]
        assert [m.role for m in state.messages] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert runtime.list_threads() == ["thread-1"]
        assert await store.list_plans() == []

    @pytest.mark.asyncio
    async def test_not_started(self, store):
        runtime = AgentRuntime(RuntimeConfig(), generator=MockTextGenerator(), store=store)

        with pytest.raises(RuntimeError, match="not running"):
            await runtime.handle_message("thread-1", "hello")

    @pytest.mark.asyncio
    async def test_threads_are_independent(self, store):
        generator = MockTextGenerator(default=ScriptedBackend())
        runtime = AgentRuntime(RuntimeConfig(), generator=generator, store=store)
        await runtime.start()
        try:
            await runtime.handle_message("a", "report please")
            await runtime.handle_message("b", "another report")
        finally:
            await runtime.stop()

        assert runtime.get_thread("a").state.messages[0].content == "report please"
        assert len(await store.list_plans("a")) == 1
        assert len(await store.list_plans("b")) == 1


# ---- Minimal nodes for thread-level tests ----
class SlowNode:
    def __init__(self, node_id, log, delay=0.01):
        self.id = node_id
        self.name = node_id
        self.log = log
        self.delay = delay

    async def initialize(self):
        pass

    async def destroy(self):
        pass

    async def execute(self, state):
        self.log.append(("start", state.last_user_message()))
        await asyncio.sleep(self.delay)
        self.log.append(("end", state.last_user_message()))
        state.response = f"echo: {state.last_user_message()}"
        return NodeResult(state=state, decision=NodeDecision.end())


class CallbackNode:
    def __init__(self, node_id, callback=None, error=None):
        self.id = node_id
        self.name = node_id
        self.callback = callback
        self.error = error

    async def initialize(self):
        pass

    async def destroy(self):
        pass

    async def execute(self, state):
        if self.callback:
            self.callback()
        if self.error:
            raise self.error
        return NodeResult(state=state, decision=NodeDecision.next())


class TestConversationThread:
    @pytest.mark.asyncio
    async def test_messages_are_serialized(self):
        log = []
        graph = WorkflowGraph().add_node(SlowNode("echo", log)).set_entry_point("echo")
        thread = ConversationThread("t1", graph)

        _, second = await asyncio.gather(
            thread.handle_message("one"), thread.handle_message("two")
        )

        assert log == [("start", "one"), ("end", "one"), ("start", "two"), ("end", "two")]
        assert second.response == "echo: two"
        contents = [m.content for m in thread.state.messages]
        assert contents == ["one", "echo: one", "two", "echo: two"]
        assert not thread.busy

    @pytest.mark.asyncio
    async def test_cancel_stops_before_next_node(self):
        holder = {}
        graph = (
            WorkflowGraph()
            .add_node(CallbackNode("first", callback=lambda: holder["thread"].cancel("stop")))
            .add_node(CallbackNode("second"))
            .add_edge("first", "second")
            .set_entry_point("first")
        )
        thread = ConversationThread("t1", graph)
        holder["thread"] = thread

        state = await thread.handle_message("go")

        assert state.run.path == ["first"]
        assert state.run.stop_reason == "Run cancelled before 'second': stop"
        assert state.response == f"I stopped before finishing: {state.run.stop_reason}"

    @pytest.mark.asyncio
    async def test_cancel_when_idle(self):
        graph = WorkflowGraph().add_node(CallbackNode("only")).set_entry_point("only")

        assert ConversationThread("t1", graph).cancel() is False

    @pytest.mark.asyncio
    async def test_failed_node_gets_fallback_reply(self):
        graph = (
            WorkflowGraph()
            .add_node(CallbackNode("boom", error=ValueError("kaboom")))
            .set_entry_point("boom")
        )
        thread = ConversationThread("t1", graph)

        state = await thread.handle_message("go")

        assert state.response == "Something went wrong: Node 'boom' failed: kaboom"
        assert thread.state.messages[-1].content == state.response

    @pytest.mark.asyncio
    async def test_nothing_to_say(self):
        graph = WorkflowGraph().add_node(CallbackNode("quiet")).set_entry_point("quiet")

        state = await ConversationThread("t1", graph).handle_message("go")

        assert state.response == "I have nothing further to add."
