"""Shared fixtures: in-memory collaborators wired the way the runtime wires them."""

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from plangraph.config import GraphConfig
from plangraph.graph.state import MessageRole, ThreadState
from plangraph.llm.mock import MockTextGenerator
from plangraph.nodes.base import NodeDependencies
from plangraph.observability import clear_trace_context
from plangraph.runtime.event_bus import EventBus
from plangraph.schemas.plan import TodoSpec
from plangraph.services.awareness import AwarenessService
from plangraph.services.strategic_state import StrategicState
from plangraph.storage.plan_store import InMemoryPlanStore
from plangraph.tools.registry import ToolRegistry


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Never read the developer's ~/.plangraph/configuration.json."""
    monkeypatch.setenv("PLANGRAPH_CONFIG", str(tmp_path / "missing-configuration.json"))
    yield
    clear_trace_context()


@pytest.fixture
def store() -> InMemoryPlanStore:
    return InMemoryPlanStore()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def awareness() -> AwarenessService:
    return AwarenessService()


@pytest.fixture
def graph_config() -> GraphConfig:
    return GraphConfig(
        max_iterations=50,
        max_consecutive_same_node=3,
        max_revisions=2,
        max_final_revisions=2,
        max_llm_failures=3,
        tool_history_limit=12,
        llm_timeout_seconds=5.0,
        tool_timeout_seconds=5.0,
    )


@pytest.fixture
def generator() -> MockTextGenerator:
    return MockTextGenerator()


class HangingTextGenerator(MockTextGenerator):
    """Never answers in time; `on_call` runs as each generation starts."""

    def __init__(self, on_call: Callable[[], None] | None = None):
        super().__init__()
        self.on_call = on_call

    async def generate(self, prompt: str, system: str = "", max_tokens: int | None = None):
        self.prompts.append(prompt)
        self.systems.append(system)
        if self.on_call:
            self.on_call()
        await asyncio.sleep(5)
        return "too late"


@pytest.fixture
def hanging_generator():
    return HangingTextGenerator


@pytest.fixture
def tools() -> ToolRegistry:
    registry = ToolRegistry()

    def fetch_data(source: str) -> dict:
        """Fetch rows from a data source."""
        return {"source": source, "rows": 3}

    def summarize(text: str) -> str:
        """Summarize a block of text."""
        return f"summary of {text}"

    def fail_tool() -> None:
        """Always fails."""
        raise RuntimeError("boom")

    registry.register_function(fetch_data, categories=["data"])
    registry.register_function(summarize, categories=["text"])
    registry.register_function(fail_tool)
    return registry


@pytest.fixture
def deps(generator, store, tools, event_bus, awareness, graph_config) -> NodeDependencies:
    return NodeDependencies(
        generator=generator,
        store=store,
        tools=tools,
        event_bus=event_bus,
        awareness=awareness,
        config=graph_config,
    )


@pytest.fixture
def make_state():
    def _make(
        thread_id: str = "t1", message: str | None = "Build the weekly report"
    ) -> ThreadState:
        state = ThreadState(thread_id=thread_id)
        if message:
            state.add_message(MessageRole.USER, message)
        return state

    return _make


@pytest.fixture
def create_plan(store, event_bus, awareness):
    """Create a plan through StrategicState and return (plan_id, todos)."""

    async def _create(
        thread_id: str = "t1",
        titles: tuple[str, ...] = ("fetch data", "summarize"),
        goal: str = "Weekly report",
        hints: dict[str, list[str]] | None = None,
    ) -> tuple[int, list[Any]]:
        strategic = StrategicState(thread_id, store, event_bus=event_bus, awareness=awareness)
        specs = [
            TodoSpec(title=title, order_index=i, category_hints=(hints or {}).get(title, []))
            for i, title in enumerate(titles)
        ]
        plan_id = await strategic.create_plan({"goal": goal}, specs)
        return plan_id, list(strategic.todos)

    return _create
