"""
plangraph - a workflow graph engine with a persisted, revisable plan and a
bounded critic revision loop.

Quick Start:
    from plangraph import AgentRuntime, RuntimeConfig

    runtime = AgentRuntime(RuntimeConfig())
    await runtime.start()
    state = await runtime.handle_message("thread-1", "Clean up the release notes")
    print(state.response)
"""

from plangraph.config import GraphConfig, RuntimeConfig
from plangraph.errors import (
    GraphConfigurationError,
    PlanGraphError,
    PlanStateError,
    StepAborted,
    TodoOwnershipError,
)
from plangraph.graph import NodeDecision, ThreadState, WorkflowGraph
from plangraph.graph.builder import create_default_graph
from plangraph.nodes import NodeDependencies, create_node
from plangraph.runtime import AbortSignal, EventBus
from plangraph.runtime.agent_runtime import AgentRuntime
from plangraph.runtime.thread import ConversationThread
from plangraph.services import StrategicState

__version__ = "0.1.0"

__all__ = [
    "AbortSignal",
    "AgentRuntime",
    "ConversationThread",
    "EventBus",
    "GraphConfig",
    "GraphConfigurationError",
    "NodeDecision",
    "NodeDependencies",
    "PlanGraphError",
    "PlanStateError",
    "RuntimeConfig",
    "StepAborted",
    "StrategicState",
    "ThreadState",
    "TodoOwnershipError",
    "WorkflowGraph",
    "create_default_graph",
    "create_node",
]
