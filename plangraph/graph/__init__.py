"""Graph structures: state, decisions, edges and the workflow engine."""

from plangraph.graph.decision import DecisionType, NodeDecision
from plangraph.graph.edge import END, Edge, EdgeCondition, EdgeResolver
from plangraph.graph.executor import WorkflowGraph
from plangraph.graph.node import NodeProtocol, NodeResult
from plangraph.graph.state import (
    Message,
    MessageRole,
    PlanContext,
    RevisionCounters,
    RunContext,
    ThreadState,
    ToolResultCache,
)

__all__ = [
    "END",
    "DecisionType",
    "Edge",
    "EdgeCondition",
    "EdgeResolver",
    "Message",
    "MessageRole",
    "NodeDecision",
    "NodeProtocol",
    "NodeResult",
    "PlanContext",
    "RevisionCounters",
    "RunContext",
    "ThreadState",
    "ToolResultCache",
    "WorkflowGraph",
]
