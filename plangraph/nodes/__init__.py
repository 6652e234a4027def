"""
Node variants for the plan/execute/critique workflow.

Variants are looked up by kind so graphs can be assembled from names:

    node = create_node("critic", deps)
"""

from plangraph.errors import GraphConfigurationError
from plangraph.nodes.awareness import AwarenessNode
from plangraph.nodes.base import BaseNode, NodeDependencies
from plangraph.nodes.critic import CriticNode
from plangraph.nodes.executor import ExecutorNode
from plangraph.nodes.final_critic import FinalCriticNode
from plangraph.nodes.planner import PlannerNode
from plangraph.nodes.summary import SummaryNode

NODE_TYPES: dict[str, type[BaseNode]] = {
    cls.kind: cls
    for cls in (
        PlannerNode,
        ExecutorNode,
        CriticNode,
        FinalCriticNode,
        SummaryNode,
        AwarenessNode,
    )
}


def create_node(
    kind: str, deps: NodeDependencies, node_id: str | None = None, name: str | None = None
) -> BaseNode:
    """Instantiate a registered node variant by kind."""
    node_cls = NODE_TYPES.get(kind)
    if node_cls is None:
        raise GraphConfigurationError(
            f"Unknown node kind '{kind}'. Known kinds: {', '.join(sorted(NODE_TYPES))}"
        )
    return node_cls(deps, node_id=node_id, name=name)


__all__ = [
    "NODE_TYPES",
    "AwarenessNode",
    "BaseNode",
    "CriticNode",
    "ExecutorNode",
    "FinalCriticNode",
    "NodeDependencies",
    "PlannerNode",
    "SummaryNode",
    "create_node",
]
