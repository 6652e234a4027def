"""
Edge Protocol - How nodes connect in a graph.

Edge Types:
- always: Always traverse after source completes (static edge)
- conditional: A resolver maps the current state to a target node id
- revision: Followed only when the source node decides `revise`

Outgoing edges of a node are evaluated in declaration order; the first
edge that yields a known target wins.
"""

from collections.abc import Callable
from enum import StrEnum

from pydantic import BaseModel, Field

from plangraph.graph.state import ThreadState

# Maps state to a target node id; None or "end" means "no match here".
EdgeResolver = Callable[[ThreadState], str | None]

END = "end"


class EdgeCondition(StrEnum):
    """When an edge should be traversed."""

    ALWAYS = "always"
    CONDITIONAL = "conditional"
    REVISION = "revision"


class Edge(BaseModel):
    source: str = Field(description="Source node ID")
    target: str | None = Field(default=None, description="Target node ID for static edges")
    condition: EdgeCondition = EdgeCondition.ALWAYS
    resolver: EdgeResolver | None = Field(default=None, exclude=True)
    description: str = ""

    model_config = {"arbitrary_types_allowed": True}

    def resolve(self, state: ThreadState) -> str | None:
        """Target for this edge given the state, or None when it does not apply."""
        if self.condition == EdgeCondition.CONDITIONAL:
            if self.resolver is None:
                return None
            target = self.resolver(state)
        else:
            target = self.target
        if not target or target == END:
            return None
        return target
