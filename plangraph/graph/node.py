"""
Node Protocol - the single interface the graph depends on.

A node has an id, a human readable name and an async
`execute(state) -> NodeResult`. Concrete variants (planner, executor,
critic, ...) live in `plangraph.nodes`; the graph never imports them.
"""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from plangraph.graph.decision import NodeDecision
from plangraph.graph.state import ThreadState


@dataclass
class NodeResult:
    """What a node hands back to the graph."""

    state: ThreadState
    decision: NodeDecision


@runtime_checkable
class NodeProtocol(Protocol):
    id: str
    name: str

    async def initialize(self) -> None: ...

    async def execute(self, state: ThreadState) -> NodeResult: ...

    async def destroy(self) -> None: ...
