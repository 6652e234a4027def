"""
Workflow Graph - Runs one thread's state through a graph of nodes.

The graph:
1. Starts at the entry node
2. Executes exactly one node at a time, awaiting it to completion
3. Resolves the node's decision to the next node via its edges
4. Enforces loop protection (global iteration cap, same-node cap)
5. Returns the final state, with any error or forced stop recorded in it

Routing rules:
- end:             terminate immediately
- continue / next: first outgoing edge (declaration order) with a known target
- revise:          the node's revision edge; missing edge is a run error
- goto:            the named node; an unregistered id is a run error

A node that raises is caught here. The error is recorded in `state.run.error`
and the run ends; the graph never retries on its own.
"""

import logging
from collections.abc import Iterable

from plangraph.errors import GraphConfigurationError, StepAborted
from plangraph.graph.decision import DecisionType, NodeDecision
from plangraph.graph.edge import Edge, EdgeCondition, EdgeResolver
from plangraph.graph.node import NodeProtocol
from plangraph.graph.state import ThreadState
from plangraph.observability import set_trace_context
from plangraph.runtime.abort import AbortSignal, reset_current_abort, set_current_abort
from plangraph.runtime.event_bus import EventBus

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 50
DEFAULT_MAX_CONSECUTIVE_SAME_NODE = 3


class WorkflowGraph:
    """
    A directed graph of nodes executed cooperatively, one node at a time.

    Example:
        graph = (
            WorkflowGraph(max_iterations=20)
            .add_node(planner)
            .add_node(executor)
            .add_edge("planner", "executor")
            .add_conditional_edge(
                "executor", lambda s: "executor" if s.plan.has_remaining_todos else None
            )
            .set_entry_point("planner")
        )
        await graph.initialize()
        state = await graph.execute(ThreadState(thread_id="t1"))
    """

    def __init__(
        self,
        graph_id: str = "workflow",
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        max_consecutive_same_node: int = DEFAULT_MAX_CONSECUTIVE_SAME_NODE,
        event_bus: EventBus | None = None,
    ):
        if max_iterations < 1:
            raise GraphConfigurationError("max_iterations must be at least 1")
        self.graph_id = graph_id
        self.max_iterations = max_iterations
        self.max_consecutive_same_node = max_consecutive_same_node
        self.event_bus = event_bus

        self.nodes: dict[str, NodeProtocol] = {}
        self.edges: dict[str, list[Edge]] = {}
        self.revision_edges: dict[str, Edge] = {}
        self.entry_point: str | None = None
        self.end_points: set[str] = set()
        self._initialized = False

    # === BUILDING ===

    def add_node(self, node: NodeProtocol) -> "WorkflowGraph":
        if node.id in self.nodes:
            raise GraphConfigurationError(f"Node '{node.id}' is already registered")
        self.nodes[node.id] = node
        return self

    def add_edge(self, from_id: str, to_id: str) -> "WorkflowGraph":
        """Static edge: always traversed on continue/next (unless an earlier edge matched)."""
        self.edges.setdefault(from_id, []).append(
            Edge(source=from_id, target=to_id, condition=EdgeCondition.ALWAYS)
        )
        return self

    def add_conditional_edge(
        self, from_id: str, resolver: EdgeResolver, description: str = ""
    ) -> "WorkflowGraph":
        """Dynamic edge: `resolver(state)` names the target, or None/"end" to fall through."""
        self.edges.setdefault(from_id, []).append(
            Edge(
                source=from_id,
                condition=EdgeCondition.CONDITIONAL,
                resolver=resolver,
                description=description,
            )
        )
        return self

    def add_revision_edge(self, from_id: str, to_id: str) -> "WorkflowGraph":
        """Target for `revise` decisions returned by `from_id`."""
        self.revision_edges[from_id] = Edge(
            source=from_id, target=to_id, condition=EdgeCondition.REVISION
        )
        return self

    def set_entry_point(self, node_id: str) -> "WorkflowGraph":
        if node_id not in self.nodes:
            raise GraphConfigurationError(f"Entry point '{node_id}' is not a registered node")
        self.entry_point = node_id
        return self

    def set_end_points(self, *node_ids: str | Iterable[str]) -> "WorkflowGraph":
        """Nodes after which the run terminates, whatever they decided."""
        ids: set[str] = set()
        for item in node_ids:
            if isinstance(item, str):
                ids.add(item)
            else:
                ids.update(item)
        self.end_points = ids
        return self

    def validate(self) -> list[str]:
        """Return structural errors; an empty list means the graph is runnable."""
        errors: list[str] = []
        if self.entry_point is None:
            errors.append("Graph has no entry point")
        elif self.entry_point not in self.nodes:
            errors.append(f"Entry point '{self.entry_point}' is not a registered node")

        for source, edges in self.edges.items():
            if source not in self.nodes:
                errors.append(f"Edge source '{source}' is not a registered node")
            for edge in edges:
                if edge.condition == EdgeCondition.ALWAYS and edge.target not in self.nodes:
                    errors.append(f"Edge {source} → {edge.target} targets an unknown node")

        for source, edge in self.revision_edges.items():
            if source not in self.nodes:
                errors.append(f"Revision edge source '{source}' is not a registered node")
            if edge.target not in self.nodes:
                errors.append(f"Revision edge {source} → {edge.target} targets an unknown node")

        for node_id in sorted(self.end_points):
            if node_id not in self.nodes:
                errors.append(f"End point '{node_id}' is not a registered node")
        return errors

    # === LIFECYCLE ===

    async def initialize(self) -> None:
        errors = self.validate()
        if errors:
            raise GraphConfigurationError("; ".join(errors))
        for node in self.nodes.values():
            await node.initialize()
        self._initialized = True
        logger.info(f"✓ Graph '{self.graph_id}' initialized with {len(self.nodes)} nodes")

    async def destroy(self) -> None:
        for node in self.nodes.values():
            try:
                await node.destroy()
            except Exception as e:
                logger.warning(f"⚠ Node '{node.id}' failed to shut down cleanly: {e}")
        self._initialized = False

    # === EXECUTION ===

    async def execute(self, state: ThreadState, abort: AbortSignal | None = None) -> ThreadState:
        """
        Run the graph from the entry point until a node ends the run, an end
        point is reached, no edge matches, or loop protection trips.

        Raises:
            GraphConfigurationError: no entry point has been set
        """
        if self.entry_point is None:
            raise GraphConfigurationError("Cannot execute a graph without an entry point")
        if not self._initialized:
            await self.initialize()

        token = set_current_abort(abort)
        try:
            return await self._run(state, self.entry_point, abort)
        finally:
            reset_current_abort(token)

    async def _run(
        self, state: ThreadState, entry_point: str, abort: AbortSignal | None
    ) -> ThreadState:
        run = state.run
        current_id: str = entry_point
        run.current_node_id = current_id
        set_trace_context(thread_id=state.thread_id)

        logger.info(f"🚀 Starting graph '{self.graph_id}' for thread {state.thread_id}")
        logger.info(f"   Entry node: {current_id}")
        if self.event_bus:
            await self.event_bus.emit_run_started(state.thread_id, current_id)

        while True:
            if abort is not None and abort.aborted:
                await self._stop(
                    state, current_id, f"Run cancelled before '{current_id}': {abort.reason}"
                )
                break

            if run.iterations >= self.max_iterations:
                run.max_iterations_reached = True
                await self._stop(
                    state,
                    current_id,
                    f"Stopped after {run.iterations} steps without finishing "
                    f"(next node was '{current_id}')",
                )
                break

            node = self.nodes.get(current_id)
            if node is None:
                run.error = f"Node '{current_id}' is not registered"
                logger.error(f"❌ {run.error}")
                break

            run.iterations += 1
            run.current_node_id = current_id
            run.path.append(current_id)
            set_trace_context(node_id=current_id)
            logger.info(f"▶ Step {run.iterations}: {node.name} ({current_id})")
            if self.event_bus:
                await self.event_bus.emit_node_started(state.thread_id, current_id, run.iterations)

            try:
                result = await node.execute(state)
            except StepAborted as e:
                await self._stop(
                    state, current_id, f"Run cancelled during '{current_id}': {e.reason}"
                )
                break
            except Exception as e:
                run.error = f"Node '{current_id}' failed: {e}"
                logger.error(f"   ✗ {run.error}", exc_info=True)
                if self.event_bus:
                    await self.event_bus.emit_node_failed(state.thread_id, current_id, str(e))
                break

            state = result.state
            run = state.run
            decision = result.decision
            logger.info(f"   ✓ Decision: {decision}")
            if self.event_bus:
                await self.event_bus.emit_node_completed(state.thread_id, current_id, str(decision))

            if current_id in self.end_points:
                logger.info(f"✓ Reached end point: {current_id}")
                break
            if decision.type == DecisionType.END:
                break

            try:
                next_id, condition = self._resolve_next(current_id, decision, state)
            except GraphConfigurationError as e:
                run.error = str(e)
                logger.error(f"❌ {run.error}")
                break
            except Exception as e:
                run.error = f"Routing from '{current_id}' failed: {e}"
                logger.error(f"❌ {run.error}", exc_info=True)
                break

            if next_id is None:
                logger.info("   → No more edges, ending execution")
                break

            if next_id == current_id:
                run.consecutive_same_node += 1
            else:
                run.consecutive_same_node = 0
            if run.consecutive_same_node > self.max_consecutive_same_node:
                run.max_iterations_reached = True
                await self._stop(
                    state,
                    current_id,
                    f"Node '{current_id}' re-entered itself {run.consecutive_same_node} times "
                    "without making progress",
                )
                break

            logger.info(f"   → Next: {next_id}")
            if self.event_bus:
                await self.event_bus.emit_edge_traversed(
                    state.thread_id, current_id, next_id, edge_condition=condition
                )
            current_id = next_id

        logger.info(f"✓ Graph finished after {run.iterations} steps")
        logger.info(f"   Path: {' → '.join(run.path)}")
        if self.event_bus:
            await self.event_bus.emit_run_completed(
                state.thread_id, run.path, run.iterations, error=run.error
            )
        return state

    def _resolve_next(
        self, current_id: str, decision: NodeDecision, state: ThreadState
    ) -> tuple[str | None, str]:
        """Map a decision to (next node id or None, traversed edge condition)."""
        if decision.type == DecisionType.GOTO:
            if not decision.target or decision.target not in self.nodes:
                raise GraphConfigurationError(
                    f"Node '{current_id}' routed to unknown node '{decision.target}'"
                )
            return decision.target, "goto"

        if decision.type == DecisionType.REVISE:
            edge = self.revision_edges.get(current_id)
            if edge is None:
                raise GraphConfigurationError(
                    f"Node '{current_id}' requested a revision but has no revision edge"
                )
            if edge.target not in self.nodes:
                raise GraphConfigurationError(
                    f"Revision edge from '{current_id}' targets unknown node '{edge.target}'"
                )
            return edge.target, EdgeCondition.REVISION.value

        for edge in self.edges.get(current_id, []):
            target = edge.resolve(state)
            if target is None:
                continue
            if target not in self.nodes:
                logger.warning(
                    f"⚠ Edge from '{current_id}' resolved to unknown node '{target}', skipping"
                )
                continue
            return target, edge.condition.value
        return None, ""

    async def _stop(self, state: ThreadState, node_id: str | None, reason: str) -> None:
        state.run.stop_reason = reason
        logger.warning(f"⏹ {reason}")
        if self.event_bus:
            await self.event_bus.emit_run_stopped(state.thread_id, node_id, reason)
