"""
Default workflow wiring.

    planner → executor → critic ─┬─ remaining todos → executor
                                 ├─ revise → planner
                                 └─ otherwise → final_critic ─┬─ revise → planner
                                                               └─ summary [→ awareness]
"""

from plangraph.graph.executor import WorkflowGraph
from plangraph.graph.state import ThreadState
from plangraph.nodes import NodeDependencies, create_node


def route_after_critic(state: ThreadState) -> str:
    return "executor" if state.plan.has_remaining_todos else "final_critic"


def create_default_graph(
    deps: NodeDependencies,
    include_awareness: bool = False,
    graph_id: str = "plan-execute-critique",
) -> WorkflowGraph:
    graph = WorkflowGraph(
        graph_id=graph_id,
        max_iterations=deps.config.max_iterations,
        max_consecutive_same_node=deps.config.max_consecutive_same_node,
        event_bus=deps.event_bus,
    )

    kinds = ["planner", "executor", "critic", "final_critic", "summary"]
    if include_awareness:
        kinds.append("awareness")
    for kind in kinds:
        graph.add_node(create_node(kind, deps))

    graph.add_edge("planner", "executor")
    graph.add_edge("executor", "critic")
    graph.add_revision_edge("critic", "planner")
    graph.add_conditional_edge(
        "critic", route_after_critic, description="remaining todos → executor, else final review"
    )
    graph.add_revision_edge("final_critic", "planner")
    graph.add_edge("final_critic", "summary")

    if include_awareness:
        graph.add_edge("summary", "awareness")
        graph.set_end_points("awareness")
    else:
        graph.set_end_points("summary")

    return graph.set_entry_point("planner")
