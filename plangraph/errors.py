"""Exception hierarchy for plangraph.

Only structural problems raise. Ordinary runtime failures (backend down,
tool errors, critic rejections) are folded into ThreadState by the nodes.
"""


class PlanGraphError(Exception):
    """Base class for all plangraph errors."""


class GraphConfigurationError(PlanGraphError):
    """The workflow graph is structurally invalid (missing entry, unknown node)."""


class PlanStateError(PlanGraphError):
    """A plan/todo mutation was requested that the plan lifecycle does not allow."""


class TodoOwnershipError(PlanStateError):
    """A todo was advanced that does not belong to the currently tracked plan."""

    def __init__(self, todo_id: int, plan_id: int | None):
        self.todo_id = todo_id
        self.plan_id = plan_id
        super().__init__(f"Todo {todo_id} does not belong to the tracked plan (plan_id={plan_id})")


class StepAborted(PlanGraphError):
    """A suspension point was cancelled by the caller's abort signal."""

    def __init__(self, reason: str = "Aborted"):
        self.reason = reason
        super().__init__(reason)
