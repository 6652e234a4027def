"""Persisted record schemas."""

from plangraph.schemas.plan import (
    CreatedPlan,
    LoadedPlan,
    PlanEventRecord,
    PlanEventType,
    PlanRecord,
    PlanStatus,
    RevisedPlan,
    TodoRecord,
    TodoSpec,
    TodoStatus,
    sort_todos,
)

__all__ = [
    "CreatedPlan",
    "LoadedPlan",
    "PlanEventRecord",
    "PlanEventType",
    "PlanRecord",
    "PlanStatus",
    "RevisedPlan",
    "TodoRecord",
    "TodoSpec",
    "TodoStatus",
    "sort_todos",
]
