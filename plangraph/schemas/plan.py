"""
Plan Schema - persisted records for plans, todos and plan events.

A Plan is one strategic objective for a thread. Its Todos are the ordered,
atomic units of work. Events are the append-only audit trail explaining
why any status changed; they are never mutated or deleted.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class PlanStatus(StrEnum):
    """Lifecycle status of a plan."""

    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class TodoStatus(StrEnum):
    """Lifecycle status of a todo: pending → in_progress → (done | blocked)."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    BLOCKED = "blocked"

    def is_open(self) -> bool:
        """Open todos keep the plan from completing."""
        return self in (TodoStatus.PENDING, TodoStatus.IN_PROGRESS, TodoStatus.BLOCKED)


class PlanEventType(StrEnum):
    """Types of audit events attached to a plan."""

    CREATED = "created"
    REVISED = "revised"
    TODO_STATUS = "todo_status"
    REVISION_REQUESTED = "revision_requested"
    PLAN_COMPLETED = "plan_completed"
    PLAN_ABANDONED = "plan_abandoned"
    FINAL_REVIEW = "final_review"


class PlanRecord(BaseModel):
    id: int
    thread_id: str
    revision: int = 1
    status: PlanStatus = PlanStatus.ACTIVE
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def goal(self) -> str:
        goal = self.data.get("goal")
        return goal if isinstance(goal, str) else ""


class TodoRecord(BaseModel):
    id: int
    plan_id: int
    status: TodoStatus = TodoStatus.PENDING
    order_index: int = 0
    title: str
    description: str = ""
    category_hints: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    def brief(self) -> dict[str, Any]:
        """Compact view used in prompts and revision feedback."""
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "orderIndex": self.order_index,
        }


class PlanEventRecord(BaseModel):
    id: int
    plan_id: int
    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.now)


class TodoSpec(BaseModel):
    """Input shape for creating or revising todos."""

    title: str
    description: str = ""
    order_index: int = 0
    category_hints: list[str] = Field(default_factory=list)


class LoadedPlan(BaseModel):
    """A plan with its todos ordered by (order_index, id) and events by id."""

    plan: PlanRecord
    todos: list[TodoRecord] = Field(default_factory=list)
    events: list[PlanEventRecord] = Field(default_factory=list)


class CreatedPlan(BaseModel):
    plan_id: int
    todos: list[TodoRecord] = Field(default_factory=list)


class RevisedPlan(BaseModel):
    plan_id: int
    revision: int
    todos_created: list[TodoRecord] = Field(default_factory=list)
    todos_removed: list[int] = Field(default_factory=list)


def sort_todos(todos: list[TodoRecord]) -> list[TodoRecord]:
    """Execution order: order_index ascending, ties broken by id."""
    return sorted(todos, key=lambda t: (t.order_index, t.id))
