"""
Strategic State - one thread's view over its active plan.

The read path is always refreshed from the PlanStore before a decision is
made, and every plan/todo mutation goes through this narrow operation set
so "one active plan per thread" and "monotonic revision" hold.

Each mutation emits a best-effort progress notification:

  plan_created, todo_created, plan_revised, todo_deleted, todo_status,
  revision_requested, plan_completed
"""

import logging
from typing import Any

from plangraph.errors import TodoOwnershipError
from plangraph.runtime.event_bus import EventBus, ProgressPhase
from plangraph.schemas.plan import (
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
from plangraph.services.awareness import AwarenessService
from plangraph.storage.plan_store import PlanStore

logger = logging.getLogger(__name__)

_OPEN = (TodoStatus.PENDING, TodoStatus.IN_PROGRESS)


def pick_next_todo(todos: list[TodoRecord]) -> TodoRecord | None:
    """
    Lowest-order pending todo; else lowest-order in_progress todo; else None.

    Ties on order_index are broken by id.
    """
    ordered = sort_todos(todos)
    for status in _OPEN:
        for todo in ordered:
            if todo.status == status:
                return todo
    return None


def has_blocked_prerequisite(todos: list[TodoRecord]) -> bool:
    """True iff the earliest blocked todo comes before some still-open todo."""
    blocked = [t.order_index for t in todos if t.status == TodoStatus.BLOCKED]
    open_orders = [t.order_index for t in todos if t.status in _OPEN]
    if not blocked or not open_orders:
        return False
    return min(blocked) < max(open_orders)


def has_remaining_todos(todos: list[TodoRecord]) -> bool:
    return any(t.status.is_open() for t in todos)


class StrategicState:
    """
    In-memory view of a thread's active plan.

    Example:
        strategic = StrategicState("thread-1", store, event_bus=bus)
        await strategic.initialize()
        plan_id = await strategic.create_plan({"goal": "Ship it"}, [TodoSpec(title="build")])
        todo = strategic.pick_next_todo()
        await strategic.advance_todo(todo.id, TodoStatus.IN_PROGRESS)
    """

    def __init__(
        self,
        thread_id: str,
        store: PlanStore,
        event_bus: EventBus | None = None,
        awareness: AwarenessService | None = None,
        plan_id: int | None = None,
        node_id: str | None = None,
    ):
        self.thread_id = thread_id
        self.store = store
        self.event_bus = event_bus
        self.awareness = awareness
        self.node_id = node_id

        self.plan_id: int | None = plan_id
        self._completed_plan_id: int | None = None
        self.plan: PlanRecord | None = None
        self.todos: list[TodoRecord] = []
        self.events: list[PlanEventRecord] = []

    async def initialize(self) -> None:
        """Resolve the tracked plan (explicit id → registry → store) and load it."""
        if self.plan_id is None and self.awareness is not None:
            self.plan_id = self.awareness.active_plans.get(self.thread_id)
        if self.plan_id is None:
            self.plan_id = await self.store.get_active_plan_id_for_thread(self.thread_id)
        await self.refresh()

    async def refresh(self) -> None:
        if self.plan_id is None:
            self._clear_snapshot()
            return
        loaded = await self.store.get_plan(self.plan_id)
        if loaded is None:
            logger.warning(f"⚠ Plan {self.plan_id} not found; treating as nothing to do")
            self.plan_id = None
            self._clear_snapshot()
            return
        self.plan = loaded.plan
        self.todos = loaded.todos
        self.events = loaded.events

    def _clear_snapshot(self) -> None:
        self.plan = None
        self.todos = []
        self.events = []

    async def _emit(self, phase: ProgressPhase, data: dict[str, Any]) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.emit_progress(self.thread_id, phase, data, node_id=self.node_id)

    # === QUERIES ===

    def get_todo(self, todo_id: int) -> TodoRecord | None:
        for todo in self.todos:
            if todo.id == todo_id:
                return todo
        return None

    def pick_next_todo(self, todos: list[TodoRecord] | None = None) -> TodoRecord | None:
        return pick_next_todo(self.todos if todos is None else todos)

    def has_blocked_prerequisite(self, todos: list[TodoRecord] | None = None) -> bool:
        return has_blocked_prerequisite(self.todos if todos is None else todos)

    def has_remaining_todos(self) -> bool:
        return has_remaining_todos(self.todos)

    def snapshot(self) -> list[dict[str, Any]]:
        """All todos in execution order, compact form."""
        return [t.brief() for t in sort_todos(self.todos)]

    # === MUTATIONS ===

    async def create_plan(
        self,
        data: dict[str, Any],
        todos: list[TodoSpec],
        event_data: dict[str, Any] | None = None,
    ) -> int | None:
        created = await self.store.create_plan(self.thread_id, data, todos, event_data)
        if created is None:
            return None

        self.plan_id = created.plan_id
        await self.refresh()
        logger.info(f"📋 Created plan {created.plan_id} with {len(created.todos)} todos")

        await self._emit(
            ProgressPhase.PLAN_CREATED, {"plan_id": created.plan_id, "goal": data.get("goal")}
        )
        for todo in created.todos:
            await self._emit(
                ProgressPhase.TODO_CREATED,
                {
                    "plan_id": created.plan_id,
                    "todo_id": todo.id,
                    "title": todo.title,
                    "order_index": todo.order_index,
                    "status": todo.status.value,
                },
            )

        if self.awareness is not None:
            self.awareness.register_active_plan(self.thread_id, created.plan_id)
        return created.plan_id

    async def revise_plan(
        self,
        plan_id: int,
        data: dict[str, Any],
        todos: list[TodoSpec],
        event_data: dict[str, Any] | None = None,
    ) -> RevisedPlan | None:
        revised = await self.store.revise_plan(plan_id, data, todos, event_data)
        if revised is None:
            return None

        self.plan_id = revised.plan_id
        await self.refresh()
        logger.info(f"📝 Revised plan {plan_id} → revision {revised.revision}")

        await self._emit(
            ProgressPhase.PLAN_REVISED,
            {"plan_id": plan_id, "revision": revised.revision, "goal": data.get("goal")},
        )
        for todo in revised.todos_created:
            await self._emit(
                ProgressPhase.TODO_CREATED,
                {
                    "plan_id": plan_id,
                    "todo_id": todo.id,
                    "title": todo.title,
                    "order_index": todo.order_index,
                    "status": todo.status.value,
                },
            )
        for todo_id in revised.todos_removed:
            await self._emit(ProgressPhase.TODO_DELETED, {"plan_id": plan_id, "todo_id": todo_id})

        if self.awareness is not None:
            self.awareness.register_active_plan(self.thread_id, plan_id)
        return revised

    async def advance_todo(
        self,
        todo_id: int,
        status: TodoStatus,
        reason: str | None = None,
    ) -> bool:
        """
        Move a todo to `status` and append a todo_status event.

        Raises:
            TodoOwnershipError: the todo is not part of the tracked plan
        """
        await self.refresh()
        todo = self.get_todo(todo_id)
        if self.plan_id is None or todo is None:
            raise TodoOwnershipError(todo_id, self.plan_id)

        plan_id = self.plan_id
        status = TodoStatus(status)
        ok = await self.store.update_todo_status(todo_id, status, plan_id=plan_id)
        if not ok:
            return False

        event_data: dict[str, Any] = {"todo_id": todo_id, "status": status.value}
        if reason:
            event_data["reason"] = reason
        await self.store.add_plan_event(plan_id, PlanEventType.TODO_STATUS, event_data)
        await self.refresh()

        await self._emit(
            ProgressPhase.TODO_STATUS,
            {"plan_id": plan_id, "todo_id": todo_id, "title": todo.title, "status": status.value},
        )
        return True

    async def start_todo(self, todo_id: int) -> bool:
        return await self.advance_todo(todo_id, TodoStatus.IN_PROGRESS)

    async def complete_todo(self, todo_id: int, reason: str | None = None) -> bool:
        return await self.advance_todo(todo_id, TodoStatus.DONE, reason)

    async def block_todo(self, todo_id: int, reason: str) -> bool:
        return await self.advance_todo(todo_id, TodoStatus.BLOCKED, reason)

    async def request_revision(self, reason: str) -> bool:
        """Append a revision_requested event; todos are left untouched."""
        if self.plan_id is None:
            return False
        plan_id = self.plan_id
        ok = await self.store.add_plan_event(
            plan_id, PlanEventType.REVISION_REQUESTED, {"reason": reason}
        )
        if not ok:
            return False
        await self.refresh()
        logger.info(f"🔁 Revision requested for plan {plan_id}: {reason}")
        await self._emit(ProgressPhase.REVISION_REQUESTED, {"plan_id": plan_id, "reason": reason})
        return True

    async def mark_plan_completed(self, reason: str, plan_id: int | None = None) -> bool:
        """
        Mark a plan completed and stop tracking it.

        Safe to repeat: a second call on the same plan leaves it completed and
        appends one more plan_completed event.
        """
        target = plan_id if plan_id is not None else self.plan_id
        if target is None:
            target = self._completed_plan_id
        if target is None:
            return False

        ok = await self.store.add_plan_event(
            target, PlanEventType.PLAN_COMPLETED, {"reason": reason}
        )
        if not ok:
            return False
        await self.store.update_plan_status(target, PlanStatus.COMPLETED)
        logger.info(f"✓ Plan {target} completed: {reason}")
        await self._emit(ProgressPhase.PLAN_COMPLETED, {"plan_id": target, "reason": reason})

        if self.awareness is not None:
            self.awareness.clear_active_plan(self.thread_id, target)
        self._completed_plan_id = target
        if target == self.plan_id:
            self.plan_id = None
        await self.refresh()
        return True

    async def record_final_review(self, plan_id: int, decision: str, reason: str) -> bool:
        return await self.store.add_plan_event(
            plan_id, PlanEventType.FINAL_REVIEW, {"decision": decision, "reason": reason}
        )
