"""
Plan Store - durable record of plans, todos and append-only plan events.

Every operation returns a value, None or False on failure and logs a
warning instead of raising, so callers handle store failures uniformly.

Backends share one document model: a plan is stored together with its
todos and events (a `LoadedPlan`), and every mutation is
read → modify → write under a single asyncio lock.

  InMemoryPlanStore   - dict of documents, for tests and dry runs
  FilePlanStore       - one JSON file per plan:
      {base_path}/
        ├── index.json          # id counters
        └── plans/
            └── plan_{id}.json  # plan + todos + events
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

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
from plangraph.utils.io import atomic_write

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PlanStore(ABC):
    """Contract consumed by StrategicState. Implementations never raise."""

    @abstractmethod
    async def create_plan(
        self,
        thread_id: str,
        data: dict[str, Any],
        todos: list[TodoSpec],
        event_data: dict[str, Any] | None = None,
    ) -> CreatedPlan | None:
        """Insert a plan and its todos atomically, abandoning any other active plan."""

    @abstractmethod
    async def get_plan(self, plan_id: int) -> LoadedPlan | None: ...

    @abstractmethod
    async def get_active_plan_id_for_thread(self, thread_id: str) -> int | None: ...

    @abstractmethod
    async def list_plans(self, thread_id: str | None = None) -> list[PlanRecord]: ...

    @abstractmethod
    async def update_plan_status(self, plan_id: int, status: PlanStatus) -> bool: ...

    @abstractmethod
    async def update_todo_status(
        self, todo_id: int, status: TodoStatus, plan_id: int | None = None
    ) -> bool: ...

    @abstractmethod
    async def add_plan_event(
        self, plan_id: int, event_type: PlanEventType | str, data: dict[str, Any] | None = None
    ) -> bool: ...

    @abstractmethod
    async def revise_plan(
        self,
        plan_id: int,
        data: dict[str, Any],
        todos: list[TodoSpec],
        event_data: dict[str, Any] | None = None,
    ) -> RevisedPlan | None:
        """New revision of the same plan: keep done todos, replace open ones."""

    @abstractmethod
    async def delete_plan(self, plan_id: int) -> bool:
        """Remove a plan with its todos and events."""

    async def close(self) -> None:
        return None


class DocumentPlanStore(PlanStore):
    """Shared plan/todo/event semantics over a per-plan document backend."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    # === BACKEND HOOKS (synchronous, called under the lock) ===

    @abstractmethod
    def _read(self, plan_id: int) -> LoadedPlan | None: ...

    @abstractmethod
    def _write(self, doc: LoadedPlan) -> None: ...

    @abstractmethod
    def _remove(self, plan_id: int) -> bool: ...

    @abstractmethod
    def _plan_ids(self) -> list[int]: ...

    @abstractmethod
    def _allocate_id(self, kind: str) -> int: ...

    async def _call(self, fn: Callable[[], T]) -> T:
        return fn()

    async def _run(self, operation: str, fn: Callable[[], T], default: T) -> T:
        try:
            async with self._lock:
                return await self._call(fn)
        except Exception as e:
            logger.warning(f"⚠ Plan store {operation} failed: {e}")
            return default

    # === DOCUMENT HELPERS ===

    def _new_event(
        self, doc: LoadedPlan, event_type: PlanEventType | str, data: dict[str, Any] | None
    ) -> PlanEventRecord:
        event = PlanEventRecord(
            id=self._allocate_id("event"),
            plan_id=doc.plan.id,
            type=str(event_type),
            data=dict(data or {}),
        )
        doc.events.append(event)
        return event

    def _new_todos(self, plan_id: int, specs: list[TodoSpec]) -> list[TodoRecord]:
        return [
            TodoRecord(
                id=self._allocate_id("todo"),
                plan_id=plan_id,
                status=TodoStatus.PENDING,
                order_index=spec.order_index,
                title=spec.title,
                description=spec.description,
                category_hints=list(spec.category_hints),
            )
            for spec in specs
        ]

    def _abandon_active(self, thread_id: str, keep_id: int | None, reason: str) -> list[int]:
        abandoned = []
        for pid in self._plan_ids():
            if pid == keep_id:
                continue
            other = self._read(pid)
            if other is None or other.plan.thread_id != thread_id:
                continue
            if other.plan.status != PlanStatus.ACTIVE:
                continue
            other.plan.status = PlanStatus.ABANDONED
            other.plan.updated_at = datetime.now()
            self._new_event(other, PlanEventType.PLAN_ABANDONED, {"reason": reason})
            self._write(other)
            abandoned.append(pid)
        return abandoned

    def _locate_todo(self, todo_id: int, plan_id: int | None) -> LoadedPlan | None:
        candidates = [plan_id] if plan_id is not None else self._plan_ids()
        for pid in candidates:
            doc = self._read(pid)
            if doc is not None and any(t.id == todo_id for t in doc.todos):
                return doc
        return None

    # === OPERATIONS ===

    async def create_plan(
        self,
        thread_id: str,
        data: dict[str, Any],
        todos: list[TodoSpec],
        event_data: dict[str, Any] | None = None,
    ) -> CreatedPlan | None:
        def _create() -> CreatedPlan:
            plan_id = self._allocate_id("plan")
            abandoned = self._abandon_active(thread_id, None, f"Superseded by plan {plan_id}")
            if abandoned:
                logger.info(f"Abandoned plans {abandoned} for thread {thread_id}")

            doc = LoadedPlan(plan=PlanRecord(id=plan_id, thread_id=thread_id, data=dict(data)))
            doc.todos = self._new_todos(plan_id, todos)
            self._new_event(
                doc,
                PlanEventType.CREATED,
                event_data if event_data is not None else {"todo_count": len(doc.todos)},
            )
            self._write(doc)
            return CreatedPlan(plan_id=plan_id, todos=sort_todos(doc.todos))

        return await self._run("create_plan", _create, None)

    async def get_plan(self, plan_id: int) -> LoadedPlan | None:
        def _get() -> LoadedPlan | None:
            doc = self._read(plan_id)
            if doc is None:
                return None
            doc.todos = sort_todos(doc.todos)
            doc.events = sorted(doc.events, key=lambda e: e.id)
            return doc

        return await self._run("get_plan", _get, None)

    async def get_active_plan_id_for_thread(self, thread_id: str) -> int | None:
        def _active() -> int | None:
            for pid in sorted(self._plan_ids(), reverse=True):
                doc = self._read(pid)
                if doc and doc.plan.thread_id == thread_id and doc.plan.status == PlanStatus.ACTIVE:
                    return pid
            return None

        return await self._run("get_active_plan_id_for_thread", _active, None)

    async def list_plans(self, thread_id: str | None = None) -> list[PlanRecord]:
        """Plans, newest first, optionally for one thread."""

        def _list() -> list[PlanRecord]:
            plans = []
            for pid in sorted(self._plan_ids(), reverse=True):
                doc = self._read(pid)
                if doc is None:
                    continue
                if thread_id is not None and doc.plan.thread_id != thread_id:
                    continue
                plans.append(doc.plan)
            return plans

        return await self._run("list_plans", _list, [])

    async def update_plan_status(self, plan_id: int, status: PlanStatus) -> bool:
        def _update() -> bool:
            doc = self._read(plan_id)
            if doc is None:
                return False
            if status == PlanStatus.ACTIVE:
                self._abandon_active(doc.plan.thread_id, plan_id, f"Plan {plan_id} re-activated")
            doc.plan.status = PlanStatus(status)
            doc.plan.updated_at = datetime.now()
            self._write(doc)
            return True

        return await self._run("update_plan_status", _update, False)

    async def update_todo_status(
        self, todo_id: int, status: TodoStatus, plan_id: int | None = None
    ) -> bool:
        def _update() -> bool:
            doc = self._locate_todo(todo_id, plan_id)
            if doc is None:
                return False
            for todo in doc.todos:
                if todo.id == todo_id:
                    todo.status = TodoStatus(status)
                    todo.updated_at = datetime.now()
            doc.plan.updated_at = datetime.now()
            self._write(doc)
            return True

        return await self._run("update_todo_status", _update, False)

    async def add_plan_event(
        self, plan_id: int, event_type: PlanEventType | str, data: dict[str, Any] | None = None
    ) -> bool:
        def _add() -> bool:
            doc = self._read(plan_id)
            if doc is None:
                return False
            self._new_event(doc, event_type, data)
            self._write(doc)
            return True

        return await self._run("add_plan_event", _add, False)

    async def revise_plan(
        self,
        plan_id: int,
        data: dict[str, Any],
        todos: list[TodoSpec],
        event_data: dict[str, Any] | None = None,
    ) -> RevisedPlan | None:
        def _revise() -> RevisedPlan | None:
            doc = self._read(plan_id)
            if doc is None:
                return None
            kept = [t for t in doc.todos if t.status == TodoStatus.DONE]
            removed = [t.id for t in doc.todos if t.status != TodoStatus.DONE]
            created = self._new_todos(plan_id, todos)

            if doc.plan.status != PlanStatus.ACTIVE:
                self._abandon_active(doc.plan.thread_id, plan_id, f"Plan {plan_id} revised")
            doc.plan.revision += 1
            doc.plan.status = PlanStatus.ACTIVE
            doc.plan.data = {**doc.plan.data, **data}
            doc.plan.updated_at = datetime.now()
            doc.todos = kept + created
            self._new_event(
                doc,
                PlanEventType.REVISED,
                {
                    **(event_data or {}),
                    "revision": doc.plan.revision,
                    "removed_todo_ids": removed,
                    "created_todo_ids": [t.id for t in created],
                },
            )
            self._write(doc)
            return RevisedPlan(
                plan_id=plan_id,
                revision=doc.plan.revision,
                todos_created=sort_todos(created),
                todos_removed=removed,
            )

        return await self._run("revise_plan", _revise, None)

    async def delete_plan(self, plan_id: int) -> bool:
        return await self._run("delete_plan", lambda: self._remove(plan_id), False)


class InMemoryPlanStore(DocumentPlanStore):
    """Process-local plan store. Documents are copied on read and write."""

    def __init__(self) -> None:
        super().__init__()
        self._plans: dict[int, LoadedPlan] = {}
        self._counters: dict[str, int] = {"plan": 0, "todo": 0, "event": 0}

    def _read(self, plan_id: int) -> LoadedPlan | None:
        doc = self._plans.get(plan_id)
        return doc.model_copy(deep=True) if doc is not None else None

    def _write(self, doc: LoadedPlan) -> None:
        self._plans[doc.plan.id] = doc.model_copy(deep=True)

    def _remove(self, plan_id: int) -> bool:
        return self._plans.pop(plan_id, None) is not None

    def _plan_ids(self) -> list[int]:
        return sorted(self._plans)

    def _allocate_id(self, kind: str) -> int:
        self._counters[kind] += 1
        return self._counters[kind]


class FilePlanStore(DocumentPlanStore):
    """
    JSON-file plan store.

    Each plan document is written atomically (temp file + rename); blocking
    file I/O runs in a worker thread.
    """

    def __init__(self, base_path: Path | str):
        """
        Args:
            base_path: Directory for plan documents (e.g., ~/.plangraph/plans)
        """
        super().__init__()
        self.base_path = Path(base_path)
        self.plans_dir = self.base_path / "plans"
        self.index_path = self.base_path / "index.json"

    async def _call(self, fn: Callable[[], T]) -> T:
        return await asyncio.to_thread(fn)

    def get_plan_path(self, plan_id: int) -> Path:
        return self.plans_dir / f"plan_{plan_id}.json"

    def _read(self, plan_id: int) -> LoadedPlan | None:
        path = self.get_plan_path(plan_id)
        if not path.exists():
            return None
        return LoadedPlan.model_validate_json(path.read_text(encoding="utf-8"))

    def _write(self, doc: LoadedPlan) -> None:
        with atomic_write(self.get_plan_path(doc.plan.id)) as f:
            f.write(doc.model_dump_json(indent=2))

    def _remove(self, plan_id: int) -> bool:
        path = self.get_plan_path(plan_id)
        if not path.exists():
            return False
        path.unlink()
        logger.info(f"Deleted plan {plan_id}")
        return True

    def _plan_ids(self) -> list[int]:
        if not self.plans_dir.exists():
            return []
        ids = []
        for path in self.plans_dir.glob("plan_*.json"):
            try:
                ids.append(int(path.stem.removeprefix("plan_")))
            except ValueError:
                logger.warning(f"Ignoring unexpected file in plan store: {path.name}")
        return sorted(ids)

    def _allocate_id(self, kind: str) -> int:
        counters = {"plan": 0, "todo": 0, "event": 0}
        if self.index_path.exists():
            counters.update(json.loads(self.index_path.read_text(encoding="utf-8")))
        counters[kind] += 1
        with atomic_write(self.index_path) as f:
            json.dump(counters, f, indent=2)
        return counters[kind]
