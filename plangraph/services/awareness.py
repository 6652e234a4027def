"""
Awareness Service - the agent's short, always-loaded picture of itself.

Holds a small awareness record (active plan ids, recent conversation
summaries, free-form notes) plus the process-wide registry mapping each
thread to its active plan. The executor falls back to the registry when a
thread's state has lost its plan pointer.
"""

import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

MAX_RECENT_SUMMARIES = 10
RESERVED_FIELDS = {"active_plan_ids", "recent_summaries", "updated_at"}


class ConversationSummary(BaseModel):
    thread_id: str
    summary: str
    topics: list[str] = Field(default_factory=list)
    entities: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)


class AwarenessRecord(BaseModel):
    active_plan_ids: list[str] = Field(default_factory=list)
    recent_summaries: list[ConversationSummary] = Field(default_factory=list)
    notes: dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=datetime.now)

    model_config = {"extra": "allow"}


class ActivePlanRegistry:
    """thread_id → active plan id."""

    def __init__(self) -> None:
        self._plans: dict[str, int] = {}

    def get(self, thread_id: str) -> int | None:
        return self._plans.get(thread_id)

    def set(self, thread_id: str, plan_id: int) -> None:
        self._plans[thread_id] = plan_id

    def clear(self, thread_id: str, plan_id: int | None = None) -> None:
        """Forget the thread's plan; with `plan_id`, only if it is still the one registered."""
        if plan_id is not None and self._plans.get(thread_id) != plan_id:
            return
        self._plans.pop(thread_id, None)

    def plan_ids(self) -> list[int]:
        return sorted(set(self._plans.values()))


class AwarenessService:
    def __init__(self, max_summaries: int = MAX_RECENT_SUMMARIES):
        self.record = AwarenessRecord()
        self.active_plans = ActivePlanRegistry()
        self.max_summaries = max_summaries

    def update(self, patch: dict[str, Any]) -> AwarenessRecord:
        """
        Apply a shallow patch to the awareness record.

        Keys land in `notes` (a `notes` dict is merged). Active plan ids
        belong to the registry and summaries to `add_summary`, so patches
        never touch them. A patch that does not validate is dropped whole.
        """
        fields = self.record.model_dump()
        fields["notes"] = dict(self.record.notes)
        for key, value in patch.items():
            if key in RESERVED_FIELDS:
                logger.debug(f"Awareness: ignoring patch to {key}")
            elif key == "notes" and isinstance(value, dict):
                fields["notes"].update(value)
            else:
                fields["notes"][key] = value
        fields["updated_at"] = datetime.now()
        try:
            self.record = AwarenessRecord.model_validate(fields)
        except ValidationError as e:
            logger.warning(f"⚠ Awareness patch rejected: {e.error_count()} invalid field(s)")
            return self.record
        logger.debug(f"Awareness updated: {sorted(patch)}")
        return self.record

    def register_active_plan(self, thread_id: str, plan_id: int) -> None:
        self.active_plans.set(thread_id, plan_id)
        self._sync_plan_ids()

    def clear_active_plan(self, thread_id: str, plan_id: int | None = None) -> None:
        self.active_plans.clear(thread_id, plan_id)
        self._sync_plan_ids()

    def _sync_plan_ids(self) -> None:
        self.record.active_plan_ids = [str(pid) for pid in self.active_plans.plan_ids()]

    def add_summary(
        self,
        thread_id: str,
        summary: str,
        topics: list[str] | None = None,
        entities: list[str] | None = None,
    ) -> ConversationSummary:
        entry = ConversationSummary(
            thread_id=thread_id,
            summary=summary,
            topics=list(topics or []),
            entities=list(entities or []),
        )
        self.record.recent_summaries.append(entry)
        if len(self.record.recent_summaries) > self.max_summaries:
            self.record.recent_summaries = self.record.recent_summaries[-self.max_summaries :]
        self.record.updated_at = datetime.now()
        return entry

    def describe(self) -> str:
        """Prompt section describing current awareness."""
        lines = []
        if self.record.active_plan_ids:
            plan_ids = ", ".join(str(pid) for pid in self.record.active_plan_ids)
            lines.append(f"Active plans: {plan_ids}")
        for s in self.record.recent_summaries[-3:]:
            lines.append(f"- [{s.thread_id}] {s.summary}")
        for key, value in self.record.notes.items():
            lines.append(f"{key}: {value}")
        return "\n".join(lines)
