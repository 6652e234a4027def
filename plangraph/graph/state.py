"""
Thread State - the per-conversation working memory threaded through every node.

Instead of one untyped metadata bag, inter-node communication is split into
structured sub-records, one per concern:

- run:       loop protection counters and the visited path (graph engine)
- plan:      active plan pointer, active todo, revision request (planner/executor/critics)
- revisions: bounded revision counters and critic verdicts (critics/planner)
- tools:     rolling tool-result history (executor)

`metadata` remains as an open bag for callers and custom nodes. No node may
assume a key exists there; absence means "not yet set".
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class MessageRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class Message(BaseModel):
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=datetime.now)

    model_config = {"extra": "allow"}


class RunContext(BaseModel):
    """Per-run bookkeeping owned by the graph engine."""

    current_node_id: str | None = None
    iterations: int = 0
    consecutive_same_node: int = 0
    max_iterations_reached: bool = False
    path: list[str] = Field(default_factory=list)
    error: str | None = None
    stop_reason: str | None = None


class PlanContext(BaseModel):
    """Plan pointers shared by planner, executor and critics."""

    active_plan_id: int | None = None
    active_todo: dict[str, Any] | None = None
    todo_execution: dict[str, Any] | None = None
    has_remaining_todos: bool = False
    revision_request: str | None = None
    revision_feedback: dict[str, Any] | None = None
    suggested_todos: list[dict[str, Any]] = Field(default_factory=list)
    goal: str | None = None

    def clear_active(self) -> None:
        self.active_plan_id = None
        self.active_todo = None
        self.todo_execution = None
        self.has_remaining_todos = False


class RevisionCounters(BaseModel):
    revision_count: int = 0
    final_revision_count: int = 0
    llm_failure_count: int = 0
    critic_decision: str | None = None
    critic_reason: str | None = None
    final_critic_decision: str | None = None
    final_critic_reason: str | None = None


class ToolResultCache(BaseModel):
    """Capped rolling history of tool results, most recent last."""

    history: list[dict[str, Any]] = Field(default_factory=list)
    last_result: dict[str, Any] | None = None

    def record(self, entry: dict[str, Any], limit: int = 12) -> None:
        self.history.append(entry)
        if len(self.history) > limit:
            self.history = self.history[-limit:]
        self.last_result = entry

    def recent(self, n: int) -> list[dict[str, Any]]:
        return self.history[-n:] if n > 0 else []


class ThreadState(BaseModel):
    """
    Working memory for one conversation thread.

    Created when a thread starts, mutated by every node in a run and kept
    across runs until the thread is torn down.
    """

    thread_id: str
    messages: list[Message] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    run: RunContext = Field(default_factory=RunContext)
    plan: PlanContext = Field(default_factory=PlanContext)
    revisions: RevisionCounters = Field(default_factory=RevisionCounters)
    tools: ToolResultCache = Field(default_factory=ToolResultCache)

    response: str | None = None
    summary: str | None = None

    model_config = {"extra": "allow"}

    def add_message(self, role: MessageRole | str, content: str) -> Message:
        message = Message(role=MessageRole(role), content=content)
        self.messages.append(message)
        return message

    def last_user_message(self) -> str:
        for message in reversed(self.messages):
            if message.role == MessageRole.USER:
                return message.content
        return ""

    def reset_run(self) -> None:
        """Start a new run: fresh loop protection, no stale verdicts or response."""
        self.run = RunContext()
        self.revisions = RevisionCounters()
        self.response = None
        self.plan.revision_request = None
        self.plan.revision_feedback = None
        self.plan.suggested_todos = []
