"""
Base Node - shared plumbing for the planner/executor/critic node family.

Every node receives its collaborators through `NodeDependencies` at
construction time. Suspension points (text generation, tool calls) are
wrapped in the run's abort signal and a timeout; cancellation and timeouts
come back as ordinary failures (None / unsuccessful ToolResult).
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar

from plangraph.config import GraphConfig
from plangraph.errors import StepAborted
from plangraph.graph.decision import NodeDecision
from plangraph.graph.node import NodeResult
from plangraph.graph.state import MessageRole, ThreadState
from plangraph.llm.json_parse import parse_json
from plangraph.llm.provider import TextGenerator
from plangraph.runtime.abort import get_current_abort
from plangraph.runtime.event_bus import EventBus, ProgressPhase
from plangraph.services.awareness import AwarenessService
from plangraph.services.strategic_state import StrategicState
from plangraph.storage.plan_store import PlanStore
from plangraph.tools.registry import StepExecutor, ToolRegistry, ToolResult

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a careful, pragmatic assistant running on the user's own machine. "
    "Prefer safe, minimal actions and say plainly when something cannot be done."
)

JSON_ONLY_INSTRUCTIONS = (
    "Respond with a single JSON object only. No prose before or after it, "
    "no markdown fences."
)


@dataclass
class NodeDependencies:
    """Collaborators injected into every node."""

    generator: TextGenerator
    store: PlanStore
    tools: StepExecutor | None = None
    event_bus: EventBus | None = None
    awareness: AwarenessService = field(default_factory=AwarenessService)
    config: GraphConfig = field(default_factory=GraphConfig.load)


class BaseNode(ABC):
    """Common helpers; subclasses implement `execute`."""

    kind: ClassVar[str] = "base"
    default_name: ClassVar[str] = "Node"

    def __init__(self, deps: NodeDependencies, node_id: str | None = None, name: str | None = None):
        self.deps = deps
        self.id = node_id or self.kind
        self.name = name or self.default_name

    async def initialize(self) -> None:
        return None

    async def destroy(self) -> None:
        return None

    @abstractmethod
    async def execute(self, state: ThreadState) -> NodeResult: ...

    @property
    def config(self) -> GraphConfig:
        return self.deps.config

    def result(self, state: ThreadState, decision: NodeDecision) -> NodeResult:
        return NodeResult(state=state, decision=decision)

    def strategic(self, state: ThreadState, plan_id: int | None = None) -> StrategicState:
        return StrategicState(
            state.thread_id,
            self.deps.store,
            event_bus=self.deps.event_bus,
            awareness=self.deps.awareness,
            plan_id=plan_id if plan_id is not None else state.plan.active_plan_id,
            node_id=self.id,
        )

    # === TEXT GENERATION ===

    def llm_failures_exhausted(self, state: ThreadState) -> bool:
        return state.revisions.llm_failure_count >= self.config.max_llm_failures

    def _record_llm_failure(self, state: ThreadState, why: str) -> None:
        state.revisions.llm_failure_count += 1
        logger.warning(
            f"⚠ {self.name}: {why} "
            f"({state.revisions.llm_failure_count}/{self.config.max_llm_failures})"
        )

    async def generate_text(self, state: ThreadState, prompt: str) -> str | None:
        """Generate text; a failure, timeout or abort counts against the backend and yields None."""
        call = self.deps.generator.generate(prompt, system=SYSTEM_PROMPT)
        abort = get_current_abort()
        try:
            if abort is not None:
                text = await abort.race(call, timeout=self.config.llm_timeout_seconds)
            else:
                text = await asyncio.wait_for(call, timeout=self.config.llm_timeout_seconds)
        except (StepAborted, TimeoutError) as e:
            detail = str(e) or f"timed out after {self.config.llm_timeout_seconds}s"
            self._record_llm_failure(state, f"generation interrupted: {detail}")
            return None
        if not text:
            self._record_llm_failure(state, "no response from text backend")
            return None
        return text

    async def generate_json(self, state: ThreadState, prompt: str) -> dict[str, Any] | None:
        text = await self.generate_text(state, f"{prompt}\n\n{JSON_ONLY_INSTRUCTIONS}")
        if text is None:
            return None
        parsed = parse_json(text)
        if parsed is None:
            self._record_llm_failure(state, "could not parse JSON from response")
        return parsed

    # === TOOLS ===

    async def run_tool(self, name: str, args: dict[str, Any]) -> ToolResult:
        """Execute a tool; aborts and timeouts become unsuccessful results."""
        if self.deps.tools is None:
            return ToolResult(success=False, error=f"No tool executor configured for {name}")
        call = self.deps.tools.execute(name, args)
        abort = get_current_abort()
        try:
            if abort is not None:
                return await abort.race(call, timeout=self.config.tool_timeout_seconds)
            return await asyncio.wait_for(call, timeout=self.config.tool_timeout_seconds)
        except StepAborted as e:
            return ToolResult(success=False, error=f"Cancelled: {e.reason}")
        except TimeoutError as e:
            detail = str(e) or f"Step timed out after {self.config.tool_timeout_seconds}s"
            return ToolResult(success=False, error=detail)
        except Exception as e:
            return ToolResult(success=False, error=str(e))

    # === NOTIFICATIONS ===

    async def emit(
        self, state: ThreadState, phase: ProgressPhase | str, data: dict[str, Any]
    ) -> None:
        if self.deps.event_bus is None:
            return
        await self.deps.event_bus.emit_progress(state.thread_id, phase, data, node_id=self.id)

    async def notify_user(self, state: ThreadState, message: str) -> None:
        """User-facing notice: appended to the transcript and broadcast."""
        state.add_message(MessageRole.ASSISTANT, message)
        await self.emit(state, ProgressPhase.NOTICE, {"message": message})

    # === PROMPT CONTEXT ===

    def conversation_excerpt(self, state: ThreadState, limit: int = 6) -> str:
        lines = [f"{m.role.value}: {m.content}" for m in state.messages[-limit:]]
        return "\n".join(lines) if lines else "(no messages)"

    def awareness_section(self) -> str:
        described = self.deps.awareness.describe()
        return f"## Awareness\n{described}" if described else ""

    def tools_section(self, categories: list[str] | None = None) -> str:
        tools = self.deps.tools
        if not isinstance(tools, ToolRegistry):
            return ""
        described = tools.describe_tools(categories)
        return f"## Available tools\n{described}" if described else "## Available tools\n(none)"

    def tool_history_section(self, state: ThreadState) -> str:
        recent = state.tools.recent(self.config.tool_history_prompt_window)
        if not recent:
            return ""
        return "## Recent tool results\n" + "\n".join(json.dumps(r, default=str) for r in recent)

    @staticmethod
    def join_sections(*sections: str) -> str:
        return "\n\n".join(s for s in sections if s)
