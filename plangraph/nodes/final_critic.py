"""
Final Critic Node - judges whether the plan's goal, not just its todos, was met.

Runs once the critic sees no remaining work. Any todo still open forces a
revision with a synthesized reason, so completion is never reported falsely.
Otherwise the model decides; `revise` feeds suggested todos back to the
planner, bounded by `max_final_revisions`. Approval completes the plan and
clears the active-plan pointer so the next turn starts fresh.
"""

import json
import logging
from typing import Any

from plangraph.graph.decision import NodeDecision
from plangraph.graph.node import NodeResult
from plangraph.graph.state import ThreadState
from plangraph.nodes.base import BaseNode
from plangraph.nodes.planner import normalize_todos
from plangraph.runtime.event_bus import ProgressPhase
from plangraph.schemas.plan import PlanStatus, TodoStatus
from plangraph.services.strategic_state import StrategicState

logger = logging.getLogger(__name__)

FINAL_CRITIC_PROMPT = """You are the Final Critic. All todos of the plan are finished.
Judge whether the user's ORIGINAL goal is actually satisfied.

## Goal
{goal}

## User request
{request}

## Todos
{todos}

{tool_history}

Approve unless something the user asked for is clearly missing. If it is,
propose the smallest set of extra todos that would close the gap.

Return JSON:
{{
  "decision": "approve" | "revise",
  "reason": "short justification",
  "suggested_todos": [{{"title": "...", "description": "..."}}]
}}"""


class FinalCriticNode(BaseNode):
    kind = "final_critic"
    default_name = "Final Critic"

    async def execute(self, state: ThreadState) -> NodeResult:
        plan_id = state.plan.active_plan_id
        if plan_id is None:
            self._verdict(state, "approve", "No plan to review")
            return self.result(state, NodeDecision.next())

        strategic = self.strategic(state, plan_id)
        await strategic.refresh()

        if strategic.plan_id is None:
            logger.warning(f"⚠ Final critic: plan {plan_id} not found, nothing to review")
            self._verdict(state, "approve", "Plan no longer exists")
            state.plan.clear_active()
            return self.result(state, NodeDecision.next())

        if state.revisions.final_revision_count >= self.config.max_final_revisions:
            reason = f"Max final revisions ({self.config.max_final_revisions}) reached"
            logger.warning(f"⚠ Final critic: {reason}, completing plan {plan_id}")
            await self._approve(state, strategic, plan_id, reason)
            return self.result(state, NodeDecision.next())

        if strategic.has_remaining_todos():
            return await self._revise(state, strategic, plan_id, self._remaining_reason(strategic))

        if self.llm_failures_exhausted(state):
            reason = "Text backend unavailable, accepting plan"
            await self._approve(state, strategic, plan_id, reason)
            return self.result(state, NodeDecision.next())

        parsed = await self.generate_json(state, self._build_prompt(state, strategic))
        if parsed is None:
            reason = "No final review produced, accepting plan"
            await self._approve(state, strategic, plan_id, reason)
            return self.result(state, NodeDecision.next())

        decision = str(parsed.get("decision") or "approve").lower()
        reason = str(parsed.get("reason") or "")
        suggested = parsed.get("suggested_todos") or parsed.get("suggestedTodos") or []
        if decision == "revise":
            return await self._revise(
                state, strategic, plan_id, reason or "Goal not met", suggested=suggested
            )
        await self._approve(state, strategic, plan_id, reason or "Goal met")
        return self.result(state, NodeDecision.next())

    def _verdict(self, state: ThreadState, decision: str, reason: str) -> None:
        state.revisions.final_critic_decision = decision
        state.revisions.final_critic_reason = reason

    @staticmethod
    def _remaining_reason(strategic: StrategicState) -> str:
        def titles(*statuses: TodoStatus) -> str:
            return ", ".join(t.title for t in strategic.todos if t.status in statuses) or "none"

        return (
            "Plan has remaining todos"
            f" | blocked={titles(TodoStatus.BLOCKED)}"
            f" | pending={titles(TodoStatus.PENDING, TodoStatus.IN_PROGRESS)}"
        )

    def _build_prompt(self, state: ThreadState, strategic: StrategicState) -> str:
        return FINAL_CRITIC_PROMPT.format(
            goal=state.plan.goal or (strategic.plan.goal if strategic.plan else "") or "(unknown)",
            request=state.last_user_message() or "(none)",
            todos=json.dumps(strategic.snapshot(), indent=2),
            tool_history=self.tool_history_section(state),
        )

    async def _approve(
        self, state: ThreadState, strategic: StrategicState, plan_id: int, reason: str
    ) -> None:
        await strategic.record_final_review(plan_id, "approve", reason)
        if strategic.plan is not None and strategic.plan.status != PlanStatus.COMPLETED:
            await strategic.mark_plan_completed(reason, plan_id=plan_id)
        self.deps.awareness.clear_active_plan(state.thread_id, plan_id)

        self._verdict(state, "approve", reason)
        state.plan.clear_active()
        state.plan.revision_request = None
        state.plan.revision_feedback = None
        state.plan.suggested_todos = []
        logger.info(f"✓ Final critic: plan {plan_id} approved: {reason}")
        await self.emit(
            state,
            ProgressPhase.FINAL_REVIEW,
            {"plan_id": plan_id, "decision": "approve", "reason": reason},
        )

    async def _revise(
        self,
        state: ThreadState,
        strategic: StrategicState,
        plan_id: int,
        reason: str,
        suggested: Any = None,
    ) -> NodeResult:
        await strategic.record_final_review(plan_id, "revise", reason)

        state.plan.suggested_todos = [
            {"title": t.title, "description": t.description} for t in normalize_todos(suggested)
        ]
        state.plan.revision_request = reason
        state.plan.revision_feedback = {"reason": reason, "todos": strategic.snapshot()}
        state.plan.active_plan_id = plan_id
        state.revisions.final_revision_count += 1
        self._verdict(state, "revise", reason)
        logger.warning(
            f"🔁 Final critic: revision "
            f"{state.revisions.final_revision_count}/{self.config.max_final_revisions}: {reason}"
        )
        await self.emit(
            state,
            ProgressPhase.FINAL_REVIEW,
            {"plan_id": plan_id, "decision": "revise", "reason": reason},
        )
        return self.result(state, NodeDecision.revise())
