"""
Critic Node - approves or rejects the todo the executor just worked on.

Order of checks:
1. Text backend failed too often → approve and end the run
2. Revision bound reached → force-approve the todo and move on
3. No active plan/todo → approve (nothing to judge)
4. Executor already requested a revision → block, snapshot todos, revise
5. Ask the model for a 0-10 success score; >= 8 approves

On approval the todo is marked done and, when nothing remains, the plan is
completed. On rejection the todo is blocked and the run routes to revise.
"""

import logging
from dataclasses import dataclass
from typing import Any

from plangraph.errors import TodoOwnershipError
from plangraph.graph.decision import NodeDecision
from plangraph.graph.node import NodeResult
from plangraph.graph.state import ThreadState
from plangraph.nodes.base import BaseNode
from plangraph.runtime.event_bus import ProgressPhase
from plangraph.schemas.plan import TodoStatus
from plangraph.services.strategic_state import StrategicState

logger = logging.getLogger(__name__)

APPROVE_SCORE = 8

CRITIC_PROMPT = """You are the Critic. Decide whether the current todo was sufficiently completed.

## Todo
Title: {title}
Description: {description}

This todo is one step toward the goal: "{goal}".

## Execution
Status: {status}
Summary: {summary}

{tool_history}

Errors or messy execution are not by themselves a reason to revise; judge
whether the todo's outcome now exists. Score 0-10; 8 or more approves.

Return JSON:
{{
  "success_score": 0,
  "decision": "approve" | "revise",
  "reason": "one-sentence verdict with evidence",
  "suggested_fix": "precise next action if revise"
}}"""


@dataclass
class Verdict:
    decision: str
    reason: str
    score: int | None = None

    @property
    def approved(self) -> bool:
        return self.decision == "approve"


class CriticNode(BaseNode):
    kind = "critic"
    default_name = "Critic"

    async def execute(self, state: ThreadState) -> NodeResult:
        revisions = state.revisions

        if self.llm_failures_exhausted(state):
            reason = (
                f"Text backend failed {revisions.llm_failure_count} times; "
                "ending with the work done so far"
            )
            logger.error(f"❌ Critic: {reason}")
            self._verdict(state, "approve", reason)
            state.run.stop_reason = reason
            return self.result(state, NodeDecision.end())

        plan_id = state.plan.active_plan_id
        todo = state.plan.active_todo
        strategic = self.strategic(state)
        if plan_id is not None:
            await strategic.refresh()

        if revisions.revision_count >= self.config.max_revisions:
            reason = (
                f"Max revisions ({self.config.max_revisions}) reached, accepting current result"
            )
            logger.warning(f"⚠ Critic: {reason}")
            state.plan.revision_request = None
            await self._approve(state, strategic, reason, forced=True)
            return self.result(state, NodeDecision.next())

        if plan_id is None or strategic.plan_id is None:
            self._verdict(state, "approve", "No active plan to critique")
            return self.result(state, NodeDecision.next())

        if state.plan.revision_request:
            return await self._revise(
                state, strategic, state.plan.revision_request, upstream=True
            )

        if todo is None:
            self._verdict(state, "approve", "No active todo to critique")
            return self.result(state, NodeDecision.next())

        verdict = await self._evaluate(state, todo)
        if verdict.approved:
            await self._approve(state, strategic, verdict.reason)
            return self.result(state, NodeDecision.next())
        return await self._revise(state, strategic, verdict.reason, upstream=False)

    def _verdict(self, state: ThreadState, decision: str, reason: str) -> None:
        state.revisions.critic_decision = decision
        state.revisions.critic_reason = reason

    async def _approve(
        self, state: ThreadState, strategic: StrategicState, reason: str, forced: bool = False
    ) -> None:
        todo = state.plan.active_todo
        if strategic.plan_id is None:
            state.plan.has_remaining_todos = False
        else:
            record = strategic.get_todo(int(todo["id"])) if todo and "id" in todo else None
            if record is not None and record.status != TodoStatus.DONE:
                try:
                    await strategic.complete_todo(record.id, reason)
                except TodoOwnershipError as e:
                    logger.warning(f"⚠ Critic: {e}")

            remaining = strategic.has_remaining_todos()
            if not remaining:
                await strategic.mark_plan_completed("All todos complete")
                logger.info(f"✓ Critic: all todos complete for plan {state.plan.active_plan_id}")
            elif forced and (
                strategic.pick_next_todo() is None or strategic.has_blocked_prerequisite()
            ):
                # Only blocked work is left; hand it to the final review.
                remaining = False
            state.plan.has_remaining_todos = remaining

        state.plan.revision_request = None
        state.plan.revision_feedback = None
        self._verdict(state, "approve", reason)
        await self.emit(
            state, ProgressPhase.CRITIC_DECISION, {"decision": "approve", "reason": reason}
        )

    async def _revise(
        self, state: ThreadState, strategic: StrategicState, reason: str, upstream: bool
    ) -> NodeResult:
        todo = state.plan.active_todo or {}
        record = strategic.get_todo(int(todo["id"])) if "id" in todo else None
        if upstream:
            # The executor already logged the request; only unfinished work is blocked.
            if record is not None and record.status in (TodoStatus.PENDING, TodoStatus.IN_PROGRESS):
                await strategic.block_todo(record.id, reason)
        else:
            if record is not None and record.status != TodoStatus.BLOCKED:
                await strategic.block_todo(record.id, reason)
            await strategic.request_revision(reason)

        state.plan.revision_request = reason
        state.plan.revision_feedback = self._feedback(reason, strategic)
        state.plan.has_remaining_todos = True
        state.revisions.revision_count += 1
        self._verdict(state, "revise", reason)
        logger.warning(
            f"🔁 Critic: requesting plan revision "
            f"{state.revisions.revision_count}/{self.config.max_revisions}: {reason}"
        )
        await self.emit(
            state, ProgressPhase.CRITIC_DECISION, {"decision": "revise", "reason": reason}
        )
        return self.result(state, NodeDecision.revise())

    @staticmethod
    def _feedback(reason: str, strategic: StrategicState) -> dict[str, Any]:
        """Revision feedback carries every todo so the planner sees the full picture."""
        return {"reason": reason, "todos": strategic.snapshot()}

    async def _evaluate(self, state: ThreadState, todo: dict[str, Any]) -> Verdict:
        execution = state.plan.todo_execution or {}
        prompt = CRITIC_PROMPT.format(
            title=todo.get("title", ""),
            description=todo.get("description", ""),
            goal=state.plan.goal or "(not provided)",
            status=execution.get("status", "unknown"),
            summary=execution.get("summary", ""),
            tool_history=self.tool_history_section(state),
        )
        parsed = await self.generate_json(state, prompt)
        if parsed is None:
            return self._fallback(todo, execution)

        raw_score = parsed.get("success_score", parsed.get("successScore"))
        try:
            score = max(0, min(10, round(float(raw_score))))
        except (TypeError, ValueError):
            score = None

        if score is not None:
            decision = "approve" if score >= APPROVE_SCORE else "revise"
        elif parsed.get("decision") in ("approve", "revise"):
            decision = parsed["decision"]
        else:
            return self._fallback(todo, execution)

        reason = str(parsed.get("reason") or f"Success score: {score}/10")
        fix = parsed.get("suggested_fix") or parsed.get("suggestedFix")
        if decision == "revise" and fix:
            reason = f"{reason} | Suggested fix: {fix}"
        return Verdict(decision=decision, reason=reason, score=score)

    @staticmethod
    def _fallback(todo: dict[str, Any], execution: dict[str, Any]) -> Verdict:
        """Heuristic verdict when the model gave nothing usable."""
        title = todo.get("title") or str(todo.get("id", ""))
        status = execution.get("status", "")
        if status == TodoStatus.DONE.value:
            return Verdict(decision="approve", reason=f"Todo complete: {title}")
        parts = [f"Todo not complete: {title}"]
        if status:
            parts.append(f"status={status}")
        if execution.get("summary"):
            parts.append(str(execution["summary"]))
        return Verdict(decision="revise", reason=" | ".join(parts))
