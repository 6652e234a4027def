"""
Planner Node - turns the user's request into a persisted plan of ordered todos.

On a fresh turn it creates a plan. When a revision has been requested and a
plan is active, it revises that same plan (new revision, same id), folding in
any todos the final critic suggested. A plan-not-needed answer leaves no
active plan so the executor answers conversationally.
"""

import json
import logging
from typing import Any

from plangraph.graph.decision import NodeDecision
from plangraph.graph.node import NodeResult
from plangraph.graph.state import ThreadState
from plangraph.nodes.base import BaseNode
from plangraph.schemas.plan import TodoSpec

logger = logging.getLogger(__name__)

PLANNER_PROMPT = """You are the Planner. Work backwards from what the user wants to the
smallest ordered list of concrete todos that achieves it.

## User request
{request}

## Recent conversation
{conversation}

{revision}

Return JSON:
{{
  "goal": "one-line goal",
  "goal_description": "what success looks like",
  "plan_needed": true | false,    // false for questions answerable in one reply
  "todos": [
    {{"title": "short title", "description": "precise action", "category_hints": ["tag"]}}
  ]
}}"""

REVISION_SECTION = """## Revision requested
Reason: {reason}
Current todos (all statuses):
{todos}
{suggested}
Keep what is done. Replace blocked or unfinished work with todos that can succeed."""


def normalize_todos(raw: Any, start_index: int = 0) -> list[TodoSpec]:
    """Coerce model output (todos or milestones) into TodoSpecs in declared order."""
    if not isinstance(raw, list):
        return []
    specs = []
    for item in raw:
        if isinstance(item, str):
            title, description, hints = item, "", []
        elif isinstance(item, dict):
            title = str(item.get("title") or "").strip()
            description = str(item.get("description") or "")
            criteria = item.get("success_criteria") or item.get("successCriteria")
            if criteria:
                description = f"{description}\n\nSuccess criteria: {criteria}".strip()
            hints = item.get("category_hints") or item.get("categoryHints") or []
        else:
            continue
        if not title:
            continue
        specs.append(
            TodoSpec(
                title=title,
                description=description,
                order_index=start_index + len(specs),
                category_hints=[str(h) for h in hints] if isinstance(hints, list) else [],
            )
        )
    return specs


class PlannerNode(BaseNode):
    kind = "planner"
    default_name = "Planner"

    async def execute(self, state: ThreadState) -> NodeResult:
        request = state.last_user_message()
        if not request:
            logger.info("Planner: no user message, ending")
            state.run.stop_reason = "No user message to plan for"
            return self.result(state, NodeDecision.end())

        if self.llm_failures_exhausted(state):
            return self._give_up(state)

        plan_id = state.plan.active_plan_id
        reason = state.plan.revision_request
        revising = plan_id is not None and reason is not None

        plan = await self.generate_json(state, self._build_prompt(state, request, revising))
        if plan is None:
            if self.llm_failures_exhausted(state):
                return self._give_up(state)
            logger.warning("⚠ Planner: using single-todo fallback plan")
            plan = {
                "goal": request[:200],
                "plan_needed": True,
                "todos": [{"title": "Respond to the request", "description": request}],
            }

        goal = str(plan.get("goal") or request[:200])
        todos = normalize_todos(plan.get("todos") or plan.get("milestones"))
        if revising and state.plan.suggested_todos:
            todos += normalize_todos(state.plan.suggested_todos, start_index=len(todos))
        plan_needed = bool(plan.get("plan_needed", plan.get("planNeeded", True)))
        state.plan.goal = goal

        if not revising and (not plan_needed or not todos):
            logger.info(f"Planner: no plan needed for '{goal}'")
            state.plan.clear_active()
            self._clear_revision(state)
            return self.result(state, NodeDecision.next())

        data = {
            "type": "strategic",
            "goal": goal,
            "goal_description": str(
                plan.get("goal_description") or plan.get("goalDescription") or ""
            ),
        }
        strategic = self.strategic(state)

        new_plan_id: int | None = None
        if revising:
            if not todos:
                todos = normalize_todos(
                    [{"title": "Retry the remaining work", "description": reason}]
                )
            revised = await strategic.revise_plan(
                plan_id, data, todos, event_data={"revision_reason": reason}
            )
            if revised is not None:
                new_plan_id = revised.plan_id
        if new_plan_id is None:
            new_plan_id = await strategic.create_plan(
                data, todos, event_data={"goal": goal, "todo_count": len(todos)}
            )
            if not revising:
                state.revisions.revision_count = 0
                state.revisions.final_revision_count = 0

        if new_plan_id is None:
            logger.warning("⚠ Planner: plan store unavailable, continuing without a plan")
            state.plan.clear_active()
            self._clear_revision(state)
            return self.result(state, NodeDecision.next())

        state.plan.active_plan_id = new_plan_id
        state.plan.active_todo = None
        state.plan.todo_execution = None
        state.plan.has_remaining_todos = strategic.has_remaining_todos()
        self._clear_revision(state)
        logger.info(f"Planner: plan {new_plan_id} → {' → '.join(t.title for t in todos)}")
        return self.result(state, NodeDecision.next())

    def _build_prompt(self, state: ThreadState, request: str, revising: bool) -> str:
        revision = ""
        if revising:
            feedback = state.plan.revision_feedback or {}
            suggested = ""
            if state.plan.suggested_todos:
                suggested = "Reviewer suggested todos:\n" + json.dumps(
                    state.plan.suggested_todos, indent=2
                )
            revision = REVISION_SECTION.format(
                reason=state.plan.revision_request,
                todos=json.dumps(feedback.get("todos", []), indent=2),
                suggested=suggested,
            )
        prompt = PLANNER_PROMPT.format(
            request=request,
            conversation=self.conversation_excerpt(state),
            revision=revision,
        )
        return self.join_sections(prompt, self.awareness_section(), self.tools_section())

    def _clear_revision(self, state: ThreadState) -> None:
        state.plan.revision_request = None
        state.plan.revision_feedback = None
        state.plan.suggested_todos = []

    def _give_up(self, state: ThreadState) -> NodeResult:
        reason = (
            f"Text backend failed {state.revisions.llm_failure_count} times; "
            "stopping instead of planning blind"
        )
        logger.error(f"❌ Planner: {reason}")
        state.run.stop_reason = reason
        return self.result(state, NodeDecision.end())
