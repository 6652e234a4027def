"""
Executor Node - drives exactly one todo per graph pass.

Per pass:
1. Blocked prerequisite → notify and request a revision, no further work
2. Pick the next todo; none left → complete the plan
3. Mark it in_progress, ask the model for at most one tool action
4. Run the tool, record the result in the capped rolling history
5. Settle the todo status (done / blocked / still in_progress)
6. Re-check for a blocked prerequisite after the status change

Without an active plan the node answers conversationally.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from plangraph.graph.decision import NodeDecision
from plangraph.graph.node import NodeResult
from plangraph.graph.state import ThreadState
from plangraph.nodes.base import BaseNode
from plangraph.schemas.plan import TodoRecord, TodoStatus
from plangraph.services.strategic_state import StrategicState
from plangraph.tools.registry import ToolResult, format_tool_result

logger = logging.getLogger(__name__)

ACTION_PROMPT = """You are the Executor. Complete exactly one todo of the plan.

## Goal
{goal}

## Current todo
Title: {title}
Description: {description}

## Plan todos
{todos}

Choose AT MOST ONE tool call that moves this todo forward, or "none" if no
tool is needed. Set "mark_done" to true only if the todo is complete once
this action succeeds.

Return JSON:
{{
  "action": "tool_name" | "none",
  "args": {{}},
  "mark_done": true | false,
  "summary": "one line on what you did or why nothing was needed"
}}"""

RESPONSE_PROMPT = """Reply to the user directly and concisely.

## Conversation
{conversation}"""

NO_RESPONSE_FALLBACK = "I couldn't produce a response right now. Please try again."


@dataclass
class ActionChoice:
    action: str = "none"
    args: dict[str, Any] = field(default_factory=dict)
    mark_done: bool | None = None
    summary: str = ""

    @classmethod
    def from_model(cls, parsed: dict[str, Any] | None) -> "ActionChoice":
        if not parsed:
            return cls(mark_done=False, summary="No execution decision produced")
        action = parsed.get("action") or parsed.get("tool") or "none"
        args = parsed.get("args")
        mark_done = parsed.get("mark_done", parsed.get("markDone"))
        return cls(
            action=str(action).strip() or "none",
            args=args if isinstance(args, dict) else {},
            mark_done=mark_done if isinstance(mark_done, bool) else None,
            summary=str(parsed.get("summary") or ""),
        )

    @property
    def wants_tool(self) -> bool:
        return self.action.lower() != "none"


class ExecutorNode(BaseNode):
    kind = "executor"
    default_name = "Executor"

    async def execute(self, state: ThreadState) -> NodeResult:
        # Each pass starts without a pending revision request or todo.
        state.plan.revision_request = None
        state.plan.active_todo = None
        state.plan.todo_execution = None

        plan_id = state.plan.active_plan_id
        if plan_id is None:
            plan_id = self.deps.awareness.active_plans.get(state.thread_id)
        if plan_id is None:
            await self._respond(state)
            return self.result(state, NodeDecision.next())

        strategic = self.strategic(state, plan_id)
        await strategic.refresh()
        if strategic.plan_id is None:
            logger.warning(f"⚠ Plan {plan_id} no longer exists; answering without it")
            state.plan.clear_active()
            await self._respond(state)
            return self.result(state, NodeDecision.next())
        state.plan.active_plan_id = plan_id
        state.plan.goal = strategic.plan.goal if strategic.plan else state.plan.goal

        if strategic.has_blocked_prerequisite():
            await self._request_revision(state, strategic, self._blocked_reason(strategic))
            return self.result(state, NodeDecision.next())

        todo = strategic.pick_next_todo()
        if todo is None:
            await self._finish_plan(state, strategic)
            return self.result(state, NodeDecision.next())

        await self._work_on(state, strategic, todo)
        return self.result(state, NodeDecision.next())

    async def _work_on(
        self, state: ThreadState, strategic: StrategicState, todo: TodoRecord
    ) -> None:
        if todo.status != TodoStatus.IN_PROGRESS:
            await strategic.start_todo(todo.id)
        state.plan.active_todo = {
            "id": todo.id,
            "title": todo.title,
            "description": todo.description,
            "order_index": todo.order_index,
            "category_hints": list(todo.category_hints),
        }
        logger.info(f"▶ Executor: working on todo {todo.id} '{todo.title}'")
        await self.notify_user(state, f"Working on: {todo.title}")

        choice = ActionChoice.from_model(
            await self.generate_json(state, self._build_prompt(state, strategic, todo))
        )

        tool_result: ToolResult | None = None
        if choice.wants_tool:
            tool_result = await self.run_tool(choice.action, choice.args)
            state.tools.record(
                {
                    "todo_id": todo.id,
                    "tool": choice.action,
                    "args": choice.args,
                    "success": tool_result.success,
                    "result": format_tool_result(tool_result.result)
                    if tool_result.result is not None
                    else None,
                    "error": tool_result.error,
                },
                limit=self.config.tool_history_limit,
            )

        if tool_result is not None and not tool_result.success:
            reason = f"Tool {choice.action} failed: {tool_result.error or 'unknown error'}"
            await self.notify_user(state, reason)
            await strategic.block_todo(todo.id, reason)
            await self._request_revision(state, strategic, reason, notify=False)
            status = TodoStatus.BLOCKED
        elif choice.mark_done or (choice.mark_done is None and tool_result is not None):
            await strategic.complete_todo(todo.id, choice.summary or None)
            status = TodoStatus.DONE
        else:
            status = TodoStatus.IN_PROGRESS

        state.plan.todo_execution = {
            "todo_id": todo.id,
            "action": choice.action,
            "args": choice.args,
            "status": status.value,
            "mark_done": status == TodoStatus.DONE,
            "summary": choice.summary,
            "tool_success": tool_result.success if tool_result else None,
        }

        if status != TodoStatus.BLOCKED and strategic.has_blocked_prerequisite():
            await self._request_revision(state, strategic, self._blocked_reason(strategic))
        state.plan.has_remaining_todos = strategic.has_remaining_todos()

    async def _request_revision(
        self, state: ThreadState, strategic: StrategicState, reason: str, notify: bool = True
    ) -> None:
        if notify:
            await self.notify_user(state, f"I can't continue yet: {reason}")
        await strategic.request_revision(reason)
        state.plan.revision_request = reason
        state.plan.has_remaining_todos = True

    async def _finish_plan(self, state: ThreadState, strategic: StrategicState) -> None:
        if strategic.has_remaining_todos():
            # Only blocked todos are left.
            await self._request_revision(state, strategic, self._blocked_reason(strategic))
            return
        await strategic.mark_plan_completed("No remaining todos")
        state.plan.has_remaining_todos = False

    def _blocked_reason(self, strategic: StrategicState) -> str:
        blocked = [t.title for t in strategic.todos if t.status == TodoStatus.BLOCKED]
        return f"Blocked prerequisite: {', '.join(blocked) or 'unknown'}"

    def _build_prompt(
        self, state: ThreadState, strategic: StrategicState, todo: TodoRecord
    ) -> str:
        prompt = ACTION_PROMPT.format(
            goal=state.plan.goal or "(unknown)",
            title=todo.title,
            description=todo.description or "(none)",
            todos=json.dumps(strategic.snapshot(), indent=2),
        )
        return self.join_sections(
            prompt,
            self.tool_history_section(state),
            self.tools_section(todo.category_hints),
        )

    async def _respond(self, state: ThreadState) -> None:
        """Conversational answer when there is no plan to drive."""
        state.plan.has_remaining_todos = False
        text = await self.generate_text(
            state, RESPONSE_PROMPT.format(conversation=self.conversation_excerpt(state))
        )
        state.response = text or NO_RESPONSE_FALLBACK
        logger.info(f"Executor: answered without a plan (backend {'ok' if text else 'failed'})")
