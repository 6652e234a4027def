"""Summary Node - closes a run with a short conversation summary and the final reply."""

import logging

from plangraph.graph.decision import NodeDecision
from plangraph.graph.node import NodeResult
from plangraph.graph.state import ThreadState
from plangraph.nodes.base import BaseNode

logger = logging.getLogger(__name__)

SUMMARY_PROMPT = """Summarize this conversation turn for the agent's own memory and write
the reply the user should see.

## Goal
{goal}

## Outcome
{outcome}

## Conversation
{conversation}

{tool_history}

Return JSON:
{{
  "summary": "two sentences at most",
  "topics": ["topic"],
  "entities": ["named thing"],
  "response": "the reply to the user"
}}"""


def _as_strings(value) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v]


class SummaryNode(BaseNode):
    kind = "summary"
    default_name = "Summary"

    async def execute(self, state: ThreadState) -> NodeResult:
        request = state.last_user_message()
        parsed = None
        if not self.llm_failures_exhausted(state):
            parsed = await self.generate_json(state, self._build_prompt(state))

        if parsed is None:
            summary = self._fallback_summary(state, request)
            topics: list[str] = []
            entities: list[str] = []
            response = None
        else:
            summary = str(parsed.get("summary") or "") or self._fallback_summary(state, request)
            topics = _as_strings(parsed.get("topics"))
            entities = _as_strings(parsed.get("entities"))
            response = parsed.get("response")

        state.summary = summary
        self.deps.awareness.add_summary(state.thread_id, summary, topics, entities)
        if state.response is None:
            state.response = str(response) if response else self._fallback_response(state)

        logger.info(f"Summary: {summary[:80]}")
        # Usually an end point; `next` lets an awareness step follow it.
        return self.result(state, NodeDecision.next())

    def _build_prompt(self, state: ThreadState) -> str:
        revisions = state.revisions
        outcome = [
            f"critic: {revisions.critic_decision or '-'} ({revisions.critic_reason or ''})",
            f"final review: {revisions.final_critic_decision or '-'} "
            f"({revisions.final_critic_reason or ''})",
        ]
        if state.run.stop_reason:
            outcome.append(f"stopped: {state.run.stop_reason}")
        return SUMMARY_PROMPT.format(
            goal=state.plan.goal or "(none)",
            outcome="\n".join(outcome),
            conversation=self.conversation_excerpt(state),
            tool_history=self.tool_history_section(state),
        )

    @staticmethod
    def _fallback_summary(state: ThreadState, request: str) -> str:
        if state.plan.goal:
            return f"Worked on: {state.plan.goal}"
        return f"User asked: {request[:160]}" if request else "No activity"

    @staticmethod
    def _fallback_response(state: ThreadState) -> str:
        revisions = state.revisions
        if revisions.final_critic_decision == "approve" and state.plan.goal:
            return f"Done: {state.plan.goal}"
        if state.run.stop_reason:
            return f"I stopped early: {state.run.stop_reason}"
        if state.plan.goal:
            return f"Finished working on: {state.plan.goal}"
        return "Done."
