"""Awareness Node - folds the latest summaries into the agent's awareness record."""

import logging

from plangraph.graph.decision import NodeDecision
from plangraph.graph.node import NodeResult
from plangraph.graph.state import ThreadState
from plangraph.nodes.base import BaseNode

logger = logging.getLogger(__name__)

AWARENESS_PROMPT = """You maintain a small awareness record the agent always sees.

## Current record
{current}

## Latest summary
{summary}

Only change what the latest summary makes stale or adds. Keep the patch
minimal; omit it entirely if nothing changed.

Return JSON:
{{
  "update": true | false,
  "patch": {{"key": "value"}}
}}"""


class AwarenessNode(BaseNode):
    kind = "awareness"
    default_name = "Awareness"

    async def execute(self, state: ThreadState) -> NodeResult:
        if self.llm_failures_exhausted(state):
            return self.result(state, NodeDecision.end())

        awareness = self.deps.awareness
        prompt = AWARENESS_PROMPT.format(
            current=awareness.describe() or "(empty)",
            summary=state.summary or "(none)",
        )
        parsed = await self.generate_json(state, prompt)
        if parsed is None:
            logger.debug("Awareness: no update produced")
            return self.result(state, NodeDecision.end())

        patch = parsed.get("patch")
        if parsed.get("update") and isinstance(patch, dict) and patch:
            awareness.update(patch)
            logger.info(f"🧠 Awareness updated: {', '.join(sorted(patch))}")
        return self.result(state, NodeDecision.end())
