"""Scripted text generator for tests and dry runs."""

import json
import logging
from collections.abc import Callable, Iterable
from typing import Any

from plangraph.llm.provider import TextGenerator

logger = logging.getLogger(__name__)

ScriptedResponse = str | dict[str, Any] | None | Callable[[str], Any]


class MockTextGenerator(TextGenerator):
    """
    Replays scripted responses in order.

    Each response may be a string, a dict (serialised to JSON), None
    (simulated backend failure) or a callable taking the prompt. Once the
    script is exhausted `default` is returned. Every prompt is recorded.

    Example:
        llm = MockTextGenerator([
            {"goal": "Say hi", "plan_needed": False},
            "Hello!",
        ])
    """

    def __init__(
        self, responses: Iterable[ScriptedResponse] = (), default: ScriptedResponse = None
    ):
        self.responses: list[ScriptedResponse] = list(responses)
        self.default = default
        self.prompts: list[str] = []
        self.systems: list[str] = []

    @property
    def call_count(self) -> int:
        return len(self.prompts)

    def queue(self, *responses: ScriptedResponse) -> None:
        self.responses.extend(responses)

    def _next(self, prompt: str) -> Any:
        response = self.responses.pop(0) if self.responses else self.default
        if callable(response):
            response = response(prompt)
        return response

    async def generate(
        self,
        prompt: str,
        system: str = "",
        max_tokens: int | None = None,
    ) -> str | None:
        self.prompts.append(prompt)
        self.systems.append(system)
        response = self._next(prompt)
        if response is None:
            logger.debug("Mock generator returning scripted failure")
            return None
        if isinstance(response, dict):
            return json.dumps(response)
        return str(response)
