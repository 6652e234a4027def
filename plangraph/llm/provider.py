"""Text generation abstraction for pluggable model backends."""

from abc import ABC, abstractmethod
from typing import Any

from plangraph.llm.json_parse import parse_json


class TextGenerator(ABC):
    """
    Abstract text generator - plug in any model backend.

    Ordinary unavailability (network errors, timeouts, empty output) must be
    reported as None, never raised. Callers always carry a fallback.
    """

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system: str = "",
        max_tokens: int | None = None,
    ) -> str | None:
        """
        Generate text for a prompt.

        Args:
            prompt: User prompt
            system: Optional system prompt
            max_tokens: Override the backend's default output limit

        Returns:
            Generated text, or None on failure
        """

    async def generate_structured(
        self,
        prompt: str,
        system: str = "",
        max_tokens: int | None = None,
    ) -> dict[str, Any] | None:
        """Generate text and parse the first JSON object from it."""
        text = await self.generate(prompt, system=system, max_tokens=max_tokens)
        return parse_json(text)

    async def close(self) -> None:
        return None
