"""LiteLLM-backed text generator.

Works with any provider LiteLLM supports (ollama/..., anthropic/..., openai/...).
"""

import logging
import time

import litellm

from plangraph.llm.provider import TextGenerator

logger = logging.getLogger(__name__)


class LiteLLMGenerator(TextGenerator):
    """
    Production text generator over `litellm.acompletion`.

    Any backend exception is logged and reported as None so nodes fall back
    to their heuristic path.
    """

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        api_base: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 2048,
        timeout: float | None = None,
    ):
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

    async def generate(
        self,
        prompt: str,
        system: str = "",
        max_tokens: int | None = None,
    ) -> str | None:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        kwargs = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": self.temperature,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.timeout:
            kwargs["timeout"] = self.timeout

        started = time.monotonic()
        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            logger.warning(f"⚠ Text generation failed ({self.model}): {e}")
            return None

        latency_ms = int((time.monotonic() - started) * 1000)
        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as e:
            logger.warning(f"⚠ Unexpected completion shape from {self.model}: {e}")
            return None

        if not content:
            logger.warning(f"⚠ Empty completion from {self.model}")
            return None
        logger.debug(
            f"Completion from {self.model}: {len(content)} chars",
            extra={"latency_ms": latency_ms},
        )
        return content
