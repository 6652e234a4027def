"""Text generation backends."""

from plangraph.llm.json_parse import parse_json
from plangraph.llm.litellm import LiteLLMGenerator
from plangraph.llm.mock import MockTextGenerator
from plangraph.llm.provider import TextGenerator

__all__ = ["LiteLLMGenerator", "MockTextGenerator", "TextGenerator", "parse_json"]
