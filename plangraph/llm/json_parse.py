"""Lenient JSON extraction from raw model output."""

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def _first_object(text: str) -> str | None:
    """Return the first balanced {...} block, skipping braces inside strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        start = text.find("{", start + 1)
    return None


def parse_json(text: str | None) -> dict[str, Any] | None:
    """
    Extract the first JSON object from model text.

    Handles bare JSON, ```json fences and JSON embedded in prose.
    Returns None when nothing parseable is found.
    """
    if not text or not text.strip():
        return None

    candidates = [text.strip()]
    candidates.extend(m.strip() for m in _FENCE.findall(text))
    block = _first_object(text)
    if block:
        candidates.append(block)

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    logger.debug(f"No JSON object found in model output ({len(text)} chars)")
    return None
