"""Robust JSON extraction from LLM responses.

Handles the output shapes reasoning providers actually produce:
- Pure JSON
- Markdown code blocks (```json...``` or ```...```)
- A JSON object embedded in surrounding prose
"""

import json
import re
from typing import Any

from utils.logging import get_logger

logger = get_logger(__name__)

_JSON_BLOCK = re.compile(r"```json\s*\n?(.*?)\n?```", re.DOTALL | re.IGNORECASE)
_GENERIC_BLOCK = re.compile(r"```\s*\n?(.*?)\n?```", re.DOTALL)


def _outermost_object(text: str) -> str | None:
    """Return the first balanced {...} span in text, honouring string literals."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        start = text.find("{", start + 1)
    return None


def extract_json_from_response(response: str | None, context: str = "extraction") -> Any | None:
    """Extract JSON from an LLM response using multiple strategies.

    Tries, in order: pure JSON, a ```json block, an untyped ``` block, and the
    first balanced object embedded in text.

    Args:
        response: The raw LLM response text
        context: Context identifier for logging (e.g., "decision_analysis")

    Returns:
        Parsed JSON data (dict or list), or None if parsing fails
    """
    if not response:
        return None

    text = response.strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    for pattern in (_JSON_BLOCK, _GENERIC_BLOCK):
        match = pattern.search(text)
        if match:
            try:
                return json.loads(match.group(1).strip())
            except json.JSONDecodeError as e:
                logger.debug(f"Failed to parse fenced block for {context}: {e}")

    candidate = _outermost_object(text)
    if candidate is not None:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            pass

    logger.warning(
        f"Failed to extract JSON for {context}. "
        f"Response length: {len(text)}, first 200 chars: {text[:200]!r}"
    )
    return None

