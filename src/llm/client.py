"""Shared helpers for reading structured output from model text."""

import json
import re
from typing import Any

_CODE_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


def parse_llm_json_response(raw_text: str) -> Any:
    """Parse JSON from LLM response, handling markdown code fences.

    LLMs sometimes wrap JSON in ```json ... ``` fences (occasionally with
    prose around them) despite being told not to. The first fenced block
    wins; otherwise the whole text is parsed.

    Args:
        raw_text: Raw text from LLM response

    Returns:
        Parsed JSON value

    Raises:
        json.JSONDecodeError: If the text cannot be parsed as JSON
    """
    content = raw_text.strip()
    match = _CODE_FENCE.search(content)
    if match:
        content = match.group(1)
    return json.loads(content.strip())
