"""Best-effort JSON recovery from model text, in two separate stages.

Stage 1 parses the text as-is. Stage 2 locates the first balanced top-level
``{...}`` (string- and escape-aware) and parses only that.
"""

from __future__ import annotations

import json
from typing import Any

from ..errors import SchemaValidationError


def parse_json_direct(text: str) -> Any:
    """Stage 1. Raises json.JSONDecodeError on failure."""
    return json.loads(text)


def extract_first_json_object(text: str) -> str | None:
    """Stage 2 helper: first balanced top-level object substring, or None."""
    start = text.find("{")
    if start == -1:
        return None
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
    return None


def parse_model_text(text: str) -> Any:
    """Run both stages; raise SchemaValidationError when neither yields JSON."""
    try:
        return parse_json_direct(text)
    except json.JSONDecodeError:
        pass
    candidate = extract_first_json_object(text)
    if candidate is None:
        raise SchemaValidationError("AI output was not valid JSON.", ["(root): no JSON object found"])
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        raise SchemaValidationError("AI output was not valid JSON.", [f"(root): {e.msg}"]) from e
