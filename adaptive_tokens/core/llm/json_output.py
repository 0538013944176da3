from __future__ import annotations

import json
from typing import Any


class MalformedOutputError(Exception):
    """Raised when completion content is not the JSON object the caller asked for."""

    def __init__(self, message: str, *, raw_content: str | None):
        super().__init__(message)
        self.raw_content = raw_content


def parse_json_object(content: str) -> dict[str, Any]:
    try:
        parsed = json.loads(content)
    except (TypeError, ValueError) as exc:
        raise MalformedOutputError(
            "Failed to parse LLM response as JSON", raw_content=content
        ) from exc

    if not isinstance(parsed, dict):
        raise MalformedOutputError("LLM response JSON must be an object", raw_content=content)

    return parsed


def looks_cut_off(text: str) -> bool:
    """
    Return True when a JSON-like fragment ends mid-structure.

    That is: inside a string literal, or with more `{`/`[` opened than closed.
    Brackets inside string literals are ignored.
    """

    depth = 0
    in_string = False
    escaped = False
    for ch in text:
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
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
    return in_string or depth > 0
