"""Recover a JSON object from unreliable model output.

Vision models asked for JSON still occasionally wrap it in markdown fences,
prefix it with prose, or trail off after the object. :func:`recover_json_object`
tries, in order:

1. the whole trimmed text;
2. the interior of the first fenced block (```` ```json ... ``` ```` or a bare
   ```` ``` ```` fence);
3. the first balanced ``{...}`` span, found by a brace scan that ignores
   braces inside JSON strings.

The first candidate that decodes to a JSON object wins. Failure is reported as
``None``; callers treat it as an "extraction failed" outcome.
"""

from __future__ import annotations

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.IGNORECASE | re.DOTALL)


def _loads_object(candidate: str) -> dict[str, Any] | None:
    try:
        decoded = json.loads(candidate)
    except (ValueError, RecursionError):
        return None
    return decoded if isinstance(decoded, dict) else None


def first_balanced_object(text: str) -> str | None:
    """Return the substring from the first ``{`` to its matching ``}``.

    Inside a string literal a backslash consumes the following character
    verbatim, so escaped quotes never end the string and braces in strings
    never change the depth. Returns ``None`` when the object is unterminated.
    """

    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaping = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaping:
                escaping = False
            elif ch == "\\":
                escaping = True
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


def recover_json_object(raw: Any) -> dict[str, Any] | None:
    """Extract the JSON object embedded in ``raw`` or return ``None``."""

    if not isinstance(raw, str):
        return None
    text = raw.strip()
    if not text:
        return None

    direct = _loads_object(text)
    if direct is not None:
        return direct

    fenced = _FENCE_RE.search(text)
    if fenced is not None:
        inner = _loads_object(fenced.group(1))
        if inner is not None:
            return inner

    span = first_balanced_object(text)
    if span is not None:
        return _loads_object(span)
    return None


__all__ = ["first_balanced_object", "recover_json_object"]
