from __future__ import annotations

from typing import Optional


def extract_first_json_object(text: str) -> Optional[str]:
    """Return the first top-level balanced ``{...}`` in ``text``, or None.

    Model replies may wrap the JSON in prose or code fences, so the scanner
    tracks brace depth and ignores braces inside string literals (honouring
    backslash escapes).
    """
    start: Optional[int] = None
    depth = 0
    in_string = False
    escaped = False

    for index, ch in enumerate(text):
        if start is None:
            if ch == "{":
                start = index
                depth = 1
            continue

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
                return text[start : index + 1]

    return None
