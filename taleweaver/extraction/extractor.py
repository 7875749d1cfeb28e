"""Locate the JSON payload inside raw model output.

Models wrap JSON in markdown fences and explanatory prose. Candidates are
tried in order, first match wins:

  1. fenced block holding the preferred kind
  2. fenced block holding the other kind
  3. a truncated payload: the preferred kind opens first and never
     closes, so everything from its opener to the end of the text
  4. outermost unfenced span of the preferred kind
  5. outermost unfenced span of the other kind
  6. the trimmed raw text, unchanged

The preferred kind is an object unless the call site expects an array
(e.g. a choice list). This is a pure text transform; nothing here parses.
"""

from __future__ import annotations

import re
from typing import Literal

Expect = Literal["object", "array"]

_FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\n?([\s\S]*?)```")

_PAIRS = {"object": ("{", "}"), "array": ("[", "]")}


def _kind_order(expect: Expect) -> tuple[Expect, Expect]:
    return ("array", "object") if expect == "array" else ("object", "array")


def _fenced_block(text: str, kind: Expect) -> str | None:
    opener, closer = _PAIRS[kind]
    for match in _FENCE_RE.finditer(text):
        body = match.group(1).strip()
        if body.startswith(opener) and body.endswith(closer):
            return body
    return None


def _outer_span(text: str, kind: Expect) -> str | None:
    opener, closer = _PAIRS[kind]
    start = text.find(opener)
    end = text.rfind(closer)
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def _closes(text: str, start: int) -> bool:
    """True if the container opened at `start` is closed again (string-aware)."""
    depth = 0
    in_string = escaped = False
    for ch in text[start:]:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0:
                return True
    return False


def _truncated_tail(text: str, preferred: Expect, other: Expect) -> str | None:
    start = text.find(_PAIRS[preferred][0])
    other_start = text.find(_PAIRS[other][0])
    if start == -1 or (other_start != -1 and other_start < start):
        return None
    if _closes(text, start):
        return None
    return text[start:]


def extract_json(text: str, expect: Expect = "object") -> str:
    """Return the most plausible JSON candidate in `text`."""
    cleaned = text.strip()
    order = _kind_order(expect)

    for kind in order:
        block = _fenced_block(cleaned, kind)
        if block is not None:
            return block

    truncated = _truncated_tail(cleaned, *order)
    if truncated is not None:
        return truncated

    for kind in order:
        span = _outer_span(cleaned, kind)
        if span is not None:
            return span

    return cleaned
