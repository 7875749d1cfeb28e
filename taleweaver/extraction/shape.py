"""Shape coercion for list payloads.

Runs after a successful parse. Models asked for a list of structured
entries sometimes return bare strings instead; those are turned into
entries with a sequential id, a keyword-derived difficulty and a generic
description. Structured entries only get missing fields filled in.
"""

from __future__ import annotations

from typing import Any

GENERIC_DESCRIPTION = "Choose this path and see where it leads."

DEFAULT_DIFFICULTY = 3

# Checked in order; first keyword hit wins.
DIFFICULTY_KEYWORDS: list[tuple[int, tuple[str, ...]]] = [
    (5, ("sacrifice", "duel", "assault", "storm the", "all-out", "suicide")),
    (4, ("fight", "attack", "confront", "charge", "steal", "chase", "break in", "risk")),
    (1, ("rest", "wait", "retreat", "hide", "leave", "flee")),
    (2, ("observe", "look", "search", "listen", "ask", "talk", "investigate", "examine")),
]


def guess_difficulty(text: str) -> int:
    lowered = text.lower()
    for difficulty, keywords in DIFFICULTY_KEYWORDS:
        if any(k in lowered for k in keywords):
            return difficulty
    return DEFAULT_DIFFICULTY


def _clamp_difficulty(value: Any, text: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return guess_difficulty(text)
    try:
        number = int(float(value))
    except ValueError:
        return guess_difficulty(text)
    return max(1, min(5, number))


def coerce_entries(items: list[Any]) -> list[dict[str, Any]]:
    """Turn a list of bare strings and/or partial dicts into structured entries."""
    entries: list[dict[str, Any]] = []
    for item in items:
        index = len(entries) + 1
        if isinstance(item, str):
            text = item.strip()
            if not text:
                continue
            entries.append({
                "id": index,
                "text": text,
                "description": GENERIC_DESCRIPTION,
                "difficulty": guess_difficulty(text),
            })
        elif isinstance(item, dict):
            entry = dict(item)
            text = str(entry.get("text") or entry.get("title") or entry.get("choice") or "").strip()
            if not text:
                continue
            entry["text"] = text
            if not isinstance(entry.get("id"), int) or isinstance(entry.get("id"), bool):
                entry["id"] = index
            entry["description"] = entry.get("description") or GENERIC_DESCRIPTION
            entry["difficulty"] = _clamp_difficulty(entry.get("difficulty"), text)
            entries.append(entry)
    return entries


def coerce_list_payload(value: Any, list_key: str) -> Any:
    """Apply coerce_entries to `value[list_key]`, or to `value` if it is a list."""
    if isinstance(value, list):
        return coerce_entries(value)
    if isinstance(value, dict) and isinstance(value.get(list_key), list):
        coerced = dict(value)
        coerced[list_key] = coerce_entries(value[list_key])
        return coerced
    return value
