"""Raw model text → validated structured value.

    extract_json  →  json.loads  →  repair (only if the direct parse failed)
                  →  shape coercion (list payloads)  →  required-field check

Every failure is raised as one of ExtractionFailure, RepairFailure or
ValidationFailure so the retry orchestrator can count it as a failed
attempt.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import Any

from taleweaver.errors import ExtractionFailure, ValidationFailure

from .extractor import Expect, extract_json
from .repair import repair
from .shape import coerce_list_payload

logger = logging.getLogger(__name__)


def parse_json_payload(raw: str, expect: Expect = "object") -> Any:
    """Extract and parse the JSON payload, repairing it only when needed."""
    candidate = extract_json(raw, expect)
    if "{" not in candidate and "[" not in candidate:
        raise ExtractionFailure(f"No JSON payload in model output: {raw[:120]!r}")

    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.warning("Direct JSON parse failed (%s), attempting repair", e)

    repaired = repair(candidate)
    logger.debug("JSON repair produced %d chars", len(repaired))
    return json.loads(repaired)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, (str, list, dict)) and not value)


def require_fields(value: Any, required: Iterable[str]) -> dict[str, Any]:
    """Return `value` if it is an object whose required fields are all non-empty."""
    if not isinstance(value, dict):
        raise ValidationFailure(f"Expected a JSON object, got {type(value).__name__}")
    missing = [name for name in required if _is_blank(value.get(name))]
    if missing:
        raise ValidationFailure(f"Missing required field(s): {', '.join(missing)}")
    return value


def parse_structured(
    raw: str,
    *,
    expect: Expect = "object",
    required: Iterable[str] = (),
    list_key: str | None = None,
) -> Any:
    """Full pipeline for one model reply.

    With expect="array" the result is a list (an object wrapping the list
    under `list_key` is unwrapped). With expect="object" the result is a
    dict carrying every field in `required`.
    """
    value = parse_json_payload(raw, expect)
    if list_key is not None:
        value = coerce_list_payload(value, list_key)

    if expect == "array":
        if isinstance(value, dict) and list_key and isinstance(value.get(list_key), list):
            value = value[list_key]
        if not isinstance(value, list):
            raise ValidationFailure(f"Expected a JSON array, got {type(value).__name__}")
        if not value:
            raise ValidationFailure("Expected a non-empty JSON array")
        return value

    return require_fields(value, required)
