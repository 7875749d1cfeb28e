"""Structured extraction from free-text model output.

  extractor  — locate the JSON span (fences, prose wrapping)
  repair     — tolerant recursive-descent repair of near-valid JSON
  shape      — coerce bare-string list items into structured entries
  core       — the combined pipeline with required-field validation
"""

from .core import parse_json_payload, parse_structured, require_fields  # noqa: F401
from .extractor import Expect, extract_json  # noqa: F401
from .repair import repair, tolerant_loads  # noqa: F401
from .shape import coerce_entries, coerce_list_payload, guess_difficulty  # noqa: F401
