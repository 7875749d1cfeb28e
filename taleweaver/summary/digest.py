"""Summary digest — the compacted record of older conversation turns.

Wire shape (camelCase, as requested from the model and as stored in
SessionState.summary_digest):

    {
      "plotDevelopments": ["..."],                 ordered, cap 5
      "characterChanges": {"Name": "latest change"}, keyed, cap 8
      "keyDecisions": [{"decision": "...", "consequence": "..."}], cap 6
      "atmosphere": {"mood": "...", "tensionLevel": 1-10},
      "importantClues": ["..."],                   ordered, cap 10
      "timestamp": "ISO-8601",
      "version": 1
    }

Merging keeps the most recent entries when a cap is hit. If the merged
digest serialises to more than the byte budget it is compressed to the
3 / 4 / 3 / 5 most recent entries; compression never touches version,
timestamp or atmosphere.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

PLOT_CAP = 5
CHARACTER_CAP = 8
DECISION_CAP = 6
CLUE_CAP = 10

COMPRESSED_PLOT_CAP = 3
COMPRESSED_CHARACTER_CAP = 4
COMPRESSED_DECISION_CAP = 3
COMPRESSED_CLUE_CAP = 5

DEFAULT_BYTE_BUDGET = 2048


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class KeyDecision(_CamelModel):
    decision: str
    consequence: str = ""


class Atmosphere(_CamelModel):
    mood: str = "unknown"
    tension_level: int = 5

    @field_validator("mood", mode="before")
    @classmethod
    def _mood_text(cls, v: Any) -> str:
        return str(v).strip() if v is not None else ""

    @field_validator("tension_level", mode="before")
    @classmethod
    def _clamp_tension(cls, v: Any) -> int:
        try:
            level = int(float(v))
        except (TypeError, ValueError):
            return 5
        return max(1, min(10, level))


class SummaryDigest(_CamelModel):
    plot_developments: list[str] = Field(default_factory=list)
    character_changes: dict[str, str] = Field(default_factory=dict)
    key_decisions: list[KeyDecision] = Field(default_factory=list)
    atmosphere: Atmosphere = Field(default_factory=Atmosphere)
    important_clues: list[str] = Field(default_factory=list)
    timestamp: str = ""
    version: int = Field(default=1, ge=1)

    @field_validator("plot_developments", "important_clues", mode="before")
    @classmethod
    def _text_list(cls, v: Any) -> list[str]:
        if isinstance(v, str):
            v = [v]
        if not isinstance(v, list):
            return []
        return [str(item).strip() for item in v if item is not None and str(item).strip()]

    @field_validator("character_changes", mode="before")
    @classmethod
    def _change_mapping(cls, v: Any) -> dict[str, str]:
        # Models also answer with [{"name": ..., "change": ...}]
        if isinstance(v, list):
            mapping: dict[str, str] = {}
            for item in v:
                if isinstance(item, dict):
                    name = item.get("name") or item.get("character")
                    change = item.get("change") or item.get("description") or ""
                    if name:
                        mapping[str(name)] = str(change)
            return mapping
        if not isinstance(v, dict):
            return {}
        return {str(k): str(val) for k, val in v.items() if val is not None}

    @field_validator("key_decisions", mode="before")
    @classmethod
    def _decision_list(cls, v: Any) -> list[Any]:
        if not isinstance(v, list):
            return []
        decisions: list[Any] = []
        for item in v:
            if isinstance(item, KeyDecision):
                decisions.append(item)
            elif isinstance(item, str) and item.strip():
                decisions.append({"decision": item.strip()})
            elif isinstance(item, dict) and item.get("decision"):
                decisions.append(item)
        return decisions

    @field_validator("atmosphere", mode="before")
    @classmethod
    def _atmosphere_object(cls, v: Any) -> Any:
        if isinstance(v, str):
            return {"mood": v}
        return v if isinstance(v, (dict, Atmosphere)) else {}


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def placeholder_digest(timestamp: str | None = None) -> SummaryDigest:
    """Minimal digest used when the model's summary cannot be parsed."""
    return SummaryDigest(
        plot_developments=["story continues"],
        atmosphere=Atmosphere(mood="unknown"),
        timestamp=timestamp or now_iso(),
    )


def digest_from_data(data: Any) -> SummaryDigest:
    """Build a digest from parsed model output. Raises ValueError on junk."""
    if not isinstance(data, dict):
        raise ValueError(f"Digest must be a JSON object, got {type(data).__name__}")
    try:
        return SummaryDigest.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Digest does not validate: {e}") from e


def serialize_digest(digest: SummaryDigest) -> str:
    return json.dumps(digest.model_dump(by_alias=True), ensure_ascii=False)


def digest_size(digest: SummaryDigest) -> int:
    return len(serialize_digest(digest).encode("utf-8"))


def parse_digest(text: str) -> SummaryDigest | None:
    """Parse a stored digest; None when empty or not a structured digest."""
    if not text or not text.strip():
        return None
    try:
        return digest_from_data(json.loads(text))
    except (json.JSONDecodeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------

def _merge_texts(prior: list[str], new: list[str], cap: int) -> list[str]:
    """Concatenate, dedupe keeping the latest position, keep the last `cap`."""
    merged: list[str] = []
    for item in prior + new:
        if item in merged:
            merged.remove(item)
        merged.append(item)
    return merged[-cap:]


def _merge_changes(prior: dict[str, str], new: dict[str, str], cap: int) -> dict[str, str]:
    merged = dict(prior)
    for name, change in new.items():
        merged.pop(name, None)  # re-insert so the latest write is newest
        merged[name] = change
    return dict(list(merged.items())[-cap:])


def _merge_decisions(
    prior: list[KeyDecision], new: list[KeyDecision], cap: int
) -> list[KeyDecision]:
    merged: dict[str, KeyDecision] = {}
    for item in prior + new:
        merged.pop(item.decision, None)
        merged[item.decision] = item
    return list(merged.values())[-cap:]


def merge_digests(
    prior: SummaryDigest | None,
    new: SummaryDigest,
    *,
    byte_budget: int = DEFAULT_BYTE_BUDGET,
    timestamp: str | None = None,
) -> SummaryDigest:
    """Merge a fresh partial digest into the prior one; version = prior + 1."""
    if prior is None:
        prior = SummaryDigest()
        version = 1
    else:
        version = prior.version + 1

    fresh = new.atmosphere
    atmosphere = Atmosphere(
        mood=fresh.mood if fresh.mood and fresh.mood != "unknown" else prior.atmosphere.mood,
        tension_level=(
            fresh.tension_level if "tension_level" in fresh.model_fields_set
            else prior.atmosphere.tension_level
        ),
    )

    merged = SummaryDigest(
        plot_developments=_merge_texts(prior.plot_developments, new.plot_developments, PLOT_CAP),
        character_changes=_merge_changes(prior.character_changes, new.character_changes, CHARACTER_CAP),
        key_decisions=_merge_decisions(prior.key_decisions, new.key_decisions, DECISION_CAP),
        atmosphere=atmosphere,
        important_clues=_merge_texts(prior.important_clues, new.important_clues, CLUE_CAP),
        timestamp=timestamp or now_iso(),
        version=version,
    )

    if digest_size(merged) > byte_budget:
        logger.info(
            "Digest v%d is %d bytes (budget %d), compressing",
            merged.version, digest_size(merged), byte_budget,
        )
        merged = compress_digest(merged)
    return merged


def compress_digest(digest: SummaryDigest) -> SummaryDigest:
    """Shrink every list to its compressed cap, newest entries kept."""
    return digest.model_copy(update={
        "plot_developments": digest.plot_developments[-COMPRESSED_PLOT_CAP:],
        "character_changes": dict(list(digest.character_changes.items())[-COMPRESSED_CHARACTER_CAP:]),
        "key_decisions": digest.key_decisions[-COMPRESSED_DECISION_CAP:],
        "important_clues": digest.important_clues[-COMPRESSED_CLUE_CAP:],
    })
