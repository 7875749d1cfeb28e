"""Tests for the summary digest: validation, merge, compression, serialisation."""

import json

import pytest

from taleweaver.summary.digest import (
    CHARACTER_CAP,
    CLUE_CAP,
    DECISION_CAP,
    PLOT_CAP,
    Atmosphere,
    KeyDecision,
    SummaryDigest,
    compress_digest,
    digest_from_data,
    digest_size,
    merge_digests,
    parse_digest,
    placeholder_digest,
    serialize_digest,
)


def _digest(**fields) -> SummaryDigest:
    return SummaryDigest(timestamp="2026-01-01T00:00:00+00:00", **fields)


# ── validation ───────────────────────────────────────────────


class TestDigestFromData:
    def test_camel_case_input(self) -> None:
        d = digest_from_data({
            "plotDevelopments": ["met the guide"],
            "characterChanges": {"Ava": "trusts the guide"},
            "keyDecisions": [{"decision": "took the map", "consequence": "bandits follow"}],
            "atmosphere": {"mood": "tense", "tensionLevel": 7},
            "importantClues": ["the map is fake"],
        })
        assert d.plot_developments == ["met the guide"]
        assert d.character_changes == {"Ava": "trusts the guide"}
        assert d.key_decisions == [KeyDecision(decision="took the map", consequence="bandits follow")]
        assert d.atmosphere == Atmosphere(mood="tense", tension_level=7)
        assert d.important_clues == ["the map is fake"]

    def test_lenient_shapes(self) -> None:
        d = digest_from_data({
            "plotDevelopments": "a single development",
            "characterChanges": [{"name": "Bo", "change": "left the party"}],
            "keyDecisions": ["fled the town", {"consequence": "no decision"}],
            "atmosphere": "gloomy",
        })
        assert d.plot_developments == ["a single development"]
        assert d.character_changes == {"Bo": "left the party"}
        assert [k.decision for k in d.key_decisions] == ["fled the town"]
        assert d.atmosphere.mood == "gloomy"

    @pytest.mark.parametrize("raw, expected", [(15, 10), (0, 1), ("6", 6), ("high", 5)])
    def test_tension_clamped(self, raw, expected) -> None:
        assert digest_from_data({"atmosphere": {"tensionLevel": raw}}).atmosphere.tension_level == expected

    def test_non_object_rejected(self) -> None:
        with pytest.raises(ValueError):
            digest_from_data(["not", "a", "digest"])


def test_placeholder_digest():
    d = placeholder_digest("2026-01-01T00:00:00+00:00")
    assert d.plot_developments == ["story continues"]
    assert d.atmosphere == Atmosphere(mood="unknown", tension_level=5)
    assert d.version == 1


# ── serialisation ────────────────────────────────────────────


def test_serialized_keys_are_camel_case():
    data = json.loads(serialize_digest(_digest(plot_developments=["x"])))
    assert set(data) == {
        "plotDevelopments", "characterChanges", "keyDecisions",
        "atmosphere", "importantClues", "timestamp", "version",
    }
    assert data["atmosphere"] == {"mood": "unknown", "tensionLevel": 5}


def test_parse_digest_round_trip():
    d = _digest(plot_developments=["x"], character_changes={"Ava": "y"}, version=3)
    assert parse_digest(serialize_digest(d)) == d


@pytest.mark.parametrize("text", ["", "   ", "not json", "[1, 2]"])
def test_parse_digest_rejects_junk(text):
    assert parse_digest(text) is None


# ── merge ────────────────────────────────────────────────────


class TestMerge:
    def test_first_merge_is_version_one(self) -> None:
        merged = merge_digests(None, _digest(plot_developments=["a"]))
        assert merged.version == 1
        assert merged.plot_developments == ["a"]

    def test_version_increments(self) -> None:
        prior = _digest(version=3)
        assert merge_digests(prior, _digest()).version == 4

    def test_prior_items_survive_below_cap(self) -> None:
        prior = _digest(plot_developments=["a", "b", "c"], important_clues=["k1"])
        new = _digest(plot_developments=["d"], important_clues=["k2"])
        merged = merge_digests(prior, new)
        assert merged.plot_developments == ["a", "b", "c", "d"]
        assert merged.important_clues == ["k1", "k2"]

    def test_caps_keep_most_recent(self) -> None:
        prior = _digest(plot_developments=[f"p{i}" for i in range(PLOT_CAP)])
        new = _digest(plot_developments=["new1", "new2"])
        merged = merge_digests(prior, new)
        assert len(merged.plot_developments) == PLOT_CAP
        assert merged.plot_developments[-2:] == ["new1", "new2"]
        assert "p0" not in merged.plot_developments

    def test_duplicates_move_to_latest_position(self) -> None:
        merged = merge_digests(_digest(plot_developments=["a", "b"]), _digest(plot_developments=["a", "c"]))
        assert merged.plot_developments == ["b", "a", "c"]

    def test_character_changes_last_write_wins(self) -> None:
        prior = _digest(character_changes={"Ava": "scared", "Bo": "calm"})
        new = _digest(character_changes={"Ava": "brave"})
        merged = merge_digests(prior, new)
        assert merged.character_changes == {"Bo": "calm", "Ava": "brave"}

    def test_character_changes_capped(self) -> None:
        prior = _digest(character_changes={f"c{i}": "x" for i in range(CHARACTER_CAP)})
        merged = merge_digests(prior, _digest(character_changes={"newcomer": "arrived"}))
        assert len(merged.character_changes) == CHARACTER_CAP
        assert "newcomer" in merged.character_changes
        assert "c0" not in merged.character_changes

    def test_decisions_deduplicated_by_text(self) -> None:
        prior = _digest(key_decisions=[KeyDecision(decision="took the map", consequence="?")])
        new = _digest(key_decisions=[
            KeyDecision(decision="took the map", consequence="bandits follow"),
            KeyDecision(decision="lit a fire"),
        ])
        merged = merge_digests(prior, new)
        assert [k.decision for k in merged.key_decisions] == ["took the map", "lit a fire"]
        assert merged.key_decisions[0].consequence == "bandits follow"

    def test_decisions_and_clues_capped(self) -> None:
        prior = _digest(
            key_decisions=[KeyDecision(decision=f"d{i}") for i in range(DECISION_CAP)],
            important_clues=[f"k{i}" for i in range(CLUE_CAP)],
        )
        new = _digest(key_decisions=[KeyDecision(decision="last")], important_clues=["final"])
        merged = merge_digests(prior, new)
        assert len(merged.key_decisions) == DECISION_CAP
        assert merged.key_decisions[-1].decision == "last"
        assert len(merged.important_clues) == CLUE_CAP
        assert merged.important_clues[-1] == "final"

    def test_atmosphere_newest_value_wins(self) -> None:
        prior = _digest(atmosphere=Atmosphere(mood="calm", tension_level=2))
        new = digest_from_data({"atmosphere": {"mood": "tense", "tensionLevel": 8}})
        assert merge_digests(prior, new).atmosphere == Atmosphere(mood="tense", tension_level=8)

    def test_atmosphere_empty_values_keep_prior(self) -> None:
        prior = _digest(atmosphere=Atmosphere(mood="calm", tension_level=2))
        assert merge_digests(prior, digest_from_data({})).atmosphere == Atmosphere(mood="calm", tension_level=2)
        unknown = digest_from_data({"atmosphere": {"mood": "unknown"}})
        assert merge_digests(prior, unknown).atmosphere.mood == "calm"

    def test_placeholder_keeps_prior_atmosphere(self) -> None:
        prior = _digest(atmosphere=Atmosphere(mood="tense", tension_level=9))
        merged = merge_digests(prior, placeholder_digest())
        assert merged.atmosphere == Atmosphere(mood="tense", tension_level=9)
        assert merged.plot_developments[-1] == "story continues"

    def test_timestamp_set(self) -> None:
        merged = merge_digests(None, _digest(), timestamp="2026-02-02T00:00:00+00:00")
        assert merged.timestamp == "2026-02-02T00:00:00+00:00"


# ── compression ──────────────────────────────────────────────


def _big_digest() -> SummaryDigest:
    filler = "x" * 120
    return _digest(
        plot_developments=[f"plot {i} {filler}" for i in range(PLOT_CAP)],
        character_changes={f"char{i}": filler for i in range(CHARACTER_CAP)},
        key_decisions=[KeyDecision(decision=f"decision {i}", consequence=filler) for i in range(DECISION_CAP)],
        important_clues=[f"clue {i} {filler}" for i in range(CLUE_CAP)],
        atmosphere=Atmosphere(mood="tense", tension_level=9),
        version=4,
    )


class TestCompression:
    def test_compress_shrinks_to_compressed_caps(self) -> None:
        d = compress_digest(_big_digest())
        assert len(d.plot_developments) == 3
        assert len(d.character_changes) == 4
        assert len(d.key_decisions) == 3
        assert len(d.important_clues) == 5
        assert d.plot_developments[-1] == _big_digest().plot_developments[-1]
        assert list(d.character_changes) == ["char4", "char5", "char6", "char7"]

    def test_compress_keeps_version_timestamp_and_atmosphere(self) -> None:
        big = _big_digest()
        d = compress_digest(big)
        assert d.version == big.version
        assert d.timestamp == big.timestamp
        assert d.atmosphere == big.atmosphere

    def test_merge_compresses_over_budget(self) -> None:
        big = _big_digest()
        assert digest_size(big) > 2048
        merged = merge_digests(big, _digest(plot_developments=["newest"]))
        assert merged.version == big.version + 1
        assert len(merged.plot_developments) == 3
        assert merged.plot_developments[-1] == "newest"

    def test_merge_under_budget_not_compressed(self) -> None:
        prior = _digest(plot_developments=["a", "b", "c", "d"])
        merged = merge_digests(prior, _digest(plot_developments=["e"]))
        assert len(merged.plot_developments) == 5
