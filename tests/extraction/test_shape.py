"""Tests for shape coercion of list payloads."""

from taleweaver.extraction import coerce_entries, coerce_list_payload, guess_difficulty
from taleweaver.extraction.shape import GENERIC_DESCRIPTION


class TestGuessDifficulty:
    def test_dangerous_actions(self) -> None:
        assert guess_difficulty("Sacrifice yourself for the crew") == 5
        assert guess_difficulty("Attack the guard") == 4

    def test_cautious_actions(self) -> None:
        assert guess_difficulty("Hide behind the crates") == 1
        assert guess_difficulty("Look around the room") == 2

    def test_default(self) -> None:
        assert guess_difficulty("Sing a song") == 3


class TestCoerceEntries:
    def test_bare_strings_become_entries(self) -> None:
        entries = coerce_entries(["Attack the guard", "Hide behind the crates"])
        assert entries == [
            {"id": 1, "text": "Attack the guard", "description": GENERIC_DESCRIPTION, "difficulty": 4},
            {"id": 2, "text": "Hide behind the crates", "description": GENERIC_DESCRIPTION, "difficulty": 1},
        ]

    def test_ids_stay_sequential_when_blanks_skipped(self) -> None:
        entries = coerce_entries(["Run", "  ", "Sing a song"])
        assert [e["id"] for e in entries] == [1, 2]

    def test_partial_dicts_filled_in(self) -> None:
        entries = coerce_entries([{"title": "Open the door", "difficulty": "9"}])
        assert entries[0]["text"] == "Open the door"
        assert entries[0]["id"] == 1
        assert entries[0]["description"] == GENERIC_DESCRIPTION
        assert entries[0]["difficulty"] == 5

    def test_complete_dicts_kept(self) -> None:
        item = {"id": 7, "text": "Wait", "description": "Bide your time", "difficulty": 2, "consequences": "?"}
        assert coerce_entries([item]) == [item]

    def test_boolean_id_replaced(self) -> None:
        assert coerce_entries([{"id": True, "text": "Go"}])[0]["id"] == 1

    def test_junk_difficulty_guessed(self) -> None:
        assert coerce_entries([{"text": "Flee the city", "difficulty": "hard"}])[0]["difficulty"] == 1

    def test_entries_without_text_dropped(self) -> None:
        assert coerce_entries([{"description": "nothing"}, 42, None]) == []


class TestCoerceListPayload:
    def test_list(self) -> None:
        assert coerce_list_payload(["Run"], "choices")[0]["text"] == "Run"

    def test_wrapped_list(self) -> None:
        value = {"choices": ["Run"], "note": "x"}
        coerced = coerce_list_payload(value, "choices")
        assert coerced["choices"][0]["text"] == "Run"
        assert coerced["note"] == "x"
        assert value["choices"] == ["Run"]

    def test_other_shapes_untouched(self) -> None:
        assert coerce_list_payload({"scene": "A"}, "choices") == {"scene": "A"}
