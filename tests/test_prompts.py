"""Tests for Handlebars prompt rendering: template compilation, custom
helpers (last, join), every call site's templates, and error handling."""

import pytest

from taleweaver.prompts import (
    CHAPTER_SYSTEM,
    CHAPTER_USER,
    CHOICES_USER,
    DIGEST_USER,
    ENDING_USER,
    INITIAL_SYSTEM,
    INITIAL_USER,
    PromptError,
    render_prompt,
)


# ── render_prompt ────────────────────────────────────────────


def test_render_simple_variable():
    result = render_prompt("Hello {{name}}!", {"name": "World"})
    assert result == "Hello World!"


def test_render_each_loop():
    tpl = "{{#each items}}{{this}} {{/each}}"
    result = render_prompt(tpl, {"items": ["a", "b", "c"]})
    assert result == "a b c "


def test_render_if_conditional():
    tpl = "{{#if show}}yes{{else}}no{{/if}}"
    assert render_prompt(tpl, {"show": True}) == "yes"
    assert render_prompt(tpl, {"show": False}) == "no"


def test_render_missing_variable():
    result = render_prompt("Hello {{name}}!", {})
    assert result == "Hello !"


def test_triple_stash_does_not_escape():
    assert render_prompt("{{{text}}}", {"text": 'She said "run" & ran'}) == 'She said "run" & ran'


def test_render_invalid_template():
    with pytest.raises(PromptError):
        render_prompt("{{> missing_partial}}", {})


# ── helpers: last & join ─────────────────────────────────────


def test_last_n():
    tpl = "{{#last items 2}}{{this}} {{/last}}"
    assert render_prompt(tpl, {"items": ["a", "b", "c"]}) == "b c "


def test_last_more_than_length():
    tpl = "{{#last items 10}}{{this}} {{/last}}"
    assert render_prompt(tpl, {"items": ["a", "b"]}) == "a b "


def test_last_with_objects():
    tpl = "{{#last turns 1}}{{content}}{{/last}}"
    turns = [{"content": "first"}, {"content": "second"}]
    assert render_prompt(tpl, {"turns": turns}) == "second"


def test_join():
    assert render_prompt('{{{join items ", "}}}', {"items": ["north", "east"]}) == "north, east"


def test_join_empty():
    assert render_prompt('[{{{join items ", "}}}]', {"items": []}) == "[]"


# ── call-site templates ──────────────────────────────────────


def test_initial_prompts_simple():
    ctx = {"advanced": False, "genre": "horror", "story_idea": "a locked cellar"}
    system = render_prompt(INITIAL_SYSTEM, ctx)
    user = render_prompt(INITIAL_USER, ctx)
    assert "opening of a horror story" in system
    assert "Invent 3-5 characters" in system
    assert "Idea: a locked cellar" in user
    assert "Characters:" not in user


def test_initial_prompts_advanced():
    ctx = {
        "advanced": True,
        "genre": "fantasy",
        "story_idea": "a stolen crown",
        "tone": "dark",
        "story_length": "short",
        "chapter_span": "5-8",
        "preferred_ending": "bittersweet",
        "environment": "a drowned city",
        "characters": [{"name": "Mira", "role": "thief", "personality": "sly"}],
        "special_requirements": "none",
    }
    system = render_prompt(INITIAL_SYSTEM, ctx)
    assert "Tone: dark" in system
    assert "short (5-8 chapters)" in system
    assert "Environment: a drowned city" in system
    assert "- Mira (thief): sly" in render_prompt(INITIAL_USER, ctx)


def test_chapter_prompts():
    ctx = {
        "setting": "harbour",
        "chapter": 3,
        "mood": "tense",
        "tension_level": 7,
        "choices_made": ["Board the ship", "Climb the mast"],
        "choice_text": "Cut the rope",
        "choice_description": "Free the boat",
        "current_scene": "Storm clouds gather.",
        "characters": [{"name": "Ava", "role": "sailor", "traits": "bold"}],
    }
    system = render_prompt(CHAPTER_SYSTEM, ctx)
    user = render_prompt(CHAPTER_USER, ctx)
    assert "Chapter 3, mood: tense, tension 7/10." in system
    assert "Choices so far: Board the ship, Climb the mast" in system
    assert 'The player chose: "Cut the rope" - Free the boat' in user
    assert "Ava (sailor): bold" in user


def test_choices_prompt_asks_for_count():
    ctx = {"current_scene": "x", "characters": [], "chapter": 1, "mood": "calm", "tension_level": 2, "count": 4}
    assert "Give exactly 4 choices." in render_prompt(CHOICES_USER, ctx)


def test_ending_prompt_shows_recent_choices():
    ctx = {
        "chapter": 12,
        "setting": "moor",
        "characters": [],
        "choices_made": [f"c{i}" for i in range(8)],
        "achievements": ["Survivor"],
        "mood": "calm",
        "ending_type": "neutral",
    }
    result = render_prompt(ENDING_USER, ctx)
    assert "Recent choices: c3; c4; c5; c6; c7; " in result
    assert "Achievements: Survivor" in result


def test_digest_prompt_with_and_without_prior():
    turns = [{"role": "user", "content": "go"}, {"role": "assistant", "content": '{"scene": "went"}'}]
    without = render_prompt(DIGEST_USER, {"prior_digest": "", "turns": turns})
    assert "Previous digest" not in without
    assert 'assistant: {"scene": "went"}' in without

    prior = render_prompt(DIGEST_USER, {"prior_digest": '{"version": 1}', "turns": turns})
    assert prior.startswith('Previous digest, for continuity only:\n{"version": 1}')
    assert "Conversation to summarize:" in prior
