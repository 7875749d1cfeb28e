"""Handlebars prompt rendering for every model call site.

Templates use triple-stash ({{{x}}}) for story text so nothing gets
HTML-escaped. JSON examples inside templates never contain "{{" or "}}";
nested closers are written as "} }".
"""

from collections.abc import Callable
from typing import Any

import pybars


_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_last(this, options, items, count):
    """{{#last array N}}...{{/last}} — iterate over the last N items."""
    result = []
    for item in list(items)[-int(count):]:
        result.extend(options["fn"](item))
    return result


def _helper_join(this, items, separator=", "):
    """{{join array ", "}} — join plain items into one string."""
    return separator.join(str(item) for item in items or [])


_HELPERS: dict[str, Callable] = {
    "last": _helper_last,
    "join": _helper_join,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


JSON_ONLY = (
    "Respond with valid JSON only: no prose, no markdown fences, no ellipsis (...). "
    "Close every string, object and array."
)


# ── Opening ──────────────────────────────────────────────

INITIAL_SYSTEM = """You are an interactive-fiction author. Create the opening of a {{{genre}}} story.
{{#if advanced}}
Follow the player's settings exactly:
- Tone: {{{tone}}}
- Length: {{{story_length}}} ({{{chapter_span}}} chapters)
- Preferred ending: {{{preferred_ending}}}
- Environment: {{{environment}}}
Keep every provided character's name, role and personality.
{{else}}
The player only gave an idea. Invent 3-5 characters with depth, a setting and a gripping opening scene.
{{/if}}
Write a 500-800 word opening scene.

Output JSON:
{"scene": "...", "characters": [{"name": "", "role": "", "traits": "", "appearance": "", "backstory": ""}], "setting_details": "", "mood": "", "tension_level": 5, "achievements": [""]}
"""

INITIAL_USER = """Genre: {{{genre}}}
Idea: {{{story_idea}}}
{{#if advanced}}
Characters:
{{#each characters}}- {{{name}}} ({{{role}}}): {{{personality}}}
{{/each}}
Special requirements: {{{special_requirements}}}
{{/if}}"""


# ── Chapters ─────────────────────────────────────────────

CHAPTER_SYSTEM = """You are continuing an interactive {{{setting}}} story.

Chapter {{chapter}}, mood: {{{mood}}}, tension {{tension_level}}/10.
Choices so far: {{{join choices_made ", "}}}

Continue the story from the player's choice in 300-600 words, keep it consistent,
and adjust mood and tension as the story demands.

Output JSON:
{"scene": "...", "mood": "", "tension_level": 5, "new_characters": [], "achievements": []}
"""

CHAPTER_USER = """The player chose: "{{{choice_text}}}" - {{{choice_description}}}

Current scene:
{{{current_scene}}}

Characters:
{{#each characters}}{{{name}}} ({{{role}}}): {{{traits}}}
{{/each}}"""


CHOICES_SYSTEM = """You design story branches. Offer meaningful choices with different consequences
and a spread of difficulty from 1 (safe) to 5 (dangerous).

Output a JSON array:
[{"id": 1, "text": "", "description": "", "consequences": "", "difficulty": 3}]
"""

CHOICES_USER = """Current scene: {{{current_scene}}}

Characters: {{#each characters}}{{{name}}} ({{{role}}}); {{/each}}

Chapter {{chapter}}, mood: {{{mood}}}, tension {{tension_level}}/10.

Give exactly {{count}} choices."""


CHARACTER_SYSTEM = """You develop story characters as the story unfolds.

Output JSON:
{"name": "", "role": "", "traits": "", "appearance": "", "backstory": "", "relationships": "", "character_arc": ""}
"""

CHARACTER_USER = """Character: {{{name}}}
Current traits: {{{traits}}}
Story context: {{{context}}}
Interactions: {{{join interactions ", "}}}"""


ENDING_SYSTEM = """You write story endings. {{{ending_goal}}}
Echo the opening themes, show how the characters changed, and stay consistent with what happened.

Output JSON:
{"scene": "...", "completion_summary": "", "character_outcomes": "", "achievements": [""], "mood": ""}
"""

ENDING_USER = """Chapter {{chapter}}, setting: {{{setting}}}
Characters: {{#each characters}}{{{name}}} ({{{role}}}); {{/each}}
Recent choices: {{#last choices_made 5}}{{{this}}}; {{/last}}
Achievements: {{{join achievements ", "}}}
Mood: {{{mood}}}
Ending type: {{ending_type}}"""


CONTINUE_SYSTEM = """The story has stalled. Introduce a natural twist that moves it forward,
consistent with what came before, and set up the next choices.

Output JSON:
{"current_scene": "...", "mood": "", "tension_level": 5, "achievements": [], "scene_type": "exploration"}
"""

CONTINUE_USER = """Chapter {{chapter}}, setting: {{{setting}}}
Characters: {{#each characters}}{{{name}}} ({{{role}}}); {{/each}}
Current scene: {{{current_scene}}}
Mood: {{{mood}}}, tension {{tension_level}}/10
Recent choices: {{#last choices_made 3}}{{{this}}}; {{/last}}
Achievements: {{{join achievements ", "}}}"""


STORY_SUMMARY_SYSTEM = """You analyse finished interactive stories.

Output JSON:
{"summary": "..."}
"""

STORY_SUMMARY_USER = """Story {{story_id}}, {{chapter}} chapters.
Choices: {{{join choices_made ", "}}}
Achievements: {{{join achievements ", "}}}"""


# ── Summary digest ───────────────────────────────────────

DIGEST_SYSTEM = """You compress interactive-fiction transcripts into a structured digest.
Respond with valid JSON only: no prose, no ellipsis (...), valid JSON only."""

DIGEST_USER = """{{#if prior_digest}}Previous digest, for continuity only:
{{{prior_digest}}}

{{/if}}Conversation to summarize:
{{#each turns}}{{role}}: {{{content}}}
{{/each}}
Return JSON with these keys:
{"plotDevelopments": [""], "characterChanges": {"Name": "latest change"}, "keyDecisions": [{"decision": "", "consequence": ""}], "atmosphere": {"mood": "", "tensionLevel": 5}, "importantClues": [""]}"""
