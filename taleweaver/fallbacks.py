"""Deterministic fallback artifacts, one per call site.

Used when every model attempt failed. Nothing here calls the model or
draws random numbers: the same call site and context always yield the
same artifact.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from taleweaver.models import Character, Choice, StoryConfig, StoryState

logger = logging.getLogger(__name__)

DEFAULT_GENRE = "adventure"

GENRE_TEMPLATES: dict[str, dict[str, Any]] = {
    "sci-fi": {
        "scene": (
            "You wake inside a cryo-pod. Holographic panels flicker around you and a low "
            "mechanical hum fills the air. A countdown glows on your wrist, and through the "
            "viewport a strange planet hangs beneath two moons in a violet sky.\n\n"
            "Where is this place, and how did you get here? Somewhere in the fog of memory "
            "a voice is calling your name..."
        ),
        "characters": [
            {"name": "The Subject", "role": "protagonist", "traits": "amnesiac test subject with unknown potential"},
            {"name": "ARIA", "role": "AI assistant", "traits": "loyal station AI that is hiding something"},
            {"name": "Doctor Shade", "role": "antagonist", "traits": "architect of the experiment, motives unknown"},
        ],
        "mood": "mysterious",
        "tension_level": 7,
    },
    "fantasy": {
        "scene": (
            "You wake in an ancient forest where the leaves glow softly and motes of magic "
            "drift like fireflies. A rune-etched sword lies beside you. Far off, a dragon's "
            "roar shakes the trees.\n\n"
            "A cloaked figure steps out from between the trunks and looks at you with hope "
            "and worry..."
        ),
        "characters": [
            {"name": "The Chosen", "role": "protagonist", "traits": "prophesied hero with dormant magic"},
            {"name": "Elder Merrin", "role": "mentor", "traits": "wise guardian who has waited for years"},
            {"name": "The Shadow Lord", "role": "antagonist", "traits": "fallen mage bent on ruin"},
        ],
        "mood": "epic",
        "tension_level": 6,
    },
    "mystery": {
        "scene": (
            "Rain hammers an abandoned building as lightning shows its broken windows. In "
            "your pocket is a note with an address and a time: here, now.\n\n"
            "A figure passes behind one of the windows and is gone. Imagination, or is "
            "someone waiting for you?"
        ),
        "characters": [
            {"name": "The Detective", "role": "protagonist", "traits": "sharp-eyed, haunted by an old case"},
            {"name": "Emily", "role": "witness", "traits": "knows the truth and keeps silent"},
            {"name": "The Professor", "role": "antagonist", "traits": "brilliant, patient and twisted"},
        ],
        "mood": "suspenseful",
        "tension_level": 8,
    },
    "romance": {
        "scene": (
            "Spring wind carries the scent of blossoms through sunlit streets. Music drifts "
            "from somewhere nearby, and you feel a quiet anticipation you can't explain.\n\n"
            "Then someone steps into view..."
        ),
        "characters": [
            {"name": "The Dreamer", "role": "protagonist", "traits": "kind-hearted, longing for something real"},
            {"name": "The Stranger", "role": "love interest", "traits": "charming with a complicated past"},
            {"name": "Best Friend", "role": "confidant", "traits": "loyal and full of advice"},
        ],
        "mood": "romantic",
        "tension_level": 4,
    },
    "horror": {
        "scene": (
            "Clouds smother the moon and only thin light reaches the ground, throwing "
            "shadows that move when you don't. Something is watching.\n\n"
            "A cold wind blows past, carrying the smell of rot..."
        ),
        "characters": [
            {"name": "The Survivor", "role": "protagonist", "traits": "brave but jumpy, desperate to live"},
            {"name": "The Wraith", "role": "antagonist", "traits": "vengeful spirit of an old wrong"},
            {"name": "The Old Man", "role": "sage", "traits": "knows the truth, speaks in riddles"},
        ],
        "mood": "dread",
        "tension_level": 9,
    },
    "adventure": {
        "scene": (
            "A wide land full of unknown dangers and treasure stretches before you. Pack on "
            "your back and map in hand, you feel the horizon calling.\n\n"
            "Hoofbeats sound behind you: a merchant caravan is coming this way..."
        ),
        "characters": [
            {"name": "The Explorer", "role": "protagonist", "traits": "bold, quick-witted and restless"},
            {"name": "The Guide", "role": "mentor", "traits": "seasoned traveller who knows every path"},
            {"name": "The Bandit Chief", "role": "antagonist", "traits": "cunning, greedy and armed to the teeth"},
        ],
        "mood": "adventurous",
        "tension_level": 6,
    },
}

TONE_OPENINGS: dict[str, tuple[str, str, int]] = {
    # tone: (scene sentence, mood, tension)
    "light": ("Sunlight falls across the land and everything feels full of promise.", "light", 3),
    "dark": ("Darkness hangs over this place and the shadows keep their secrets.", "dark", 8),
    "romantic": ("A soft breeze carries the scent of flowers; a meeting feels close.", "romantic", 4),
    "humorous": ("Everything here is faintly ridiculous, and a grin is hard to suppress.", "humorous", 2),
}
SERIOUS_OPENING = ("The air is solemn; an important choice is coming.", "serious", 6)

DIFFICULTY_OUTCOMES: dict[int, tuple[str, int]] = {
    # difficulty: (scene prefix, tension delta)
    1: ("Your careful choice brings a safe result.", -1),
    2: ("With some effort, things turn in your favour.", 0),
    3: ("The decision brings an unexpected turn.", 1),
    4: ("Your bold choice brings new danger, and new opportunity.", 2),
    5: ("The daring move has dramatic consequences.", 3),
}

DEFAULT_CHOICES: list[dict[str, Any]] = [
    {"id": 1, "text": "Press on", "description": "Face the unknown head-on", "difficulty": 3},
    {"id": 2, "text": "Look for clues", "description": "Study your surroundings carefully", "difficulty": 2},
    {"id": 3, "text": "Proceed with caution", "description": "Play it safe", "difficulty": 1},
]

ENDING_SCENES: dict[str, str] = {
    "success": (
        "After a long journey every effort is finally rewarded. {hero} stands before "
        "victory and looks back on the road with gratitude.\n\n"
        "The story closes in the light of hope, not an end but a beginning."
    ),
    "failure": (
        "The goal slipped away, yet the journey mattered. {hero} found strength in defeat "
        "and courage in setbacks.\n\n"
        "Some stories are worth telling for the fight, not the victory."
    ),
    "neutral": (
        "There is no perfect ending, only growth. {hero} knows this adventure is over, "
        "but life goes on, shaped by every choice made along the way."
    ),
    "cliffhanger": (
        "Just as everything seems settled, a new signal appears on the horizon. {hero} "
        "realises this was only the start of a bigger story.\n\n"
        "New mysteries rise. This ending is also a beginning..."
    ),
}

ENDING_ACHIEVEMENTS: dict[str, list[str]] = {
    "success": ["Perfect Ending - every main goal achieved", "Hero's Road - an epic adventure completed"],
    "failure": ["Tragic Hero - unbroken even in defeat", "Sacrifice - fought bravely for what was right"],
    "neutral": ["Wise Choice - found the balance", "Growth - gained hard-won experience"],
    "cliffhanger": ["To Be Continued - the story isn't over", "New Beginning - ready for what comes next"],
}

ENDING_MOODS = {"success": "triumphant", "failure": "solemn", "neutral": "calm", "cliffhanger": "suspenseful"}

CHAPTER_MOOD_LINES: dict[str, str] = {
    "mysterious": "Shadows drift in the corners and something seems to watch your every move.",
    "suspenseful": "Shadows drift in the corners and something seems to watch your every move.",
    "tense": "Your heartbeat pounds in your ears; every decision could mean life or death.",
    "intense": "Your heartbeat pounds in your ears; every decision could mean life or death.",
    "epic": "The wheel of fate turns again; new challenges wait beyond the horizon.",
    "adventurous": "The wheel of fate turns again; new challenges wait beyond the horizon.",
}
DEFAULT_MOOD_LINE = "New possibilities open up; your choices are shaping this world."


def _hero(characters: list[Character]) -> str:
    return characters[0].name if characters else "The hero"


def mood_for_tension(tension: int, current: str) -> str:
    if tension >= 8:
        return "tense"
    if tension >= 6:
        return "intense"
    if tension <= 3:
        return "calm"
    return current


def initial_story(config: StoryConfig) -> dict[str, Any]:
    if config.is_advanced:
        characters = [
            {
                "name": detail.name or f"Character {i}",
                "role": detail.role or "supporting",
                "traits": detail.personality or "an enigmatic figure",
                "appearance": "to be described",
                "backstory": "yet to unfold",
            }
            for i, detail in enumerate(config.character_details, start=1)
        ]
        hero = characters[0]["name"]
        environment = config.environment_details or "a mysterious world"
        sentence, mood, tension = TONE_OPENINGS.get(config.tone or "", SERIOUS_OPENING)
        content: dict[str, Any] = {
            "scene": f'From your idea "{config.story_idea}": in {environment}, {hero}\'s story begins. {sentence}',
            "characters": characters,
            "mood": mood,
            "tension_level": tension,
            "achievements": ["The Journey Begins"],
        }
        if config.story_length:
            content["story_length_target"] = config.story_length
        if config.preferred_ending:
            content["preferred_ending_type"] = config.preferred_ending
        return content

    template = GENRE_TEMPLATES.get(config.genre, GENRE_TEMPLATES[DEFAULT_GENRE])
    return {
        "scene": f'From your idea "{config.story_idea}": {template["scene"]}',
        "characters": [dict(c) for c in template["characters"]],
        "mood": template["mood"],
        "tension_level": template["tension_level"],
        "achievements": ["The Journey Begins"],
    }


def next_chapter(state: StoryState, choice: Choice) -> dict[str, Any]:
    prefix, delta = DIFFICULTY_OUTCOMES.get(choice.difficulty, DIFFICULTY_OUTCOMES[3])
    tension = max(1, min(10, state.tension_level + delta))
    mood_line = CHAPTER_MOOD_LINES.get(state.mood, DEFAULT_MOOD_LINE)
    scene = "\n".join([
        prefix,
        "",
        f'You chose "{choice.text}", and the world around you shifts.',
        mood_line,
        "",
        "The road ahead is still uncertain, but you have taken an important step...",
    ])
    return {
        "scene": scene,
        "mood": mood_for_tension(tension, state.mood),
        "tension_level": tension,
        "achievements": [],
    }


def choices() -> list[dict[str, Any]]:
    return [dict(c) for c in DEFAULT_CHOICES]


def character(character: Character) -> dict[str, Any]:
    return character.model_dump(exclude_none=True)


def ending(state: StoryState, ending_type: str) -> dict[str, Any]:
    kind = ending_type if ending_type in ENDING_SCENES else "neutral"
    return {
        "scene": ENDING_SCENES[kind].format(hero=_hero(state.characters)),
        "achievements": list(ENDING_ACHIEVEMENTS[kind]),
        "mood": ENDING_MOODS[kind],
    }


def continuation(state: StoryState) -> dict[str, Any]:
    return {
        "current_scene": (
            f"{state.current_scene}\n\nJust as the moment stretches on, something changes: "
            "a sound, a stranger, a door left open. The story moves again."
        ).strip(),
        "mood": state.mood,
        "tension_level": min(10, state.tension_level + 1),
        "achievements": [],
        "scene_type": "exploration",
    }


def story_summary(state: StoryState) -> dict[str, Any]:
    return {
        "summary": (
            f"A story of {state.chapter} chapter(s), {len(state.choices_made)} choice(s) "
            f"and {len(state.achievements)} achievement(s)."
        ),
    }


_FALLBACKS: dict[str, Callable[..., Any]] = {
    "initial_story": initial_story,
    "next_chapter": next_chapter,
    "choices": choices,
    "character": character,
    "ending": ending,
    "continue": continuation,
    "story_summary": story_summary,
}


def fallback_for(call_site: str, **context: Any) -> Any:
    """Return the fallback artifact for `call_site`, built from `context`."""
    try:
        builder = _FALLBACKS[call_site]
    except KeyError:
        raise ValueError(f"No fallback defined for call site {call_site!r}") from None
    logger.debug("Building fallback for %s", call_site)
    return builder(**context)
