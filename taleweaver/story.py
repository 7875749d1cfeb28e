"""Story operations: the call sites of the retry orchestrator.

Every model-backed operation renders its prompts, asks the orchestrator
for a structured artifact and falls back to the deterministic template
for its call site when every attempt fails. Multi-turn operations
(next chapter, ending, continuation) send the conversation history and
digest along and record the turn on success.

The pure helpers at the bottom decide pacing: how many choices to offer,
when a story should end, and how a chapter changes the story state.
"""

from __future__ import annotations

import json
import logging
import random
from collections.abc import Callable
from typing import Any, get_args

from pydantic import ValidationError

from taleweaver import fallbacks
from taleweaver.config import DEFAULT_TUNING, ModelConfig, Tuning
from taleweaver.conversation import ConversationStore
from taleweaver.errors import ConfigMissing
from taleweaver.llm import ChatLLM, ChatRequest
from taleweaver.models import (
    Character,
    Choice,
    CompletionType,
    EndingCheck,
    GoalStatus,
    Message,
    SceneType,
    StoryConfig,
    StoryState,
)
from taleweaver.prompts import (
    CHAPTER_SYSTEM,
    CHAPTER_USER,
    CHARACTER_SYSTEM,
    CHARACTER_USER,
    CHOICES_SYSTEM,
    CHOICES_USER,
    CONTINUE_SYSTEM,
    CONTINUE_USER,
    ENDING_SYSTEM,
    ENDING_USER,
    INITIAL_SYSTEM,
    INITIAL_USER,
    JSON_ONLY,
    STORY_SUMMARY_SYSTEM,
    STORY_SUMMARY_USER,
    render_prompt,
)
from taleweaver.retry import RetryOrchestrator
from taleweaver.summary import SummaryEngine

logger = logging.getLogger(__name__)

CHAPTER_SPANS = {"short": "5-8", "medium": "8-12", "long": "12-20"}

ENDING_GOALS: dict[str, str] = {
    "success": "Write a satisfying success ending that resolves the main conflict and gives the characters a fitting close.",
    "failure": "Write a meaningful tragic ending that shows the characters' courage and sacrifice; even defeat should matter.",
    "neutral": "Write an open, neutral ending: life goes on, but the characters have grown and changed.",
    "cliffhanger": "Write a gripping cliffhanger that resolves the current crisis but opens a new mystery.",
}

RESOLUTION_KEYWORDS = (
    "the end", "complete the mission", "final farewell", "leave forever",
    "return home", "fulfil", "finish",
)
FAILURE_KEYWORDS = ("give up", "flee", "fail", "die", "despair", "surrender")
COMPLETION_KEYWORDS = ("complete", "succeed", "victory", "achieve", "resolve", "accomplish")
PROGRESS_KEYWORDS = ("begin", "start", "try", "advance", "act", "search", "seek")
TENSE_MOODS = frozenset({"tense", "intense", "suspenseful"})
CALM_MOODS = frozenset({"calm", "peaceful", "harmonious"})

_SCENE_TYPES = frozenset(get_args(SceneType))


def _with_admonition(system: str, admonition: str) -> str:
    parts = [system.rstrip(), JSON_ONLY]
    if admonition:
        parts.append(admonition)
    return "\n\n".join(parts)


class StoryEngine:
    """Model-backed story operations for one story session.

    Args:
        llm:    Chat-completion capability. None means unconfigured; every
                operation then raises ConfigMissing.
        config: Model settings used for every request.
        store:  Conversation store of the session. A fresh one, with a
                summary engine attached, is created when omitted.
        tuning: Pacing and retry constants.
        rng:    Source of randomness for pacing decisions.
    """

    def __init__(
        self,
        llm: ChatLLM | None,
        config: ModelConfig,
        *,
        store: ConversationStore | None = None,
        tuning: Tuning = DEFAULT_TUNING,
        rng: random.Random | None = None,
    ) -> None:
        self._llm = llm
        self._config = config
        self._tuning = tuning
        self._rng = rng or random.Random()
        if store is None:
            summarizer = SummaryEngine(llm, config, tuning) if llm is not None else None
            store = ConversationStore(summarizer=summarizer, tuning=tuning)
        self.store = store
        self._retry = RetryOrchestrator(llm, tuning) if llm is not None else None

    # -- plumbing -------------------------------------------------------

    def _require(self) -> RetryOrchestrator:
        if self._retry is None:
            raise ConfigMissing("No chat-completion capability configured")
        self._config.require()
        return self._retry

    def _request(self, messages: list[Message], json_mode: bool = True) -> ChatRequest:
        return ChatRequest(
            model=self._config.model,
            messages=messages,
            temperature=self._config.temperature,
            max_tokens=self._config.max_tokens,
            response_format="json_object" if json_mode else None,
        )

    def _single_turn(self, system: str, user: str, json_mode: bool = True) -> Callable[[str], ChatRequest]:
        def build(admonition: str) -> ChatRequest:
            return self._request([
                Message(role="system", content=_with_admonition(system, admonition)),
                Message(role="user", content=user),
            ], json_mode)
        return build

    def _multi_turn(self, system: str, user: str) -> Callable[[str], ChatRequest]:
        def build(admonition: str) -> ChatRequest:
            return self._request(self.store.context_messages(_with_admonition(system, admonition), user))
        return build

    def _record_turn(self, user: str, artifact: Any) -> None:
        self.store.append("user", user)
        self.store.append("assistant", json.dumps(artifact, ensure_ascii=False))

    # -- operations -----------------------------------------------------

    async def generate_initial_story(self, config: StoryConfig) -> dict[str, Any]:
        """Opening scene and cast. Starts a fresh conversation."""
        retry = self._require()
        context = {
            "advanced": config.is_advanced,
            "genre": config.genre,
            "story_idea": config.story_idea,
            "tone": config.tone or "",
            "story_length": config.story_length or "medium",
            "chapter_span": CHAPTER_SPANS[config.story_length or "medium"],
            "preferred_ending": config.preferred_ending or "",
            "environment": config.environment_details or "",
            "characters": [c.model_dump() for c in config.character_details],
            "special_requirements": config.special_requirements or "none",
        }
        system = render_prompt(INITIAL_SYSTEM, context)
        user = render_prompt(INITIAL_USER, context)

        self.store.reset()
        result = await retry.produce_structured(
            "initial_story", self._single_turn(system, user),
            fallback=lambda: fallbacks.fallback_for("initial_story", config=config),
            required=("scene", "characters"),
        )
        self.store.append("system", system)
        if not result.used_fallback:
            self._record_turn(user, result.artifact)
        return result.artifact

    async def generate_next_chapter(self, state: StoryState, choice: Choice) -> dict[str, Any]:
        retry = self._require()
        context = {
            **state.model_dump(),
            "choice_text": choice.text,
            "choice_description": choice.description,
        }
        system = render_prompt(CHAPTER_SYSTEM, context)
        user = render_prompt(CHAPTER_USER, context)
        result = await retry.produce_structured(
            "next_chapter", self._multi_turn(system, user),
            fallback=lambda: fallbacks.fallback_for("next_chapter", state=state, choice=choice),
            required=("scene",),
        )
        if not result.used_fallback:
            self._record_turn(user, result.artifact)
        return result.artifact

    async def generate_choices(self, state: StoryState) -> list[Choice]:
        retry = self._require()
        count = determine_choice_count(state, self._tuning, self._rng)
        context = {**state.model_dump(), "count": count}
        result = await retry.produce_structured(
            "choices",
            self._single_turn(
                render_prompt(CHOICES_SYSTEM, context),
                render_prompt(CHOICES_USER, context),
                json_mode=False,
            ),
            fallback=lambda: fallbacks.fallback_for("choices"),
            expect="array",
            list_key="choices",
        )
        choices = _choices(result.artifact)
        if not choices:
            logger.warning("No usable choices in model output, using defaults")
            choices = _choices(fallbacks.fallback_for("choices"))
        return choices

    async def develop_character(
        self, character: Character, context: str, interactions: list[str]
    ) -> Character:
        retry = self._require()
        prompt_context = {
            **character.model_dump(),
            "context": context,
            "interactions": interactions,
        }
        result = await retry.produce_structured(
            "character",
            self._single_turn(
                render_prompt(CHARACTER_SYSTEM, prompt_context),
                render_prompt(CHARACTER_USER, prompt_context),
            ),
            fallback=lambda: fallbacks.fallback_for("character", character=character),
            required=("name",),
        )
        try:
            return Character.model_validate(result.artifact)
        except ValidationError as e:
            logger.warning("Developed character does not validate (%s), keeping original", e)
            return character

    async def generate_ending(self, state: StoryState, ending_type: CompletionType) -> dict[str, Any]:
        retry = self._require()
        context = {
            **state.model_dump(),
            "ending_goal": ENDING_GOALS[ending_type],
            "ending_type": ending_type,
        }
        system = render_prompt(ENDING_SYSTEM, context)
        user = render_prompt(ENDING_USER, context)
        result = await retry.produce_structured(
            "ending", self._multi_turn(system, user),
            fallback=lambda: fallbacks.fallback_for("ending", state=state, ending_type=ending_type),
            required=("scene",),
        )
        if not result.used_fallback:
            self._record_turn(user, result.artifact)
        content = result.artifact
        return {
            "scene": content["scene"],
            "achievements": _texts(content.get("achievements")),
            "mood": str(content.get("mood") or "epic"),
        }

    async def continue_story(self, state: StoryState) -> StoryState:
        """Push a stalled story forward with a twist; returns the advanced state."""
        retry = self._require()
        context = state.model_dump()
        system = render_prompt(CONTINUE_SYSTEM, context)
        user = render_prompt(CONTINUE_USER, context)
        result = await retry.produce_structured(
            "continue", self._multi_turn(system, user),
            fallback=lambda: fallbacks.fallback_for("continue", state=state),
            required=("current_scene",),
        )
        if not result.used_fallback:
            self._record_turn(user, result.artifact)
        content = result.artifact
        scene_type = content.get("scene_type")
        return state.model_copy(update={
            "current_scene": str(content["current_scene"]),
            "chapter": state.chapter + 1,
            "mood": str(content.get("mood") or state.mood),
            "tension_level": _tension(content.get("tension_level"), state.tension_level),
            "achievements": state.achievements + _texts(content.get("achievements")),
            "scene_type": scene_type if scene_type in _SCENE_TYPES else "exploration",
        })

    async def generate_story_summary(self, state: StoryState) -> str:
        retry = self._require()
        context = state.model_dump()
        result = await retry.produce_structured(
            "story_summary",
            self._single_turn(
                render_prompt(STORY_SUMMARY_SYSTEM, context),
                render_prompt(STORY_SUMMARY_USER, context),
            ),
            fallback=lambda: fallbacks.fallback_for("story_summary", state=state),
            required=("summary",),
        )
        return str(result.artifact["summary"])

    # -- pacing ---------------------------------------------------------

    def should_end(self, state: StoryState) -> EndingCheck:
        return should_story_end(state, self._tuning, self._rng)


# ---------------------------------------------------------------------------
# Artifact normalisation
# ---------------------------------------------------------------------------

def _texts(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


def _tension(value: Any, default: int) -> int:
    try:
        level = int(float(value))
    except (TypeError, ValueError):
        return default
    return max(1, min(10, level))


def _characters(value: Any) -> list[Character]:
    if not isinstance(value, list):
        return []
    characters: list[Character] = []
    for item in value:
        if isinstance(item, str) and item.strip():
            characters.append(Character(name=item.strip()))
        elif isinstance(item, dict) and item.get("name"):
            fields = {k: str(v) for k, v in item.items() if k in Character.model_fields and v is not None}
            characters.append(Character.model_validate(fields))
    return characters


def _choices(value: Any) -> list[Choice]:
    choices: list[Choice] = []
    for item in value if isinstance(value, list) else []:
        try:
            choices.append(Choice.model_validate(item))
        except ValidationError as e:
            logger.debug("Dropping invalid choice %r: %s", item, e)
    return choices


def state_from_opening(story_id: str, config: StoryConfig, content: dict[str, Any]) -> StoryState:
    """Build the first StoryState from an opening artifact."""
    return StoryState(
        story_id=story_id,
        current_scene=str(content.get("scene") or ""),
        characters=_characters(content.get("characters")),
        setting=str(content.get("setting_details") or config.environment_details or config.genre),
        mood=str(content.get("mood") or "mysterious"),
        tension_level=_tension(content.get("tension_level"), 5),
        achievements=_texts(content.get("achievements")),
        scene_type="exploration",
        genre=config.genre,
    )


# ---------------------------------------------------------------------------
# Pacing
# ---------------------------------------------------------------------------

def story_progress(chapter: int, achievement_count: int) -> int:
    """Chapters contribute up to 70%, achievements up to 30%."""
    chapter_part = min(chapter / 12 * 70, 70)
    achievement_part = min(achievement_count / 8 * 30, 30)
    return int(min(chapter_part + achievement_part, 100))


def _mentions(choices: list[str], keywords: tuple[str, ...]) -> bool:
    return any(k in choice.lower() for choice in choices for k in keywords)


def goal_status(choices_made: list[str]) -> GoalStatus:
    if _mentions(choices_made, FAILURE_KEYWORDS):
        return "failed"
    if _mentions(choices_made, COMPLETION_KEYWORDS):
        return "completed"
    if _mentions(choices_made, PROGRESS_KEYWORDS):
        return "in_progress"
    return "pending"


def apply_chapter(state: StoryState, choice: Choice, content: dict[str, Any]) -> StoryState:
    """Return the state after `choice` led to the chapter in `content`."""
    chapter = state.chapter + 1
    choices_made = state.choices_made + [choice.text]
    achievements = state.achievements + _texts(content.get("achievements"))
    known = {c.name for c in state.characters}
    newcomers = [c for c in _characters(content.get("new_characters")) if c.name not in known]
    return state.model_copy(update={
        "current_scene": str(content.get("scene") or state.current_scene),
        "chapter": chapter,
        "choices_made": choices_made,
        "achievements": achievements,
        "characters": state.characters + newcomers,
        "mood": str(content.get("mood") or state.mood),
        "tension_level": _tension(content.get("tension_level"), state.tension_level),
        "story_progress": story_progress(chapter, len(achievements)),
        "main_goal_status": goal_status(choices_made),
    })


def apply_ending(state: StoryState, ending_type: CompletionType, content: dict[str, Any]) -> StoryState:
    return state.model_copy(update={
        "current_scene": str(content.get("scene") or state.current_scene),
        "achievements": state.achievements + _texts(content.get("achievements")),
        "mood": str(content.get("mood") or state.mood),
        "is_completed": True,
        "completion_type": ending_type,
        "scene_type": "climax",
    })


def determine_choice_count(state: StoryState, tuning: Tuning = DEFAULT_TUNING, rng: random.Random | None = None) -> int:
    """How many choices to offer next: 2 to 5, more when the story is tense or long."""
    rng = rng or random.Random()
    if state.chapter <= 2:
        count = rng.randint(2, 3)
    elif state.chapter <= 5:
        count = rng.randint(2, 4)
    else:
        count = rng.randint(2, 5)

    if state.tension_level >= 8:
        count = min(5, count + 1)
    elif state.tension_level >= 6:
        count = min(4, count + rng.randint(0, 1))
    elif state.tension_level <= 3:
        count = max(2, count - 1)

    mood = state.mood.lower()
    if mood in TENSE_MOODS:
        count = min(5, count + 1)
    elif mood in CALM_MOODS:
        count = max(2, count - 1)

    if len(state.choices_made) >= 10:
        count = min(5, count + 1)

    if rng.random() < tuning.choice_count_decrease_probability:
        count = max(2, count - 1)
    elif rng.random() < tuning.choice_count_increase_probability:
        count = min(5, count + 1)

    logger.debug(
        "choice count chapter=%d tension=%d mood=%s made=%d -> %d",
        state.chapter, state.tension_level, state.mood, len(state.choices_made), count,
    )
    return count


def should_story_end(state: StoryState, tuning: Tuning = DEFAULT_TUNING, rng: random.Random | None = None) -> EndingCheck:
    """Decide whether the story has reached a natural end. First matching rule wins."""
    rng = rng or random.Random()
    chapter = state.chapter
    tension = state.tension_level

    if chapter >= tuning.chapter_limit:
        return EndingCheck(should_end=True, reason="The story has reached its natural length", suggested_type="success")
    if state.story_progress >= 95:
        return EndingCheck(should_end=True, reason="The main storyline is nearly complete", suggested_type="success")
    if len(state.achievements) >= 15 and chapter >= 8:
        return EndingCheck(should_end=True, reason="Enough milestones have been reached", suggested_type="success")

    recent = state.choices_made[-5:]
    if chapter >= 10 and _mentions(recent, RESOLUTION_KEYWORDS):
        return EndingCheck(should_end=True, reason="The player's choices point towards an ending", suggested_type="success")
    if tension >= 8 and _mentions(recent, FAILURE_KEYWORDS):
        return EndingCheck(should_end=True, reason="The story is heading for a tragic end", suggested_type="failure")
    if tension <= 2 and chapter >= 8 and state.mood.lower() in CALM_MOODS:
        return EndingCheck(should_end=True, reason="The story has settled into harmony", suggested_type="neutral")
    if chapter >= 10 and tension >= 7:
        return EndingCheck(
            should_end=rng.random() < tuning.cliffhanger_probability,
            reason="End on the climax and leave room for a sequel",
            suggested_type="cliffhanger",
        )
    return EndingCheck(should_end=False)
