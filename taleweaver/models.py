"""Core domain models.

Conversation and story state are plain pydantic values owned by the caller.
Pydantic is used for validation and serialisation at every data boundary
(model replies, saved sessions, HTTP bodies).
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

Role = Literal["system", "user", "assistant"]

CompletionType = Literal["success", "failure", "neutral", "cliffhanger"]

GoalStatus = Literal["pending", "in_progress", "completed", "failed"]

SceneType = Literal["action", "dialogue", "exploration", "reflection", "climax"]


class Message(BaseModel):
    """A single turn in the conversation log."""

    role: Role
    content: str


class SummaryState(BaseModel):
    """Summary bookkeeping that must travel together with the digest."""

    summary_digest: str = ""
    trigger_count: int = Field(default=0, ge=0)
    last_summarized_at: int = Field(default=0, ge=0)


class SessionState(BaseModel):
    """The mutable record of one story session."""

    history: list[Message] = Field(default_factory=list)
    summary_digest: str = ""
    trigger_count: int = Field(default=0, ge=0)
    last_summarized_at: int = Field(default=0, ge=0)

    def summary_state(self) -> SummaryState:
        return SummaryState(
            summary_digest=self.summary_digest,
            trigger_count=self.trigger_count,
            last_summarized_at=self.last_summarized_at,
        )


# ---------------------------------------------------------------------------
# Story domain
# ---------------------------------------------------------------------------

class Character(BaseModel):
    name: str
    role: str = ""
    traits: str = ""
    appearance: str | None = None
    backstory: str | None = None


class Choice(BaseModel):
    id: int
    text: str
    description: str = ""
    consequences: str | None = None
    difficulty: int = Field(default=3, ge=1, le=5)


class CharacterDetail(BaseModel):
    """A user-supplied character in an advanced story config."""

    name: str = ""
    role: str = ""
    personality: str = ""


class StoryConfig(BaseModel):
    """What the player asked for when starting a story.

    The advanced fields are all optional; a config counts as advanced when
    character details are present.
    """

    genre: str = "adventure"
    story_idea: str = ""
    tone: str | None = None
    story_length: Literal["short", "medium", "long"] | None = None
    preferred_ending: str | None = None
    character_details: list[CharacterDetail] = Field(default_factory=list)
    environment_details: str | None = None
    special_requirements: str | None = None

    @property
    def is_advanced(self) -> bool:
        return bool(self.character_details)


class StoryState(BaseModel):
    """The player-visible state of a story in progress."""

    story_id: str
    current_scene: str = ""
    characters: list[Character] = Field(default_factory=list)
    setting: str = ""
    chapter: int = 1
    choices_made: list[str] = Field(default_factory=list)
    achievements: list[str] = Field(default_factory=list)
    mood: str = "mysterious"
    tension_level: int = Field(default=5, ge=1, le=10)
    is_completed: bool = False
    completion_type: CompletionType | None = None
    story_progress: int = Field(default=0, ge=0, le=100)
    main_goal_status: GoalStatus = "pending"
    scene_type: SceneType | None = None
    genre: str | None = None


class EndingCheck(BaseModel):
    should_end: bool
    reason: str = ""
    suggested_type: CompletionType = "neutral"
