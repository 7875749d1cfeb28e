"""JSON file storage of saved story sessions.

One file per save under a configurable base directory. There is no
database; reads and writes go through plain helpers that load and dump
JSON via pydantic.

Directory layout:

    {base}/
      saves/
        story_{story_id}.json     ← primary save of a story (manual or auto)
        ctx_{stamp}_{rand}.json   ← snapshots and imported saves

A save carries everything needed to resume: the story state, the
conversation history and the summary state. The summary state must
travel with the history; a save without it is restored through the
legacy recount in ConversationStore.restore().
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from taleweaver.config import ModelConfig
from taleweaver.errors import IncompatibleSave
from taleweaver.models import Message, StoryState, SummaryState

logger = logging.getLogger(__name__)

SAVE_VERSION = 1
SECONDS_PER_CHAPTER = 5 * 60
THUMBNAIL_LENGTH = 100

AUTOSAVE_PREFIX = "[Autosave] "
SNAPSHOT_PREFIX = "[Snapshot] "
IMPORT_PREFIX = "[Imported] "

_GENRE_HINTS = (
    ("fantasy", ("magic", "dragon", "wizard")),
    ("sci-fi", ("spaceship", "planet", "future", "cryo")),
    ("mystery", ("detective", "mystery", "clue")),
)


class SavedSession(BaseModel):
    id: str
    title: str
    story_state: StoryState
    history: list[Message] = Field(default_factory=list)
    summary_state: SummaryState | None = None
    provider: str = ""
    model: str = ""
    save_time: datetime
    last_play_time: datetime
    version: int = SAVE_VERSION
    is_auto_save: bool = False
    play_time: int = 0
    thumbnail: str = ""
    genre: str = "adventure"


def primary_save_id(story_id: str) -> str:
    return f"story_{story_id}"


def _genre(state: StoryState) -> str:
    if state.genre:
        return state.genre
    scene = state.current_scene.lower()
    for genre, hints in _GENRE_HINTS:
        if any(h in scene for h in hints):
            return genre
    return "adventure"


def _thumbnail(state: StoryState) -> str:
    scene = state.current_scene
    return scene[:THUMBNAIL_LENGTH] + "..." if len(scene) > THUMBNAIL_LENGTH else scene


class SaveStore:
    def __init__(
        self,
        base_path: Path,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._base = base_path
        self._saves = base_path / "saves"
        self._saves.mkdir(parents=True, exist_ok=True)
        self._now = now or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _path(self, save_id: str) -> Path:
        return self._saves / f"{save_id}.json"

    def _write(self, saved: SavedSession) -> None:
        self._path(saved.id).write_text(saved.model_dump_json(indent=2))

    def _read(self, save_id: str) -> SavedSession | None:
        path = self._path(save_id)
        if not path.exists():
            return None
        return SavedSession.model_validate_json(path.read_text())

    def _new_id(self) -> str:
        stamp = int(self._now().timestamp() * 1000)
        return f"ctx_{stamp}_{uuid.uuid4().hex[:9]}"

    def _default_title(self, state: StoryState) -> str:
        date = self._now().date().isoformat()
        genre = _genre(state)
        if state.characters:
            return f"{state.characters[0].name}'s {genre} adventure - chapter {state.chapter} ({date})"
        return f"{genre} story - chapter {state.chapter} ({date})"

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------

    def write(
        self,
        save_id: str,
        state: StoryState,
        history: list[Message],
        summary_state: SummaryState | None = None,
        *,
        title: str | None = None,
        is_auto_save: bool = False,
        model_config: ModelConfig | None = None,
    ) -> SavedSession:
        """Create or overwrite the save `save_id`. The credential is never stored."""
        now = self._now()
        saved = SavedSession(
            id=save_id,
            title=title or self._default_title(state),
            story_state=state,
            history=list(history),
            summary_state=summary_state,
            provider=model_config.provider if model_config else "",
            model=model_config.model if model_config else "",
            save_time=now,
            last_play_time=now,
            is_auto_save=is_auto_save,
            play_time=state.chapter * SECONDS_PER_CHAPTER,
            thumbnail=_thumbnail(state),
            genre=_genre(state),
        )
        self._write(saved)
        logger.info("Saved %s (%s)", saved.title, saved.id)
        return saved

    def save(
        self,
        state: StoryState,
        history: list[Message],
        summary_state: SummaryState | None = None,
        *,
        title: str | None = None,
        snapshot: bool = False,
        model_config: ModelConfig | None = None,
    ) -> SavedSession:
        """Manual save: update the story's primary save, or write a new snapshot."""
        if snapshot:
            return self.write(
                self._new_id(), state, history, summary_state,
                title=title or SNAPSHOT_PREFIX + self._default_title(state),
                model_config=model_config,
            )
        return self.write(
            primary_save_id(state.story_id), state, history, summary_state,
            title=title, model_config=model_config,
        )

    def autosave(
        self,
        state: StoryState,
        history: list[Message],
        summary_state: SummaryState | None = None,
        *,
        model_config: ModelConfig | None = None,
    ) -> SavedSession:
        """Update the story's primary save. A manual primary save keeps its title and stays manual."""
        save_id = primary_save_id(state.story_id)
        existing = self._read(save_id)
        if existing is not None and not existing.is_auto_save:
            title, is_auto = existing.title, False
        else:
            title, is_auto = AUTOSAVE_PREFIX + self._default_title(state), True
        return self.write(
            save_id, state, history, summary_state,
            title=title, is_auto_save=is_auto, model_config=model_config,
        )

    # ------------------------------------------------------------------
    # Loading and listing
    # ------------------------------------------------------------------

    def load(self, save_id: str) -> SavedSession | None:
        """Return the save and refresh its last play time; None if it doesn't exist."""
        saved = self._read(save_id)
        if saved is None:
            logger.warning("Save not found: %s", save_id)
            return None
        if saved.version != SAVE_VERSION:
            raise IncompatibleSave(
                f"Save {save_id} has version {saved.version}, expected {SAVE_VERSION}"
            )
        saved.last_play_time = self._now()
        self._write(saved)
        logger.info("Loaded %s (%s)", saved.title, saved.id)
        return saved

    def list_saves(self) -> list[SavedSession]:
        """All readable saves, most recently played first."""
        saves: list[SavedSession] = []
        for path in self._saves.glob("*.json"):
            try:
                saves.append(SavedSession.model_validate_json(path.read_text()))
            except ValidationError as e:
                logger.warning("Skipping unreadable save %s: %s", path.name, e)
        return sorted(saves, key=lambda s: s.last_play_time, reverse=True)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def delete(self, save_id: str) -> bool:
        path = self._path(save_id)
        if not path.exists():
            logger.warning("Tried to delete missing save %s", save_id)
            return False
        path.unlink()
        logger.info("Deleted save %s", save_id)
        return True

    def rename(self, save_id: str, title: str) -> bool:
        saved = self._read(save_id)
        if saved is None:
            return False
        saved.title = title.strip()
        self._write(saved)
        return True

    def cleanup_autosaves(self, keep: int = 3) -> int:
        """Delete all but the `keep` newest autosaves. Returns how many were deleted."""
        autosaves = sorted(
            (s for s in self.list_saves() if s.is_auto_save),
            key=lambda s: s.save_time, reverse=True,
        )
        stale = autosaves[keep:]
        for saved in stale:
            self.delete(saved.id)
        if stale:
            logger.info("Removed %d old autosave(s)", len(stale))
        return len(stale)

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export_save(self, save_id: str) -> str | None:
        saved = self.load(save_id)
        if saved is None:
            return None
        return saved.model_dump_json(indent=2)

    def import_save(self, data: str) -> str:
        """Store an exported save under a new id. Raises ValueError on malformed data."""
        try:
            saved = SavedSession.model_validate(json.loads(data))
        except (json.JSONDecodeError, ValidationError) as e:
            raise ValueError(f"Not a valid exported save: {e}") from e
        saved = saved.model_copy(update={"id": self._new_id(), "title": IMPORT_PREFIX + saved.title})
        self._write(saved)
        logger.info("Imported %s (%s)", saved.title, saved.id)
        return saved.id
