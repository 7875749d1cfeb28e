"""FastAPI endpoints under /api.

Stories in progress live in an in-process registry keyed by story id;
each holds its own StoryEngine (and with it its conversation store).
Saves go through the SaveStore configured on the app.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from taleweaver.config import DEFAULT_TUNING, ModelConfig, Tuning
from taleweaver.errors import ConfigMissing, IncompatibleSave
from taleweaver.llm import ChatLLM
from taleweaver.models import Choice, CompletionType, StoryConfig, StoryState
from taleweaver.storage import SaveStore
from taleweaver.story import StoryEngine, apply_chapter, apply_ending, state_from_opening

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

@dataclass
class StorySession:
    engine: StoryEngine
    state: StoryState
    choices: list[Choice] = field(default_factory=list)


@dataclass
class Services:
    saves: SaveStore
    model_config: ModelConfig
    llm: ChatLLM | None = None
    tuning: Tuning = field(default_factory=lambda: DEFAULT_TUNING)
    sessions: dict[str, StorySession] = field(default_factory=dict)

    def new_engine(self) -> StoryEngine:
        return StoryEngine(self.llm, self.model_config, tuning=self.tuning)


def _services(request: Request) -> Services:
    return request.app.state.services


def _session(services: Services, story_id: str) -> StorySession:
    session = services.sessions.get(story_id)
    if session is None:
        raise HTTPException(404, "Story not found")
    return session


def _view(session: StorySession) -> dict:
    return {"story": session.state, "choices": session.choices}


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class ChooseBody(BaseModel):
    choice_id: int


class EndingBody(BaseModel):
    ending_type: CompletionType = "neutral"


class SaveBody(BaseModel):
    title: str | None = None
    snapshot: bool = False


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/health")
async def health(request: Request):
    """Liveness, and whether a model is configured."""
    return {"ok": True, "configured": _services(request).llm is not None}


@router.post("/stories")
async def start_story(request: Request, body: StoryConfig):
    """Generate an opening scene and the first choices."""
    services = _services(request)
    engine = services.new_engine()
    try:
        content = await engine.generate_initial_story(body)
        state = state_from_opening(uuid.uuid4().hex[:12], body, content)
        choices = await engine.generate_choices(state)
    except ConfigMissing as e:
        raise HTTPException(400, str(e))

    session = StorySession(engine=engine, state=state, choices=choices)
    services.sessions[state.story_id] = session
    logger.info("Started story %s (%s)", state.story_id, body.genre)
    return _view(session)


@router.get("/stories/{story_id}")
async def get_story(request: Request, story_id: str):
    return _view(_session(_services(request), story_id))


@router.post("/stories/{story_id}/choose")
async def choose(request: Request, story_id: str, body: ChooseBody):
    """Apply a choice: next chapter, then either an ending or new choices."""
    services = _services(request)
    session = _session(services, story_id)
    if session.state.is_completed:
        raise HTTPException(400, "Story is already completed")
    choice = next((c for c in session.choices if c.id == body.choice_id), None)
    if choice is None:
        raise HTTPException(404, "Choice not found")

    engine = session.engine
    try:
        content = await engine.generate_next_chapter(session.state, choice)
        state = apply_chapter(session.state, choice, content)
        check = engine.should_end(state)
        if check.should_end:
            ending = await engine.generate_ending(state, check.suggested_type)
            state = apply_ending(state, check.suggested_type, ending)
            choices: list[Choice] = []
        else:
            choices = await engine.generate_choices(state)
    except ConfigMissing as e:
        raise HTTPException(400, str(e))

    session.state, session.choices = state, choices
    services.saves.autosave(
        state, engine.store.snapshot(), engine.store.summary_state(),
        model_config=services.model_config,
    )
    return {**_view(session), "ending": check}


@router.post("/stories/{story_id}/ending")
async def end_story(request: Request, story_id: str, body: EndingBody):
    """End the story now with the requested ending type."""
    session = _session(_services(request), story_id)
    try:
        ending = await session.engine.generate_ending(session.state, body.ending_type)
    except ConfigMissing as e:
        raise HTTPException(400, str(e))
    session.state = apply_ending(session.state, body.ending_type, ending)
    session.choices = []
    return _view(session)


@router.post("/stories/{story_id}/save")
async def save_story(request: Request, story_id: str, body: SaveBody):
    services = _services(request)
    session = _session(services, story_id)
    store = session.engine.store
    saved = services.saves.save(
        session.state, store.snapshot(), store.summary_state(),
        title=body.title, snapshot=body.snapshot, model_config=services.model_config,
    )
    return {"id": saved.id, "title": saved.title}


@router.get("/saves")
async def list_saves(request: Request):
    return [
        s.model_dump(exclude={"history", "summary_state", "story_state"})
        for s in _services(request).saves.list_saves()
    ]


@router.post("/saves/{save_id}/load")
async def load_save(request: Request, save_id: str):
    """Resume a saved story as the active session for its story id."""
    services = _services(request)
    try:
        saved = services.saves.load(save_id)
    except IncompatibleSave as e:
        raise HTTPException(400, str(e))
    if saved is None:
        raise HTTPException(404, "Save not found")

    engine = services.new_engine()
    engine.store.restore(saved.history, saved.summary_state)
    choices: list[Choice] = []
    if not saved.story_state.is_completed:
        try:
            choices = await engine.generate_choices(saved.story_state)
        except ConfigMissing as e:
            raise HTTPException(400, str(e))

    session = StorySession(engine=engine, state=saved.story_state, choices=choices)
    services.sessions[saved.story_state.story_id] = session
    return _view(session)


@router.delete("/saves/{save_id}")
async def delete_save(request: Request, save_id: str):
    if not _services(request).saves.delete(save_id):
        raise HTTPException(404, "Save not found")
    return {"ok": True}
