"""Tests for the summary engine: trigger rule, windowing, background runs,
failure handling and the commit guard."""

import asyncio
import json

import pytest

from taleweaver.config import Tuning
from taleweaver.conversation import ConversationStore
from taleweaver.errors import TransportFailure
from taleweaver.models import Message, SessionState
from taleweaver.summary import SummaryEngine, parse_digest, summary_due

DIGEST_JSON = json.dumps({
    "plotDevelopments": ["the hero met the guide"],
    "characterChanges": {"Ava": "trusts the guide"},
    "keyDecisions": [{"decision": "took the map", "consequence": "bandits follow"}],
    "atmosphere": {"mood": "tense", "tensionLevel": 7},
    "importantClues": ["the map is fake"],
})


def _build(llm, model_config, **tuning):
    t = Tuning(**tuning)
    engine = SummaryEngine(llm, model_config, t)
    return ConversationStore(summarizer=engine, tuning=t), engine


async def _play(store: ConversationStore, turns: int, start: int = 0) -> None:
    for i in range(start, start + turns):
        store.append("user", f"choice {i}")
        store.append("assistant", f"scene {i}")
        await store.wait_idle()


# ── trigger rule ─────────────────────────────────────────────


@pytest.mark.parametrize("count, last, due", [
    (0, 0, False),
    (5, 0, False),
    (6, 0, True),
    (7, 0, True),
    (7, 6, False),
    (11, 6, False),
    (12, 6, True),
])
def test_summary_due(count, last, due):
    assert summary_due(count, last, 6) is due


def test_window_drops_system_and_recent(scripted, model_config):
    engine = SummaryEngine(scripted(), model_config, Tuning(recent_window=3))
    history = [Message(role="system", content="sys")] + [
        Message(role="user" if i % 2 == 0 else "assistant", content=str(i)) for i in range(6)
    ]
    assert [m.content for m in engine.window(history)] == ["0", "1", "2"]


def test_claim_is_exclusive(scripted, model_config):
    engine = SummaryEngine(scripted(), model_config)
    state = SessionState(trigger_count=6)
    assert engine.claim(state) == 6
    assert engine.status == "summarizing"
    assert engine.claim(state) is None


# ── background runs ──────────────────────────────────────────


class TestTriggering:
    async def test_triggers_exactly_once_at_interval(self, scripted, model_config) -> None:
        llm = scripted(default=DIGEST_JSON)
        store, _ = _build(llm, model_config)

        await _play(store, 5)
        assert llm.stages.count("summary") == 0

        await _play(store, 1, start=5)
        assert llm.stages.count("summary") == 1
        assert store.state.last_summarized_at == 6

        await _play(store, 1, start=6)
        assert llm.stages.count("summary") == 1

    async def test_triggers_again_after_next_interval(self, scripted, model_config) -> None:
        llm = scripted(default=DIGEST_JSON)
        store, _ = _build(llm, model_config)
        await _play(store, 12)
        assert llm.stages.count("summary") == 2
        assert store.state.last_summarized_at == 12
        assert parse_digest(store.state.summary_digest).version == 2

    async def test_append_does_not_wait_for_summary(self, scripted, model_config) -> None:
        llm = scripted(default=DIGEST_JSON)
        store, engine = _build(llm, model_config)
        await _play(store, 5)
        store.append("user", "choice 5")
        store.append("assistant", "scene 5")
        assert engine.status == "summarizing"
        assert store.state.summary_digest == ""
        await store.wait_idle()
        assert engine.status == "idle"
        assert store.state.summary_digest != ""

    async def test_committed_digest_and_request(self, scripted, model_config) -> None:
        llm = scripted(default=DIGEST_JSON)
        store, _ = _build(llm, model_config)
        await _play(store, 6)

        digest = parse_digest(store.state.summary_digest)
        assert digest.version == 1
        assert digest.plot_developments == ["the hero met the guide"]
        assert digest.atmosphere.tension_level == 7

        request = llm.requests("summary")[0]
        assert request.response_format == "json_object"
        assert request.temperature == 0.3
        prompt = request.messages[-1].content
        # 12 non-system messages, 8 kept verbatim: only the first 2 turns are summarized
        assert "choice 0" in prompt and "scene 1" in prompt
        assert "choice 2" not in prompt

    async def test_prior_digest_sent_for_continuity(self, scripted, model_config) -> None:
        llm = scripted(default=DIGEST_JSON)
        store, _ = _build(llm, model_config)
        await _play(store, 12)
        second = llm.requests("summary")[1].messages[-1].content
        assert "Previous digest" in second
        assert "the hero met the guide" in second

    async def test_summary_never_touches_history(self, scripted, model_config) -> None:
        llm = scripted(default=DIGEST_JSON)
        store, _ = _build(llm, model_config)
        await _play(store, 6)
        assert len(store.history) == 12
        assert store.history[0].content == "choice 0"


class TestFailures:
    async def test_transport_failure_leaves_state_unchanged(self, scripted, model_config) -> None:
        llm = scripted(by_stage={"summary": [TransportFailure("down")]}, default=DIGEST_JSON)
        store, engine = _build(llm, model_config)
        await _play(store, 6)
        assert store.state.summary_digest == ""
        assert store.state.last_summarized_at == 0
        assert engine.status == "idle"

        # the next assistant reply retries
        await _play(store, 1, start=6)
        assert llm.stages.count("summary") == 2
        assert store.state.last_summarized_at == 7

    async def test_unparseable_output_commits_placeholder(self, scripted, model_config) -> None:
        llm = scripted(by_stage={"summary": ["I can't summarize that."]}, default="{}")
        store, _ = _build(llm, model_config)
        await _play(store, 6)
        digest = parse_digest(store.state.summary_digest)
        assert digest.plot_developments == ["story continues"]
        assert digest.atmosphere.mood == "unknown"
        assert store.state.last_summarized_at == 6

    async def test_unexpected_error_is_swallowed(self, scripted, model_config) -> None:
        llm = scripted(by_stage={"summary": [RuntimeError("boom")]}, default=DIGEST_JSON)
        store, engine = _build(llm, model_config)
        await _play(store, 6)
        assert store.state.summary_digest == ""
        assert engine.status == "idle"

    async def test_empty_window_is_a_no_op(self, scripted, model_config) -> None:
        llm = scripted(default=DIGEST_JSON)
        store, _ = _build(llm, model_config, recent_window=20)
        await _play(store, 6)
        assert "summary" not in llm.stages
        assert store.state.summary_digest == ""
        assert store.state.last_summarized_at == 6


class TestCommitGuard:
    async def test_reset_during_summary_discards_result(self, model_config) -> None:
        release = asyncio.Event()

        async def slow_llm(stage, request):
            await release.wait()
            return DIGEST_JSON

        store, engine = _build(slow_llm, model_config)
        for i in range(6):
            store.append("user", f"choice {i}")
            store.append("assistant", f"scene {i}")
        assert engine.status == "summarizing"
        await asyncio.sleep(0)  # let the run reach the model call

        store.reset()
        release.set()
        await store.wait_idle()

        assert store.state.summary_digest == ""
        assert store.state.last_summarized_at == 0
        assert store.history == []

    async def test_stale_commit_discarded(self, scripted, model_config) -> None:
        engine = SummaryEngine(scripted(default=DIGEST_JSON), model_config)
        state = SessionState(
            history=[Message(role="user", content=str(i)) for i in range(12)],
            trigger_count=6,
        )
        target = engine.claim(state)
        state.last_summarized_at = 6  # someone else committed meanwhile
        assert await engine.run(state, target) is False
        assert state.summary_digest == ""
