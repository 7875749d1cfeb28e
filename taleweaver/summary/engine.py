"""Summary engine: compacts older conversation turns into the digest.

Two states, idle and summarizing. A run is claimed synchronously by the
conversation store when an assistant reply is appended, then executed as
a detached task:

  1. window    non-system history minus the RECENT_WINDOW newest messages
  2. generate  ask the model for a partial digest; unparseable output
               becomes the placeholder digest
  3. merge     fold the partial digest into the prior one (see digest.py)
  4. commit    write summary_digest and last_summarized_at, but only if
               the session was not reset and nobody committed meanwhile

A transport failure raises SummaryFailure and commits nothing, so the
next assistant append tries again.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Literal

from taleweaver.config import DEFAULT_TUNING, ModelConfig, Tuning
from taleweaver.errors import (
    ExtractionFailure,
    RepairFailure,
    SummaryFailure,
    TransportFailure,
    ValidationFailure,
)
from taleweaver.extraction import parse_structured
from taleweaver.llm import ChatLLM, ChatRequest
from taleweaver.models import Message, SessionState
from taleweaver.prompts import DIGEST_SYSTEM, DIGEST_USER, render_prompt

from .digest import (
    SummaryDigest,
    digest_from_data,
    merge_digests,
    parse_digest,
    placeholder_digest,
    serialize_digest,
)

logger = logging.getLogger(__name__)

Status = Literal["idle", "summarizing"]

SUMMARY_TEMPERATURE = 0.3


def summary_due(trigger_count: int, last_summarized_at: int, interval: int) -> bool:
    """True once a full interval of assistant replies has passed since the last commit."""
    return trigger_count >= interval and trigger_count - last_summarized_at >= interval


class SummaryEngine:
    def __init__(
        self,
        llm: ChatLLM,
        config: ModelConfig,
        tuning: Tuning = DEFAULT_TUNING,
    ) -> None:
        self._llm = llm
        self._config = config
        self._tuning = tuning
        self._status: Status = "idle"

    @property
    def status(self) -> Status:
        return self._status

    def claim(self, state: SessionState) -> int | None:
        """Enter the summarizing state if a run is due.

        Returns the trigger count the run will commit against, or None
        when no run is due or one is already in flight.
        """
        if self._status != "idle":
            return None
        if not summary_due(state.trigger_count, state.last_summarized_at, self._tuning.summary_interval):
            return None
        self._status = "summarizing"
        return state.trigger_count

    def window(self, history: list[Message]) -> list[Message]:
        turns = [m for m in history if m.role != "system"]
        keep = self._tuning.recent_window
        return turns[:-keep] if keep else turns

    def build_request(self, prior_text: str, turns: list[Message]) -> ChatRequest:
        user = render_prompt(DIGEST_USER, {
            "prior_digest": prior_text,
            "turns": [m.model_dump() for m in turns],
        })
        return ChatRequest(
            model=self._config.model,
            messages=[
                Message(role="system", content=DIGEST_SYSTEM),
                Message(role="user", content=user),
            ],
            temperature=SUMMARY_TEMPERATURE,
            max_tokens=self._config.max_tokens,
            response_format="json_object",
        )

    async def generate(self, prior_text: str, turns: list[Message]) -> SummaryDigest:
        """Ask the model for a partial digest of `turns`."""
        request = self.build_request(prior_text, turns)
        try:
            raw = await self._llm("summary", request)
        except TransportFailure as e:
            raise SummaryFailure(f"Summary request failed: {e}") from e

        try:
            return digest_from_data(parse_structured(raw, expect="object"))
        except (ExtractionFailure, RepairFailure, ValidationFailure, ValueError) as e:
            logger.warning("Summary output unusable (%s), using placeholder digest", e)
            return placeholder_digest()

    async def run(
        self,
        state: SessionState,
        target: int,
        is_current: Callable[[], bool] = lambda: True,
    ) -> bool:
        """Execute a claimed run. Returns True when a new digest was committed."""
        try:
            turns = self.window(state.history)
            if not turns:
                logger.debug("Nothing outside the recent window to summarize")
                if is_current() and state.last_summarized_at < target:
                    state.last_summarized_at = target
                return False

            prior_text = state.summary_digest
            fresh = await self.generate(prior_text, turns)
            merged = merge_digests(
                parse_digest(prior_text), fresh,
                byte_budget=self._tuning.digest_byte_budget,
            )
            return self._commit(state, merged, target, prior_text, is_current)
        finally:
            self._status = "idle"

    def _commit(
        self,
        state: SessionState,
        digest: SummaryDigest,
        target: int,
        prior_text: str,
        is_current: Callable[[], bool],
    ) -> bool:
        if not is_current():
            logger.info("Session was reset during summarization, digest v%d discarded", digest.version)
            return False
        if state.last_summarized_at >= target or state.summary_digest != prior_text:
            logger.info("Digest already advanced past %d, digest v%d discarded", target, digest.version)
            return False

        state.summary_digest = serialize_digest(digest)
        state.last_summarized_at = target
        logger.info(
            "Summary committed: digest v%d covering %d assistant replies",
            digest.version, target,
        )
        return True
