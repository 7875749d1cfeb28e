"""Conversation store: append / prune / reset / snapshot over a SessionState.

The store mutates the SessionState it was given; callers own that value
and may serialise it at any time. Appending an assistant reply counts
towards the summary trigger and, when a run is due, starts the summary
engine as a detached asyncio task. The caller of append() never waits
for it and never sees its failures.
"""

from __future__ import annotations

import asyncio
import logging

from taleweaver.config import DEFAULT_TUNING, Tuning
from taleweaver.models import Message, Role, SessionState, SummaryState
from taleweaver.summary import SummaryEngine

logger = logging.getLogger(__name__)

DIGEST_PREAMBLE = "Summary of the story so far (older turns, for continuity):\n"


def prune_history(history: list[Message], cap: int) -> list[Message]:
    """System messages first, then the newest (cap - systemCount) others in order."""
    if len(history) <= cap:
        return list(history)
    system = [m for m in history if m.role == "system"]
    others = [m for m in history if m.role != "system"]
    keep = max(cap - len(system), 0)
    return system + (others[-keep:] if keep else [])


class ConversationStore:
    def __init__(
        self,
        state: SessionState | None = None,
        summarizer: SummaryEngine | None = None,
        tuning: Tuning = DEFAULT_TUNING,
    ) -> None:
        self.state = state if state is not None else SessionState()
        self._summarizer = summarizer
        self._tuning = tuning
        self._epoch = 0
        self._tasks: set[asyncio.Task] = set()

    @property
    def history(self) -> list[Message]:
        return self.state.history

    # -- mutation -------------------------------------------------------

    def append(self, role: Role, content: str) -> Message:
        message = Message(role=role, content=content)
        self.state.history.append(message)
        if len(self.state.history) > self._tuning.history_cap:
            self.prune()
        if role == "assistant":
            self.state.trigger_count += 1
            self._schedule_summary()
        return message

    def prune(self) -> None:
        before = len(self.state.history)
        self.state.history[:] = prune_history(self.state.history, self._tuning.history_cap)
        logger.debug("Pruned history from %d to %d messages", before, len(self.state.history))

    def reset(self) -> None:
        """Clear history, digest and counters for a new story.

        Summary runs still in flight are orphaned: they will not commit.
        """
        self._epoch += 1
        self.state.history.clear()
        self.state.summary_digest = ""
        self.state.trigger_count = 0
        self.state.last_summarized_at = 0

    # -- persistence ----------------------------------------------------

    def snapshot(self) -> list[Message]:
        return [m.model_copy() for m in self.state.history]

    def summary_state(self) -> SummaryState:
        return self.state.summary_state()

    def restore(self, history: list[Message], summary_state: SummaryState | None = None) -> None:
        """Replace the session with saved history and, when present, its summary state.

        Saves written without summary state get the trigger count rebuilt
        from the assistant replies and no digest.
        """
        self._epoch += 1
        self.state.history[:] = [m.model_copy() for m in history]
        if summary_state is not None:
            self.state.summary_digest = summary_state.summary_digest
            self.state.trigger_count = summary_state.trigger_count
            self.state.last_summarized_at = summary_state.last_summarized_at
        else:
            logger.info("Restoring session without summary state, recomputing trigger count")
            self.state.summary_digest = ""
            self.state.trigger_count = sum(1 for m in history if m.role == "assistant")
            self.state.last_summarized_at = 0

    # -- context --------------------------------------------------------

    def context_messages(self, system_prompt: str, user_prompt: str) -> list[Message]:
        """Messages for a multi-turn request.

        Order: the call's system prompt, the story's system messages, the
        digest (if any), the remaining history, then the new user turn.
        """
        history = self.state.history
        messages = [Message(role="system", content=system_prompt)]
        messages.extend(m for m in history if m.role == "system")
        if self.state.summary_digest:
            messages.append(Message(role="system", content=DIGEST_PREAMBLE + self.state.summary_digest))
        messages.extend(m for m in history if m.role != "system")
        messages.append(Message(role="user", content=user_prompt))
        return messages

    # -- background summary ---------------------------------------------

    def _schedule_summary(self) -> None:
        if self._summarizer is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, summary check skipped")
            return
        target = self._summarizer.claim(self.state)
        if target is None:
            return
        task = loop.create_task(self._summarize(target, self._epoch))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _summarize(self, target: int, epoch: int) -> None:
        try:
            await self._summarizer.run(self.state, target, lambda: self._epoch == epoch)
        except Exception as e:
            logger.warning("Background summary failed: %s", e)

    async def wait_idle(self) -> None:
        """Wait for every in-flight summary task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
