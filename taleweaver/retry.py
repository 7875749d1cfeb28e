"""Retry orchestrator: bounded attempts at one structured model call.

Each attempt renders the request with an attempt-specific admonition,
calls the model, and runs the reply through the extraction pipeline.
Any failure is recorded and the next attempt starts; once every attempt
has failed the call site's fallback artifact is returned instead. The
only error that escapes is ConfigMissing.

Attempts run strictly one after another, never concurrently.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Literal

from taleweaver.config import DEFAULT_TUNING, Tuning
from taleweaver.errors import ConfigMissing, TransportFailure
from taleweaver.extraction import Expect, parse_structured
from taleweaver.llm import ChatLLM, ChatRequest

logger = logging.getLogger(__name__)

Outcome = Literal["success", "parse_failure", "transport_failure"]

COMPLETE_JSON_ADMONITION = (
    "IMPORTANT: your previous reply could not be used. Ensure the JSON is complete "
    "and correctly closed, with every string, object and array terminated."
)
FINAL_ATTEMPT_ADMONITION = (
    "IMPORTANT: this is the final attempt. Before answering, verify that every "
    "bracket and every quote closes. Output the JSON and nothing else."
)


def next_prompt_variant(attempt: int, max_attempts: int) -> str:
    """Admonition appended to the system prompt for `attempt` (1-based)."""
    if attempt <= 1:
        return ""
    if attempt >= max_attempts:
        return FINAL_ATTEMPT_ADMONITION
    return COMPLETE_JSON_ADMONITION


@dataclass
class RetryAttempt:
    number: int
    admonition: str
    outcome: Outcome
    error: str = ""


@dataclass
class StructuredResult:
    artifact: Any
    used_fallback: bool
    attempts: list[RetryAttempt] = field(default_factory=list)


class RetryOrchestrator:
    def __init__(self, llm: ChatLLM, tuning: Tuning = DEFAULT_TUNING) -> None:
        self._llm = llm
        self._max_attempts = tuning.max_attempts

    async def produce_structured(
        self,
        stage: str,
        build_request: Callable[[str], ChatRequest],
        *,
        fallback: Callable[[], Any],
        expect: Expect = "object",
        required: Iterable[str] = (),
        list_key: str | None = None,
    ) -> StructuredResult:
        """Run up to max_attempts model calls; return the first valid artifact or the fallback.

        `build_request` receives the admonition for the attempt ("" on the
        first) and returns the request to send.
        """
        required = tuple(required)
        attempts: list[RetryAttempt] = []

        for number in range(1, self._max_attempts + 1):
            admonition = next_prompt_variant(number, self._max_attempts)
            try:
                raw = await self._llm(stage, build_request(admonition))
                artifact = parse_structured(raw, expect=expect, required=required, list_key=list_key)
            except ConfigMissing:
                raise
            except TransportFailure as e:
                attempts.append(RetryAttempt(number, admonition, "transport_failure", str(e)))
                logger.warning("%s attempt %d/%d failed: %s", stage, number, self._max_attempts, e)
                continue
            except Exception as e:
                attempts.append(RetryAttempt(number, admonition, "parse_failure", str(e)))
                logger.warning("%s attempt %d/%d failed: %s", stage, number, self._max_attempts, e)
                continue

            attempts.append(RetryAttempt(number, admonition, "success"))
            logger.debug("%s succeeded on attempt %d", stage, number)
            return StructuredResult(artifact=artifact, used_fallback=False, attempts=attempts)

        logger.warning("%s failed %d times, using fallback", stage, self._max_attempts)
        return StructuredResult(artifact=fallback(), used_fallback=True, attempts=attempts)
