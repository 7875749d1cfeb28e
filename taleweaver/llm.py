"""LLM client — HTTP connection to a chat-completion backend.

Story operations and the summary engine take a ChatLLM callable matching
the protocol:

    async def __call__(self, stage: str, request: ChatRequest) -> str: ...

`stage` identifies the call site (e.g. "initial_story", "choices",
"summary"). Implementations may use it for logging or routing; the
simplest implementation ignores it. The return value is the free text of
the first completion.

Two implementations are provided:

    HttpLLM   — real HTTP client for OpenAI-compatible and Anthropic
                backends, selected by the provider in ModelConfig.
    EchoLLM   — returns the last user message unchanged. Useful for
                smoke-testing wiring without a running model.

Tests use ScriptedLLM (defined in conftest.py) instead.
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Protocol

import httpx
from pydantic import BaseModel, Field

from taleweaver.config import ModelConfig
from taleweaver.errors import TransportFailure
from taleweaver.models import Message

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class ChatRequest(BaseModel):
    model: str
    messages: list[Message]
    temperature: float = 0.8
    max_tokens: int = 2000
    response_format: Literal["json_object"] | None = None


# ---------------------------------------------------------------------------
# Protocol — every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class ChatLLM(Protocol):
    async def __call__(self, stage: str, request: ChatRequest) -> str: ...


# ---------------------------------------------------------------------------
# HttpLLM — connects to a real backend
# ---------------------------------------------------------------------------

class HttpLLM:
    """Async HTTP client for chat-completion backends.

    Supported formats:
      OpenAI-compatible (every provider except "anthropic")
                   POST {base}/chat/completions  {"model", "messages", ...}
                   Response: {"choices": [{"message": {"content": "..."}}]}
      "anthropic"  POST {base}/messages  {"model", "system", "messages", ...}
                   Response: {"content": [{"type": "text", "text": "..."}]}

    Args:
        config:  Connection settings. Validated eagerly; an incomplete
                 config raises ConfigMissing here, not on first call.
        timeout: HTTP timeout in seconds. Defaults to 120.
    """

    def __init__(self, config: ModelConfig, timeout: float = 120.0) -> None:
        self._config = config.require()
        self._base_url = config.resolved_base_url()
        self._timeout = timeout

    @property
    def config(self) -> ModelConfig:
        return self._config

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._config.provider == "anthropic":
            headers["x-api-key"] = self._config.api_key
            headers["anthropic-version"] = ANTHROPIC_VERSION
        else:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        return headers

    def _build_request(self, request: ChatRequest) -> tuple[str, dict[str, Any]]:
        """Return (url, body) for the configured provider."""
        if self._config.provider == "anthropic":
            system = "\n\n".join(m.content for m in request.messages if m.role == "system")
            body: dict[str, Any] = {
                "model": request.model,
                "max_tokens": request.max_tokens,
                "temperature": request.temperature,
                "messages": [
                    {"role": m.role, "content": m.content}
                    for m in request.messages if m.role != "system"
                ],
            }
            if system:
                body["system"] = system
            return f"{self._base_url}/messages", body

        body = {
            "model": request.model,
            "messages": [m.model_dump() for m in request.messages],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        if request.response_format and self._config.supports_json_mode:
            body["response_format"] = {"type": request.response_format}
        return f"{self._base_url}/chat/completions", body

    def _parse_response(self, data: Any) -> str:
        """Extract the completion text from the response body."""
        if not isinstance(data, dict):
            raise TransportFailure("Unexpected response format from LLM backend")

        if self._config.provider == "anthropic":
            blocks = data.get("content")
            if not isinstance(blocks, list):
                raise TransportFailure("Unexpected response format from Anthropic backend")
            texts = [b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text"]
            if not texts:
                raise TransportFailure("Unexpected response format from Anthropic backend")
            return "".join(texts)

        choices = data.get("choices")
        if not choices or not isinstance(choices[0], dict):
            raise TransportFailure("Unexpected response format from OpenAI-compatible backend")
        first = choices[0]
        message = first.get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        if content is None:
            content = first.get("text")
        if content is None:
            raise TransportFailure("Unexpected response format from OpenAI-compatible backend")
        return content

    async def __call__(self, stage: str, request: ChatRequest) -> str:
        url, body = self._build_request(request)
        logger.debug(
            "llm call stage=%s url=%s messages=%d", stage, url, len(request.messages)
        )

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise TransportFailure(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise TransportFailure(
                f"LLM backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise TransportFailure(f"LLM backend timed out after {self._timeout}s") from e
        except httpx.RequestError as e:
            raise TransportFailure(f"LLM backend request failed: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise TransportFailure("LLM backend returned a non-JSON body") from e

        text = self._parse_response(data)
        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text


# ---------------------------------------------------------------------------
# EchoLLM — returns the last user message; useful for wiring smoke tests
# ---------------------------------------------------------------------------

class EchoLLM:
    """Returns the last user message as-is. No network calls.

    The output won't be valid JSON for structured stages, so every call site
    ends up on its fallback artifact.
    """

    async def __call__(self, stage: str, request: ChatRequest) -> str:
        logger.debug("EchoLLM stage=%s messages=%d", stage, len(request.messages))
        for message in reversed(request.messages):
            if message.role == "user":
                return message.content
        return ""
