"""Model connection settings and tuning constants.

ModelConfig describes how to reach the chat-completion capability. It is
normally built from environment variables (a .env file is loaded by the
app and the dev launcher):

    TALEWEAVER_PROVIDER      openai | anthropic | deepseek | moonshot |
                             zhipu | openrouter | custom
    TALEWEAVER_MODEL         model identifier
    TALEWEAVER_API_KEY       credential
    TALEWEAVER_BASE_URL      endpoint, required for "custom"
    TALEWEAVER_TEMPERATURE   default 0.8
    TALEWEAVER_MAX_TOKENS    default 2000

Tuning collects every numeric knob of the conversation store, summary
engine, retry loop and story pacing in one place.
"""

from __future__ import annotations

import os

from pydantic import BaseModel, Field

from taleweaver.errors import ConfigMissing

DEFAULT_BASE_URLS: dict[str, str] = {
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com/v1",
    "deepseek": "https://api.deepseek.com/v1",
    "moonshot": "https://api.moonshot.cn/v1",
    "zhipu": "https://open.bigmodel.cn/api/paas/v4",
    "openrouter": "https://openrouter.ai/api/v1",
}

# Providers that structurally honor response_format={"type": "json_object"}
JSON_MODE_PROVIDERS = frozenset({"openai", "deepseek", "moonshot", "openrouter"})


class ModelConfig(BaseModel):
    provider: str = "openai"
    model: str = ""
    api_key: str = ""
    base_url: str = ""
    temperature: float = 0.8
    max_tokens: int = 2000

    def resolved_base_url(self) -> str:
        """Explicit base_url wins; otherwise the provider's public endpoint."""
        if self.base_url:
            return self.base_url.rstrip("/")
        return DEFAULT_BASE_URLS.get(self.provider, "")

    @property
    def supports_json_mode(self) -> bool:
        return self.provider in JSON_MODE_PROVIDERS

    def require(self) -> ModelConfig:
        """Return self, or raise ConfigMissing naming the first absent setting."""
        if not self.model:
            raise ConfigMissing("No model identifier configured")
        if not self.api_key:
            raise ConfigMissing("No API key configured")
        if not self.resolved_base_url():
            raise ConfigMissing(f"No endpoint configured for provider {self.provider!r}")
        return self


def model_config_from_env(environ: dict[str, str] | None = None) -> ModelConfig:
    env = os.environ if environ is None else environ
    fields: dict[str, object] = {
        "provider": env.get("TALEWEAVER_PROVIDER", "openai"),
        "model": env.get("TALEWEAVER_MODEL", ""),
        "api_key": env.get("TALEWEAVER_API_KEY", ""),
        "base_url": env.get("TALEWEAVER_BASE_URL", ""),
    }
    if env.get("TALEWEAVER_TEMPERATURE"):
        fields["temperature"] = float(env["TALEWEAVER_TEMPERATURE"])
    if env.get("TALEWEAVER_MAX_TOKENS"):
        fields["max_tokens"] = int(env["TALEWEAVER_MAX_TOKENS"])
    return ModelConfig.model_validate(fields)


class Tuning(BaseModel):
    # Conversation store
    history_cap: int = Field(default=20, ge=1)

    # Summary engine
    summary_interval: int = Field(default=6, ge=1)
    recent_window: int = Field(default=8, ge=0)
    digest_byte_budget: int = Field(default=2048, ge=256)

    # Retry orchestrator
    max_attempts: int = Field(default=3, ge=1)

    # Story pacing. Probabilities apply per check; 0.0 disables.
    chapter_limit: int = 15
    cliffhanger_probability: float = Field(default=0.3, ge=0.0, le=1.0)
    choice_count_decrease_probability: float = Field(default=0.1, ge=0.0, le=1.0)
    choice_count_increase_probability: float = Field(default=0.1, ge=0.0, le=1.0)


DEFAULT_TUNING = Tuning()
