from __future__ import annotations

from pathlib import Path
from typing import Literal, Self

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env once at module import; every BaseSettings subclass sees the env vars
load_dotenv()

ProviderType = Literal["responses-api", "chat-completions"]


class ProviderSettings(BaseSettings):
    """LLM endpoint settings. Env vars prefixed with PROVIDER_."""

    model_config = SettingsConfigDict(env_prefix="PROVIDER_")

    api_key: str  # required, fail fast if missing
    base_url: str | None = None
    model: str = "gpt-5-mini"
    # Explicit wire protocol. None = infer from base_url.
    type: ProviderType | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    reasoning_effort: Literal["minimal", "low", "medium", "high"] | None = None
    parallel_tool_calls: bool = True
    headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("temperature")
    @classmethod
    def _validate_temperature(cls, v: float | None) -> float | None:
        if v is not None and not (0.0 <= v <= 2.0):
            raise ValueError(f"PROVIDER_TEMPERATURE must be in [0.0, 2.0], got {v}")
        return v


class AgentSettings(BaseSettings):
    """Tool loop limits. Env vars prefixed with AGENT_."""

    model_config = SettingsConfigDict(env_prefix="AGENT_")

    max_depth: int = Field(300, gt=0)
    tool_timeout_s: float = Field(60.0, gt=0)
    tool_max_retries: int = Field(2, ge=0)
    max_tool_result_size: int = Field(100_000, gt=0)
    max_subagent_depth: int = Field(3, gt=0)
    lint_timeout_s: float = Field(10.0, gt=0)


class ContinuationDenyRule(BaseModel):
    """An endpoint that advertises stateful continuation but drops it.

    field: which provider attribute the marker is matched against (case-insensitive).
    reason: operational note on the observed provider behavior.
    """

    field: Literal["model", "base_url"]
    marker: str
    reason: str = ""


_DEFAULT_FULL_REPLAY_URL_MARKERS = [
    "opencode",
    "/zen/",
    "openrouter",
    "together",
    "groq",
    "ollama",
    "11434",
    "lm-studio",
    "1234",
]

_DEFAULT_BROKEN_CONTINUATION = [
    ContinuationDenyRule(
        field="model",
        marker="codex",
        reason="Codex models return 400 when continuing with previous_response_id",
    ),
    ContinuationDenyRule(
        field="base_url",
        marker="chatgpt.com",
        reason="ChatGPT Codex backend silently drops previous_response_id",
    ),
    ContinuationDenyRule(
        field="base_url",
        marker="/codex",
        reason="ChatGPT Codex backend silently drops previous_response_id",
    ),
    ContinuationDenyRule(
        field="base_url",
        marker="openclaw",
        reason="OpenClaw proxy silently drops previous_response_id",
    ),
]


class ContinuationSettings(BaseSettings):
    """Continuation-strategy tables. Env vars prefixed with CONTINUATION_.

    full_replay_url_markers: base_url substrings of endpoints that only speak
    Chat Completions (no server-side continuation).
    broken_continuation: denylist forcing full replay on endpoints that speak the
    Responses API but ignore previous_response_id. JSON list in the env var.
    """

    model_config = SettingsConfigDict(env_prefix="CONTINUATION_")

    full_replay_url_markers: list[str] = Field(
        default_factory=lambda: list(_DEFAULT_FULL_REPLAY_URL_MARKERS)
    )
    broken_continuation: list[ContinuationDenyRule] = Field(
        default_factory=lambda: list(_DEFAULT_BROKEN_CONTINUATION)
    )


class ContextSettings(BaseSettings):
    """Context window management settings. Env vars prefixed with CONTEXT_."""

    model_config = SettingsConfigDict(env_prefix="CONTEXT_")

    enabled: bool = True
    context_window: int = 128_000
    max_response_tokens: int = 16_384
    safety_margin_tokens: int = 1024
    min_preserved_messages: int = 8
    summary_enabled: bool = True
    summary_target_tokens: int = 500
    summary_temperature: float = 0.1

    @model_validator(mode="after")
    def _validate(self) -> Self:
        usable = self.context_window - self.max_response_tokens - self.safety_margin_tokens
        if usable <= 0:
            raise ValueError(
                f"usable_input_budget must be > 0, got {usable} "
                f"(context_window={self.context_window}, "
                f"max_response_tokens={self.max_response_tokens}, "
                f"safety_margin_tokens={self.safety_margin_tokens})"
            )
        if self.min_preserved_messages < 1:
            raise ValueError(
                f"min_preserved_messages must be >= 1, got {self.min_preserved_messages}"
            )
        return self

    @property
    def usable_input_budget(self) -> int:
        return self.context_window - self.max_response_tokens - self.safety_margin_tokens


class GatewaySettings(BaseSettings):
    """Gateway server settings. Env vars prefixed with GATEWAY_."""

    model_config = SettingsConfigDict(env_prefix="GATEWAY_")

    host: str = "0.0.0.0"
    port: int = 19789
    project_dir: Path = Path(".")
    json_logs: bool = False
    log_level: str = "INFO"


class Settings(BaseSettings):
    """Root settings composing all sub-configurations."""

    model_config = SettingsConfigDict(extra="ignore")

    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    continuation: ContinuationSettings = Field(default_factory=ContinuationSettings)
    context: ContextSettings = Field(default_factory=ContextSettings)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)


def get_settings() -> Settings:
    """Load and validate settings. Raises ValidationError on missing required fields."""
    return Settings()
