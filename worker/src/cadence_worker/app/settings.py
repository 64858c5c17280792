from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..services.llm import MODELS_BY_PROVIDER, ProviderId, default_model_for


def _default_config_dir() -> Path:
    return Path.home() / ".config" / "cadence"


class Settings(BaseSettings):
    """Runtime configuration for the Cadence worker process."""

    model_config = SettingsConfigDict(
        env_prefix="CADENCE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    config_dir: Path = Field(default_factory=_default_config_dir)
    llm_provider: ProviderId = Field(
        default=ProviderId.GROQ,
        description="LLM provider used for the refinement path (groq, openai, anthropic).",
    )
    llm_model: str = Field(default="openai/gpt-oss-120b", max_length=128)
    groq_api_key: Optional[str] = Field(default=None, repr=False)
    openai_api_key: Optional[str] = Field(default=None, repr=False)
    anthropic_api_key: Optional[str] = Field(default=None, repr=False)
    llm_enabled: bool = Field(
        default=True,
        description="Use the LLM path when a key for the selected provider exists.",
    )
    llm_timeout_seconds: float = Field(default=90.0, gt=0.0, le=600.0)
    llm_max_retries: int = Field(default=10, ge=0, le=20)
    llm_retry_backoff_seconds: float = Field(default=0.5, ge=0.0, le=30.0)
    llm_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    llm_max_tokens: int = Field(default=2000, ge=64, le=16_000)
    llm_stream: bool = Field(
        default=False,
        description="Consume the provider's streaming endpoint for the main generation call.",
    )
    max_prompt_chars: int = Field(default=1000, ge=100, le=10_000)
    min_prompt_chars: int = Field(default=20, ge=1, le=500)
    lean_tag_budget: int = Field(default=6, ge=1, le=15)
    enriched_tag_budget: int = Field(default=15, ge=1, le=15)
    trace_cap_bytes: int = Field(default=64 * 1024, ge=4 * 1024, le=1024 * 1024)
    debug_trace: bool = Field(default=False, description="Attach the decision trace to results.")
    fallback_to_deterministic: bool = Field(
        default=False,
        description="Return the deterministic prompt instead of failing when the LLM call fails.",
    )
    persist_history: bool = Field(default=True)

    @model_validator(mode="after")
    def _align_llm_defaults(self) -> "Settings":
        if self.llm_model not in MODELS_BY_PROVIDER[self.llm_provider]:
            self.llm_model = default_model_for(self.llm_provider, None)
        if self.lean_tag_budget > self.enriched_tag_budget:
            self.lean_tag_budget = self.enriched_tag_budget
        if self.min_prompt_chars >= self.max_prompt_chars:
            self.min_prompt_chars = min(20, self.max_prompt_chars - 1)
        return self

    def api_key_for(self, provider: ProviderId | str) -> Optional[str]:
        resolved = ProviderId(provider)
        if resolved is ProviderId.GROQ:
            return self.groq_api_key
        if resolved is ProviderId.OPENAI:
            return self.openai_api_key
        return self.anthropic_api_key

    def ensure_directories(self) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_directories()
    return settings
