"""Shared service data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class EngineConfig:
    """Immutable per-call configuration snapshot.

    Built from the process settings plus persisted user overrides and handed
    to every generation call; nothing in the pipeline reads mutable globals.
    """

    provider: str = "groq"
    model: str = "openai/gpt-oss-120b"
    api_key: Optional[str] = field(default=None, repr=False)
    llm_enabled: bool = True
    timeout_seconds: float = 90.0
    max_retries: int = 10
    retry_backoff_seconds: float = 0.5
    temperature: float = 0.7
    max_tokens: int = 2000
    stream: bool = False
    max_chars: int = 1000
    min_chars: int = 20
    lean_tag_budget: int = 6
    enriched_tag_budget: int = 15
    trace_cap_bytes: int = 64 * 1024
    debug_trace: bool = False
    fallback_to_deterministic: bool = False
    max_mode: bool = False
    lyrics_mode: bool = False
    use_suno_tags: bool = True

    @property
    def llm_available(self) -> bool:
        return self.llm_enabled and bool(self.api_key)


@dataclass
class ProviderStatus:
    name: str
    model: str
    ready: bool
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    updated_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.name,
            "model": self.model,
            "ready": self.ready,
            "updated_at": self.updated_at.isoformat(),
        }
        if self.error is not None:
            payload["error"] = self.error
        if self.details:
            payload["details"] = self.details
        return payload
