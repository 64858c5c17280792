from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..services.remix import RemixTarget


class JobState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PromptMode(str, Enum):
    MAX = "max"
    STANDARD = "standard"


class GenerationRequest(BaseModel):
    description: str = Field(default="")
    genre_override: Optional[str] = Field(default=None, max_length=200)
    styles: list[str] = Field(default_factory=list)
    locked_phrase: Optional[str] = Field(default=None)
    seed: Optional[int] = Field(default=None, ge=0, le=0xFFFFFFFF)
    max_mode: Optional[bool] = Field(default=None)
    lyrics_mode: Optional[bool] = Field(default=None)
    use_suno_tags: Optional[bool] = Field(default=None)
    lyrics_topic: Optional[str] = Field(default=None, max_length=500)
    mood_category: Optional[str] = Field(default=None, max_length=64)


class GenerationResult(BaseModel):
    text: str
    title: Optional[str] = None
    lyrics: Optional[str] = None
    debug_info: Optional[dict[str, Any]] = None
    seed: int
    genre: str
    mode: PromptMode
    used_llm: bool = False


class RemixRequest(BaseModel):
    prompt: str = Field(min_length=1)
    target: RemixTarget
    seed: Optional[int] = Field(default=None, ge=0, le=0xFFFFFFFF)
    description: Optional[str] = Field(default=None)
    mood_category: Optional[str] = Field(default=None, max_length=64)


class RemixResult(BaseModel):
    text: str
    target: RemixTarget
    seed: int


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class GenerationStatus(BaseModel):
    job_id: str
    state: JobState
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    message: Optional[str] = None
    updated_at: datetime = Field(default_factory=_utc_now)


class HistoryEntry(BaseModel):
    session_id: str
    created_at: datetime = Field(default_factory=_utc_now)
    description: str = ""
    genre: str
    mode: PromptMode
    seed: int
    text: str
    title: Optional[str] = None
    lyrics: Optional[str] = None


class ConfigView(BaseModel):
    provider: str
    model: str
    llm_enabled: bool
    has_api_key: bool
    max_mode: bool
    lyrics_mode: bool
    use_suno_tags: bool
    debug_trace: bool


class ConfigUpdate(BaseModel):
    provider: Optional[str] = Field(default=None, max_length=32)
    model: Optional[str] = Field(default=None, max_length=128)
    llm_enabled: Optional[bool] = None
    max_mode: Optional[bool] = None
    lyrics_mode: Optional[bool] = None
    use_suno_tags: Optional[bool] = None
    debug_trace: Optional[bool] = None
