from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import ValidationError

from ..services.exceptions import StorageFailure, ValidationFailure
from ..services.llm import ProviderId, default_model_for
from ..services.types import EngineConfig
from .models import ConfigUpdate, ConfigView
from .settings import Settings

CONFIG_FILENAME = "config.json"


class ConfigStore:
    """User overrides layered over process settings, persisted as JSON."""

    def __init__(self, settings: Settings, *, path: Optional[Path] = None) -> None:
        self._settings = settings
        self._path = path or settings.config_dir / CONFIG_FILENAME
        self._lock = asyncio.Lock()
        self._overrides = self._load()

    def _load(self) -> ConfigUpdate:
        if not self._path.exists():
            return ConfigUpdate()
        try:
            return ConfigUpdate.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            logger.warning("ignoring unreadable config at {}: {}", self._path, exc)
            return ConfigUpdate()

    def _write(self, overrides: ConfigUpdate) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            payload = overrides.model_dump(exclude_none=True)
            self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            raise StorageFailure(f"could not write config to {self._path}: {exc}") from exc

    def _provider(self) -> ProviderId:
        if self._overrides.provider is not None:
            return ProviderId(self._overrides.provider)
        return self._settings.llm_provider

    def _model(self, provider: ProviderId) -> str:
        requested = self._overrides.model
        if requested is None and provider is self._settings.llm_provider:
            requested = self._settings.llm_model
        return default_model_for(provider, requested)

    def _view(self) -> ConfigView:
        provider = self._provider()
        overrides = self._overrides
        return ConfigView(
            provider=provider.value,
            model=self._model(provider),
            llm_enabled=(
                overrides.llm_enabled
                if overrides.llm_enabled is not None
                else self._settings.llm_enabled
            ),
            has_api_key=bool(self._settings.api_key_for(provider)),
            max_mode=bool(overrides.max_mode),
            lyrics_mode=bool(overrides.lyrics_mode),
            use_suno_tags=overrides.use_suno_tags if overrides.use_suno_tags is not None else True,
            debug_trace=(
                overrides.debug_trace
                if overrides.debug_trace is not None
                else self._settings.debug_trace
            ),
        )

    async def get_config(self) -> ConfigView:
        async with self._lock:
            return self._view()

    async def save_config(self, partial: ConfigUpdate) -> ConfigView:
        if partial.provider is not None:
            try:
                ProviderId(partial.provider)
            except ValueError as exc:
                raise ValidationFailure(
                    f"unknown provider '{partial.provider}'", field="provider"
                ) from exc
        async with self._lock:
            merged = self._overrides.model_copy(update=partial.model_dump(exclude_none=True))
            self._write(merged)
            self._overrides = merged
            return self._view()

    async def engine_config(self) -> EngineConfig:
        """Frozen snapshot of the effective configuration for one generation call."""

        async with self._lock:
            view = self._view()
        settings = self._settings
        return EngineConfig(
            provider=view.provider,
            model=view.model,
            api_key=settings.api_key_for(view.provider),
            llm_enabled=view.llm_enabled,
            timeout_seconds=settings.llm_timeout_seconds,
            max_retries=settings.llm_max_retries,
            retry_backoff_seconds=settings.llm_retry_backoff_seconds,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            stream=settings.llm_stream,
            max_chars=settings.max_prompt_chars,
            min_chars=settings.min_prompt_chars,
            lean_tag_budget=settings.lean_tag_budget,
            enriched_tag_budget=settings.enriched_tag_budget,
            trace_cap_bytes=settings.trace_cap_bytes,
            debug_trace=view.debug_trace,
            fallback_to_deterministic=settings.fallback_to_deterministic,
            max_mode=view.max_mode,
            lyrics_mode=view.lyrics_mode,
            use_suno_tags=view.use_suno_tags,
        )
