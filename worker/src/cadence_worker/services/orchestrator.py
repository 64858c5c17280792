from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

import httpx
from loguru import logger

from ..app.models import GenerationRequest, GenerationResult, PromptMode
from .bpm import inject_bpm
from .deterministic import build_max_mode_prompt, build_standard_prompt
from .enrichment import build_enriched_lines, enrich_from_genres, genres_from_styles
from .exceptions import GenerationFailure, ValidationFailure
from .formatter import bound_with_locked_phrase, truncate_prompt, validate_locked_phrase
from .genres import MAX_GENRE_COMPONENTS, resolve_genre
from .llm import LLMProvider, LLMRequest, call_llm, create_provider
from .moods import get_mood_category
from .postprocess import clean_lyrics, clean_title
from .prompts import (
    TITLE_SYSTEM_PROMPT,
    generation_system_prompt,
    generation_user_prompt,
    lyrics_system_prompt,
    lyrics_user_prompt,
    title_user_prompt,
)
from .random_source import RandomSource, create_rng, new_seed
from .registry import DEFAULT_GENRE
from .rewriter import PromptRewriter
from .titles import generate_title
from .trace import TraceCollector, trace_decision, trace_error
from .types import EngineConfig, ProviderStatus

MAX_DESCRIPTION_CHARS = 2000
MAX_STYLES = MAX_GENRE_COMPONENTS
TITLE_RETRIES = 1
LYRICS_RETRIES = 2
LYRICS_MAX_TOKENS = 1500
DEFAULT_MOOD = "Evocative"

ProviderFactory = Callable[[EngineConfig], LLMProvider]
ProgressCallback = Callable[[float, str], Awaitable[None]]


@dataclass(frozen=True)
class _Inputs:
    description: str
    genre_override: Optional[str]
    styles: List[str]
    locked_phrase: Optional[str]
    mood_category: Optional[str]
    lyrics_topic: Optional[str]
    max_mode: bool
    lyrics_mode: bool
    use_suno_tags: bool


@dataclass(frozen=True)
class _Draft:
    text: str
    genre: str
    mood: str
    used_llm: bool


class PromptOrchestrator:
    """Runs one generation request from validated input to a bounded prompt."""

    def __init__(
        self,
        *,
        client: Optional[httpx.AsyncClient] = None,
        provider_factory: Optional[ProviderFactory] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._provider_factory = provider_factory
        self._sleep = sleep

    def _provider(self, config: EngineConfig) -> LLMProvider:
        if self._provider_factory is not None:
            return self._provider_factory(config)
        if self._client is None:
            self._client = httpx.AsyncClient()
        return create_provider(config.provider, config.api_key or "", self._client)

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def provider_status(self, config: EngineConfig) -> ProviderStatus:
        if not config.llm_enabled:
            error: Optional[str] = "llm disabled"
        elif not config.api_key:
            error = f"no api key configured for {config.provider}"
        else:
            error = None
        return ProviderStatus(
            name=config.provider,
            model=config.model,
            ready=config.llm_available,
            error=error,
            details={"path": "llm" if config.llm_available else "deterministic"},
        )

    def _validate(self, request: GenerationRequest, config: EngineConfig) -> _Inputs:
        description = request.description.strip()
        if len(description) > MAX_DESCRIPTION_CHARS:
            raise ValidationFailure(
                f"description must be at most {MAX_DESCRIPTION_CHARS} characters",
                field="description",
            )
        override = (request.genre_override or "").strip() or None
        styles = [style.strip() for style in request.styles if style.strip()]
        if override and styles:
            raise ValidationFailure(
                "genre_override and styles cannot be combined", field="styles"
            )
        if len(styles) > MAX_STYLES:
            raise ValidationFailure(f"at most {MAX_STYLES} styles are allowed", field="styles")

        lyrics_mode = request.lyrics_mode if request.lyrics_mode is not None else config.lyrics_mode
        lyrics_topic = (request.lyrics_topic or "").strip() or None
        if lyrics_mode and not config.llm_available:
            raise ValidationFailure(
                "lyrics mode requires an LLM provider with an API key", field="lyrics_mode"
            )
        if not (description or override or styles or (lyrics_mode and lyrics_topic)):
            raise ValidationFailure(
                "provide a description, a genre override, styles or a lyrics topic"
            )

        mood_category = (request.mood_category or "").strip().lower() or None
        if mood_category is not None:
            get_mood_category(mood_category)

        return _Inputs(
            description=description,
            genre_override=override,
            styles=styles,
            locked_phrase=validate_locked_phrase(request.locked_phrase),
            mood_category=mood_category,
            lyrics_topic=lyrics_topic,
            max_mode=request.max_mode if request.max_mode is not None else config.max_mode,
            lyrics_mode=lyrics_mode,
            use_suno_tags=(
                request.use_suno_tags if request.use_suno_tags is not None else config.use_suno_tags
            ),
        )

    async def generate(
        self,
        request: GenerationRequest,
        config: EngineConfig,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> GenerationResult:
        inputs = self._validate(request, config)
        seed = request.seed if request.seed is not None else new_seed()
        mode = PromptMode.MAX if inputs.max_mode else PromptMode.STANDARD
        trace = (
            TraceCollector(action="generate", prompt_mode=mode.value, seed=seed)
            if config.debug_trace
            else None
        )
        if trace is not None:
            trace.start(f"provider={config.provider} llm={config.llm_available}")

        async def report(progress: float, message: str) -> None:
            if progress_cb is not None:
                await progress_cb(progress, message)

        rng = create_rng(seed)
        provider: Optional[LLMProvider] = None
        if config.llm_available:
            provider = self._provider(config)
            await report(0.1, "calling llm")
            draft = await self._llm_draft(inputs, config, provider, rng, seed, trace)
        else:
            trace_decision(
                trace,
                domain="generation",
                key="generation.path",
                branch_taken="deterministic",
                why="llm disabled or no api key for the selected provider",
            )
            draft = self._deterministic_draft(inputs, config, rng, trace)

        await report(0.7, "finalising prompt")
        text = bound_with_locked_phrase(draft.text, inputs.locked_phrase, config.max_chars)

        title: Optional[str] = None
        if provider is not None and draft.used_llm:
            title = await self._llm_title(provider, config, inputs, draft, trace)
        if title is None:
            title = generate_title(draft.genre, rng, inputs.description)

        lyrics: Optional[str] = None
        if inputs.lyrics_mode and provider is not None:
            await report(0.85, "writing lyrics")
            lyrics = await self._llm_lyrics(provider, config, inputs, draft, trace)

        debug_info = None
        if trace is not None:
            trace.end(f"chars={len(text)} used_llm={draft.used_llm}")
            debug_info = trace.finalize(config.trace_cap_bytes).model_dump(
                by_alias=True, exclude_none=True
            )

        logger.info(
            "generated {} prompt for genre {} ({} chars, seed {})",
            mode.value,
            draft.genre,
            len(text),
            seed,
        )
        await report(1.0, "complete")
        return GenerationResult(
            text=text,
            title=title,
            lyrics=lyrics,
            debug_info=debug_info,
            seed=seed,
            genre=draft.genre,
            mode=mode,
            used_llm=draft.used_llm,
        )

    def _deterministic_draft(
        self,
        inputs: _Inputs,
        config: EngineConfig,
        rng: RandomSource,
        trace: Optional[TraceCollector],
    ) -> _Draft:
        if inputs.styles:
            components = genres_from_styles(inputs.styles) or [DEFAULT_GENRE]
            enrichment = enrich_from_genres(
                components,
                rng,
                mood_category=inputs.mood_category,
                tag_budget=config.lean_tag_budget,
                description=inputs.description or None,
                trace=trace,
            )
            lines = build_enriched_lines(
                ", ".join(inputs.styles),
                enrichment,
                max_mode=inputs.max_mode,
                components=components,
                rng=rng,
            )
            return _Draft(
                text=truncate_prompt(lines, config.max_chars),
                genre=components[0],
                mood=enrichment.moods[0] if enrichment.moods else DEFAULT_MOOD,
                used_llm=False,
            )

        if inputs.max_mode:
            prompt = build_max_mode_prompt(
                inputs.description,
                rng,
                genre_override=inputs.genre_override,
                max_chars=config.max_chars,
                tag_budget=config.lean_tag_budget,
                trace=trace,
            )
        else:
            prompt = build_standard_prompt(
                inputs.description,
                rng,
                genre_override=inputs.genre_override,
                mood_category=inputs.mood_category,
                max_chars=config.max_chars,
                tag_budget=config.lean_tag_budget,
                trace=trace,
            )
        return _Draft(
            text=prompt.text,
            genre=prompt.genre.primary_genre,
            mood=prompt.moods[0] if prompt.moods else DEFAULT_MOOD,
            used_llm=False,
        )

    async def _llm_draft(
        self,
        inputs: _Inputs,
        config: EngineConfig,
        provider: LLMProvider,
        rng: RandomSource,
        seed: int,
        trace: Optional[TraceCollector],
    ) -> _Draft:
        if inputs.styles:
            components = genres_from_styles(inputs.styles) or [DEFAULT_GENRE]
            genre_label = ", ".join(inputs.styles)
        else:
            resolved = resolve_genre(inputs.description, inputs.genre_override, rng, trace)
            components = list(resolved.components)
            genre_label = resolved.display_genre

        enrichment = enrich_from_genres(
            components,
            rng,
            mood_category=inputs.mood_category,
            tag_budget=config.enriched_tag_budget,
            description=inputs.description or None,
            trace=trace,
        )
        reference = build_enriched_lines(
            genre_label,
            enrichment,
            max_mode=inputs.max_mode,
            components=components,
            rng=rng,
        )
        llm_request = LLMRequest(
            model=config.model,
            system=generation_system_prompt(
                config.max_chars, max_mode=inputs.max_mode, use_suno_tags=inputs.use_suno_tags
            ),
            prompt=generation_user_prompt(
                inputs.description,
                reference,
                inputs.lyrics_topic if inputs.lyrics_mode else None,
            ),
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            max_retries=config.max_retries,
            timeout_seconds=config.timeout_seconds,
            backoff_seconds=config.retry_backoff_seconds,
            stream=config.stream,
        )
        try:
            response = await call_llm(
                provider, llm_request, label="generate", trace=trace, sleep=self._sleep
            )
        except GenerationFailure as exc:
            if not config.fallback_to_deterministic:
                raise
            logger.warning("generation call failed; using deterministic prompt: {}", exc)
            trace_decision(
                trace,
                domain="generation",
                key="generation.path",
                branch_taken="deterministic-fallback",
                why=f"initial llm call failed: {exc}",
            )
            return self._deterministic_draft(inputs, config, create_rng(seed), trace)

        rewriter = PromptRewriter(provider, config, trace=trace, sleep=self._sleep)
        text = await rewriter.postprocess(response.text, max_mode=inputs.max_mode)
        text = inject_bpm(text, enrichment.bpm_range)
        return _Draft(
            text=text,
            genre=components[0],
            mood=enrichment.moods[0] if enrichment.moods else DEFAULT_MOOD,
            used_llm=True,
        )

    async def _soft_call(
        self,
        provider: LLMProvider,
        config: EngineConfig,
        *,
        label: str,
        system: str,
        prompt: str,
        retries: int,
        max_tokens: int,
        trace: Optional[TraceCollector],
    ) -> Optional[str]:
        request = LLMRequest(
            model=config.model,
            system=system,
            prompt=prompt,
            temperature=config.temperature,
            max_tokens=max_tokens,
            max_retries=retries,
            timeout_seconds=config.timeout_seconds,
            backoff_seconds=config.retry_backoff_seconds,
        )
        try:
            response = await call_llm(provider, request, label=label, trace=trace, sleep=self._sleep)
        except GenerationFailure as exc:
            logger.warning("{} call failed: {}", label, exc)
            return None
        return response.text

    async def _llm_title(
        self,
        provider: LLMProvider,
        config: EngineConfig,
        inputs: _Inputs,
        draft: _Draft,
        trace: Optional[TraceCollector],
    ) -> Optional[str]:
        raw = await self._soft_call(
            provider,
            config,
            label="title",
            system=TITLE_SYSTEM_PROMPT,
            prompt=title_user_prompt(inputs.description, draft.genre, draft.mood),
            retries=TITLE_RETRIES,
            max_tokens=64,
            trace=trace,
        )
        if raw is None:
            return None
        return clean_title(raw)

    async def _llm_lyrics(
        self,
        provider: LLMProvider,
        config: EngineConfig,
        inputs: _Inputs,
        draft: _Draft,
        trace: Optional[TraceCollector],
    ) -> Optional[str]:
        topic = inputs.lyrics_topic or inputs.description or draft.genre
        raw = await self._soft_call(
            provider,
            config,
            label="lyrics",
            system=lyrics_system_prompt(
                max_mode=inputs.max_mode, use_suno_tags=inputs.use_suno_tags
            ),
            prompt=lyrics_user_prompt(topic, draft.genre, draft.mood),
            retries=LYRICS_RETRIES,
            max_tokens=LYRICS_MAX_TOKENS,
            trace=trace,
        )
        if raw is None:
            return None
        lyrics = clean_lyrics(raw)
        if not lyrics:
            trace_error(trace, error_type="ai.generation", message="lyrics: empty after cleaning")
            return None
        return lyrics
