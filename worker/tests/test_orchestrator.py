from __future__ import annotations

from typing import AsyncIterator, Dict, Iterable, List, Optional

import pytest

from cadence_worker.app.models import GenerationRequest, PromptMode
from cadence_worker.services.exceptions import GenerationFailure, ProviderError, ValidationFailure
from cadence_worker.services.formatter import MAX_MODE_HEADER
from cadence_worker.services.llm import LLMRequest, LLMResponse, ProviderId
from cadence_worker.services.orchestrator import PromptOrchestrator
from cadence_worker.services.prompts import (
    DEDUP_SYSTEM_PROMPT,
    REWRITE_SYSTEM_PROMPT,
    TITLE_SYSTEM_PROMPT,
)
from cadence_worker.services.types import EngineConfig

OFFLINE = EngineConfig(llm_enabled=False)

LLM_PROMPT = (
    "[Mellow, Jazz, Key: D Dorian]\n\n"
    "Genre: jazz\n"
    "BPM: 999\n"
    "Mood: mellow, smoky\n"
    "Instruments: upright bass, brushed drums\n\n"
    "[INTRO] Soft piano opens the night"
)


def _call_kind(system: str) -> str:
    if system == DEDUP_SYSTEM_PROMPT:
        return "dedup"
    if system == REWRITE_SYSTEM_PROMPT:
        return "rewrite"
    if system.startswith("Shorten"):
        return "condense"
    if system == TITLE_SYSTEM_PROMPT:
        return "title"
    if "songwriter" in system:
        return "lyrics"
    return "generate"


class StubProvider:
    provider_id = ProviderId.GROQ

    def __init__(
        self,
        replies: Optional[Dict[str, str]] = None,
        failing: Iterable[str] = (),
    ) -> None:
        self.replies = {
            "generate": LLM_PROMPT,
            "title": '"Neon Rain"\n',
            "lyrics": "[VERSE]\nRain on the glass, neon in the puddles\n",
        }
        self.replies.update(replies or {})
        self.failing = set(failing)
        self.calls: List[str] = []
        self.requests: List[LLMRequest] = []

    async def send(self, request: LLMRequest) -> LLMResponse:
        kind = _call_kind(request.system or "")
        self.calls.append(kind)
        self.requests.append(request)
        if kind in self.failing:
            raise ProviderError(f"{kind} rejected", status_code=400)
        return LLMResponse(text=self.replies.get(kind, ""), provider="groq", model=request.model)

    async def stream(self, request: LLMRequest) -> AsyncIterator[str]:
        yield (await self.send(request)).text


async def _no_sleep(_: float) -> None:
    return None


def _online_config(**overrides: object) -> EngineConfig:
    values: dict = {"api_key": "test-key", "max_retries": 0, "retry_backoff_seconds": 0.0}
    values.update(overrides)
    return EngineConfig(**values)


def _orchestrator(provider: StubProvider) -> PromptOrchestrator:
    return PromptOrchestrator(provider_factory=lambda _config: provider, sleep=_no_sleep)


@pytest.mark.asyncio
async def test_deterministic_generation_is_repeatable() -> None:
    orchestrator = PromptOrchestrator()
    request = GenerationRequest(description="smooth jazz night session", seed=7)

    first = await orchestrator.generate(request, OFFLINE)
    second = await orchestrator.generate(request, OFFLINE)

    assert first.text == second.text
    assert first.title == second.title
    assert first.genre == "jazz"
    assert first.mode == PromptMode.STANDARD
    assert first.used_llm is False
    assert first.seed == 7
    assert len(first.text) <= OFFLINE.max_chars
    assert first.debug_info is None


@pytest.mark.asyncio
async def test_generation_assigns_seed_when_missing() -> None:
    result = await PromptOrchestrator().generate(
        GenerationRequest(description="folk song about rivers"), OFFLINE
    )

    assert 0 <= result.seed <= 0xFFFFFFFF
    assert result.title


@pytest.mark.asyncio
async def test_max_mode_request_uses_max_format() -> None:
    result = await PromptOrchestrator().generate(
        GenerationRequest(description="dark synthwave drive", seed=11, max_mode=True), OFFLINE
    )

    assert result.mode == PromptMode.MAX
    assert result.text.startswith(MAX_MODE_HEADER)


@pytest.mark.asyncio
async def test_config_supplies_mode_defaults() -> None:
    result = await PromptOrchestrator().generate(
        GenerationRequest(description="dark synthwave drive", seed=11),
        EngineConfig(llm_enabled=False, max_mode=True),
    )

    assert result.mode == PromptMode.MAX


@pytest.mark.parametrize(
    "request_kwargs",
    [
        {"description": "a" * 2001},
        {"genre_override": "jazz", "styles": ["rock"]},
        {"styles": ["jazz", "rock", "pop", "metal", "folk"]},
        {"description": "jazz", "lyrics_mode": True},
        {"description": "   "},
        {"description": "jazz", "mood_category": "nonexistent"},
        {"description": "jazz", "locked_phrase": "{{bad}}"},
        {"description": "jazz", "locked_phrase": "x" * 301},
    ],
)
@pytest.mark.asyncio
async def test_invalid_requests_are_rejected(request_kwargs: dict) -> None:
    with pytest.raises(ValidationFailure):
        await PromptOrchestrator().generate(GenerationRequest(**request_kwargs), OFFLINE)


@pytest.mark.asyncio
async def test_genre_override_alone_is_enough_input() -> None:
    result = await PromptOrchestrator().generate(
        GenerationRequest(genre_override="jazz rock", seed=5), OFFLINE
    )

    assert result.genre == "jazz"
    assert "Genre: Jazz Rock" in result.text


@pytest.mark.asyncio
async def test_locked_phrase_survives_tight_budget() -> None:
    config = EngineConfig(llm_enabled=False, max_chars=150)
    result = await PromptOrchestrator().generate(
        GenerationRequest(
            description="smooth jazz night session", seed=7, locked_phrase="vinyl crackle"
        ),
        config,
    )

    assert "vinyl crackle" in result.text
    assert len(result.text) <= 150


@pytest.mark.asyncio
async def test_styles_drive_deterministic_prompt() -> None:
    result = await PromptOrchestrator().generate(
        GenerationRequest(styles=["dark synthwave", "smoky jazz"], seed=3), OFFLINE
    )

    assert result.genre == "synthwave"
    assert "Genre: dark synthwave, smoky jazz" in result.text
    header = result.text.splitlines()[0]
    assert header.startswith("[") and "Synthwave Jazz, Key: " in header
    assert "\n\n[INTRO] " in result.text


@pytest.mark.asyncio
async def test_debug_trace_records_generation_path() -> None:
    config = EngineConfig(llm_enabled=False, debug_trace=True)
    result = await PromptOrchestrator().generate(
        GenerationRequest(description="smooth jazz night session", seed=7), config
    )

    assert result.debug_info is not None
    assert result.debug_info["runId"]
    assert result.debug_info["rng"]["seed"] == 7
    decisions = {
        event["key"]: event["branchTaken"]
        for event in result.debug_info["events"]
        if event["type"] == "decision"
    }
    assert decisions["generation.path"] == "deterministic"
    assert decisions["deterministic.genre.resolve"] == "keyword-detection"


@pytest.mark.asyncio
async def test_progress_callback_reaches_completion() -> None:
    updates: List[tuple[float, str]] = []

    async def progress_cb(progress: float, message: str) -> None:
        updates.append((progress, message))

    await PromptOrchestrator().generate(
        GenerationRequest(description="smooth jazz", seed=1), OFFLINE, progress_cb=progress_cb
    )

    assert updates[-1] == (1.0, "complete")
    assert [progress for progress, _ in updates] == sorted(progress for progress, _ in updates)


@pytest.mark.asyncio
async def test_llm_path_postprocesses_and_injects_bpm() -> None:
    provider = StubProvider()
    result = await _orchestrator(provider).generate(
        GenerationRequest(description="smooth jazz night session", seed=7), _online_config()
    )

    assert provider.calls == ["generate", "title"]
    assert result.used_llm is True
    assert result.genre == "jazz"
    assert result.title == "Neon Rain"
    assert "BPM: between 80 and 160" in result.text
    assert "999" not in result.text
    assert result.lyrics is None
    generate_request = provider.requests[0]
    assert generate_request.prompt is not None
    assert "smooth jazz night session" in generate_request.prompt
    assert "REFERENCE FIELDS" in generate_request.prompt


@pytest.mark.asyncio
async def test_llm_trace_records_calls() -> None:
    provider = StubProvider()
    result = await _orchestrator(provider).generate(
        GenerationRequest(description="smooth jazz night session", seed=7),
        _online_config(debug_trace=True),
    )

    assert result.debug_info is not None
    labels = [
        event["label"] for event in result.debug_info["events"] if event["type"] == "llm.call"
    ]
    assert labels == ["generate", "title"]
    assert "test-key" not in str(result.debug_info)


@pytest.mark.asyncio
async def test_failed_generation_is_fatal_without_fallback() -> None:
    provider = StubProvider(failing={"generate"})

    with pytest.raises(GenerationFailure):
        await _orchestrator(provider).generate(
            GenerationRequest(description="smooth jazz night session", seed=7), _online_config()
        )
    assert provider.calls == ["generate"]


@pytest.mark.asyncio
async def test_failed_generation_falls_back_to_deterministic_text() -> None:
    provider = StubProvider(failing={"generate"})
    request = GenerationRequest(description="smooth jazz night session", seed=7)

    fallback = await _orchestrator(provider).generate(
        request, _online_config(fallback_to_deterministic=True)
    )
    offline = await PromptOrchestrator().generate(request, OFFLINE)

    assert fallback.used_llm is False
    assert fallback.text == offline.text
    assert provider.calls == ["generate"]


@pytest.mark.asyncio
async def test_failed_title_uses_pattern_title() -> None:
    provider = StubProvider(failing={"title"})
    result = await _orchestrator(provider).generate(
        GenerationRequest(description="smooth jazz night session", seed=7), _online_config()
    )

    assert result.used_llm is True
    assert result.title
    assert result.title != "Neon Rain"


@pytest.mark.asyncio
async def test_failed_sub_call_is_traced() -> None:
    provider = StubProvider(failing={"title"})
    result = await _orchestrator(provider).generate(
        GenerationRequest(description="smooth jazz night session", seed=7),
        _online_config(debug_trace=True),
    )

    assert result.debug_info is not None
    events = result.debug_info["events"]
    title_calls = [
        event for event in events if event["type"] == "llm.call" and event["label"] == "title"
    ]
    assert title_calls[0]["telemetry"]["finishReason"] == "error"
    assert any(event["type"] == "error" for event in events)
    assert result.debug_info["stats"]["hadErrors"] is True


@pytest.mark.asyncio
async def test_lyrics_mode_adds_lyrics() -> None:
    provider = StubProvider()
    result = await _orchestrator(provider).generate(
        GenerationRequest(
            description="smooth jazz night session",
            seed=7,
            lyrics_mode=True,
            lyrics_topic="city rain",
        ),
        _online_config(),
    )

    assert provider.calls == ["generate", "title", "lyrics"]
    assert result.lyrics == "[VERSE]\nRain on the glass, neon in the puddles"
    lyrics_request = provider.requests[-1]
    assert lyrics_request.prompt is not None
    assert "Topic: city rain" in lyrics_request.prompt


@pytest.mark.asyncio
async def test_lyrics_topic_alone_is_enough_input() -> None:
    provider = StubProvider()
    result = await _orchestrator(provider).generate(
        GenerationRequest(lyrics_mode=True, lyrics_topic="city rain", seed=9), _online_config()
    )

    assert result.lyrics is not None


@pytest.mark.asyncio
async def test_failed_lyrics_keep_prompt() -> None:
    provider = StubProvider(failing={"lyrics"})
    result = await _orchestrator(provider).generate(
        GenerationRequest(description="smooth jazz night session", seed=7, lyrics_mode=True),
        _online_config(),
    )

    assert result.lyrics is None
    assert result.text
    assert result.title == "Neon Rain"


@pytest.mark.asyncio
async def test_provider_status_reflects_config() -> None:
    orchestrator = PromptOrchestrator()

    offline = orchestrator.provider_status(OFFLINE)
    keyless = orchestrator.provider_status(EngineConfig())
    online = orchestrator.provider_status(_online_config())

    assert offline.ready is False and offline.error == "llm disabled"
    assert keyless.ready is False and keyless.error is not None
    assert online.ready is True and online.details == {"path": "llm"}
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_styles_without_llm_keep_standard_format() -> None:
    result = await PromptOrchestrator().generate(
        GenerationRequest(styles=["jazz"], seed=1, max_mode=False), EngineConfig(api_key=None)
    )

    assert result.used_llm is False
    assert result.mode == PromptMode.STANDARD
    assert "Key:" in result.text.splitlines()[0]
    assert "[INTRO]" in result.text


@pytest.mark.asyncio
async def test_styles_fallback_keeps_standard_format() -> None:
    provider = StubProvider(failing={"generate"})
    request = GenerationRequest(styles=["smoky jazz"], seed=5)

    fallback = await _orchestrator(provider).generate(
        request, _online_config(fallback_to_deterministic=True)
    )

    assert fallback.used_llm is False
    assert "Key:" in fallback.text.splitlines()[0]
    assert "[INTRO]" in fallback.text
    assert "Genre: smoky jazz" in fallback.text
