from __future__ import annotations

from typing import AsyncIterator, Dict, Iterable, List, Optional

import httpx
import pytest

from cadence_worker.services.exceptions import ProviderError
from cadence_worker.services.formatter import MAX_MODE_HEADER
from cadence_worker.services.llm import LLMRequest, LLMResponse, OpenAICompatibleProvider, ProviderId
from cadence_worker.services.prompts import DEDUP_SYSTEM_PROMPT, REWRITE_SYSTEM_PROMPT
from cadence_worker.services.rewriter import PromptRewriter
from cadence_worker.services.types import EngineConfig

HEADER = "[Calm, Jazz, Key: C Major]"


def _call_kind(system: str) -> str:
    if system == DEDUP_SYSTEM_PROMPT:
        return "dedup"
    if system == REWRITE_SYSTEM_PROMPT:
        return "rewrite"
    if system.startswith("Shorten"):
        return "condense"
    return "other"


class StubProvider:
    provider_id = ProviderId.GROQ

    def __init__(
        self,
        replies: Optional[Dict[str, str]] = None,
        failing: Iterable[str] = (),
    ) -> None:
        self.replies = replies or {}
        self.failing = set(failing)
        self.calls: List[str] = []

    async def send(self, request: LLMRequest) -> LLMResponse:
        kind = _call_kind(request.system or "")
        self.calls.append(kind)
        if kind in self.failing:
            raise ProviderError(f"{kind} rejected", status_code=400)
        return LLMResponse(text=self.replies.get(kind, ""), provider="groq", model=request.model)

    async def stream(self, request: LLMRequest) -> AsyncIterator[str]:
        yield (await self.send(request)).text


async def _no_sleep(_: float) -> None:
    return None


def _rewriter(provider: object, *, max_chars: int = 1000) -> PromptRewriter:
    config = EngineConfig(api_key="test-key", max_chars=max_chars, retry_backoff_seconds=0.0)
    return PromptRewriter(provider, config, sleep=_no_sleep)


@pytest.mark.asyncio
async def test_clean_prompt_needs_no_sub_calls() -> None:
    provider = StubProvider()
    text = f"{HEADER}\n\nGenre: jazz\nBPM: between 80 and 160\nMood: mellow"

    result = await _rewriter(provider).postprocess(f"  {text}\n", max_mode=False)

    assert result == text
    assert provider.calls == []


@pytest.mark.asyncio
async def test_missing_header_is_restored_without_llm() -> None:
    provider = StubProvider()

    standard = await _rewriter(provider).postprocess(
        "Genre: Jazz\nMood: Mellow, warm\nInstruments: piano", max_mode=False
    )
    max_mode = await _rewriter(provider).postprocess(
        'genre: "jazz"\nbpm: "between 80 and 160"', max_mode=True
    )

    assert standard.startswith("[Mellow, Jazz, Key: C Major]\n\nGenre: Jazz")
    assert max_mode.startswith(MAX_MODE_HEADER)
    assert provider.calls == []


@pytest.mark.asyncio
async def test_repeated_words_trigger_dedup_call() -> None:
    deduped = f"{HEADER}\n\nwarm piano, upright bass, smoky strings"
    provider = StubProvider(replies={"dedup": deduped})
    text = f"{HEADER}\n\nwarm piano warm bass, smoky piano smoky bass, lush strings lush horns"

    result = await _rewriter(provider).postprocess(text, max_mode=False)

    assert result == deduped
    assert provider.calls == ["dedup"]


@pytest.mark.asyncio
async def test_failed_dedup_keeps_previous_text() -> None:
    provider = StubProvider(failing={"dedup"})
    text = f"{HEADER}\n\nwarm piano warm bass, smoky piano smoky bass, lush strings lush horns"

    result = await _rewriter(provider).postprocess(text, max_mode=False)

    assert result == text
    assert provider.calls == ["dedup"]


@pytest.mark.asyncio
async def test_over_length_prompt_is_condensed_then_truncated() -> None:
    provider = StubProvider(replies={"condense": f"{HEADER}\n\n" + "x" * 200})
    text = f"{HEADER}\n\n" + ", ".join(f"tag{index}" for index in range(60))

    result = await _rewriter(provider, max_chars=120).postprocess(text, max_mode=False)

    assert provider.calls == ["condense"]
    assert len(result) <= 120
    assert result.startswith(HEADER)


@pytest.mark.asyncio
async def test_condensed_reply_within_budget_is_used() -> None:
    condensed = f"{HEADER}\n\nGenre: jazz, short"
    provider = StubProvider(replies={"condense": condensed})
    text = f"{HEADER}\n\n" + ", ".join(f"tag{index}" for index in range(60))

    result = await _rewriter(provider, max_chars=120).postprocess(text, max_mode=False)

    assert result == condensed


@pytest.mark.asyncio
async def test_leaked_meta_triggers_rewrite() -> None:
    rewritten = f"{HEADER}\n\nGenre: jazz\nInstruments: warm analog piano, brushed drums"
    provider = StubProvider(replies={"rewrite": rewritten})

    result = await _rewriter(provider).postprocess(
        "Output only: warm analog piano with soft brushed drums", max_mode=False
    )

    assert result == rewritten
    assert provider.calls == ["rewrite"]


@pytest.mark.asyncio
async def test_leaked_meta_lines_are_scrubbed_locally() -> None:
    provider = StubProvider()
    text = f"{HEADER}\n\nGenre: jazz\nOutput only the prompt please\nMood: mellow"

    result = await _rewriter(provider).postprocess(text, max_mode=False)

    assert "output only" not in result.lower()
    assert "Mood: mellow" in result
    assert provider.calls == []


@pytest.mark.asyncio
async def test_duplicate_lines_are_dropped_without_dedup_call() -> None:
    provider = StubProvider()
    body = "Genre: jazz\nInstruments: warm piano, upright bass\nMood: mellow"
    text = f"{HEADER}\n\n{body}\n{body}\n{body}"

    result = await _rewriter(provider).postprocess(text, max_mode=False)

    assert result == f"{HEADER}\n\n{body}"
    assert provider.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"choices": [{"message": "oops"}]},
        ["not", "an", "object"],
        {"choices": [{"message": {"content": 42}}]},
    ],
)
async def test_malformed_provider_body_keeps_previous_text(body: object) -> None:
    calls: List[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(200, json=body)

    text = f"{HEADER}\n\nGenre: jazz\nInstruments: warm piano, upright bass"
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = OpenAICompatibleProvider(ProviderId.GROQ, "test-key", client)
        result = await _rewriter(provider).condense(text, 100)

    assert result == text
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_undecodable_provider_body_keeps_previous_text() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"\x1f\x8b broken", headers={"Content-Encoding": "gzip"})

    text = f"{HEADER}\n\nGenre: jazz\nInstruments: warm piano, upright bass"
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = OpenAICompatibleProvider(ProviderId.GROQ, "test-key", client)
        result = await _rewriter(provider).condense(text, 100)

    assert result == text
