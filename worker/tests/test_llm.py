from __future__ import annotations

import json
from typing import List

import httpx
import pytest

from cadence_worker.services.exceptions import GenerationFailure, ProviderError
from cadence_worker.services.llm import (
    AnthropicProvider,
    LLMRequest,
    OpenAICompatibleProvider,
    ProviderId,
    call_llm,
    create_provider,
    default_model_for,
    stream_text,
)
from cadence_worker.services.trace import TraceCollector


async def _no_sleep(_: float) -> None:
    return None


def _chat_body(text: str) -> dict:
    return {
        "model": "openai/gpt-oss-120b",
        "choices": [{"message": {"role": "assistant", "content": text}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 12, "completion_tokens": 5},
    }


def _request(**overrides: object) -> LLMRequest:
    values: dict = {
        "model": "openai/gpt-oss-120b",
        "system": "system text",
        "prompt": "user text",
        "max_retries": 2,
        "timeout_seconds": 5.0,
        "backoff_seconds": 0.01,
    }
    values.update(overrides)
    return LLMRequest(**values)


def test_default_model_for_unknown_model() -> None:
    assert default_model_for("openai", "gpt-5") == "gpt-5"
    assert default_model_for(ProviderId.GROQ, "gpt-5") == "openai/gpt-oss-120b"
    assert default_model_for("anthropic", None).startswith("claude-")


@pytest.mark.asyncio
async def test_openai_compatible_provider_sends_chat_payload() -> None:
    seen: List[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        assert request.headers["Authorization"] == "Bearer test-key"
        return httpx.Response(200, json=_chat_body("a prompt"))

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = create_provider("groq", "test-key", client)
        response = await provider.send(_request())

    assert isinstance(provider, OpenAICompatibleProvider)
    assert response.text == "a prompt"
    assert response.finish_reason == "stop"
    assert response.usage == {"prompt_tokens": 12, "completion_tokens": 5}
    assert seen[0]["messages"] == [
        {"role": "system", "content": "system text"},
        {"role": "user", "content": "user text"},
    ]


@pytest.mark.asyncio
async def test_call_llm_retries_rate_limit_then_succeeds() -> None:
    calls = {"count": 0}
    delays: List[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(429, json={"error": "slow down"})
        return httpx.Response(200, json=_chat_body("second time lucky"))

    async def record_sleep(delay: float) -> None:
        delays.append(delay)

    trace = TraceCollector(action="generate", prompt_mode="max", seed=1)
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = create_provider("openai", "test-key", client)
        response = await call_llm(provider, _request(), label="generate", trace=trace, sleep=record_sleep)

    assert response.text == "second time lucky"
    assert response.attempts == 2
    assert calls["count"] == 2
    assert delays == [pytest.approx(0.01)]
    llm_events = [event for event in trace.run.events if event.type == "llm.call"]
    assert len(llm_events) == 1
    assert llm_events[0].attempts is not None and llm_events[0].attempts.used == 2


@pytest.mark.asyncio
async def test_call_llm_fails_fast_on_client_error() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(400, json={"error": "bad request"})

    trace = TraceCollector(action="generate", prompt_mode="max", seed=1)
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = create_provider("groq", "test-key", client)
        with pytest.raises(GenerationFailure) as excinfo:
            await call_llm(provider, _request(), trace=trace, sleep=_no_sleep)

    assert calls["count"] == 1
    assert excinfo.value.status == 400
    assert excinfo.value.provider == "groq"
    assert trace.run.stats.had_errors is True


@pytest.mark.asyncio
async def test_call_llm_gives_up_after_retries() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(503)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = create_provider("groq", "test-key", client)
        with pytest.raises(GenerationFailure):
            await call_llm(provider, _request(max_retries=3), sleep=_no_sleep)

    assert calls["count"] == 4


@pytest.mark.asyncio
async def test_call_llm_treats_empty_text_as_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_chat_body("   "))

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = create_provider("groq", "test-key", client)
        with pytest.raises(GenerationFailure, match="empty"):
            await call_llm(provider, _request(), sleep=_no_sleep)


@pytest.mark.asyncio
async def test_transport_errors_are_retryable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = create_provider("groq", "test-key", client)
        with pytest.raises(ProviderError) as excinfo:
            await provider.send(_request())

    assert excinfo.value.retryable is True


@pytest.mark.asyncio
async def test_anthropic_provider_uses_messages_api() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "model": "claude-haiku-4-5-20251001",
                "content": [{"type": "text", "text": "Hello "}, {"type": "text", "text": "there"}],
                "stop_reason": "end_turn",
                "usage": {"input_tokens": 3, "output_tokens": 2},
            },
            headers={"request-id": "req_123"},
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = create_provider("anthropic", "ant-key", client)
        response = await provider.send(_request(model="claude-haiku-4-5-20251001"))

    assert isinstance(provider, AnthropicProvider)
    assert response.text == "Hello there"
    assert response.request_id == "req_123"
    body = json.loads(seen[0].content)
    assert body["system"] == "system text"
    assert body["messages"] == [{"role": "user", "content": "user text"}]
    assert seen[0].headers["x-api-key"] == "ant-key"


@pytest.mark.asyncio
async def test_openai_stream_yields_deltas() -> None:
    events = [
        {"choices": [{"delta": {"content": "warm "}}]},
        {"choices": [{"delta": {"content": "tape"}}]},
    ]
    body = "".join(f"data: {json.dumps(event)}\n\n" for event in events) + "data: [DONE]\n\n"

    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content)["stream"] is True
        return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = create_provider("openai", "test-key", client)
        chunks = [chunk async for chunk in stream_text(provider, _request(stream=True))]

    assert chunks == ["warm ", "tape"]


@pytest.mark.asyncio
async def test_call_llm_collects_stream() -> None:
    events = [
        {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "lush "}},
        {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "strings"}},
        {"type": "message_stop"},
    ]
    body = "".join(f"event: x\ndata: {json.dumps(event)}\n\n" for event in events)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = create_provider("anthropic", "ant-key", client)
        response = await call_llm(provider, _request(stream=True), sleep=_no_sleep)

    assert response.text == "lush strings"


@pytest.mark.asyncio
async def test_stream_skips_chunks_with_unexpected_shape() -> None:
    events: List[object] = [
        ["not", "a", "chunk"],
        {"choices": "nope"},
        {"choices": [{"delta": "flat"}]},
        {"choices": [{"delta": {"content": "warm "}}]},
        {"choices": [{"delta": {"content": "tape"}}]},
    ]
    body = "".join(f"data: {json.dumps(event)}\n\n" for event in events) + "data: [DONE]\n\n"

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = create_provider("groq", "test-key", client)
        chunks = [chunk async for chunk in stream_text(provider, _request(stream=True))]

    assert chunks == ["warm ", "tape"]


@pytest.mark.asyncio
async def test_anthropic_malformed_blocks_raise_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"content": "just text"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = create_provider("anthropic", "ant-key", client)
        with pytest.raises(GenerationFailure):
            await call_llm(provider, _request(model="claude-haiku-4-5-20251001"), sleep=_no_sleep)
