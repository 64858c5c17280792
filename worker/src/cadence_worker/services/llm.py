"""LLM provider clients over httpx.

Each provider id maps to one implementation in ``_PROVIDER_FACTORIES``; the
rest of the worker talks to them only through :func:`call_llm` and
:func:`stream_text`. Both accept an :class:`LLMRequest` and never read global
state.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol

import httpx
from loguru import logger

from .exceptions import GenerationFailure, ProviderError
from .trace import TraceCollector, trace_error

RETRYABLE_STATUS = frozenset({408, 409, 425, 429, 500, 502, 503, 504})
MAX_BACKOFF_SECONDS = 8.0
ANTHROPIC_VERSION = "2023-06-01"


class ProviderId(str, Enum):
    GROQ = "groq"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


MODELS_BY_PROVIDER: Dict[ProviderId, tuple[str, ...]] = {
    ProviderId.GROQ: ("openai/gpt-oss-120b", "llama-3.1-8b-instant"),
    ProviderId.OPENAI: ("gpt-5-mini", "gpt-5"),
    ProviderId.ANTHROPIC: ("claude-sonnet-4-5-20250929", "claude-haiku-4-5-20251001"),
}

DEFAULT_MODELS: Dict[ProviderId, str] = {
    provider: models[0] for provider, models in MODELS_BY_PROVIDER.items()
}

_ENDPOINTS: Dict[ProviderId, str] = {
    ProviderId.GROQ: "https://api.groq.com/openai/v1/chat/completions",
    ProviderId.OPENAI: "https://api.openai.com/v1/chat/completions",
    ProviderId.ANTHROPIC: "https://api.anthropic.com/v1/messages",
}


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str


@dataclass(frozen=True)
class LLMRequest:
    model: str
    system: Optional[str] = None
    prompt: Optional[str] = None
    messages: Optional[tuple[ChatMessage, ...]] = None
    temperature: float = 0.7
    max_tokens: int = 2000
    max_retries: int = 2
    timeout_seconds: float = 90.0
    backoff_seconds: float = 0.5
    stream: bool = False

    def conversation(self) -> List[Dict[str, str]]:
        """User/assistant turns, excluding the system prompt."""

        if self.messages:
            return [{"role": message.role, "content": message.content} for message in self.messages]
        return [{"role": "user", "content": self.prompt or ""}]

    def chat_messages(self) -> List[Dict[str, str]]:
        messages: List[Dict[str, str]] = []
        if self.system:
            messages.append({"role": "system", "content": self.system})
        messages.extend(self.conversation())
        return messages


@dataclass(frozen=True)
class LLMResponse:
    text: str
    provider: str
    model: str
    attempts: int = 1
    latency_ms: int = 0
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, int]] = None
    request_id: Optional[str] = None


class LLMProvider(Protocol):
    provider_id: ProviderId

    async def send(self, request: LLMRequest) -> LLMResponse: ...

    def stream(self, request: LLMRequest) -> AsyncIterator[str]: ...


def _status_error(provider: ProviderId, exc: httpx.HTTPStatusError) -> ProviderError:
    status = exc.response.status_code
    return ProviderError(
        f"{provider.value} returned HTTP {status}",
        status_code=status,
        retryable=status in RETRYABLE_STATUS,
        request_id=exc.response.headers.get("x-request-id") or exc.response.headers.get("request-id"),
    )


def _int_usage(raw: Any) -> Optional[Dict[str, int]]:
    if not isinstance(raw, dict):
        return None
    usage = {key: int(value) for key, value in raw.items() if isinstance(value, (int, float))}
    return usage or None


class OpenAICompatibleProvider:
    """Chat-completions API used by both Groq and OpenAI."""

    def __init__(
        self,
        provider_id: ProviderId,
        api_key: str,
        client: httpx.AsyncClient,
        *,
        url: Optional[str] = None,
    ) -> None:
        self.provider_id = provider_id
        self._api_key = api_key
        self._client = client
        self._url = url or _ENDPOINTS[provider_id]

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    def _payload(self, request: LLMRequest, *, stream: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": request.model,
            "messages": request.chat_messages(),
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        if stream:
            payload["stream"] = True
        return payload

    async def send(self, request: LLMRequest) -> LLMResponse:
        try:
            response = await self._client.post(
                self._url,
                json=self._payload(request, stream=False),
                headers=self._headers(),
                timeout=request.timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise _status_error(self.provider_id, exc) from exc
        except httpx.TimeoutException as exc:
            raise ProviderError(f"{self.provider_id.value} request timed out", retryable=True) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.provider_id.value} transport error: {exc}", retryable=True) from exc

        try:
            data = response.json()
            choice = data["choices"][0]
            text = choice["message"].get("content") or ""
            if not isinstance(text, str):
                raise TypeError("message content is not a string")
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as exc:
            raise ProviderError(f"{self.provider_id.value} returned a malformed body") from exc
        return LLMResponse(
            text=text,
            provider=self.provider_id.value,
            model=str(data.get("model") or request.model),
            finish_reason=choice.get("finish_reason"),
            usage=_int_usage(data.get("usage")),
            request_id=response.headers.get("x-request-id"),
        )

    async def stream(self, request: LLMRequest) -> AsyncIterator[str]:
        try:
            async with self._client.stream(
                "POST",
                self._url,
                json=self._payload(request, stream=True),
                headers=self._headers(),
                timeout=request.timeout_seconds,
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.startswith("data: "):
                        continue
                    data_str = line[6:].strip()
                    if data_str == "[DONE]":
                        break
                    try:
                        chunk = json.loads(data_str)
                    except json.JSONDecodeError:
                        logger.warning("skipping undecodable stream chunk from {}", self.provider_id.value)
                        continue
                    if not isinstance(chunk, dict):
                        continue
                    choices = chunk.get("choices")
                    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
                        continue
                    delta = choices[0].get("delta")
                    content = delta.get("content") if isinstance(delta, dict) else None
                    if isinstance(content, str) and content:
                        yield content
        except httpx.HTTPStatusError as exc:
            raise _status_error(self.provider_id, exc) from exc
        except httpx.TimeoutException as exc:
            raise ProviderError(f"{self.provider_id.value} stream timed out", retryable=True) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.provider_id.value} stream failed: {exc}", retryable=True) from exc


class AnthropicProvider:
    """Anthropic messages API."""

    def __init__(
        self,
        provider_id: ProviderId,
        api_key: str,
        client: httpx.AsyncClient,
        *,
        url: Optional[str] = None,
    ) -> None:
        self.provider_id = provider_id
        self._api_key = api_key
        self._client = client
        self._url = url or _ENDPOINTS[provider_id]

    def _headers(self) -> Dict[str, str]:
        return {"x-api-key": self._api_key, "anthropic-version": ANTHROPIC_VERSION}

    def _payload(self, request: LLMRequest, *, stream: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": request.model,
            "messages": request.conversation(),
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
        }
        if request.system:
            payload["system"] = request.system
        if stream:
            payload["stream"] = True
        return payload

    async def send(self, request: LLMRequest) -> LLMResponse:
        try:
            response = await self._client.post(
                self._url,
                json=self._payload(request, stream=False),
                headers=self._headers(),
                timeout=request.timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise _status_error(self.provider_id, exc) from exc
        except httpx.TimeoutException as exc:
            raise ProviderError("anthropic request timed out", retryable=True) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"anthropic transport error: {exc}", retryable=True) from exc

        try:
            data = response.json()
            blocks = data["content"]
            text = "".join(
                str(block.get("text") or "")
                for block in blocks
                if isinstance(block, dict) and block.get("type") == "text"
            )
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise ProviderError("anthropic returned a malformed body") from exc
        return LLMResponse(
            text=text,
            provider=self.provider_id.value,
            model=str(data.get("model") or request.model),
            finish_reason=data.get("stop_reason"),
            usage=_int_usage(data.get("usage")),
            request_id=response.headers.get("request-id"),
        )

    async def stream(self, request: LLMRequest) -> AsyncIterator[str]:
        try:
            async with self._client.stream(
                "POST",
                self._url,
                json=self._payload(request, stream=True),
                headers=self._headers(),
                timeout=request.timeout_seconds,
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.startswith("data: "):
                        continue
                    try:
                        event = json.loads(line[6:])
                    except json.JSONDecodeError:
                        continue
                    if not isinstance(event, dict):
                        continue
                    if event.get("type") == "message_stop":
                        break
                    if event.get("type") == "content_block_delta":
                        delta = event.get("delta")
                        text = delta.get("text") if isinstance(delta, dict) else None
                        if isinstance(text, str) and text:
                            yield text
        except httpx.HTTPStatusError as exc:
            raise _status_error(self.provider_id, exc) from exc
        except httpx.TimeoutException as exc:
            raise ProviderError("anthropic stream timed out", retryable=True) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"anthropic stream failed: {exc}", retryable=True) from exc


_PROVIDER_FACTORIES: Dict[ProviderId, Callable[..., LLMProvider]] = {
    ProviderId.GROQ: OpenAICompatibleProvider,
    ProviderId.OPENAI: OpenAICompatibleProvider,
    ProviderId.ANTHROPIC: AnthropicProvider,
}


def create_provider(
    provider_id: ProviderId | str,
    api_key: str,
    client: httpx.AsyncClient,
) -> LLMProvider:
    resolved = ProviderId(provider_id)
    return _PROVIDER_FACTORIES[resolved](resolved, api_key, client)


def default_model_for(provider_id: ProviderId | str, model: Optional[str]) -> str:
    """Return ``model`` when the provider offers it, else the provider default."""

    resolved = ProviderId(provider_id)
    if model and model in MODELS_BY_PROVIDER[resolved]:
        return model
    return DEFAULT_MODELS[resolved]


def stream_text(provider: LLMProvider, request: LLMRequest) -> AsyncIterator[str]:
    """Pull-based text deltas; cancelling the consumer closes the HTTP stream."""

    return provider.stream(request)


async def _collect_stream(provider: LLMProvider, request: LLMRequest) -> LLMResponse:
    chunks: List[str] = []
    async for chunk in stream_text(provider, request):
        chunks.append(chunk)
    return LLMResponse(text="".join(chunks), provider=provider.provider_id.value, model=request.model)


async def call_llm(
    provider: LLMProvider,
    request: LLMRequest,
    *,
    label: str = "generate",
    trace: Optional[TraceCollector] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> LLMResponse:
    """Call ``provider`` with bounded retries and an overall timeout.

    Rate limits, 5xx responses, timeouts and transport errors are retried with
    exponential backoff; other client errors fail immediately. An empty reply
    counts as a failure. Raises :class:`GenerationFailure` once every attempt
    is spent or the timeout expires.
    """

    provider_name = provider.provider_id.value
    started = time.perf_counter()
    attempts = 0
    last_error: Optional[ProviderError] = None

    try:
        async with asyncio.timeout(request.timeout_seconds):
            for attempt in range(request.max_retries + 1):
                attempts += 1
                try:
                    if request.stream:
                        response = await _collect_stream(provider, request)
                    else:
                        response = await provider.send(request)
                except ProviderError as exc:
                    last_error = exc
                    if not exc.retryable or attempt >= request.max_retries:
                        break
                    delay = min(request.backoff_seconds * (2**attempt), MAX_BACKOFF_SECONDS)
                    logger.warning(
                        "{} call '{}' failed (attempt {}/{}): {}; retrying in {:.2f}s",
                        provider_name,
                        label,
                        attempt + 1,
                        request.max_retries + 1,
                        exc,
                        delay,
                    )
                    await sleep(delay)
                    continue

                if not response.text.strip():
                    last_error = ProviderError(f"{provider_name} returned an empty response")
                    break

                latency_ms = int((time.perf_counter() - started) * 1000)
                result = replace(response, attempts=attempts, latency_ms=latency_ms)
                if trace is not None:
                    trace.llm_call(
                        label=label,
                        provider_id=provider_name,
                        model=result.model,
                        messages=request.chat_messages(),
                        response_text=result.text,
                        temperature=request.temperature,
                        max_tokens=request.max_tokens,
                        max_retries=request.max_retries,
                        provider_options={"stream": request.stream},
                        latency_ms=latency_ms,
                        finish_reason=result.finish_reason,
                        usage=result.usage,
                        attempts=attempts,
                    )
                return result
    except TimeoutError as exc:
        last_error = ProviderError(
            f"{provider_name} call '{label}' timed out after {request.timeout_seconds:.1f}s",
            retryable=True,
        )
        last_error.__cause__ = exc

    message = str(last_error) if last_error else f"{provider_name} call '{label}' failed"
    status = last_error.status_code if last_error else None
    if trace is not None:
        trace.llm_call(
            label=label,
            provider_id=provider_name,
            model=request.model,
            messages=request.chat_messages(),
            response_text="",
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            max_retries=request.max_retries,
            provider_options={"stream": request.stream},
            latency_ms=int((time.perf_counter() - started) * 1000),
            finish_reason="error",
            attempts=attempts,
        )
    trace_error(
        trace,
        error_type="ai.generation",
        message=f"{label}: {message}",
        status=status,
        provider_request_id=last_error.request_id if last_error else None,
    )
    raise GenerationFailure(message, provider=provider_name, status=status) from last_error
