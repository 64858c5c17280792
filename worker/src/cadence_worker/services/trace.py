"""Structured, size-capped decision trace for a single generation run.

A :class:`TraceCollector` is created per request and owned by that request's
call chain. Every decision, LLM call and error is appended as an event; the
finished :class:`TraceRun` serialises with camelCase keys and is compacted by
:func:`enforce_trace_size_cap` before it leaves the worker.
"""

from __future__ import annotations

import json
import re
import time
from datetime import UTC, datetime
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

TRACE_VERSION = 1
TRACE_CAP_BYTES = 64 * 1024
PREVIEW_CHARS = 500
_CANDIDATES_PREVIEW = 8
_PERSISTED_BYTES_ITERATIONS = 6

ErrorType = Literal["validation", "ai.generation", "storage", "invariant", "provider", "unknown"]


class _TraceModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TraceRngInfo(_TraceModel):
    seed: int
    algorithm: str = "mulberry32"


class TraceStats(_TraceModel):
    event_count: int = 0
    llm_call_count: int = 0
    decision_count: int = 0
    had_errors: bool = False
    persisted_bytes: int = 0
    truncated_for_cap: bool = False


class TraceSelection(_TraceModel):
    method: str
    chosen_index: Optional[int] = None
    candidates_count: Optional[int] = None
    candidates_preview: Optional[List[str]] = None
    rolls: Optional[List[float]] = None


class TraceInputSummary(_TraceModel):
    message_count: int
    total_chars: int
    preview: str


class TraceMessage(_TraceModel):
    role: str
    content: str


class TraceLlmProvider(_TraceModel):
    id: str
    model: str
    locality: Literal["cloud", "local"] = "cloud"


class TraceLlmRequest(_TraceModel):
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    max_retries: Optional[int] = None
    provider_options: Optional[Dict[str, Any]] = None
    input_summary: TraceInputSummary
    messages: Optional[List[TraceMessage]] = None


class TraceLlmResponse(_TraceModel):
    preview_text: str = ""
    raw_text: Optional[str] = None


class TraceLlmTelemetry(_TraceModel):
    latency_ms: Optional[int] = None
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, int]] = None


class TraceLlmAttempts(_TraceModel):
    used: int
    max_retries: int


class _EventBase(_TraceModel):
    id: str
    ts: str
    t_ms: int


class TraceRunStartEvent(_EventBase):
    type: Literal["run.start"] = "run.start"
    summary: Optional[str] = None


class TraceRunEndEvent(_EventBase):
    type: Literal["run.end"] = "run.end"
    summary: Optional[str] = None


class TraceDecisionEvent(_EventBase):
    type: Literal["decision"] = "decision"
    domain: str
    key: str
    branch_taken: str
    why: str
    selection: Optional[TraceSelection] = None


class TraceLlmCallEvent(_EventBase):
    type: Literal["llm.call"] = "llm.call"
    label: str
    provider: TraceLlmProvider
    request: TraceLlmRequest
    response: TraceLlmResponse
    telemetry: Optional[TraceLlmTelemetry] = None
    attempts: Optional[TraceLlmAttempts] = None


class TraceErrorEvent(_EventBase):
    type: Literal["error"] = "error"
    error_type: ErrorType
    message: str
    status: Optional[int] = None
    provider_request_id: Optional[str] = None


TraceEvent = Annotated[
    Union[
        TraceRunStartEvent,
        TraceRunEndEvent,
        TraceDecisionEvent,
        TraceLlmCallEvent,
        TraceErrorEvent,
    ],
    Field(discriminator="type"),
]


class TraceRun(_TraceModel):
    version: int = TRACE_VERSION
    run_id: str
    captured_at: str
    action: str
    prompt_mode: str
    rng: TraceRngInfo
    stats: TraceStats = Field(default_factory=TraceStats)
    events: List[TraceEvent] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Redaction


_SECRET_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"sk-ant-[A-Za-z0-9_\-]{8,}"), "sk-ant-[REDACTED]"),
    (re.compile(r"sk-(?:proj-)?[A-Za-z0-9_\-]{16,}"), "sk-[REDACTED]"),
    (re.compile(r"gsk_[A-Za-z0-9]{16,}"), "gsk_[REDACTED]"),
    (re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._\-]+"), "Bearer [REDACTED]"),
    (re.compile(r'(?i)("api[_-]?key"\s*:\s*")[^"]*(")'), r"\1[REDACTED]\2"),
    (re.compile(r"(?i)\b(api[_-]?key\s*[=:]\s*)[^\s&,\"']+"), r"\1[REDACTED]"),
]


def redact_secrets(text: str) -> str:
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def _preview(text: str, limit: int = PREVIEW_CHARS) -> str:
    cleaned = redact_secrets(text)
    if len(cleaned) <= limit:
        return cleaned
    return cleaned[: max(limit - 1, 0)] + "…"


# ---------------------------------------------------------------------------
# Collector


class TraceCollector:
    """Append-only event recorder for one generation run."""

    def __init__(self, *, action: str, prompt_mode: str, seed: int) -> None:
        self._started = time.perf_counter()
        self._counter = 0
        self.run = TraceRun(
            run_id=uuid4().hex,
            captured_at=_iso_now(),
            action=action,
            prompt_mode=prompt_mode,
            rng=TraceRngInfo(seed=seed),
        )

    def _next_base(self) -> Dict[str, Any]:
        self._counter += 1
        return {
            "id": f"{self.run.run_id}.{self._counter}",
            "ts": _iso_now(),
            "t_ms": int((time.perf_counter() - self._started) * 1000),
        }

    def start(self, summary: Optional[str] = None) -> None:
        self.run.events.append(TraceRunStartEvent(**self._next_base(), summary=summary))

    def end(self, summary: Optional[str] = None) -> None:
        self.run.events.append(TraceRunEndEvent(**self._next_base(), summary=summary))

    def decision(
        self,
        *,
        domain: str,
        key: str,
        branch_taken: str,
        why: str,
        selection: Optional[TraceSelection] = None,
    ) -> None:
        self.run.events.append(
            TraceDecisionEvent(
                **self._next_base(),
                domain=domain,
                key=key,
                branch_taken=branch_taken,
                why=redact_secrets(why),
                selection=selection,
            )
        )

    def llm_call(
        self,
        *,
        label: str,
        provider_id: str,
        model: str,
        messages: List[Dict[str, str]],
        response_text: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        max_retries: Optional[int] = None,
        provider_options: Optional[Dict[str, Any]] = None,
        latency_ms: Optional[int] = None,
        finish_reason: Optional[str] = None,
        usage: Optional[Dict[str, int]] = None,
        attempts: Optional[int] = None,
    ) -> None:
        joined = "\n\n".join(message["content"] for message in messages)
        self.run.events.append(
            TraceLlmCallEvent(
                **self._next_base(),
                label=label,
                provider=TraceLlmProvider(id=provider_id, model=model),
                request=TraceLlmRequest(
                    temperature=temperature,
                    max_tokens=max_tokens,
                    max_retries=max_retries,
                    provider_options=provider_options,
                    input_summary=TraceInputSummary(
                        message_count=len(messages),
                        total_chars=len(joined),
                        preview=_preview(joined),
                    ),
                    messages=[
                        TraceMessage(role=message["role"], content=redact_secrets(message["content"]))
                        for message in messages
                    ],
                ),
                response=TraceLlmResponse(
                    preview_text=_preview(response_text),
                    raw_text=redact_secrets(response_text),
                ),
                telemetry=TraceLlmTelemetry(
                    latency_ms=latency_ms,
                    finish_reason=finish_reason,
                    usage=usage,
                ),
                attempts=(
                    TraceLlmAttempts(used=attempts, max_retries=max_retries or 0)
                    if attempts is not None
                    else None
                ),
            )
        )

    def error(
        self,
        *,
        error_type: ErrorType,
        message: str,
        status: Optional[int] = None,
        provider_request_id: Optional[str] = None,
    ) -> None:
        self.run.stats.had_errors = True
        self.run.events.append(
            TraceErrorEvent(
                **self._next_base(),
                error_type=error_type,
                message=redact_secrets(message),
                status=status,
                provider_request_id=provider_request_id,
            )
        )

    def finalize(self, cap_bytes: int = TRACE_CAP_BYTES) -> TraceRun:
        _refresh_counts(self.run)
        return enforce_trace_size_cap(self.run, cap_bytes)


def trace_decision(
    trace: Optional[TraceCollector],
    *,
    domain: str,
    key: str,
    branch_taken: str,
    why: str,
    selection: Optional[TraceSelection] = None,
) -> None:
    if trace is None:
        return
    trace.decision(domain=domain, key=key, branch_taken=branch_taken, why=why, selection=selection)


def trace_error(
    trace: Optional[TraceCollector],
    *,
    error_type: ErrorType,
    message: str,
    status: Optional[int] = None,
    provider_request_id: Optional[str] = None,
) -> None:
    if trace is None:
        return
    trace.error(
        error_type=error_type,
        message=message,
        status=status,
        provider_request_id=provider_request_id,
    )


def selection_preview(candidates: List[str]) -> List[str]:
    return list(candidates[:_CANDIDATES_PREVIEW])


def _iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


# ---------------------------------------------------------------------------
# Size cap


def _refresh_counts(run: TraceRun) -> None:
    run.stats.event_count = len(run.events)
    run.stats.llm_call_count = sum(1 for event in run.events if event.type == "llm.call")
    run.stats.decision_count = sum(1 for event in run.events if event.type == "decision")
    if any(event.type == "error" for event in run.events):
        run.stats.had_errors = True


def _serialized_size(run: TraceRun) -> int:
    """Return the byte size once ``persisted_bytes`` describes itself."""

    size = 0
    for _ in range(_PERSISTED_BYTES_ITERATIONS):
        run.stats.persisted_bytes = size
        measured = len(run.to_json().encode("utf-8"))
        if measured == size:
            break
        size = measured
    run.stats.persisted_bytes = size
    return size


def _truncate(text: Optional[str], limit: int) -> Optional[str]:
    if text is None or len(text) <= limit:
        return text
    return text[: max(limit - 1, 0)] + "…"


def _llm_events(run: TraceRun) -> List[TraceLlmCallEvent]:
    return [event for event in run.events if isinstance(event, TraceLlmCallEvent)]


def _decision_events(run: TraceRun) -> List[TraceDecisionEvent]:
    return [event for event in run.events if isinstance(event, TraceDecisionEvent)]


def _drop_messages_and_raw_text(run: TraceRun) -> None:
    for event in _llm_events(run):
        event.request.messages = None
        event.response.raw_text = None


def _drop_run_end(run: TraceRun) -> None:
    run.events = [event for event in run.events if event.type != "run.end"]


def _drop_attempts(run: TraceRun) -> None:
    for event in _llm_events(run):
        event.attempts = None


def _drop_provider_options(run: TraceRun) -> None:
    for event in _llm_events(run):
        event.request.provider_options = None


def _drop_selection_detail(run: TraceRun) -> None:
    for event in _decision_events(run):
        if event.selection is not None:
            event.selection.candidates_preview = None
            event.selection.rolls = None


def _compact_text(
    input_limit: int,
    response_limit: int,
    why_limit: int,
    error_limit: int,
    summary_limit: int,
) -> Callable[[TraceRun], None]:
    def apply(run: TraceRun) -> None:
        for event in run.events:
            if isinstance(event, TraceLlmCallEvent):
                event.request.input_summary.preview = _truncate(
                    event.request.input_summary.preview, input_limit
                ) or ""
                event.response.preview_text = _truncate(event.response.preview_text, response_limit) or ""
            elif isinstance(event, TraceDecisionEvent):
                event.why = _truncate(event.why, why_limit) or ""
            elif isinstance(event, TraceErrorEvent):
                event.message = _truncate(event.message, error_limit) or ""
            elif isinstance(event, (TraceRunStartEvent, TraceRunEndEvent)):
                event.summary = _truncate(event.summary, summary_limit)

    return apply


def _drop_errors(run: TraceRun) -> None:
    if any(event.type == "error" for event in run.events):
        run.stats.had_errors = True
    run.events = [event for event in run.events if event.type != "error"]


def _keep_first_decisions(limit: int) -> Callable[[TraceRun], None]:
    def apply(run: TraceRun) -> None:
        kept = 0
        events = []
        for event in run.events:
            if event.type == "decision":
                if kept >= limit:
                    continue
                kept += 1
            events.append(event)
        run.events = events

    return apply


_COMPACTION_LADDER: List[Callable[[TraceRun], None]] = [
    _drop_messages_and_raw_text,
    _drop_run_end,
    _drop_attempts,
    _drop_provider_options,
    _drop_selection_detail,
    _compact_text(300, 300, 200, 200, 120),
    _drop_errors,
    _compact_text(120, 120, 120, 120, 80),
    _keep_first_decisions(25),
    _keep_first_decisions(10),
]


def enforce_trace_size_cap(run: TraceRun, cap_bytes: int = TRACE_CAP_BYTES) -> TraceRun:
    """Return a copy of ``run`` whose JSON form fits within ``cap_bytes``.

    Compaction steps are applied in order until the serialised trace fits;
    ``stats.truncated_for_cap`` records whether any of them ran.
    """

    compacted = run.model_copy(deep=True)
    had_errors = compacted.stats.had_errors or any(
        event.type == "error" for event in compacted.events
    )
    _refresh_counts(compacted)
    if _serialized_size(compacted) <= cap_bytes:
        return compacted

    compacted.stats.truncated_for_cap = True
    for step in _COMPACTION_LADDER:
        step(compacted)
        _refresh_counts(compacted)
        compacted.stats.had_errors = had_errors
        if _serialized_size(compacted) <= cap_bytes:
            break
    return compacted


def load_trace(payload: str) -> TraceRun:
    return TraceRun.model_validate(json.loads(payload))
