"""Postprocessing pipeline for LLM prompt output.

Every sub-call here is optional: when one fails the text from the previous
step is kept, so the pipeline always ends with an in-budget prompt.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Sequence

from loguru import logger

from .exceptions import GenerationFailure
from .formatter import truncate_prompt
from .llm import LLMProvider, LLMRequest, call_llm
from .postprocess import (
    dedup_deterministic,
    detect_repeated_words,
    has_leaked_meta,
    needs_deduplication,
    scrub_leaked_meta,
    validate_and_fix_format,
)
from .prompts import (
    DEDUP_SYSTEM_PROMPT,
    REWRITE_SYSTEM_PROMPT,
    condense_system_prompt,
    dedup_user_prompt,
    rewrite_user_prompt,
)
from .trace import TraceCollector, trace_decision
from .types import EngineConfig

DEDUP_RETRIES = 2
CONDENSE_RETRIES = 2
REWRITE_RETRIES = 1
CONDENSE_MARGIN = 50


class PromptRewriter:
    def __init__(
        self,
        provider: LLMProvider,
        config: EngineConfig,
        *,
        trace: Optional[TraceCollector] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._config = config
        self._trace = trace
        self._sleep = sleep

    async def _sub_call(self, label: str, system: str, prompt: str, retries: int) -> Optional[str]:
        request = LLMRequest(
            model=self._config.model,
            system=system,
            prompt=prompt,
            temperature=self._config.temperature,
            max_tokens=self._config.max_tokens,
            max_retries=retries,
            timeout_seconds=self._config.timeout_seconds,
            backoff_seconds=self._config.retry_backoff_seconds,
        )
        try:
            response = await call_llm(
                self._provider,
                request,
                label=label,
                trace=self._trace,
                sleep=self._sleep,
            )
        except GenerationFailure as exc:
            logger.warning("{} sub-call failed; keeping previous text: {}", label, exc)
            return None
        text = response.text.strip()
        return text or None

    async def rewrite_without_meta(self, text: str) -> str:
        result = await self._sub_call(
            "rewrite-without-meta", REWRITE_SYSTEM_PROMPT, rewrite_user_prompt(text), REWRITE_RETRIES
        )
        return result or text

    async def condense_with_dedup(self, text: str, repeated_words: Sequence[str]) -> str:
        result = await self._sub_call(
            "condense-with-dedup",
            DEDUP_SYSTEM_PROMPT,
            dedup_user_prompt(text, repeated_words),
            DEDUP_RETRIES,
        )
        return result or text

    async def condense(self, text: str, target_chars: int) -> str:
        result = await self._sub_call(
            "condense", condense_system_prompt(target_chars), rewrite_user_prompt(text), CONDENSE_RETRIES
        )
        return result or text

    async def postprocess(self, text: str, *, max_mode: bool) -> str:
        """Scrub leaked instructions, fix the header, dedupe and bound the length."""

        min_chars = self._config.min_chars
        max_chars = self._config.max_chars
        original = text.strip()

        current = scrub_leaked_meta(original, min_chars)
        if has_leaked_meta(current):
            trace_decision(
                self._trace,
                domain="postprocess",
                key="postprocess.leaked-meta",
                branch_taken="rewrite",
                why="leaked instruction text survived the scrub",
            )
            current = scrub_leaked_meta(await self.rewrite_without_meta(current), min_chars)

        current = validate_and_fix_format(current, max_mode=max_mode)

        current = dedup_deterministic(current)
        if needs_deduplication(current):
            repeated = detect_repeated_words(current)
            trace_decision(
                self._trace,
                domain="postprocess",
                key="postprocess.dedup",
                branch_taken="condense-with-dedup",
                why=f"{len(repeated)} repeated words: {', '.join(repeated[:10])}",
            )
            current = await self.condense_with_dedup(current, repeated)

        if len(current) > max_chars:
            trace_decision(
                self._trace,
                domain="postprocess",
                key="postprocess.length",
                branch_taken="condense",
                why=f"{len(current)} chars exceeds {max_chars}",
            )
            current = await self.condense(current, max(max_chars - CONDENSE_MARGIN, min_chars))
            if len(current) > max_chars:
                current = truncate_prompt(current, max_chars)

        current = scrub_leaked_meta(current, min_chars)
        if len(current) < min_chars:
            logger.warning("postprocessed prompt fell below {} chars; keeping original", min_chars)
            return truncate_prompt(original, max_chars)
        return current
