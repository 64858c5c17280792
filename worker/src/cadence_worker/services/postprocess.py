"""Deterministic cleanup of raw LLM prompt text."""

from __future__ import annotations

import re
from collections import Counter
from typing import List

from .formatter import MAX_MODE_HEADER

LEAKED_META_SUBSTRINGS = (
    "remove word repetition",
    "remove repetition",
    "these words repeat",
    "output only",
    "condense to under",
    "strict constraints",
    "here's the revised prompt",
    "here is the revised prompt",
)

DEFAULT_MIN_CHARS = 20
REPEATED_WORD_MIN_LENGTH = 4
REPEATED_WORD_THRESHOLD = 3
DEFAULT_FORMAT_GENRE = "Cinematic"
DEFAULT_FORMAT_MOOD = "Evocative"

_META_LINE_PATTERNS = (
    re.compile(r"^\s*(?:here(?:'s| is) (?:the|your|a) [^\n]*?prompt[^\n]*:)\s*$", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^\s*(?:sure|okay|certainly|of course)[,!.][^\n]*$", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^\s*note:[^\n]*$", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^\s*```[a-z]*\s*$", re.IGNORECASE | re.MULTILINE),
)
_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")
_WORD_SPLIT = re.compile(r"[\s,;.()\[\]]+")
_GENRE_LINE = re.compile(r"^\s*genre:\s*(.+)$", re.IGNORECASE | re.MULTILINE)
_MOOD_LINE = re.compile(r"^\s*mood:\s*(.+)$", re.IGNORECASE | re.MULTILINE)


def has_leaked_meta(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in LEAKED_META_SUBSTRINGS)


def strip_meta(text: str) -> str:
    cleaned = text
    for pattern in _META_LINE_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    cleaned = _EXCESS_BLANK_LINES.sub("\n\n", cleaned)
    return cleaned.strip()


def scrub_leaked_meta(text: str, min_chars: int = DEFAULT_MIN_CHARS) -> str:
    """Drop lines that echo our instructions; keep ``text`` if too little is left."""

    kept = [
        line
        for line in text.splitlines()
        if not any(marker in line.lower() for marker in LEAKED_META_SUBSTRINGS)
    ]
    scrubbed = strip_meta("\n".join(kept))
    if len(scrubbed) < min_chars:
        return text.strip()
    return scrubbed


def detect_repeated_words(text: str) -> List[str]:
    """Words of four or more letters that occur more than once, first-seen order."""

    words = [
        word.lower()
        for word in _WORD_SPLIT.split(text)
        if len(word) >= REPEATED_WORD_MIN_LENGTH
    ]
    counts = Counter(words)
    ordered: List[str] = []
    for word in words:
        if counts[word] > 1 and word not in ordered:
            ordered.append(word)
    return ordered


def needs_deduplication(text: str) -> bool:
    return len(detect_repeated_words(text)) > REPEATED_WORD_THRESHOLD


def dedup_deterministic(text: str) -> str:
    """Drop exact repeats of earlier lines, ignoring surrounding whitespace.

    Blank lines are always kept so the section layout survives.
    """

    seen: set[str] = set()
    kept: List[str] = []
    for line in text.split("\n"):
        key = line.strip()
        if key:
            if key in seen:
                continue
            seen.add(key)
        kept.append(line)
    return "\n".join(kept)


def _field_value(pattern: re.Pattern[str], text: str) -> str | None:
    match = pattern.search(text)
    if match is None:
        return None
    value = match.group(1).strip().strip('"').strip()
    return value or None


def validate_and_fix_format(text: str, *, max_mode: bool = False) -> str:
    """Make sure the prompt opens with the header its mode requires."""

    stripped = text.strip()
    if max_mode:
        if stripped.startswith(MAX_MODE_HEADER.splitlines()[0]):
            return stripped
        return f"{MAX_MODE_HEADER}\n\n{stripped}"
    if stripped.startswith("["):
        return stripped
    genre = _field_value(_GENRE_LINE, stripped) or DEFAULT_FORMAT_GENRE
    mood = _field_value(_MOOD_LINE, stripped) or DEFAULT_FORMAT_MOOD
    mood = mood.split(",")[0].strip() or DEFAULT_FORMAT_MOOD
    return f"[{mood}, {genre}, Key: C Major]\n\n{stripped}"


def clean_title(raw: str) -> str:
    title = raw.strip().splitlines()[0].strip() if raw.strip() else ""
    title = title.strip("\"'“”‘’").strip()
    return title or "Untitled"


def clean_lyrics(raw: str) -> str:
    return raw.strip()
