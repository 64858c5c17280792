"""Prompt serialization and character-budget truncation.

Two wire formats are produced:

* MAX mode: a fixed three-line header followed by quoted ``key: "value"``
  fields, one per line.
* Standard mode: a ``[Mood, Genre, Key: X mode]`` header, labeled fields and
  ``[SECTION]`` blocks.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from .exceptions import ValidationFailure

MAX_MODE_HEADER = "\n".join(
    [
        "[Is_MAX_MODE: MAX](MAX)",
        "[QUALITY: MAX](MAX)",
        "[REALISM: MAX](MAX)",
    ]
)
DEFAULT_MAX_CHARS = 1000
TRUNCATION_BREAKPOINT_RATIO = 0.8
LOCKED_PHRASE_MAX_CHARS = 300

_QUOTED_INSTRUMENTS = re.compile(r'^(instruments:\s*")([^"]*)', re.IGNORECASE | re.MULTILINE)
_UNQUOTED_INSTRUMENTS = re.compile(r"^(instruments:[^\S\n]*)([^\"\n]*)$", re.IGNORECASE | re.MULTILINE)


@dataclass(frozen=True)
class MaxModeFields:
    genre: str
    bpm: str
    instruments: str
    style_tags: str
    recording: str


@dataclass(frozen=True)
class StandardFields:
    header_mood: str
    header_genre: str
    key_signature: str
    genre: str
    bpm: str
    mood: str
    instruments: str
    style_tags: Optional[str] = None
    recording: Optional[str] = None
    sections: Optional[str] = None


def format_max_mode(fields: MaxModeFields) -> str:
    lines = [
        MAX_MODE_HEADER,
        "",
        f'genre: "{fields.genre}"',
        f'bpm: "{fields.bpm}"',
        f'instruments: "{fields.instruments}"',
        f'style tags: "{fields.style_tags}"',
        f'recording: "{fields.recording}"',
    ]
    return "\n".join(lines)


def format_standard(fields: StandardFields) -> str:
    lines = [
        f"[{fields.header_mood}, {fields.header_genre}, {fields.key_signature}]",
        "",
        f"Genre: {fields.genre}",
        f"BPM: {fields.bpm}",
        f"Mood: {fields.mood}",
        f"Instruments: {fields.instruments}",
    ]
    if fields.style_tags:
        lines.append(f"Style Tags: {fields.style_tags}")
    if fields.recording:
        lines.append(f"Recording: {fields.recording}")
    if fields.sections:
        lines.extend(["", fields.sections])
    return "\n".join(lines)


def truncate_prompt(text: str, max_len: int = DEFAULT_MAX_CHARS) -> str:
    """Cut ``text`` to ``max_len`` characters, preferring a field boundary.

    Text already within budget is returned unchanged. Otherwise the slice is
    cut after the last quote or newline when that breakpoint lies past 80% of
    the budget.
    """

    if len(text) <= max_len:
        return text
    sliced = text[:max_len]
    breakpoint_index = max(sliced.rfind('"'), sliced.rfind("\n"))
    if breakpoint_index > max_len * TRUNCATION_BREAKPOINT_RATIO:
        return sliced[: breakpoint_index + 1]
    return sliced


def validate_locked_phrase(phrase: Optional[str]) -> Optional[str]:
    if phrase is None:
        return None
    cleaned = phrase.strip()
    if not cleaned:
        return None
    if len(cleaned) > LOCKED_PHRASE_MAX_CHARS:
        raise ValidationFailure(
            f"locked phrase must be at most {LOCKED_PHRASE_MAX_CHARS} characters",
            field="locked_phrase",
        )
    if "{{" in cleaned or "}}" in cleaned:
        raise ValidationFailure("locked phrase may not contain '{{' or '}}'", field="locked_phrase")
    return cleaned


def inject_locked_phrase(prompt: str, phrase: str) -> str:
    """Attach ``phrase`` to the instruments field, or append it as a final line."""

    if _QUOTED_INSTRUMENTS.search(prompt):
        return _QUOTED_INSTRUMENTS.sub(
            lambda match: f"{match.group(1)}{_join_phrase(match.group(2), phrase)}",
            prompt,
            count=1,
        )
    if _UNQUOTED_INSTRUMENTS.search(prompt):
        return _UNQUOTED_INSTRUMENTS.sub(
            lambda match: f"{match.group(1)}{_join_phrase(match.group(2), phrase)}",
            prompt,
            count=1,
        )
    return f"{prompt.rstrip()}\n{phrase}"


def _join_phrase(existing: str, phrase: str) -> str:
    stripped = existing.rstrip()
    return f"{stripped}, {phrase}" if stripped else phrase


def bound_with_locked_phrase(prompt: str, phrase: Optional[str], max_len: int) -> str:
    """Inject ``phrase`` and re-bound the prompt without cutting the phrase away."""

    if not phrase:
        return truncate_prompt(prompt, max_len)
    injected = inject_locked_phrase(prompt, phrase)
    if len(injected) <= max_len:
        return injected
    overflow = len(injected) - max_len
    # Shrink the surrounding text first so the phrase survives truncation.
    base = prompt
    for _ in range(8):
        target = max(len(base) - overflow, 0)
        base = truncate_prompt(base, target)
        injected = inject_locked_phrase(base, phrase)
        overflow = len(injected) - max_len
        if overflow <= 0:
            return injected
        if not base:
            break
    return phrase[:max_len]
