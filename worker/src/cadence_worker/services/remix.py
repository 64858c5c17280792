"""Single-field re-rolls of a finished prompt.

Every remix rewrites exactly one field line of a MAX or standard prompt and
leaves the header, the other fields and the section blocks untouched. The
genre remix is the one exception: the BPM line follows the new genre.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Callable, Dict, List, Optional

from loguru import logger

from .blending import assemble_instruments
from .bpm import get_bpm_range_for_genre, inject_bpm
from .enrichment import genres_from_styles
from .exceptions import ValidationFailure
from .moods import select_moods_from_category
from .random_source import RandomSource, pick_random, select_random_n
from .registry import ALL_GENRE_KEYS, DEFAULT_GENRE, REGISTRY
from .styles import select_recording_context, texture_tag_candidates

REMIX_INSTRUMENT_COUNT = 4
REMIX_STYLE_TAG_COUNT = 4
REMIX_RECORDING_COUNT = 3
REMIX_MOOD_COUNTS = (2, 3)


class RemixTarget(str, Enum):
    INSTRUMENTS = "instruments"
    GENRE = "genre"
    MOOD = "mood"
    STYLE_TAGS = "style tags"
    RECORDING = "recording"


def _field_pattern(name: str) -> re.Pattern[str]:
    return re.compile(rf"^({re.escape(name)}:[^\S\n]*)(.*)$", re.IGNORECASE | re.MULTILINE)


def read_field(prompt: str, name: str) -> Optional[str]:
    """Value of the first ``name:`` line, without MAX-style quotes."""

    match = _field_pattern(name).search(prompt)
    if match is None:
        return None
    return match.group(2).strip().strip('"').strip()


def replace_field(prompt: str, name: str, value: str) -> str:
    """Swap the value of the ``name:`` line, keeping its label and quoting.

    Raises ValidationFailure when the prompt carries no such field.
    """

    def _swap(match: re.Match[str]) -> str:
        if match.group(2).strip().startswith('"'):
            return f'{match.group(1)}"{value}"'
        return f"{match.group(1)}{value}"

    updated, count = _field_pattern(name).subn(_swap, prompt, count=1)
    if count == 0:
        raise ValidationFailure(f"prompt has no {name} field to remix", field="prompt")
    return updated


def _prompt_genres(prompt: str) -> List[str]:
    value = read_field(prompt, "genre") or ""
    return genres_from_styles(value.split(",")) or [DEFAULT_GENRE]


def remix_instruments(
    prompt: str, rng: RandomSource, *, description: Optional[str] = None
) -> str:
    components = _prompt_genres(prompt)
    assembly = assemble_instruments(
        components, rng, max_instruments=REMIX_INSTRUMENT_COUNT, description=description
    )
    return replace_field(prompt, "instruments", assembly.formatted)


def remix_genre(prompt: str, rng: RandomSource) -> str:
    """Swap in different genres, keeping the genre count, and retune the BPM."""

    current = [part.strip().lower() for part in (read_field(prompt, "genre") or "").split(",")]
    current = [part for part in current if part]
    candidates = [genre_id for genre_id in ALL_GENRE_KEYS if genre_id not in current]
    if len(current) <= 1:
        chosen = [pick_random(candidates, rng)]
    else:
        chosen = select_random_n(candidates, len(current), rng)
    logger.debug("remixing genre {} -> {}", current, chosen)
    updated = replace_field(prompt, "genre", ", ".join(chosen))
    return inject_bpm(updated, get_bpm_range_for_genre(chosen))


def _mood_pool() -> List[str]:
    pool: List[str] = []
    for category in REGISTRY.mood_categories.values():
        for mood in category.moods:
            if mood not in pool:
                pool.append(mood)
    return pool or list(REGISTRY.generic_moods)


def remix_mood(rng: RandomSource, mood_category: Optional[str] = None) -> str:
    """Two or three fresh moods, from one category when ``mood_category`` is set."""

    count = REMIX_MOOD_COUNTS[0] if rng() < 0.5 else REMIX_MOOD_COUNTS[1]
    if mood_category:
        return ", ".join(select_moods_from_category(mood_category, count, rng))
    return ", ".join(mood.capitalize() for mood in select_random_n(_mood_pool(), count, rng))


def remix_mood_in_prompt(
    prompt: str, rng: RandomSource, *, mood_category: Optional[str] = None
) -> str:
    return replace_field(prompt, "mood", remix_mood(rng, mood_category))


def remix_style_tags(prompt: str, rng: RandomSource) -> str:
    candidates = texture_tag_candidates(_prompt_genres(prompt)[0])
    tags = select_random_n(candidates, REMIX_STYLE_TAG_COUNT, rng)
    return replace_field(prompt, "style tags", ", ".join(tags))


def remix_recording(prompt: str, rng: RandomSource) -> str:
    recording = select_recording_context(rng, count=REMIX_RECORDING_COUNT)
    return replace_field(prompt, "recording", recording)


def remix_prompt(
    prompt: str,
    target: RemixTarget,
    rng: RandomSource,
    *,
    description: Optional[str] = None,
    mood_category: Optional[str] = None,
) -> str:
    if not prompt.strip():
        raise ValidationFailure("prompt to remix is empty", field="prompt")
    handlers: Dict[RemixTarget, Callable[[], str]] = {
        RemixTarget.INSTRUMENTS: lambda: remix_instruments(prompt, rng, description=description),
        RemixTarget.GENRE: lambda: remix_genre(prompt, rng),
        RemixTarget.MOOD: lambda: remix_mood_in_prompt(prompt, rng, mood_category=mood_category),
        RemixTarget.STYLE_TAGS: lambda: remix_style_tags(prompt, rng),
        RemixTarget.RECORDING: lambda: remix_recording(prompt, rng),
    }
    return handlers[target]()
