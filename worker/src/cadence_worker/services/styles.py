"""Style tag assembly under a hard tag budget."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

from .blending import build_blended_production_descriptor
from .random_source import RandomSource, select_random_n, shuffle
from .registry import DEFAULT_GENRE, REGISTRY, get_genre

LEAN_TAG_BUDGET = 6
ENRICHED_TAG_BUDGET = 15
MOODS_PER_GENRE = 2
TEXTURE_TAG_COUNT = 3

_ELECTRONIC_MARKERS = ("electronic", "synth", "edm")


@dataclass(frozen=True)
class StyleTags:
    tags: tuple[str, ...]
    formatted: str


class _TagAccumulator:
    def __init__(self) -> None:
        self._seen: set[str] = set()
        self.tags: List[str] = []

    def add(self, tag: str) -> None:
        normalized = tag.strip().lower()
        if normalized and normalized not in self._seen:
            self._seen.add(normalized)
            self.tags.append(normalized)


def is_electronic_genre(genre: str) -> bool:
    lowered = genre.lower().strip()
    if lowered in REGISTRY.electronic_genres:
        return True
    return any(marker in lowered for marker in _ELECTRONIC_MARKERS)


def texture_tag_candidates(genre: str) -> List[str]:
    """Electronic clarity tags or realism tags for ``genre``, never empty."""

    if is_electronic_genre(genre):
        candidates = [tag for group in REGISTRY.electronic_tags.values() for tag in group]
    else:
        categories = REGISTRY.genre_realism_map.get(genre.lower(), ())
        candidates = [tag for category in categories for tag in REGISTRY.realism_tags[category]]
    if not candidates:
        candidates = list(REGISTRY.generic_style_tags)
    return candidates


def assemble_style_tags(
    components: Sequence[str],
    rng: RandomSource,
    max_tags: int = ENRICHED_TAG_BUDGET,
) -> StyleTags:
    genres = list(components) or [DEFAULT_GENRE]
    accumulator = _TagAccumulator()

    for genre_id in genres:
        genre = get_genre(genre_id)
        if genre is None or not genre.moods:
            continue
        for mood in select_random_n(genre.moods, MOODS_PER_GENRE, rng):
            accumulator.add(mood)

    for tag in select_random_n(texture_tag_candidates(genres[0]), TEXTURE_TAG_COUNT, rng):
        accumulator.add(tag)

    production = build_blended_production_descriptor(genres, rng)
    for part in production.split(","):
        accumulator.add(part)

    tags = tuple(accumulator.tags[: max(max_tags, 0)])
    return StyleTags(tags=tags, formatted=", ".join(tags))


def select_recording_context(rng: RandomSource, count: int = 2) -> str:
    descriptors = shuffle(REGISTRY.recording_descriptors, rng)
    return ", ".join(descriptors[:count])
