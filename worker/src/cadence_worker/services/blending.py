"""Merging instrument, vocal and production choices across genre components.

For several components the merged pools are built first and a single draw is
made from each, so the first component gets no more weight than the others.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from loguru import logger

from .exceptions import InvariantViolation
from .harmony import harmony_tag, select_progression
from .random_source import RandomSource, pick_random, shuffle
from .registry import (
    ARTICULATION_CHANCE,
    DEFAULT_GENRE,
    REGISTRY,
    ProductionStyle,
    VocalStyle,
    get_genre,
)
from .selection import articulate_instrument, select_instruments

_PER_GENRE_INSTRUMENTS = 2

_DEFAULT_RANGE = "Tenor"
_DEFAULT_DELIVERY = "Smooth"
_DEFAULT_TECHNIQUE = "Stacked Harmonies"


@dataclass(frozen=True)
class InstrumentAssembly:
    instruments: tuple[str, ...]
    formatted: str
    chord_progression: str
    vocal_phrase: str


def collect_unique(groups: Iterable[Sequence[str]]) -> List[str]:
    seen: set[str] = set()
    merged: List[str] = []
    for group in groups:
        for item in group:
            key = item.lower()
            if key not in seen:
                seen.add(key)
                merged.append(item)
    return merged


def select_instruments_for_multi_genre(
    components: Sequence[str],
    rng: RandomSource,
    max_instruments: int = 4,
    articulation_chance: float = ARTICULATION_CHANCE,
) -> List[str]:
    """Blend instruments so every component with instruments is represented.

    Each component contributes up to two picks. The first pick of every
    component is always kept; second picks fill the remaining slots. The
    merged list is shuffled and each entry may gain an articulation.
    """

    firsts: List[str] = []
    seconds: List[str] = []
    seen: set[str] = set()
    for genre_id in components:
        genre = get_genre(genre_id)
        if genre is None:
            continue
        picks = select_instruments(genre, rng, max_tags=genre.max_tags)[:_PER_GENRE_INSTRUMENTS]
        for position, instrument in enumerate(picks):
            key = instrument.lower()
            if key in seen:
                continue
            seen.add(key)
            (firsts if position == 0 else seconds).append(instrument)

    limit = max(max_instruments, len(firsts))
    extras = shuffle(seconds, rng)[: max(limit - len(firsts), 0)]
    blended = shuffle(firsts + extras, rng)
    return [articulate_instrument(instrument, rng, articulation_chance) for instrument in blended]


def _vocal_tables(components: Sequence[str]) -> VocalStyle:
    styles = [
        genre.vocal
        for genre in (get_genre(genre_id) for genre_id in components)
        if genre is not None and genre.vocal is not None
    ]
    if not styles:
        return REGISTRY.vocal_default
    if len(styles) == 1:
        return styles[0]
    return VocalStyle(
        ranges=tuple(collect_unique(style.ranges for style in styles)),
        deliveries=tuple(collect_unique(style.deliveries for style in styles)),
        techniques=tuple(collect_unique(style.techniques for style in styles)),
    )


def _production_tables(components: Sequence[str]) -> ProductionStyle:
    styles = [
        genre.production
        for genre in (get_genre(genre_id) for genre_id in components)
        if genre is not None and genre.production is not None
    ]
    if not styles:
        return REGISTRY.production_default
    if len(styles) == 1:
        return styles[0]
    return ProductionStyle(
        reverbs=tuple(collect_unique(style.reverbs for style in styles)),
        textures=tuple(collect_unique(style.textures for style in styles)),
    )


def _pick_or(items: Sequence[str], fallback: str, rng: RandomSource) -> str:
    return pick_random(items, rng) if items else fallback


def build_blended_vocal_descriptor(components: Sequence[str], rng: RandomSource) -> str:
    tables = _vocal_tables(components)
    vocal_range = _pick_or(tables.ranges, _DEFAULT_RANGE, rng)
    delivery = _pick_or(tables.deliveries, _DEFAULT_DELIVERY, rng)
    technique = _pick_or(tables.techniques, _DEFAULT_TECHNIQUE, rng)
    return f"{vocal_range}, {delivery} Delivery, {technique}"


def build_blended_production_descriptor(components: Sequence[str], rng: RandomSource) -> str:
    tables = _production_tables(components)
    texture = _pick_or(tables.textures, "Polished Production", rng)
    reverb = _pick_or(tables.reverbs, "Studio Reverb", rng)
    return f"{texture}, {reverb}"


def assemble_instruments(
    components: Sequence[str],
    rng: RandomSource,
    *,
    max_instruments: int = 4,
    description: Optional[str] = None,
) -> InstrumentAssembly:
    """Select instruments plus the harmony and vocal tags that travel with them."""

    definitions = [genre for genre in map(get_genre, components) if genre is not None]
    if not definitions:
        logger.warning("no known genre among {}; using {}", list(components), DEFAULT_GENRE)
        fallback = get_genre(DEFAULT_GENRE)
        if fallback is None:
            raise InvariantViolation(f"default genre {DEFAULT_GENRE!r} is missing from the registry")
        definitions = [fallback]
    genres = [genre.genre_id for genre in definitions]

    if len(definitions) == 1:
        picked = select_instruments(definitions[0], rng, max_tags=max_instruments)
        instruments = [articulate_instrument(instrument, rng) for instrument in picked]
    else:
        instruments = select_instruments_for_multi_genre(genres, rng, max_instruments)

    progression = harmony_tag(select_progression(genres[0], rng, description))
    tables = _vocal_tables(genres)
    vocal_range = _pick_or(tables.ranges, _DEFAULT_RANGE, rng)
    delivery = _pick_or(tables.deliveries, _DEFAULT_DELIVERY, rng)
    vocal_phrase = f"{vocal_range} vocals, {delivery.lower()} delivery"

    formatted = ", ".join([*instruments, progression, vocal_phrase])
    return InstrumentAssembly(
        instruments=tuple(instruments),
        formatted=formatted,
        chord_progression=progression,
        vocal_phrase=vocal_phrase,
    )
