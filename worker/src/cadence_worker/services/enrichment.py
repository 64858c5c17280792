"""Genre enrichment feeding the LLM path and style-driven fallbacks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from .blending import (
    assemble_instruments,
    build_blended_production_descriptor,
    build_blended_vocal_descriptor,
)
from .bpm import get_bpm_range_for_genre
from .formatter import MaxModeFields, StandardFields, format_max_mode, format_standard
from .genres import MAX_GENRE_COMPONENTS, genre_display_name, parse_genre_components
from .harmony import select_key_and_mode
from .moods import select_moods_from_category
from .random_source import RandomSource, select_random_n
from .registry import DEFAULT_GENRE, get_genre
from .sections import build_all_sections
from .styles import ENRICHED_TAG_BUDGET, assemble_style_tags
from .trace import TraceCollector, trace_decision

MOODS_PER_COMPONENT = 2
CATEGORY_MOOD_COUNT = 3
DEFAULT_ENRICHED_MOOD = "Evocative"


@dataclass(frozen=True)
class EnrichmentResult:
    moods: tuple[str, ...]
    instruments: tuple[str, ...]
    instruments_formatted: str
    vocal_style: str
    production: str
    style_tags: tuple[str, ...]
    chord_progression: str
    bpm_range: str


def genres_from_styles(styles: Sequence[str]) -> List[str]:
    """Map free style strings such as ``"dark synthwave"`` to registry genres."""

    components: List[str] = []
    for style in styles:
        for genre_id in parse_genre_components(style):
            if genre_id not in components:
                components.append(genre_id)
    return components[:MAX_GENRE_COMPONENTS]


def _select_moods(
    components: Sequence[str],
    rng: RandomSource,
    mood_category: Optional[str],
) -> List[str]:
    if mood_category:
        return select_moods_from_category(mood_category, CATEGORY_MOOD_COUNT, rng)
    moods: List[str] = []
    seen: set[str] = set()
    for genre_id in components:
        genre = get_genre(genre_id)
        if genre is None:
            continue
        for mood in select_random_n(genre.moods, MOODS_PER_COMPONENT, rng):
            if mood.lower() not in seen:
                seen.add(mood.lower())
                moods.append(mood)
    return moods


def enrich_from_genres(
    components: Sequence[str],
    rng: RandomSource,
    *,
    mood_category: Optional[str] = None,
    tag_budget: int = ENRICHED_TAG_BUDGET,
    max_instruments: int = 4,
    description: Optional[str] = None,
    trace: Optional[TraceCollector] = None,
) -> EnrichmentResult:
    genres = [component for component in components if get_genre(component) is not None]
    if not genres:
        genres = [DEFAULT_GENRE]
    trace_decision(
        trace,
        domain="enrichment",
        key="enrichment.components",
        branch_taken="multi-genre" if len(genres) > 1 else "single-genre",
        why=f"components={','.join(genres)}",
    )

    moods = _select_moods(genres, rng, mood_category)
    assembly = assemble_instruments(
        genres, rng, max_instruments=max_instruments, description=description
    )
    vocal_style = build_blended_vocal_descriptor(genres, rng)
    production = build_blended_production_descriptor(genres, rng)
    style_tags = assemble_style_tags(genres, rng, tag_budget)
    if mood_category and not moods:
        moods = [tag.capitalize() for tag in style_tags.tags[:CATEGORY_MOOD_COUNT]]
    bpm_range = get_bpm_range_for_genre(genres)

    return EnrichmentResult(
        moods=tuple(moods),
        instruments=assembly.instruments,
        instruments_formatted=assembly.formatted,
        vocal_style=vocal_style,
        production=production,
        style_tags=style_tags.tags,
        chord_progression=assembly.chord_progression,
        bpm_range=bpm_range,
    )


def build_enriched_lines(
    genre_label: str,
    enrichment: EnrichmentResult,
    *,
    max_mode: bool,
    components: Sequence[str],
    rng: RandomSource,
) -> str:
    """Serialise an enrichment in the MAX or standard wire format.

    Standard output draws a key and the section blocks from ``rng`` after the
    enrichment itself, so the caller's seed still fixes the whole prompt.
    """

    tags = ", ".join(enrichment.style_tags)
    if max_mode:
        return format_max_mode(
            MaxModeFields(
                genre=genre_label,
                bpm=enrichment.bpm_range,
                instruments=enrichment.instruments_formatted,
                style_tags=tags,
                recording=enrichment.production,
            )
        )

    genres = list(components) or [DEFAULT_GENRE]
    moods = list(enrichment.moods)
    key_signature = select_key_and_mode(rng)
    sections = build_all_sections(
        genre=genres[0],
        rng=rng,
        track_instruments=enrichment.instruments,
        moods=moods or None,
    )
    return format_standard(
        StandardFields(
            header_mood=moods[0] if moods else DEFAULT_ENRICHED_MOOD,
            header_genre=" ".join(genre_display_name(genre) for genre in genres),
            key_signature=key_signature,
            genre=genre_label,
            bpm=enrichment.bpm_range,
            mood=", ".join(moods) or DEFAULT_ENRICHED_MOOD,
            instruments=enrichment.instruments_formatted,
            style_tags=tags or None,
            recording=enrichment.production or None,
            sections=sections.text,
        )
    )
