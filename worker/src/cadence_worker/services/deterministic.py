"""Zero-network prompt builders for MAX and standard mode.

Both builders consume the shared RNG in a fixed order (genre resolution,
instruments, style tags, BPM, sections, formatting), so a seed fully
determines the output.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .blending import assemble_instruments
from .bpm import get_bpm_range_for_genre
from .formatter import (
    MaxModeFields,
    StandardFields,
    format_max_mode,
    format_standard,
    truncate_prompt,
)
from .genres import ResolvedGenre, genre_display_name, resolve_genre
from .harmony import select_key_and_mode
from .moods import select_moods_from_category
from .random_source import RandomSource
from .sections import build_all_sections
from .styles import LEAN_TAG_BUDGET, assemble_style_tags, select_recording_context
from .trace import TraceCollector, trace_decision

DEFAULT_HEADER_MOOD = "Energetic"


@dataclass(frozen=True)
class DeterministicPrompt:
    text: str
    genre: ResolvedGenre
    bpm_range: str
    moods: tuple[str, ...]
    instruments: tuple[str, ...]
    style_tags: tuple[str, ...]


def _header_genre(resolved: ResolvedGenre) -> str:
    return " ".join(genre_display_name(component) for component in resolved.components)


def build_max_mode_prompt(
    description: str,
    rng: RandomSource,
    *,
    genre_override: Optional[str] = None,
    max_chars: int = 1000,
    tag_budget: int = LEAN_TAG_BUDGET,
    trace: Optional[TraceCollector] = None,
) -> DeterministicPrompt:
    resolved = resolve_genre(description, genre_override, rng, trace)
    assembly = assemble_instruments(resolved.components, rng, description=description)
    style = assemble_style_tags(resolved.components, rng, tag_budget)
    recording = select_recording_context(rng)
    bpm_range = get_bpm_range_for_genre(resolved.display_genre)

    text = format_max_mode(
        MaxModeFields(
            genre=resolved.display_genre,
            bpm=bpm_range,
            instruments=assembly.formatted,
            style_tags=style.formatted,
            recording=recording,
        )
    )
    trace_decision(
        trace,
        domain="format",
        key="deterministic.max.build",
        branch_taken="max-mode",
        why=f"instruments={len(assembly.instruments)} tags={len(style.tags)} chars={len(text)}",
    )
    return DeterministicPrompt(
        text=truncate_prompt(text, max_chars),
        genre=resolved,
        bpm_range=bpm_range,
        moods=style.tags[:2],
        instruments=assembly.instruments,
        style_tags=style.tags,
    )


def build_standard_prompt(
    description: str,
    rng: RandomSource,
    *,
    genre_override: Optional[str] = None,
    mood_category: Optional[str] = None,
    max_chars: int = 1000,
    tag_budget: int = LEAN_TAG_BUDGET,
    trace: Optional[TraceCollector] = None,
) -> DeterministicPrompt:
    resolved = resolve_genre(description, genre_override, rng, trace)
    assembly = assemble_instruments(resolved.components, rng, description=description)
    style = assemble_style_tags(resolved.components, rng, tag_budget)
    if mood_category:
        moods = select_moods_from_category(mood_category, 3, rng) or [
            tag.capitalize() for tag in style.tags[:3]
        ]
    else:
        moods = [tag.capitalize() for tag in style.tags[:2]]
    bpm_range = get_bpm_range_for_genre(resolved.display_genre)
    sections = build_all_sections(
        genre=resolved.primary_genre,
        rng=rng,
        track_instruments=assembly.instruments,
        moods=moods or None,
    )
    key_signature = select_key_and_mode(rng)
    recording = select_recording_context(rng)

    genre_label = _header_genre(resolved)
    text = format_standard(
        StandardFields(
            header_mood=moods[0] if moods else DEFAULT_HEADER_MOOD,
            header_genre=genre_label,
            key_signature=key_signature,
            genre=genre_label,
            bpm=bpm_range,
            mood=", ".join(moods) if moods else DEFAULT_HEADER_MOOD,
            instruments=assembly.formatted,
            style_tags=style.formatted,
            recording=recording,
            sections=sections.text,
        )
    )
    trace_decision(
        trace,
        domain="format",
        key="deterministic.standard.build",
        branch_taken="standard-mode",
        why=f"sections={len(sections.sections)} tags={len(style.tags)} chars={len(text)}",
    )
    return DeterministicPrompt(
        text=truncate_prompt(text, max_chars),
        genre=resolved,
        bpm_range=bpm_range,
        moods=tuple(moods),
        instruments=assembly.instruments,
        style_tags=style.tags,
    )
