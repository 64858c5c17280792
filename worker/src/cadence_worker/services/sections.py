"""INTRO/VERSE/CHORUS/BRIDGE/OUTRO section text built from selected instruments."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from .random_source import RandomSource, pick_random, shuffle
from .registry import DEFAULT_GENRE, REGISTRY, SectionTemplate, get_genre

_FALLBACK_INSTRUMENT = "piano"


@dataclass(frozen=True)
class SectionsResult:
    text: str
    sections: tuple[tuple[str, str], ...]


def _capitalize(sentence: str) -> str:
    return sentence[:1].upper() + sentence[1:] if sentence else sentence


def _instrument_palette(genre: str, track_instruments: Sequence[str]) -> List[str]:
    palette = [instrument for instrument in track_instruments if instrument.strip()]
    if palette:
        return palette
    definition = get_genre(genre) or get_genre(DEFAULT_GENRE)
    if definition is not None:
        return definition.all_instruments()
    return [_FALLBACK_INSTRUMENT]


def _mood_pool(genre: str) -> List[str]:
    definition = get_genre(genre)
    if definition is not None and definition.moods:
        return [mood.lower() for mood in definition.moods]
    return list(REGISTRY.generic_moods)


def build_section(
    template: SectionTemplate,
    *,
    palette: Sequence[str],
    moods: Sequence[str],
    rng: RandomSource,
) -> str:
    pattern = pick_random(template.templates, rng)
    chosen = shuffle(palette, rng)[: template.instrument_count]
    while len(chosen) < template.instrument_count:
        chosen.append(chosen[-1] if chosen else _FALLBACK_INSTRUMENT)
    values = {
        "mood": pick_random(moods, rng),
        "descriptor": pick_random(REGISTRY.generic_descriptors, rng),
        "instrument1": chosen[0],
        "instrument2": chosen[1] if len(chosen) > 1 else chosen[0],
    }
    return _capitalize(pattern.format(**values))


def build_all_sections(
    *,
    genre: str,
    rng: RandomSource,
    track_instruments: Sequence[str],
    moods: Optional[Sequence[str]] = None,
) -> SectionsResult:
    """Render every section template, reusing the header's instruments."""

    palette = _instrument_palette(genre, track_instruments)
    mood_pool = [mood.lower() for mood in moods] if moods else _mood_pool(genre)
    rendered: List[tuple[str, str]] = []
    for template in REGISTRY.sections:
        line = build_section(template, palette=palette, moods=mood_pool, rng=rng)
        rendered.append((template.section, line))
    text = "\n".join(f"[{name}] {line}" for name, line in rendered)
    return SectionsResult(text=text, sections=tuple(rendered))
