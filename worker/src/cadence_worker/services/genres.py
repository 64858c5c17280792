"""Genre resolution from free text and optional override strings."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import List, Optional

from loguru import logger

from .random_source import RandomSource
from .registry import ALL_GENRE_KEYS, REGISTRY, is_genre
from .trace import TraceCollector, TraceSelection, selection_preview, trace_decision

MAX_GENRE_COMPONENTS = 4

_COMPONENT_SEPARATORS = re.compile(r"\s+and\s+|\s*&\s*|[\s\-/]+")


@dataclass(frozen=True)
class ResolvedGenre:
    detected: Optional[str]
    display_genre: str
    primary_genre: str
    components: tuple[str, ...]


def parse_genre_components(text: str) -> List[str]:
    """Split a possibly compound genre string into recognised genre ids."""

    normalized = text.lower().strip()
    if not normalized:
        return []
    if is_genre(normalized):
        return [normalized]
    components: List[str] = []
    for token in _COMPONENT_SEPARATORS.split(normalized):
        token = token.strip()
        if token and is_genre(token) and token not in components:
            components.append(token)
        if len(components) >= MAX_GENRE_COMPONENTS:
            break
    return components


def detect_genre(description: str) -> Optional[str]:
    """Return the first registry genre with a whole-word keyword in ``description``."""

    lowered = description.lower()
    segments = [segment.strip() for segment in lowered.split(",") if segment.strip()]
    segments.append(lowered)
    for segment in segments:
        for genre_id in ALL_GENRE_KEYS:
            if REGISTRY.genres[genre_id].matches(segment):
                return genre_id
    return None


def resolve_genre(
    description: str,
    override: Optional[str],
    rng: RandomSource,
    trace: Optional[TraceCollector] = None,
) -> ResolvedGenre:
    if override and override.strip():
        components = parse_genre_components(override)
        if components:
            display = override.lower().strip()
            trace_decision(
                trace,
                domain="genre",
                key="deterministic.genre.resolve",
                branch_taken="override",
                why=f"genre override provided ({len(components)} component(s))",
            )
            return ResolvedGenre(
                detected=None,
                display_genre=display,
                primary_genre=components[0],
                components=tuple(components),
            )
        logger.warning("genre override {!r} matched no known genre; falling back", override)

    detected = detect_genre(description)
    if detected is not None:
        trace_decision(
            trace,
            domain="genre",
            key="deterministic.genre.resolve",
            branch_taken="keyword-detection",
            why=f"detected={detected}",
        )
        return ResolvedGenre(
            detected=detected,
            display_genre=detected,
            primary_genre=detected,
            components=(detected,),
        )

    index = math.floor(rng() * len(ALL_GENRE_KEYS))
    chosen = ALL_GENRE_KEYS[index]
    trace_decision(
        trace,
        domain="genre",
        key="deterministic.genre.resolve",
        branch_taken="random-fallback",
        why="no keywords matched; falling back to random genre",
        selection=TraceSelection(
            method="pickRandom",
            chosen_index=index,
            candidates_count=len(ALL_GENRE_KEYS),
            candidates_preview=selection_preview(list(ALL_GENRE_KEYS)),
        ),
    )
    return ResolvedGenre(
        detected=None,
        display_genre=chosen,
        primary_genre=chosen,
        components=(chosen,),
    )


def genre_display_name(genre_id: str) -> str:
    genre = REGISTRY.genres.get(genre_id)
    return genre.name if genre is not None else genre_id.title()
