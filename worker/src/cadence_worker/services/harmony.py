"""Chord progression and key/mode selection."""

from __future__ import annotations

from typing import Optional

from .random_source import RandomSource, pick_random
from .registry import DEFAULT_GENRE, REGISTRY, ChordProgression


def detect_progression(description: str) -> Optional[ChordProgression]:
    lowered = description.lower()
    for keywords, progression_key in REGISTRY.progression_keywords:
        if any(keyword in lowered for keyword in keywords):
            return REGISTRY.progressions.get(progression_key)
    return None


def random_progression_for_genre(genre: str, rng: RandomSource) -> ChordProgression:
    keys = REGISTRY.genre_progressions.get(genre.lower())
    if keys is None:
        keys = REGISTRY.genre_progressions.get(DEFAULT_GENRE, ())
    if not keys:
        return REGISTRY.progressions[REGISTRY.default_progression]
    return REGISTRY.progressions[pick_random(keys, rng)]


def harmony_tag(progression: ChordProgression) -> str:
    return f"{progression.name} ({progression.pattern}) harmony"


def select_progression(
    genre: str,
    rng: RandomSource,
    description: Optional[str] = None,
) -> ChordProgression:
    """Prefer a progression named in the description over a random genre pick."""

    if description:
        detected = detect_progression(description)
        if detected is not None:
            return detected
    return random_progression_for_genre(genre, rng)


def select_key_and_mode(rng: RandomSource) -> str:
    key = pick_random(REGISTRY.keys, rng)
    mode = pick_random(REGISTRY.modes, rng)
    return f"Key: {key} {mode}"
