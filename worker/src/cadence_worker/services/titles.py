"""Deterministic song titles from per-genre patterns."""

from __future__ import annotations

import re
from typing import List, Optional

from .random_source import RandomSource, pick_random
from .registry import REGISTRY

_SLOT = re.compile(r"\{(\w+)\}")
_WORD = re.compile(r"[A-Za-z][A-Za-z']+")
_TOPIC_SLOTS = frozenset({"nature", "abstract"})
_MIN_TOPIC_LENGTH = 4


def _genre_vocabulary() -> frozenset[str]:
    words: set[str] = set(REGISTRY.genres)
    for genre in REGISTRY.genres.values():
        for keyword in genre.keywords:
            words.update(keyword.split())
    return frozenset(words)


_GENRE_WORDS = _genre_vocabulary()


def extract_topic_keywords(description: Optional[str]) -> List[str]:
    if not description:
        return []
    topics: List[str] = []
    for word in _WORD.findall(description):
        lowered = word.lower()
        if len(lowered) < _MIN_TOPIC_LENGTH:
            continue
        if lowered in REGISTRY.titles.stopwords or lowered in _GENRE_WORDS:
            continue
        candidate = word.capitalize()
        if candidate not in topics:
            topics.append(candidate)
    return topics


def generate_title(genre: str, rng: RandomSource, description: Optional[str] = None) -> str:
    """Fill a genre title pattern, preferring a topic word from the description."""

    tables = REGISTRY.titles
    key = genre.lower().strip().split(" ")[0] if genre.strip() else ""
    patterns = tables.patterns.get(key) or tables.default_patterns
    pattern = pick_random(patterns, rng)
    topics = extract_topic_keywords(description)
    topic_used = False

    def fill(match: re.Match[str]) -> str:
        nonlocal topic_used
        slot = match.group(1)
        if topics and not topic_used and slot in _TOPIC_SLOTS:
            topic_used = True
            return pick_random(topics, rng)
        words = tables.words.get(slot)
        if not words:
            return slot.title()
        return pick_random(words, rng)

    return _SLOT.sub(fill, pattern).strip()
