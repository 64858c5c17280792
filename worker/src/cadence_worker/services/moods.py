"""Mood category lookups."""

from __future__ import annotations

from typing import List

from .exceptions import ValidationFailure
from .random_source import RandomSource, select_random_n
from .registry import REGISTRY, MoodCategory


def get_mood_category(key: str) -> MoodCategory:
    category = REGISTRY.mood_categories.get(key.lower().strip())
    if category is None:
        raise ValidationFailure(f"unknown mood category '{key}'", field="mood_category")
    return category


def select_moods_from_category(key: str, count: int, rng: RandomSource) -> List[str]:
    category = get_mood_category(key)
    return [mood.capitalize() for mood in select_random_n(category.moods, count, rng)]


def mood_category_keys() -> List[str]:
    return list(REGISTRY.mood_categories.keys())
