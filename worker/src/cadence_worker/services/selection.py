"""Weighted instrument pool sampling and performance articulation."""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from .random_source import (
    RandomSource,
    pick_random,
    random_int_inclusive,
    roll_chance,
    shuffle,
)
from .registry import (
    ARTICULATION_CHANCE,
    DEFAULT_CHANCE_TO_INCLUDE,
    REGISTRY,
    GenreDefinition,
    InstrumentPool,
)


def _overlaps(name: str, target: str) -> bool:
    left = name.lower()
    right = target.lower()
    return right in left or left in right


def has_exclusion(
    existing: Iterable[str],
    candidate: str,
    rules: Sequence[tuple[str, str]],
) -> bool:
    """True when ``candidate`` conflicts with an already chosen instrument."""

    chosen = list(existing)
    for first, second in rules:
        if _overlaps(candidate, first) and any(_overlaps(item, second) for item in chosen):
            return True
        if _overlaps(candidate, second) and any(_overlaps(item, first) for item in chosen):
            return True
    return False


def _pick_unique(
    candidates: Sequence[str],
    count: int,
    selected: List[str],
    seen: set[str],
    rules: Sequence[tuple[str, str]],
) -> List[str]:
    picked: List[str] = []
    for instrument in candidates:
        if len(picked) >= count:
            break
        key = instrument.lower()
        if key in seen or has_exclusion(selected + picked, instrument, rules):
            continue
        picked.append(instrument)
        seen.add(key)
    return picked


def _draw_from_pool(
    pool: InstrumentPool,
    count: int,
    selected: List[str],
    seen: set[str],
    rules: Sequence[tuple[str, str]],
    rng: RandomSource,
) -> List[str]:
    available = [
        instrument
        for instrument in pool.instruments
        if not has_exclusion(selected, instrument, rules)
    ]
    return _pick_unique(shuffle(available, rng), count, selected, seen, rules)


def select_instruments(
    genre: GenreDefinition,
    rng: RandomSource,
    *,
    max_tags: Optional[int] = None,
    include_optional: bool = True,
) -> List[str]:
    """Sample instruments from a genre's pools.

    Required pools (``pick.min > 0``) are visited first in pool order and each
    contributes at least one instrument. Optional pools are then included
    independently with probability ``chance_to_include``. Names are unique
    case-insensitively and the result never exceeds ``max_tags``.
    """

    limit = max(1, max_tags if max_tags is not None else genre.max_tags)
    rules = genre.exclusion_rules
    pools = genre.ordered_pools()
    required = [pool for pool in pools if pool.required]
    optional = [pool for pool in pools if not pool.required]

    selected: List[str] = []
    seen: set[str] = set()

    for position, pool in enumerate(required):
        still_pending = len(required) - position - 1
        budget = max(1, limit - len(selected) - still_pending)
        count = min(random_int_inclusive(pool.pick.min, pool.pick.max, rng), budget)
        picked = _draw_from_pool(pool, count, selected, seen, rules, rng)
        if not picked:
            # Exclusions emptied this pool; it still has to be represented.
            for instrument in pool.instruments:
                if instrument.lower() not in seen:
                    picked = [instrument]
                    seen.add(instrument.lower())
                    break
        selected.extend(picked)

    if include_optional:
        for pool in optional:
            remaining = limit - len(selected)
            if remaining <= 0:
                break
            chance = pool.chance_to_include
            if chance is None:
                chance = DEFAULT_CHANCE_TO_INCLUDE
            if not roll_chance(chance, rng):
                continue
            count = min(random_int_inclusive(pool.pick.min, pool.pick.max, rng), remaining)
            if count <= 0:
                continue
            selected.extend(_draw_from_pool(pool, count, selected, seen, rules, rng))

    return selected[:limit]


def instrument_category(instrument: str) -> Optional[str]:
    return REGISTRY.instrument_categories.get(instrument.lower().strip())


def articulate_instrument(
    instrument: str,
    rng: RandomSource,
    chance: float = ARTICULATION_CHANCE,
) -> str:
    """Prefix a performance adjective, e.g. ``"Walking upright bass"``."""

    if rng() > chance:
        return instrument
    category = instrument_category(instrument)
    if category is None:
        return instrument
    articulations = REGISTRY.articulations.get(category)
    if not articulations:
        return instrument
    return f"{pick_random(articulations, rng)} {instrument}"
