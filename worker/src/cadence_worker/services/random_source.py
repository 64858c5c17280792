"""Seedable random source shared by every assembly step."""

from __future__ import annotations

import math
import secrets
from typing import Callable, List, Optional, Sequence, TypeVar

from .exceptions import InvariantViolation

T = TypeVar("T")

RandomSource = Callable[[], float]

_MASK = 0xFFFFFFFF
_MULBERRY_INCREMENT = 0x6D2B79F5
_DIVISOR = 4294967296


def _imul(a: int, b: int) -> int:
    return (a * b) & _MASK


class Mulberry32:
    """mulberry32 generator returning floats in ``[0, 1)``.

    A given seed always produces the same sequence, which is what makes a
    whole generation reproducible.
    """

    algorithm = "mulberry32"

    def __init__(self, seed: int) -> None:
        self.seed = seed & _MASK
        self._state = self.seed

    def __call__(self) -> float:
        self._state = (self._state + _MULBERRY_INCREMENT) & _MASK
        t = self._state
        x = _imul(t ^ (t >> 15), t | 1)
        x ^= (x + _imul(x ^ (x >> 7), x | 61)) & _MASK
        return ((x ^ (x >> 14)) & _MASK) / _DIVISOR


def new_seed() -> int:
    return secrets.randbits(32)


def create_rng(seed: Optional[int] = None) -> Mulberry32:
    return Mulberry32(new_seed() if seed is None else seed)


def shuffle(items: Sequence[T], rng: RandomSource) -> List[T]:
    """Fisher-Yates shuffle returning a new list."""

    result = list(items)
    for i in range(len(result) - 1, 0, -1):
        j = math.floor(rng() * (i + 1))
        result[i], result[j] = result[j], result[i]
    return result


def pick_random(items: Sequence[T], rng: RandomSource) -> T:
    if not items:
        raise InvariantViolation("cannot pick from an empty sequence")
    return items[math.floor(rng() * len(items))]


def roll_chance(chance: Optional[float], rng: RandomSource) -> bool:
    if chance is None:
        return True
    return rng() <= chance


def random_int_inclusive(minimum: int, maximum: int, rng: RandomSource) -> int:
    return minimum + math.floor(rng() * (maximum - minimum + 1))


def select_random_n(items: Sequence[T], count: int, rng: RandomSource) -> List[T]:
    return shuffle(items, rng)[: max(count, 0)]
