"""BPM range resolution with a guaranteed fallback."""

from __future__ import annotations

import math
import re
from typing import List, Optional, Sequence, Union

from loguru import logger

from .genres import parse_genre_components
from .registry import DEFAULT_BPM_RANGE, BpmRange, get_genre

_BLEND_HALF_WIDTH = 30

_QUOTED_BPM_LINE = re.compile(r'^bpm:\s*"[^"]*"', re.IGNORECASE | re.MULTILINE)
_LABELED_BPM_LINE = re.compile(r"^BPM:.*$", re.MULTILINE)


def format_bpm_range(minimum: int, maximum: int) -> str:
    return f"between {minimum} and {maximum}"


def _ranges_for(components: Sequence[str]) -> List[BpmRange]:
    ranges = []
    for genre_id in components:
        genre = get_genre(genre_id)
        if genre is not None and genre.bpm is not None:
            ranges.append(genre.bpm)
    return ranges


def blend_bpm_ranges(ranges: Sequence[BpmRange]) -> Optional[tuple[int, int]]:
    """Overlap of all ranges, or a window around the union's midpoint."""

    if not ranges:
        return None
    if len(ranges) == 1:
        return ranges[0].min, ranges[0].max
    low = max(bpm.min for bpm in ranges)
    high = min(bpm.max for bpm in ranges)
    if low <= high:
        return low, high
    union_min = min(bpm.min for bpm in ranges)
    union_max = max(bpm.max for bpm in ranges)
    midpoint = (union_min + union_max) / 2
    return (
        max(union_min, math.floor(midpoint - _BLEND_HALF_WIDTH)),
        min(union_max, math.ceil(midpoint + _BLEND_HALF_WIDTH)),
    )


def get_bpm_range_for_genre(genre: Union[str, Sequence[str]]) -> str:
    if isinstance(genre, str):
        components = parse_genre_components(genre)
    else:
        components = [component.lower().strip() for component in genre]

    blended = blend_bpm_ranges(_ranges_for(components))
    if blended is not None:
        return format_bpm_range(*blended)

    primary = get_genre(components[0]) if components else None
    if primary is not None and primary.bpm is not None:
        return format_bpm_range(primary.bpm.min, primary.bpm.max)

    logger.warning("no BPM range defined for {!r}; using {}", genre, DEFAULT_BPM_RANGE)
    return DEFAULT_BPM_RANGE


def inject_bpm(prompt: str, bpm_range: str) -> str:
    """Rewrite the bpm field of a MAX or standard prompt to ``bpm_range``."""

    updated = _QUOTED_BPM_LINE.sub(lambda _: f'bpm: "{bpm_range}"', prompt)
    return _LABELED_BPM_LINE.sub(lambda _: f"BPM: {bpm_range}", updated)
