"""Immutable genre, instrument, mood and harmony tables.

The registry is a single JSON document shipped next to this module. It is
parsed once at import into frozen dataclasses and never mutated afterwards,
so every generation call can read it concurrently without coordination.

Example:
    >>> genre = get_genre("jazz")
    >>> genre.name
    'Jazz'
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

_REGISTRY_PATH = Path(__file__).resolve().parent / "data" / "registry.json"


@dataclass(frozen=True)
class PoolPick:
    min: int
    max: int


@dataclass(frozen=True)
class InstrumentPool:
    pool_id: str
    instruments: tuple[str, ...]
    pick: PoolPick
    chance_to_include: float | None = None

    @property
    def required(self) -> bool:
        return self.pick.min > 0


@dataclass(frozen=True)
class BpmRange:
    min: int
    max: int
    typical: int


@dataclass(frozen=True)
class VocalStyle:
    ranges: tuple[str, ...]
    deliveries: tuple[str, ...]
    techniques: tuple[str, ...]


@dataclass(frozen=True)
class ProductionStyle:
    reverbs: tuple[str, ...]
    textures: tuple[str, ...]


@dataclass(frozen=True)
class GenreDefinition:
    genre_id: str
    name: str
    keywords: tuple[str, ...]
    pool_order: tuple[str, ...]
    pools: Mapping[str, InstrumentPool]
    max_tags: int
    exclusion_rules: tuple[tuple[str, str], ...]
    moods: tuple[str, ...]
    bpm: Optional[BpmRange]
    vocal: Optional[VocalStyle]
    production: Optional[ProductionStyle]
    keyword_patterns: tuple[re.Pattern[str], ...] = ()

    def matches(self, text: str) -> bool:
        """Whether any keyword occurs in ``text`` as a whole word or phrase."""

        return any(pattern.search(text) for pattern in self.keyword_patterns)

    def ordered_pools(self) -> list[InstrumentPool]:
        return [self.pools[pool_id] for pool_id in self.pool_order]

    def all_instruments(self) -> list[str]:
        seen: set[str] = set()
        result: list[str] = []
        for pool in self.ordered_pools():
            for instrument in pool.instruments:
                key = instrument.lower()
                if key not in seen:
                    seen.add(key)
                    result.append(instrument)
        return result


@dataclass(frozen=True)
class ChordProgression:
    key: str
    name: str
    pattern: str
    description: str


@dataclass(frozen=True)
class MoodCategory:
    key: str
    name: str
    moods: tuple[str, ...]


@dataclass(frozen=True)
class SectionTemplate:
    section: str
    instrument_count: int
    templates: tuple[str, ...]


@dataclass(frozen=True)
class TitleTables:
    patterns: Mapping[str, tuple[str, ...]]
    default_patterns: tuple[str, ...]
    words: Mapping[str, tuple[str, ...]]
    stopwords: frozenset[str]


@dataclass(frozen=True)
class Registry:
    version: str
    genres: Mapping[str, GenreDefinition]
    genre_order: tuple[str, ...]
    default_genre: str
    default_chance_to_include: float
    articulation_chance: float
    default_bpm_range: str
    default_progression: str
    vocal_default: VocalStyle
    production_default: ProductionStyle
    progressions: Mapping[str, ChordProgression]
    genre_progressions: Mapping[str, tuple[str, ...]]
    progression_keywords: tuple[tuple[tuple[str, ...], str], ...]
    articulations: Mapping[str, tuple[str, ...]]
    instrument_categories: Mapping[str, str]
    realism_tags: Mapping[str, tuple[str, ...]]
    genre_realism_map: Mapping[str, tuple[str, ...]]
    electronic_genres: frozenset[str]
    electronic_tags: Mapping[str, tuple[str, ...]]
    generic_style_tags: tuple[str, ...]
    recording_descriptors: tuple[str, ...]
    keys: tuple[str, ...]
    modes: tuple[str, ...]
    sections: tuple[SectionTemplate, ...]
    generic_moods: tuple[str, ...]
    generic_descriptors: tuple[str, ...]
    mood_categories: Mapping[str, MoodCategory]
    titles: TitleTables


def _strings(values: Any) -> tuple[str, ...]:
    return tuple(str(value) for value in values)


def _build_pool(genre_id: str, pool_id: str, entry: dict) -> InstrumentPool:
    pick = PoolPick(min=int(entry["pick"]["min"]), max=int(entry["pick"]["max"]))
    if pick.min < 0 or pick.min > pick.max:
        raise RuntimeError(f"pool '{genre_id}.{pool_id}' has invalid pick range {pick}")
    instruments = _strings(entry["instruments"])
    if not instruments:
        raise RuntimeError(f"pool '{genre_id}.{pool_id}' has no instruments")
    chance = entry.get("chance_to_include")
    return InstrumentPool(
        pool_id=pool_id,
        instruments=instruments,
        pick=pick,
        chance_to_include=float(chance) if chance is not None else None,
    )


def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE)


def _build_genre(genre_id: str, entry: dict) -> GenreDefinition:
    pools = {
        pool_id: _build_pool(genre_id, pool_id, pool)
        for pool_id, pool in entry["pools"].items()
    }
    pool_order = _strings(entry["pool_order"])
    if len(set(pool_order)) != len(pool_order):
        raise RuntimeError(f"genre '{genre_id}' repeats a pool id in pool_order")
    missing = [pool_id for pool_id in pool_order if pool_id not in pools]
    if missing:
        raise RuntimeError(f"genre '{genre_id}' pool_order references unknown pools {missing}")

    bpm: Optional[BpmRange] = None
    if entry.get("bpm"):
        raw_bpm = entry["bpm"]
        bpm = BpmRange(min=int(raw_bpm["min"]), max=int(raw_bpm["max"]), typical=int(raw_bpm["typical"]))
        if bpm.min > bpm.max:
            raise RuntimeError(f"genre '{genre_id}' has inverted bpm range")

    vocal = None
    if entry.get("vocal"):
        vocal = VocalStyle(
            ranges=_strings(entry["vocal"]["ranges"]),
            deliveries=_strings(entry["vocal"]["deliveries"]),
            techniques=_strings(entry["vocal"]["techniques"]),
        )
    production = None
    if entry.get("production"):
        production = ProductionStyle(
            reverbs=_strings(entry["production"]["reverbs"]),
            textures=_strings(entry["production"]["textures"]),
        )

    rules = []
    for rule in entry.get("exclusion_rules", []):
        if len(rule) != 2:
            raise RuntimeError(f"genre '{genre_id}' exclusion rule must be a pair: {rule}")
        rules.append((str(rule[0]), str(rule[1])))

    keywords = tuple(keyword.lower() for keyword in _strings(entry["keywords"]))
    return GenreDefinition(
        genre_id=genre_id,
        name=str(entry["name"]),
        keywords=keywords,
        pool_order=pool_order,
        pools=pools,
        max_tags=int(entry["max_tags"]),
        exclusion_rules=tuple(rules),
        moods=_strings(entry.get("moods", [])),
        bpm=bpm,
        vocal=vocal,
        production=production,
        keyword_patterns=tuple(_keyword_pattern(keyword) for keyword in keywords),
    )


def _build_titles(raw: dict) -> TitleTables:
    return TitleTables(
        patterns={genre: _strings(patterns) for genre, patterns in raw["patterns"].items()},
        default_patterns=_strings(raw["default_patterns"]),
        words={slot: _strings(words) for slot, words in raw["words"].items()},
        stopwords=frozenset(word.lower() for word in raw.get("stopwords", [])),
    )


def load_registry(path: Path | None = None) -> Registry:
    """Parse and validate the registry document at ``path``."""

    source = path or _REGISTRY_PATH
    try:
        raw = json.loads(source.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:  # pragma: no cover - configuration error
        raise RuntimeError(f"registry file missing at {source}") from exc
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"registry file at {source} is not valid JSON: {exc}") from exc

    try:
        genres = {genre_id: _build_genre(genre_id, entry) for genre_id, entry in raw["genres"].items()}
        defaults = raw["defaults"]
        progressions = {
            key: ChordProgression(
                key=key,
                name=str(entry["name"]),
                pattern=str(entry["pattern"]),
                description=str(entry.get("description", "")),
            )
            for key, entry in raw["progressions"].items()
        }
        genre_progressions: Dict[str, tuple[str, ...]] = {}
        for genre_id, keys in raw["genre_progressions"].items():
            unknown = [key for key in keys if key not in progressions]
            if unknown:
                raise RuntimeError(f"genre '{genre_id}' references unknown progressions {unknown}")
            genre_progressions[genre_id] = _strings(keys)
        progression_keywords = tuple(
            (tuple(keyword.lower() for keyword in entry["keywords"]), str(entry["progression"]))
            for entry in raw["progression_keywords"]
        )
        realism_tags = {key: _strings(tags) for key, tags in raw["realism_tags"].items()}
        genre_realism_map: Dict[str, tuple[str, ...]] = {}
        for genre_id, categories in raw["genre_realism_map"].items():
            unknown = [category for category in categories if category not in realism_tags]
            if unknown:
                raise RuntimeError(f"genre '{genre_id}' references unknown realism categories {unknown}")
            genre_realism_map[genre_id] = _strings(categories)
        sections = tuple(
            SectionTemplate(
                section=name,
                instrument_count=int(entry["instrument_count"]),
                templates=_strings(entry["templates"]),
            )
            for name, entry in raw["sections"].items()
        )
        mood_categories = {
            key: MoodCategory(key=key, name=str(entry["name"]), moods=_strings(entry["moods"]))
            for key, entry in raw["mood_categories"].items()
        }
        registry = Registry(
            version=str(raw["version"]),
            genres=genres,
            genre_order=tuple(genres.keys()),
            default_genre=str(defaults["genre"]),
            default_chance_to_include=float(defaults["chance_to_include"]),
            articulation_chance=float(defaults["articulation_chance"]),
            default_bpm_range=str(defaults["bpm_range"]),
            default_progression=str(defaults["progression"]),
            vocal_default=VocalStyle(
                ranges=_strings(raw["vocal_default"]["ranges"]),
                deliveries=_strings(raw["vocal_default"]["deliveries"]),
                techniques=_strings(raw["vocal_default"]["techniques"]),
            ),
            production_default=ProductionStyle(
                reverbs=_strings(raw["production_default"]["reverbs"]),
                textures=_strings(raw["production_default"]["textures"]),
            ),
            progressions=progressions,
            genre_progressions=genre_progressions,
            progression_keywords=progression_keywords,
            articulations={key: _strings(values) for key, values in raw["articulations"].items()},
            instrument_categories={
                instrument.lower(): str(category)
                for instrument, category in raw["instrument_categories"].items()
            },
            realism_tags=realism_tags,
            genre_realism_map=genre_realism_map,
            electronic_genres=frozenset(genre.lower() for genre in raw["electronic_genres"]),
            electronic_tags={key: _strings(tags) for key, tags in raw["electronic_tags"].items()},
            generic_style_tags=_strings(raw["generic_style_tags"]),
            recording_descriptors=_strings(raw["recording_descriptors"]),
            keys=_strings(raw["keys"]),
            modes=_strings(raw["modes"]),
            sections=sections,
            generic_moods=_strings(raw["generic_moods"]),
            generic_descriptors=_strings(raw["generic_descriptors"]),
            mood_categories=mood_categories,
            titles=_build_titles(raw["titles"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise RuntimeError(f"registry file at {source} is malformed: {exc!r}") from exc

    if registry.default_genre not in registry.genres:
        raise RuntimeError(f"default genre '{registry.default_genre}' is not defined")
    if registry.default_progression not in registry.progressions:
        raise RuntimeError(f"default progression '{registry.default_progression}' is not defined")
    return registry


REGISTRY = load_registry()

DEFAULT_GENRE = REGISTRY.default_genre
DEFAULT_CHANCE_TO_INCLUDE = REGISTRY.default_chance_to_include
ARTICULATION_CHANCE = REGISTRY.articulation_chance
DEFAULT_BPM_RANGE = REGISTRY.default_bpm_range
ALL_GENRE_KEYS: tuple[str, ...] = REGISTRY.genre_order


def is_genre(genre_id: str) -> bool:
    return genre_id in REGISTRY.genres


def get_genre(genre_id: str) -> Optional[GenreDefinition]:
    return REGISTRY.genres.get(genre_id.lower().strip())
