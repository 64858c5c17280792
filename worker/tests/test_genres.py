from __future__ import annotations

from cadence_worker.services.genres import (
    detect_genre,
    genre_display_name,
    parse_genre_components,
    resolve_genre,
)
from cadence_worker.services.random_source import create_rng
from cadence_worker.services.registry import ALL_GENRE_KEYS
from cadence_worker.services.trace import TraceCollector, TraceDecisionEvent


def test_detect_genre_from_keyword() -> None:
    assert detect_genre("smooth jazz night session") == "jazz"
    assert detect_genre("Heavy THRASH riffs") == "metal"
    assert detect_genre("random words") is None


def test_detect_genre_prefers_earlier_comma_segment() -> None:
    assert detect_genre("jazz trio, with a rock edge") == "jazz"


def test_detect_genre_ignores_keywords_inside_other_words() -> None:
    assert detect_genre("trapped in a rocket, popcorn night") is None
    assert detect_genre("uncharted and popular") is None


def test_detect_genre_matches_phrases_and_symbols() -> None:
    assert detect_genre("an epic film score for the finale") == "cinematic"
    assert detect_genre("late night R&B slow burn") == "rnb"
    assert detect_genre("8-bit boss fight") == "videogame"


def test_detect_genre_reaches_later_registry_genres() -> None:
    assert detect_genre("deep house vibes") == "house"
    assert detect_genre("uplifting trance anthem") == "trance"
    assert detect_genre("nu-disco track") == "disco"
    assert detect_genre("funky groove") == "funk"
    assert detect_genre("roots reggae") == "reggae"
    assert detect_genre("amapiano song") == "afrobeat"
    assert detect_genre("trip hop beat") == "downtempo"
    assert detect_genre("shoegaze wall") == "dreampop"
    assert detect_genre("hypnagogic summer tape") == "chillwave"
    assert detect_genre("new age meditation") == "newage"
    assert detect_genre("hyperpop chaos") == "hyperpop"
    assert detect_genre("uk drill beat") == "drill"
    assert detect_genre("afterhours set") == "melodictechno"
    assert detect_genre("bedroom indie vibes") == "indie"


def test_parse_genre_components_splits_compound_override() -> None:
    assert parse_genre_components("jazz rock") == ["jazz", "rock"]
    assert parse_genre_components("Jazz & Blues") == ["jazz", "blues"]
    assert parse_genre_components("ambient and lofi/jazz") == ["ambient", "lofi", "jazz"]
    assert parse_genre_components("jazz-jazz-rock") == ["jazz", "rock"]
    assert parse_genre_components("polka") == []
    assert parse_genre_components("   ") == []


def test_parse_genre_components_caps_at_four() -> None:
    components = parse_genre_components("jazz rock pop blues soul metal")

    assert components == ["jazz", "rock", "pop", "blues"]


def test_resolve_genre_keyword_detection() -> None:
    resolved = resolve_genre("smooth jazz night session", None, create_rng(1))

    assert resolved.detected == "jazz"
    assert resolved.primary_genre == "jazz"
    assert resolved.components == ("jazz",)


def test_resolve_genre_compound_override() -> None:
    resolved = resolve_genre("ignored description about rock", "Jazz Rock", create_rng(1))

    assert resolved.detected is None
    assert resolved.display_genre == "jazz rock"
    assert resolved.primary_genre == "jazz"
    assert resolved.components == ("jazz", "rock")


def test_resolve_genre_invalid_override_falls_back_to_detection() -> None:
    resolved = resolve_genre("late night blues bar", "polka", create_rng(1))

    assert resolved.primary_genre == "blues"


def test_resolve_genre_random_fallback_is_seeded() -> None:
    first = resolve_genre("gibberish xyz", None, create_rng(42))
    second = resolve_genre("gibberish xyz", None, create_rng(42))

    assert first == second
    assert first.detected is None
    assert first.primary_genre in ALL_GENRE_KEYS


def test_resolve_genre_records_branch_on_trace() -> None:
    trace = TraceCollector(action="generate", prompt_mode="max", seed=42)

    resolve_genre("gibberish xyz", None, create_rng(42), trace)

    decisions = [event for event in trace.run.events if isinstance(event, TraceDecisionEvent)]
    assert len(decisions) == 1
    assert decisions[0].branch_taken == "random-fallback"
    assert decisions[0].selection is not None
    assert decisions[0].selection.candidates_count == len(ALL_GENRE_KEYS)


def test_genre_display_name() -> None:
    assert genre_display_name("jazz") == "Jazz"
    assert genre_display_name("polka") == "Polka"
