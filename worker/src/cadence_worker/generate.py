"""
CLI entry point to run a one-off prompt generation through the orchestrator.

Example:
    uv run --project worker python -m cadence_worker.generate --description "smooth jazz night session" --seed 7
"""

from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import replace
from pathlib import Path
from typing import Optional, Sequence

from .app.config_store import ConfigStore
from .app.models import GenerationRequest
from .app.settings import Settings
from .services.exceptions import CadenceError
from .services.orchestrator import PromptOrchestrator
from .services.trace import load_trace


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate a music prompt via the Cadence worker.")
    parser.add_argument("--description", default="", help="Free-text song description.")
    parser.add_argument("--genre", default=None, help="Genre override, e.g. 'jazz rock'.")
    parser.add_argument(
        "--style",
        action="append",
        default=[],
        help="Style string mapped to registry genres (repeatable, up to 4).",
    )
    parser.add_argument("--seed", type=int, default=None, help="32-bit seed for repeatable output.")
    parser.add_argument("--max-mode", action="store_true", help="Emit the MAX mode format.")
    parser.add_argument("--lyrics", action="store_true", help="Also write lyrics (requires an LLM).")
    parser.add_argument("--lyrics-topic", default=None, help="Topic for the lyrics sub-call.")
    parser.add_argument("--locked-phrase", default=None, help="Phrase kept verbatim in the prompt.")
    parser.add_argument("--mood-category", default=None, help="Mood category key, e.g. 'calm'.")
    parser.add_argument(
        "--no-llm",
        action="store_true",
        help="Skip the LLM even when an API key is configured.",
    )
    parser.add_argument(
        "--trace-out",
        type=Path,
        default=None,
        help="Write the decision trace JSON to this path.",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Override config directory (defaults to worker settings).",
    )
    parser.add_argument(
        "--show-trace",
        type=Path,
        default=None,
        help="Print a summary of a saved trace file and exit.",
    )
    return parser.parse_args(argv)


async def _run(
    description: str,
    *,
    genre: Optional[str] = None,
    styles: Sequence[str] = (),
    seed: Optional[int] = None,
    max_mode: bool = False,
    lyrics: bool = False,
    lyrics_topic: Optional[str] = None,
    locked_phrase: Optional[str] = None,
    mood_category: Optional[str] = None,
    no_llm: bool = False,
    trace_out: Optional[Path] = None,
    config_dir: Optional[Path] = None,
) -> None:
    settings_kwargs: dict[str, object] = {}
    if config_dir is not None:
        settings_kwargs["config_dir"] = config_dir

    settings = Settings(**settings_kwargs)
    settings.ensure_directories()

    config = await ConfigStore(settings).engine_config()
    if no_llm:
        config = replace(config, llm_enabled=False)
    if trace_out is not None:
        config = replace(config, debug_trace=True)

    request = GenerationRequest(
        description=description,
        genre_override=genre,
        styles=list(styles),
        seed=seed,
        max_mode=max_mode,
        lyrics_mode=lyrics,
        lyrics_topic=lyrics_topic,
        locked_phrase=locked_phrase,
        mood_category=mood_category,
    )
    orchestrator = PromptOrchestrator()
    try:
        result = await orchestrator.generate(request, config)
    finally:
        await orchestrator.aclose()

    print(f"title         : {result.title}")
    print(f"genre         : {result.genre}")
    print(f"mode          : {result.mode.value}")
    print(f"seed          : {result.seed}")
    print(f"used_llm      : {result.used_llm}")
    print(f"chars         : {len(result.text)}")
    print()
    print(result.text)
    if result.lyrics:
        print()
        print(result.lyrics)

    if trace_out is not None and result.debug_info is not None:
        trace_out.parent.mkdir(parents=True, exist_ok=True)
        trace_out.write_text(json.dumps(result.debug_info, indent=2), encoding="utf-8")
        print()
        print(f"trace         : {trace_out}")


def _show_trace(path: Path) -> None:
    try:
        run = load_trace(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise SystemExit(f"error: cannot read trace {path}: {exc}") from exc

    print(f"run           : {run.run_id}")
    print(f"action        : {run.action}")
    print(f"mode          : {run.prompt_mode}")
    print(f"seed          : {run.rng.seed}")
    print(f"events        : {run.stats.event_count}")
    print(f"llm calls     : {run.stats.llm_call_count}")
    print(f"errors        : {run.stats.had_errors}")
    for event in run.events:
        if event.type == "decision":
            print(f"  {event.key}: {event.branch_taken} ({event.why})")
        elif event.type == "llm.call":
            print(f"  llm {event.label}: {event.provider.id}/{event.provider.model}")
        elif event.type == "error":
            print(f"  error {event.error_type}: {event.message}")


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = _parse_args(argv)
    if args.show_trace is not None:
        _show_trace(args.show_trace)
        return
    try:
        asyncio.run(
            _run(
                args.description,
                genre=args.genre,
                styles=args.style,
                seed=args.seed,
                max_mode=args.max_mode,
                lyrics=args.lyrics,
                lyrics_topic=args.lyrics_topic,
                locked_phrase=args.locked_phrase,
                mood_category=args.mood_category,
                no_llm=args.no_llm,
                trace_out=args.trace_out,
                config_dir=args.config_dir,
            )
        )
    except CadenceError as exc:
        raise SystemExit(f"error: {exc}") from exc


if __name__ == "__main__":
    main()
