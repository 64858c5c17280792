"""System and user prompt text for every LLM call the worker makes."""

from __future__ import annotations

from typing import Optional, Sequence

from .formatter import MAX_MODE_HEADER

LYRICS_MAX_MODE_MARKER = "///*****///"


def generation_system_prompt(max_chars: int, *, max_mode: bool, use_suno_tags: bool) -> str:
    if max_mode:
        return f"""You are a music prompt writer for MAX MODE. Rewrite the reference fields into a vivid prompt using this exact metadata format:

{MAX_MODE_HEADER}

genre: "<genre(s), comma separated>"
bpm: "<tempo range, e.g. 'between 80 and 160'>"
instruments: "<instruments with character adjectives>"
style tags: "<mood keywords, chord feel, production style, texture>"
recording: "<session description reflecting production style and mood>"

Keep the header lines exactly as shown. Use every field.
Each significant word should appear only once.
The result must be under {max_chars} characters."""

    structure = ""
    if use_suno_tags:
        structure = """
Follow this layout:
Line 1: [Mood, Genre/Style, Key: key mode]

Genre: <genre>
BPM: <tempo range>
Mood: <moods>
Instruments: <2-4 instruments with character adjectives>

[INTRO] <sparse instrumentation setting the scene>
[VERSE] <instruments woven into the narrative>
[CHORUS] <peak energy, full arrangement>
[BRIDGE] <contrasting texture>
[OUTRO] <resolution and fade>
"""
    return f"""You are a creative music prompt writer. Turn the user's song concept and the reference fields into an evocative style prompt.

Preserve the user's narrative and meaning. Treat the reference fields as color, not a checklist.
Each significant word should appear only once.
{structure}
The result must be under {max_chars} characters and contain only the prompt."""


def generation_user_prompt(description: str, reference_lines: str, lyrics_topic: Optional[str] = None) -> str:
    parts = [f"SONG CONCEPT:\n{description.strip() or '(none given)'}"]
    if lyrics_topic:
        parts.append(f"LYRICS TOPIC:\n{lyrics_topic.strip()}")
    parts.append(f"REFERENCE FIELDS:\n{reference_lines}")
    return "\n\n".join(parts)


DEDUP_SYSTEM_PROMPT = (
    "Rewrite the given music prompt to remove word repetition while preserving meaning "
    "and musical quality. Return ONLY the rewritten prompt text. Do NOT include "
    "explanations, meta-instructions, prefaces, or quotes. Do NOT mention "
    'repetition-removal, condensing, or "output only" in the result.'
)

REWRITE_SYSTEM_PROMPT = (
    "Rewrite the given music prompt text. Remove any meta-instructions or assistant "
    "chatter. Return ONLY the final prompt text."
)


def condense_system_prompt(target_chars: int) -> str:
    return (
        f"Shorten the given music prompt to at most {target_chars} characters. Keep its "
        "structure, field labels and header lines. Return ONLY the shortened prompt text."
    )


def dedup_user_prompt(text: str, repeated_words: Sequence[str]) -> str:
    return f"PROMPT_TO_REWRITE:\n<<<\n{text}\n>>>\n\nREPEATED_WORDS:\n{', '.join(repeated_words)}"


def rewrite_user_prompt(text: str) -> str:
    return f"PROMPT_TO_REWRITE:\n<<<\n{text}\n>>>"


def lyrics_system_prompt(*, max_mode: bool, use_suno_tags: bool) -> str:
    marker = ""
    if max_mode:
        marker = (
            f"The very first line of your output must be exactly:\n{LYRICS_MAX_MODE_MARKER}\n"
            "Then continue with the lyrics on the following lines.\n\n"
        )
    tags = ""
    if use_suno_tags:
        tags = (
            "Backing vocals go in parentheses: wordless (ooh, ahh) or an echo of a key word "
            "from the line.\n"
        )
    opening = f"{LYRICS_MAX_MODE_MARKER}\n" if max_mode else ""
    return f"""You are a songwriter who writes evocative lyrics matching the mood and genre of the music.

{marker}Use the section tags [INTRO], [VERSE], [CHORUS], [BRIDGE], [OUTRO].
Each section has 2-4 lines. Include one intro, two verses, two choruses, one bridge and one outro.
The chorus should be memorable and repeatable.
{tags}
Layout:
{opening}[INTRO]
[VERSE]
[CHORUS]
[VERSE]
[CHORUS]
[BRIDGE]
[OUTRO]

Reply with the lyrics alone, no title and no commentary."""


def lyrics_user_prompt(topic: str, genre: str, mood: str) -> str:
    return (
        "Write lyrics for a song with these characteristics:\n\n"
        f"Topic: {topic}\nGenre: {genre}\nMood: {mood}\n\n"
        "The lyrics should feel authentic to the genre and match the mood."
    )


TITLE_SYSTEM_PROMPT = """You create short, memorable song titles.

Reply with the title alone: one to five words, no quotation marks, no explanation.
Match the mood and genre of the song."""


def title_user_prompt(description: str, genre: str, mood: str) -> str:
    return f"Create a song title for:\n\nDescription: {description}\nGenre: {genre}\nMood: {mood}"
