"""
memoscribe.alignment - Sentence-level timestamps from recognizer token timings.

Maps sub-word tokens onto character offsets of the final transcript,
then gives each sentence the start time of the first token that lands
inside it. Sentences no token lands in get a start time proportional to
their character position in the transcript.
"""

from __future__ import annotations

import math
import re
from collections.abc import Sequence

from memoscribe.logging import logger
from memoscribe.models import SentenceTimestamp, TokenTiming

SENTENCE_TERMINATORS = ".!?…。！？"
# full-width terminators end a sentence without trailing whitespace
NO_SPACE_TERMINATORS = "。！？"

_SENTENCE_END = re.compile(r"[.!?…。！？]+[\"'”’)\]}»」』]*")
_PRECEDING_WORD = re.compile(r"(\S+)$")

# SentencePiece word-boundary marker
TOKEN_ARTIFACTS = {"▁"}

ABBREVIATIONS: dict[str, set[str]] = {
    "en": {
        "mr",
        "mrs",
        "ms",
        "dr",
        "prof",
        "sr",
        "jr",
        "st",
        "vs",
        "e.g",
        "i.e",
        "approx",
        "inc",
        "ltd",
        "dept",
    },
    "de": {"bzw", "ca", "dr", "z.b", "usw", "vgl", "nr"},
    "fr": {"m", "mme", "mlle", "dr", "etc"},
}


def split_sentences(text: str, locale: str = "en") -> list[tuple[int, int]]:
    """Split text into sentence spans.

    Args:
        text: Transcript text
        locale: Language code used to pick abbreviations that do not end a sentence

    Returns:
        List of (start, end) character offsets. Each span starts at its first
        non-whitespace character; the last span may end without punctuation.
    """
    abbreviations = ABBREVIATIONS.get(locale.split("-")[0].split("_")[0].lower(), set())

    boundaries = []
    for match in _SENTENCE_END.finditer(text):
        end = match.end()
        terminator = match.group()
        if end < len(text) and not text[end].isspace():
            if terminator[0] not in NO_SPACE_TERMINATORS:
                continue
        if terminator == "." and _ends_with_abbreviation(text[: match.start()], abbreviations):
            continue
        boundaries.append(end)

    if not boundaries or boundaries[-1] < len(text):
        boundaries.append(len(text))

    spans = []
    start = 0
    for end in boundaries:
        while start < end and text[start].isspace():
            start += 1
        if start < end:
            spans.append((start, end))
        start = end
    return spans


def _ends_with_abbreviation(prefix: str, abbreviations: set[str]) -> bool:
    match = _PRECEDING_WORD.search(prefix)
    if not match:
        return False
    return match.group(1).lower() in abbreviations


def _same_char(a: str, b: str) -> bool:
    return a == b or a.casefold() == b.casefold()


def assign_token_offsets(text: str, timings: Sequence[TokenTiming]) -> list[int]:
    """Find the text offset where each token starts.

    Walks the text once. Whitespace in the text is skipped; a text character
    that does not match the current token character is treated as noise and
    skipped. A token that matches nothing gets offset 0.

    Args:
        text: Trimmed transcript text
        timings: Tokens in emission order

    Returns:
        One offset per token, in the same order
    """
    offsets = []
    cursor = 0
    length = len(text)

    for timing in timings:
        token_chars = [c for c in timing.token if not c.isspace() and c not in TOKEN_ARTIFACTS]
        first_match = None
        i = 0
        while i < len(token_chars) and cursor < length:
            char = text[cursor]
            if char.isspace():
                cursor += 1
                continue
            if _same_char(char, token_chars[i]):
                if first_match is None:
                    first_match = cursor
                i += 1
            cursor += 1
        offsets.append(first_match if first_match is not None else 0)

    return offsets


def align_sentences(
    text: str,
    timings: Sequence[TokenTiming] | None,
    duration_seconds: float,
    locale: str = "en",
) -> list[SentenceTimestamp]:
    """Compute a start time for every sentence in the transcript.

    Args:
        text: Final transcript text
        timings: Token timings in emission order (None or empty if unavailable)
        duration_seconds: Source audio length, used for proportional fallback
        locale: Language code for sentence splitting

    Returns:
        One SentenceTimestamp per sentence, in text order. Empty for blank text.
    """
    trimmed = text.strip()
    if not trimmed:
        return []

    timings = list(timings or [])
    duration = duration_seconds if math.isfinite(duration_seconds) and duration_seconds > 0 else 0.0

    spans = split_sentences(trimmed, locale)
    offsets = assign_token_offsets(trimmed, timings)
    total = len(trimmed)

    sentences = []
    for start, end in spans:
        start_time = None
        for timing, offset in zip(timings, offsets):
            if start <= offset < end:
                start_time = timing.start_time
                break

        if start_time is None:
            fraction = start / total
            start_time = min(max(fraction * duration, 0.0), duration)
            logger.debug("No token in sentence at offset %d, approximating %.3fs", start, start_time)

        sentences.append(SentenceTimestamp(sentence=trimmed[start:end].strip(), start_time_seconds=start_time))

    return sentences
