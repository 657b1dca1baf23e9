from __future__ import annotations

"""Split long generation text into length-bounded chunks.

The model can only render a bounded window of audio per call, so text longer
than the per-call character budget is cut into chunks:

1. Whitespace is normalised and a final sentence terminator ensured.
2. The text is split recursively into *atomic parts* along a fixed hierarchy
   of delimiters (sentence enders, colons, commas, optional custom words,
   whitespace).  Only parts still over budget descend to the next tier.
3. :func:`optimal_breaks` groups consecutive parts into chunks, minimising the
   summed squared distance of every chunk length from the budget.

The budget itself is derived from the reference clip by
:func:`max_chars_for_reference`.
"""

import re
from typing import Iterable, List, Optional, Pattern, Sequence

from VoiceCore.errors import ValidationError

__all__ = [
    "SENTENCE_ENDINGS",
    "optimal_breaks",
    "split_text_into_batches",
    "parse_split_words",
    "max_chars_for_reference",
    "split_gen_text",
]

SENTENCE_ENDINGS = "。.!！?？"

_BASE_SPLITTERS: List[Pattern[str]] = [
    re.compile(r"(?<=[。.!?！？])\s*"),  # after sentence endings
    re.compile(r"(?<=[:：])\s*"),  # after colons
    re.compile(r"(?<=[,，])\s*"),  # after commas
]
_WHITESPACE = re.compile(r"\s+")


def optimal_breaks(parts: Sequence[int], max_length: int, exponent: int = 2) -> List[int]:
    """Return the start index of every chunk for parts of the given lengths.

    ``cost(i) = min_j (len(parts[j..i]) - max_length) ** exponent + cost(j - 1)``
    where a chunk's length counts one joining space between adjacent parts.
    O(n²) in the number of parts, which stays small (sentence scale).
    """

    n = len(parts)
    best = [float("inf")] * n
    start_of = [0] * n

    for i in range(n):
        if parts[i] > max_length:
            raise ValidationError(f"Part length {parts[i]} exceeds maxLength {max_length}")
        length = 0
        for j in range(i, -1, -1):
            length += parts[j] + (1 if j < i else 0)
            if length > max_length:
                break
            cost = abs((length - max_length) ** exponent) + (best[j - 1] if j > 0 else 0)
            if cost < best[i]:
                best[i] = cost
                start_of[i] = j

    breaks: List[int] = []
    cursor = n - 1
    while cursor >= 0:
        breaks.append(start_of[cursor])
        cursor = start_of[cursor] - 1
    breaks.reverse()
    return breaks


def _split_word_pattern(split_words: Iterable[str]) -> Optional[Pattern[str]]:
    words = [w for w in split_words if w]
    if not words:
        return None
    alternatives = "|".join(rf"(?<![a-zA-Z]){re.escape(w)}(?![a-zA-Z])" for w in words)
    return re.compile(rf"\s+(?={alternatives})", re.IGNORECASE)


def split_text_into_batches(
    text: str,
    max_chars: int = 200,
    split_words: Optional[Iterable[str]] = None,
) -> List[str]:
    """Return chunks of *text*, each at most *max_chars* long.

    Joining the chunks with single spaces reproduces the whitespace-normalised
    input (plus the terminator added when it was missing).  Raises
    :class:`ValidationError` when some atomic part cannot be brought under
    the budget.
    """

    text = _WHITESPACE.sub(" ", text).strip()
    if not text:
        return []
    if text[-1] not in SENTENCE_ENDINGS:
        text += "."

    splitters = list(_BASE_SPLITTERS)
    custom = _split_word_pattern(split_words or ())
    if custom is not None:
        splitters.append(custom)
    splitters.append(_WHITESPACE)

    def recursive_split(fragment: str, level: int) -> List[str]:
        if len(fragment) <= max_chars or level >= len(splitters):
            return [fragment]
        out: List[str] = []
        for part in splitters[level].split(fragment):
            if not part:
                continue
            if len(part) > max_chars:
                out.extend(recursive_split(part, level + 1))
            else:
                out.append(part)
        return out

    atomic = recursive_split(text, 0)
    breaks = optimal_breaks([len(p) for p in atomic], max_chars)
    bounds = breaks[1:] + [len(atomic)]
    return [" ".join(atomic[start:end]) for start, end in zip(breaks, bounds)]


def parse_split_words(raw: str | None) -> List[str]:
    """Parse the comma-separated custom split-word setting."""
    if not raw:
        return []
    return [w.strip() for w in _WHITESPACE.sub(" ", raw).split(",") if w.strip()]


def max_chars_for_reference(
    ref_text: str,
    ref_audio_seconds: float,
    *,
    max_output_seconds: float = 25,
    speed: float = 1.0,
) -> int:
    """Per-chunk character budget derived from the reference clip.

    The reference clip's character density (UTF-8 bytes of *ref_text* per
    second of audio) is scaled to the time left in the synthesis window once
    the reference audio itself is accounted for, then by *speed*.
    """

    if ref_audio_seconds <= 0:
        raise ValidationError("Reference audio must be longer than zero seconds")
    remaining = max_output_seconds - ref_audio_seconds
    if remaining <= 0:
        raise ValidationError(
            f"Reference audio ({ref_audio_seconds:.2f}s) fills the whole {max_output_seconds}s synthesis window"
        )
    chars_per_second = len(ref_text.encode("utf-8")) / ref_audio_seconds
    budget = int(chars_per_second * remaining * speed)
    if budget <= 0:
        raise ValidationError("Reference text is empty; cannot derive a chunk budget")
    return budget


def split_gen_text(
    gen_text: str,
    *,
    ref_text: str,
    ref_audio_seconds: float,
    max_output_seconds: float = 25,
    split_words: Optional[Iterable[str]] = None,
    speed: float = 1.0,
) -> List[str]:
    """Chunk *gen_text* with a budget derived from the reference clip."""
    budget = max_chars_for_reference(
        ref_text,
        ref_audio_seconds,
        max_output_seconds=max_output_seconds,
        speed=speed,
    )
    return split_text_into_batches(gen_text, budget, split_words)
