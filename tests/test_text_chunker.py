import inspect
import re
import sys
from pathlib import Path

import pytest

# Ensure repo root on sys.path so local imports resolve
ROOT_DIR = Path(inspect.getfile(inspect.currentframe())).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from VoiceCore.errors import ValidationError  # noqa: E402
from VoiceCore.text_chunker import (  # noqa: E402
    max_chars_for_reference,
    optimal_breaks,
    parse_split_words,
    split_gen_text,
    split_text_into_batches,
)

LONG_TEXT = (
    "The quick brown fox jumps over the lazy dog. It was a bright cold day in April, "
    "and the clocks were striking thirteen! Call me Ishmael. Some years ago: never mind "
    "how long precisely, having little or no money in my purse, and nothing particular "
    "to interest me on shore, I thought I would sail about a little and see the watery "
    "part of the world? It is a way I have of driving off the spleen."
)


def _normalise(text):
    return re.sub(r"\s+", " ", text).strip()


@pytest.mark.parametrize("budget", [40, 60, 80, 120, 200, 1000])
def test_chunks_respect_budget_and_rejoin(budget):
    chunks = split_text_into_batches(LONG_TEXT, budget)

    assert chunks
    assert all(0 < len(c) <= budget for c in chunks)
    assert " ".join(chunks) == _normalise(LONG_TEXT)


def test_short_text_is_one_chunk_with_terminator():
    assert split_text_into_batches("  hello \n  world ", 200) == ["hello world."]
    assert split_text_into_batches("Already done!", 200) == ["Already done!"]


def test_empty_text_yields_no_chunks():
    assert split_text_into_batches("   \n\t ", 50) == []


def test_unsplittable_part_raises():
    # GIVEN a single word longer than the budget
    with pytest.raises(ValidationError, match="exceeds maxLength 5"):
        split_text_into_batches("xxxxxxxxxx", 5)


def test_deterministic():
    assert split_text_into_batches(LONG_TEXT, 70) == split_text_into_batches(LONG_TEXT, 70)


def test_custom_split_words_take_priority_over_whitespace():
    text = "I went to the market and I bought some apples and then I went home"

    with_words = split_text_into_batches(text, 30, ["and"])
    without = split_text_into_batches(text, 30)

    assert with_words == ["I went to the market", "and I bought some apples", "and then I went home."]
    assert with_words != without
    assert all(len(c) <= 30 for c in without)


def test_custom_split_words_match_whole_words_only():
    text = "the android handed me a sandwich and then left the room quietly"
    chunks = split_text_into_batches(text, 40, ["and"])
    # "android" / "sandwich" contain "and" but are not split points
    assert chunks[1].startswith("and then")


def test_optimal_breaks_prefers_full_chunks():
    assert optimal_breaks([3, 3, 3], 7) == [0, 2]
    assert optimal_breaks([7, 7], 7) == [0, 1]
    assert optimal_breaks([], 10) == []
    with pytest.raises(ValidationError):
        optimal_breaks([2, 11], 10)


def test_parse_split_words():
    assert parse_split_words(" and,  but ,, so") == ["and", "but", "so"]
    assert parse_split_words("") == []
    assert parse_split_words(None) == []


def test_budget_from_reference():
    # 11 UTF-8 bytes over 5 s → 2.2 chars/s, 20 s left in a 25 s window
    assert max_chars_for_reference("hello world", 5.0) == 44
    assert max_chars_for_reference("hello world", 5.0, speed=2.0) == 88
    # Multi-byte characters count by encoded length
    assert max_chars_for_reference("héllo", 1.0, max_output_seconds=2.0) == 6


def test_budget_rejects_impossible_windows():
    with pytest.raises(ValidationError):
        max_chars_for_reference("hello", 25.0)
    with pytest.raises(ValidationError):
        max_chars_for_reference("hello", 0)
    with pytest.raises(ValidationError):
        max_chars_for_reference("", 3.0)


def test_split_gen_text_uses_reference_budget():
    chunks = split_gen_text(LONG_TEXT, ref_text="hello world", ref_audio_seconds=5.0)
    assert all(len(c) <= 44 for c in chunks)
    assert " ".join(chunks) == _normalise(LONG_TEXT)
