import inspect
import sys
from pathlib import Path

import numpy as np
import pytest

# Ensure repo root on sys.path so local imports resolve
ROOT_DIR = Path(inspect.getfile(inspect.currentframe())).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from VoiceCore.errors import ValidationError  # noqa: E402
from VoiceCore.silence import (  # noqa: E402
    calculate_rms,
    detect_silence,
    empty_segment,
    ms_to_samples,
    remove_silence,
    split_on_silence,
)

SR = 24_000
TRIM = dict(sample_rate=SR, min_silence_ms=800, silence_thresh_db=-45, seek_step_ms=10, pad_ms=300)


def _tone(seconds, freq=220.0, amp=0.5):
    t = np.arange(int(seconds * SR), dtype=np.float32) / SR
    return (amp * np.sin(2 * np.pi * freq * t)).astype(np.float32)


@pytest.fixture()
def speech_gap_speech():
    """1 s tone, 2 s silence, 1 s tone at 24 kHz."""
    return np.concatenate([_tone(1.0), np.zeros(2 * SR, dtype=np.float32), _tone(1.0)])


def test_all_zero_signal_is_one_silent_range():
    silence = np.zeros(SR, dtype=np.float32)
    assert detect_silence(silence, sample_rate=SR, min_silence_ms=100, silence_thresh_db=-16) == [(0, SR)]


def test_signal_shorter_than_window_has_no_silence():
    assert detect_silence(np.zeros(100, dtype=np.float32), sample_rate=SR, min_silence_ms=100) == []


def test_tone_has_no_silence():
    assert detect_silence(_tone(0.5), sample_rate=SR, silence_thresh_db=-45) == []


def test_detects_gap_between_tones(speech_gap_speech):
    ranges = detect_silence(speech_gap_speech, sample_rate=SR, min_silence_ms=800, silence_thresh_db=-45)
    assert ranges == [(SR, 3 * SR)]


def test_padding_must_be_below_half_the_minimum_silence(speech_gap_speech):
    with pytest.raises(ValidationError):
        split_on_silence(speech_gap_speech, sample_rate=SR, min_silence_ms=800, pad_ms=400)

    segments = split_on_silence(speech_gap_speech, sample_rate=SR, min_silence_ms=800, pad_ms=399)
    assert len(segments) == 2


def test_split_pads_into_silence_and_clamps(speech_gap_speech):
    first, second = split_on_silence(speech_gap_speech, **TRIM)
    pad = ms_to_samples(300, SR)

    assert first.size == SR + pad  # clamped at the start
    assert second.size == SR + pad  # clamped at the end


def test_remove_silence_is_idempotent(speech_gap_speech):
    # GIVEN speech with a long pause
    once = remove_silence(speech_gap_speech, **TRIM)

    # THEN the pause shrank to the two paddings
    assert once.size == 2 * SR + 2 * ms_to_samples(300, SR)

    # AND a second pass changes nothing
    twice = remove_silence(once, **TRIM)
    np.testing.assert_array_equal(once, twice)


def test_remove_silence_of_pure_silence_is_empty():
    out = remove_silence(np.zeros(2 * SR, dtype=np.float32), **TRIM)
    assert out.size == 0
    assert out.dtype == np.float32


def test_empty_segment_and_helpers():
    pause = empty_segment(duration_ms=250, sample_rate=SR)
    assert pause.dtype == np.float32
    assert pause.size == 6000
    assert not pause.any()

    assert ms_to_samples(10, SR) == 240
    assert calculate_rms(np.array([], dtype=np.float32)) == 0.0
    assert calculate_rms(np.full(10, 0.5, dtype=np.float32)) == pytest.approx(0.5)


def test_rejects_multichannel_input():
    with pytest.raises(ValidationError):
        detect_silence(np.zeros((2, SR), dtype=np.float32))
