from __future__ import annotations

"""Silence detection and trimming for mono waveforms.

Used in two places: cleaning the reference clip before synthesis, and removing
the dead air the model leaves at chunk boundaries once a segment's chunks have
been concatenated.  :func:`empty_segment` goes the other way and produces a
pause to re-insert between independently synthesized turns.

Pure NumPy.  A window of ``min_silence_ms`` slides across the signal every
``seek_step_ms``; a window is silent when its RMS is at or below the decibel
threshold converted to linear amplitude.  Window energies come from a running
sum of squares so long signals with a 1 ms step stay cheap.
"""

from typing import List, Tuple

import numpy as np

from VoiceCore.errors import ValidationError

__all__ = [
    "ms_to_samples",
    "calculate_rms",
    "detect_silence",
    "split_on_silence",
    "remove_silence",
    "empty_segment",
]

SilenceRange = Tuple[int, int]


def ms_to_samples(ms: float, sample_rate: int) -> int:
    return int((ms * sample_rate) // 1000)


def calculate_rms(audio: np.ndarray) -> float:
    """Root-mean-square energy of *audio* (0.0 for an empty array)."""
    if audio.size == 0:
        return 0.0
    samples = np.asarray(audio, dtype=np.float64)
    return float(np.sqrt(np.mean(np.square(samples))))


def _as_mono(audio: np.ndarray) -> np.ndarray:
    audio = np.asarray(audio)
    if audio.ndim != 1:
        raise ValidationError(f"Expected a mono 1-D waveform, got shape {audio.shape}")
    return audio


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------

def detect_silence(
    audio: np.ndarray,
    *,
    sample_rate: int = 24_000,
    min_silence_ms: float = 100,
    silence_thresh_db: float = -16,
    seek_step_ms: float = 10,
) -> List[SilenceRange]:
    """Return the maximal silent ``(start, end)`` ranges of *audio*.

    Parameters
    ----------
    audio
        1-D waveform, float samples in ``[-1, 1]``.
    sample_rate
        Samples per second – **must** match the actual audio.
    min_silence_ms
        Window length; also the shortest silence that can be reported.
    silence_thresh_db
        A window is silent when its RMS is ``<= 10 ** (silence_thresh_db / 20)``.
    seek_step_ms
        Distance between consecutive window starts.
    """

    audio = _as_mono(audio)
    window = ms_to_samples(min_silence_ms, sample_rate)
    step = max(1, ms_to_samples(seek_step_ms, sample_rate))
    size = audio.size

    if window <= 0 or size < window:
        return []

    threshold = 10.0 ** (silence_thresh_db / 20.0)

    # Running sum of squares → O(1) energy per window.
    energy = np.concatenate(([0.0], np.cumsum(np.square(audio, dtype=np.float64))))
    starts = np.arange(0, size - window + 1, step)
    rms = np.sqrt(np.maximum(energy[starts + window] - energy[starts], 0.0) / window)
    silent_starts = starts[rms <= threshold]

    if silent_starts.size == 0:
        return []

    # Merge overlapping / touching windows into maximal ranges.
    ranges: List[SilenceRange] = []
    current_start = int(silent_starts[0])
    current_end = current_start + window
    for pos in silent_starts[1:]:
        pos = int(pos)
        if pos <= current_end:
            current_end = pos + window
        else:
            ranges.append((current_start, current_end))
            current_start, current_end = pos, pos + window
    ranges.append((current_start, min(current_end, size)))
    return ranges


def split_on_silence(
    audio: np.ndarray,
    *,
    sample_rate: int = 24_000,
    min_silence_ms: float = 1000,
    silence_thresh_db: float = -16,
    pad_ms: float = 100,
    seek_step_ms: float = 1,
) -> List[np.ndarray]:
    """Return the voiced stretches of *audio* between silent ranges.

    Each stretch is widened by *pad_ms* into the neighbouring silence (clamped
    to the signal bounds) so onsets and decays are not clipped.  Padding must be
    strictly below half of *min_silence_ms*, otherwise two padded stretches
    around a minimal silence could overlap.
    """

    if 2 * pad_ms >= min_silence_ms:
        raise ValidationError(
            f"Padding ({pad_ms} ms) must be less than half of the minimum silence duration ({min_silence_ms} ms)"
        )

    audio = _as_mono(audio)
    pad = ms_to_samples(pad_ms, sample_rate)
    silent = detect_silence(
        audio,
        sample_rate=sample_rate,
        min_silence_ms=min_silence_ms,
        silence_thresh_db=silence_thresh_db,
        seek_step_ms=seek_step_ms,
    )

    # Sentinels: "silence" ending at 0 and starting at len(audio).
    bounds = [(0, 0), *silent, (audio.size, audio.size)]
    segments: List[np.ndarray] = []
    for (_, prev_end), (next_start, _) in zip(bounds, bounds[1:]):
        if next_start > prev_end:
            start = max(prev_end - pad, 0)
            end = min(next_start + pad, audio.size)
            segments.append(audio[start:end])
    return segments


def remove_silence(audio: np.ndarray, **kwargs) -> np.ndarray:
    """Concatenate the padded voiced stretches of *audio* (see :func:`split_on_silence`)."""
    audio = _as_mono(audio)
    segments = split_on_silence(audio, **kwargs)
    if not segments:
        return np.empty(0, dtype=audio.dtype)
    return np.concatenate(segments)


def empty_segment(*, duration_ms: float = 500, sample_rate: int = 24_000) -> np.ndarray:
    """Return *duration_ms* of float32 silence."""
    return np.zeros(ms_to_samples(duration_ms, sample_rate), dtype=np.float32)
