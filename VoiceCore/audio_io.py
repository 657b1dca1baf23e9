from __future__ import annotations

"""Audio decode / export helpers and reference-clip preparation.

Decoding goes through *soundfile* (libsndfile) and remote clips are fetched
with *requests*; both are the only I/O the pipeline performs outside of the
model execution context.  The fetch carries an explicit timeout – it is the one
place in the pipeline with an abort-after-fixed-duration.
"""

import io
import logging
import math
import os
from pathlib import Path
from typing import BinaryIO, Union

import numpy as np
import requests
import soundfile as sf
from scipy.signal import resample_poly

from ipc.tensor import Tensor
from VoiceCore.errors import TransportError, ValidationError
from VoiceCore.silence import remove_silence

__all__ = [
    "TARGET_SAMPLE_RATE",
    "resample",
    "to_mono",
    "decode_audio",
    "fetch_audio_bytes",
    "prepare_reference_audio",
    "normalize_to_int16",
    "write_wav",
]

TARGET_SAMPLE_RATE = 24_000
_INT16_MAX = 32767.0

AudioSource = Union[str, os.PathLike, bytes, bytearray, BinaryIO]


def _is_url(source: object) -> bool:
    return isinstance(source, str) and source.startswith(("http://", "https://"))


# ---------------------------------------------------------------------------
# Signal helpers
# ---------------------------------------------------------------------------

def resample(audio: np.ndarray, orig_rate: int, target_rate: int) -> np.ndarray:
    """Band-limited polyphase resampling along the last axis."""
    audio = np.asarray(audio, dtype=np.float32)
    if orig_rate == target_rate or audio.shape[-1] == 0:
        return audio
    divisor = math.gcd(int(orig_rate), int(target_rate))
    up, down = int(target_rate) // divisor, int(orig_rate) // divisor
    return resample_poly(audio, up, down, axis=-1).astype(np.float32)


def to_mono(audio: np.ndarray) -> np.ndarray:
    """Average a ``(channels, samples)`` array down to one channel."""
    audio = np.asarray(audio, dtype=np.float32)
    if audio.ndim == 1:
        return audio
    return audio.mean(axis=0).astype(np.float32)


def normalize_to_int16(audio: np.ndarray, quantile: float = 0.999) -> np.ndarray:
    """Scale *audio* so its *quantile* absolute amplitude maps to int16 full scale."""
    audio = np.asarray(audio, dtype=np.float32)
    if audio.size == 0:
        return audio.astype(np.int16)
    max_val = float(np.quantile(np.abs(audio), quantile))
    scale = _INT16_MAX / max_val if max_val > 0 else 1.0
    return np.clip(np.round(audio * scale), -32768, 32767).astype(np.int16)


# ---------------------------------------------------------------------------
# Decode / fetch
# ---------------------------------------------------------------------------

def fetch_audio_bytes(url: str, *, timeout: float = 30) -> bytes:
    """Download *url*, aborting after *timeout* seconds."""
    logging.info("Fetching reference audio from %s", url)
    try:
        resp = requests.get(url, timeout=timeout)
        resp.raise_for_status()
    except requests.Timeout as exc:
        raise TransportError(f"Timed out after {timeout}s fetching {url}") from exc
    except requests.RequestException as exc:
        raise TransportError(f"Failed to fetch {url}: {exc}") from exc
    return resp.content


def decode_audio(source: AudioSource, *, target_rate: int = TARGET_SAMPLE_RATE) -> np.ndarray:
    """Decode *source* into a float32 ``(channels, samples)`` array at *target_rate*."""
    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(bytes(source))
    elif isinstance(source, (str, os.PathLike)):
        source = Path(source)
        if not source.is_file():
            raise ValidationError(f"Audio file not found: {source}")

    try:
        data, rate = sf.read(source, dtype="float32", always_2d=True)
    except (sf.LibsndfileError, RuntimeError) as exc:
        raise ValidationError(f"Could not decode audio: {exc}") from exc

    channels_first = np.ascontiguousarray(data.T)  # (frames, ch) → (ch, frames)
    return resample(channels_first, int(rate), target_rate)


def prepare_reference_audio(
    source: AudioSource,
    *,
    sample_rate: int = TARGET_SAMPLE_RATE,
    max_seconds: float = 10,
    silence_thresh_db: float = -45,
    min_silence_ms: float = 800,
    pad_ms: float = 300,
    seek_step_ms: float = 10,
    fetch_timeout: float = 30,
) -> Tensor:
    """Decode, down-mix, strip silence and trim a reference clip."""
    if _is_url(source):
        source = fetch_audio_bytes(source, timeout=fetch_timeout)

    decoded = decode_audio(source, target_rate=sample_rate)
    if decoded.shape[0] > 1:
        logging.info("Reference audio has shape %s. Converting to mono.", decoded.shape)
    audio = to_mono(decoded)

    before = audio.size / sample_rate
    audio = remove_silence(
        audio,
        sample_rate=sample_rate,
        min_silence_ms=min_silence_ms,
        silence_thresh_db=silence_thresh_db,
        seek_step_ms=seek_step_ms,
        pad_ms=pad_ms,
    )
    logging.info("Removed silence: %.2fs -> %.2fs", before, audio.size / sample_rate)

    max_samples = int(max_seconds * sample_rate)
    if audio.size > max_samples:
        logging.info("Reference audio is %.2fs long, trimming to %ss.", audio.size / sample_rate, max_seconds)
        audio = audio[:max_samples]
    if audio.size == 0:
        raise ValidationError("Reference audio contains no voiced samples")
    return Tensor.from_numpy(audio.astype(np.float32))


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def write_wav(path: str | os.PathLike, audio: Tensor | np.ndarray, *, sample_rate: int = TARGET_SAMPLE_RATE) -> Path:
    """Write a mono float waveform as 16-bit PCM WAV and return the path."""
    samples = audio.data if isinstance(audio, Tensor) else np.asarray(audio).reshape(-1)
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    sf.write(str(out), np.clip(samples.astype(np.float32), -1.0, 1.0), sample_rate, subtype="PCM_16")
    logging.info("Wrote %.2fs of audio to %s", samples.size / sample_rate, out)
    return out
