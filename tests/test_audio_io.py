import inspect
import sys
from pathlib import Path

import numpy as np
import pytest
import requests
import soundfile as sf

# Ensure repo root on sys.path so local imports resolve
ROOT_DIR = Path(inspect.getfile(inspect.currentframe())).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from ipc import Tensor  # noqa: E402
from VoiceCore import audio_io  # noqa: E402
from VoiceCore.errors import TransportError, ValidationError  # noqa: E402

SR = 24_000


def _tone(seconds, sr=SR, amp=0.5):
    t = np.arange(int(seconds * sr), dtype=np.float32) / sr
    return (amp * np.sin(2 * np.pi * 220.0 * t)).astype(np.float32)


@pytest.fixture()
def stereo_wav(tmp_path):
    """1 s tone, 2 s silence, 13 s tone – stereo, 48 kHz."""
    mono = np.concatenate([_tone(1, 48_000), np.zeros(96_000, dtype=np.float32), _tone(13, 48_000)])
    path = tmp_path / "ref.wav"
    sf.write(str(path), np.stack([mono, mono], axis=1), 48_000, subtype="FLOAT")
    return path


def test_decode_resamples_to_target_rate(stereo_wav):
    audio = audio_io.decode_audio(stereo_wav)
    assert audio.shape[0] == 2
    assert audio.shape[1] == pytest.approx(16 * SR, abs=2)
    assert audio.dtype == np.float32


def test_decode_from_bytes(stereo_wav):
    audio = audio_io.decode_audio(stereo_wav.read_bytes(), target_rate=48_000)
    assert audio.shape == (2, 16 * 48_000)


def test_decode_rejects_garbage_and_missing_files(tmp_path):
    with pytest.raises(ValidationError):
        audio_io.decode_audio(b"definitely not audio")
    with pytest.raises(ValidationError):
        audio_io.decode_audio(tmp_path / "missing.wav")


def test_prepare_reference_audio(stereo_wav):
    # WHEN a long stereo clip with a pause is prepared
    ref = audio_io.prepare_reference_audio(stereo_wav)

    # THEN it is a mono float32 tensor, trimmed to 10 s
    assert isinstance(ref, Tensor)
    assert ref.dtype == "float32"
    assert ref.dims == (10 * SR,)


def test_prepare_reference_audio_from_url(monkeypatch, stereo_wav):
    calls = {}

    class _Resp:
        content = stereo_wav.read_bytes()

        def raise_for_status(self):
            return None

    def fake_get(url, timeout):
        calls["url"], calls["timeout"] = url, timeout
        return _Resp()

    monkeypatch.setattr(audio_io.requests, "get", fake_get)
    ref = audio_io.prepare_reference_audio("https://example.com/voice.wav", fetch_timeout=12)

    assert calls == {"url": "https://example.com/voice.wav", "timeout": 12}
    assert ref.size == 10 * SR


def test_fetch_timeout_becomes_transport_error(monkeypatch):
    def slow_get(url, timeout):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(audio_io.requests, "get", slow_get)
    with pytest.raises(TransportError, match="Timed out after 30s"):
        audio_io.fetch_audio_bytes("https://example.com/slow.wav")


def test_silent_reference_is_rejected(tmp_path):
    path = tmp_path / "silence.wav"
    sf.write(str(path), np.zeros(2 * SR, dtype=np.float32), SR)
    with pytest.raises(ValidationError, match="no voiced samples"):
        audio_io.prepare_reference_audio(path)


def test_normalize_to_int16_uses_full_scale():
    out = audio_io.normalize_to_int16(_tone(0.5, amp=0.1))
    assert out.dtype == np.int16
    assert int(np.abs(out).max()) >= 32000


def test_write_wav_round_trip(tmp_path):
    tensor = Tensor.from_numpy(_tone(0.25))
    path = audio_io.write_wav(tmp_path / "out" / "speech.wav", tensor)

    data, rate = sf.read(str(path), dtype="float32")
    assert rate == SR
    assert data.shape == (SR // 4,)
    np.testing.assert_allclose(data, tensor.numpy(), atol=1e-3)
    assert sf.info(str(path)).subtype == "PCM_16"


def test_resample_halves_length():
    out = audio_io.resample(np.ones(48_000, dtype=np.float32), 48_000, SR)
    assert out.shape == (SR,)


def test_resample_filters_content_above_new_nyquist():
    # GIVEN a 20 kHz tone sampled at 48 kHz
    t = np.arange(48_000, dtype=np.float64) / 48_000
    tone = np.sin(2 * np.pi * 20_000.0 * t).astype(np.float32)

    # WHEN it is brought down to 24 kHz (Nyquist 12 kHz)
    out = audio_io.resample(tone, 48_000, SR)

    # THEN the tone is removed rather than folded back as a 4 kHz alias
    assert out.shape == (SR,)
    assert float(np.sqrt(np.mean(out[1000:-1000] ** 2))) < 0.01


def test_resample_keeps_in_band_content_and_channels():
    stereo = np.stack([_tone(1, 48_000), _tone(1, 48_000)])
    out = audio_io.resample(stereo, 48_000, 16_000)
    assert out.shape == (2, 16_000)
    assert out.dtype == np.float32
    # 220 Hz at amplitude 0.5 keeps its RMS (0.5 / sqrt(2))
    assert float(np.sqrt(np.mean(out[0, 500:-500] ** 2))) == pytest.approx(0.3536, abs=0.01)
