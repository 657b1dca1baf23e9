from __future__ import annotations

"""Reference-text transcription powered by NVIDIA Parakeet & NeMo.

Voice cloning needs the transcript of the reference clip.  When the user does
not supply one, :class:`TranscriptionEngine` produces it.

The heavy NeMo dependency is imported lazily inside :meth:`load_model`, which
runs inside the transcriber's execution context only.
"""

import importlib
import logging
from typing import Any

import numpy as np

from VoiceCore.audio_io import resample
from VoiceCore.errors import ModelError


class TranscriptionError(ModelError):
    """Structured inference failure (``code`` is a short machine-readable tag)."""

    def __init__(self, code: str, message: str):
        super().__init__(message, name="TranscriptionError")
        self.code = code


class TranscriptionEngine:
    """Thin OO wrapper around a NeMo ASR model (Parakeet)."""

    _DEFAULT_MODEL_NAME = "nvidia/parakeet-tdt-0.6b-v2"
    MODEL_SAMPLE_RATE = 16_000

    def __init__(self, model_name: str | None = None) -> None:
        self.model_name = model_name or self._DEFAULT_MODEL_NAME
        self.model: Any | None = None

    # ------------------------------------------------------------------
    # Model lifecycle helpers
    # ------------------------------------------------------------------

    def load_model(self) -> None:
        """Load the Parakeet model into GPU/CPU memory and warm it up."""

        nemo_asr = importlib.import_module("nemo.collections.asr")
        try:
            logging.info("Loading Parakeet model – this can take a while on first run …")
            self.model = nemo_asr.models.ASRModel.from_pretrained(model_name=self.model_name)
            logging.info("Model loaded – performing warm-up inference")
            self._warm_up()
        except Exception as exc:
            logging.critical("Failed to load Parakeet model: %s", exc)
            self.model = None
            raise

    def _warm_up(self) -> None:
        """Run a short inference pass to pay the JIT & CUDA launch costs up-front."""
        if self.model is None:
            return
        silence = np.zeros(self.MODEL_SAMPLE_RATE // 2, dtype=np.float32)
        try:
            self.model.transcribe(audio=[silence], batch_size=1)
        except RuntimeError as exc:  # pragma: no cover – warm-up failures non-fatal
            logging.warning("Warm-up inference failed: %s", exc)

    def unload_model(self) -> None:
        """Drop the model and hand VRAM back to the driver when torch is present."""

        if self.model is None:
            return

        self.model = None
        try:
            torch = importlib.import_module("torch")
        except ImportError:
            return
        if torch.cuda.is_available():
            torch.cuda.empty_cache()

    # ------------------------------------------------------------------
    # Public inference API
    # ------------------------------------------------------------------

    def get_plain_transcription(self, audio: np.ndarray, sample_rate: int = MODEL_SAMPLE_RATE) -> str:
        """Return best-guess transcript of mono *audio* as a plain string."""
        self._ensure_model_loaded()
        samples = resample(np.asarray(audio, dtype=np.float32).reshape(-1), sample_rate, self.MODEL_SAMPLE_RATE)
        try:
            preds = self.model.transcribe(audio=[samples], batch_size=1)
        except RuntimeError as exc:
            if "CUDA out of memory" in str(exc):
                raise TranscriptionError("cuda_oom", "CUDA out of memory during inference") from exc
            raise
        if not preds:
            return ""
        first = preds[0]
        # NeMo returns Hypothesis objects on recent releases, plain strings on older ones.
        return str(getattr(first, "text", first)).strip()

    def _ensure_model_loaded(self) -> None:
        if self.model is None:
            raise RuntimeError("ASR model not loaded – call load_model() first")
