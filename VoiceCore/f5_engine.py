from __future__ import annotations

"""F5-TTS inference on three exported ONNX graphs.

The acoustic model is split into a *preprocess* graph (reference audio + text
→ initial noise and rotary embeddings), a *transformer* graph run once per
flow-matching step, and a *decode* graph (mel → waveform).  This module only
sequences those graphs; the maths lives inside them.

``onnxruntime`` and ``huggingface_hub`` are heavy, optional dependencies and
are imported lazily in :meth:`F5TTSEngine.load`, which only ever runs inside an
execution context.
"""

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from VoiceCore.audio_io import normalize_to_int16
from VoiceCore.errors import ConfigurationError
from VoiceCore.silence import calculate_rms

__all__ = ["F5TTSEngine", "MODEL_FILES", "DEFAULT_REPO_ID"]

DEFAULT_REPO_ID = "nsarang/F5-TTS-ONNX"

MODEL_FILES: Dict[str, str] = {
    "preprocess": "models/F5_Preprocess.onnx",
    "transformer": "models/F5_Transformer.onnx",
    "decode": "models/F5_Decode.onnx",
    "vocab": "models/Emilia_ZH_EN_pinyin/vocab.txt",
}

#: ``on_progress(value_percent, message)``
ProgressCallback = Callable[[float, str], None]


class F5TTSEngine:  # pylint: disable=too-many-instance-attributes
    """Load the three F5-TTS graphs and run one synthesis call at a time."""

    HOP_LENGTH = 256
    SAMPLE_RATE = 24_000
    TARGET_RMS = 0.1

    def __init__(
        self,
        model_dir: str | Path | None = None,
        *,
        repo_id: str = DEFAULT_REPO_ID,
        providers: Optional[Sequence[str]] = None,
    ) -> None:
        self.model_dir = Path(model_dir) if model_dir else None
        self.repo_id = repo_id
        self.providers = list(providers) if providers else None
        self.session_a = None
        self.session_b = None
        self.session_c = None
        self.vocab: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Model lifecycle
    # ------------------------------------------------------------------
    def load(self, on_progress: Optional[ProgressCallback] = None) -> None:
        paths = self._resolve_paths(on_progress)

        import onnxruntime as ort  # pylint: disable=import-outside-toplevel
        providers = self.providers or ort.get_available_providers()
        logging.debug("ONNX Runtime providers: %s", providers)

        options = ort.SessionOptions()
        options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL

        try:
            self.session_a = ort.InferenceSession(str(paths["preprocess"]), sess_options=options, providers=providers)
            self.session_b = ort.InferenceSession(str(paths["transformer"]), sess_options=options, providers=providers)
            self.session_c = ort.InferenceSession(str(paths["decode"]), sess_options=options, providers=providers)
        except Exception as exc:
            self.unload()
            raise RuntimeError(f"Failed to load models: {exc}") from exc

        self.vocab = self._load_vocab(paths["vocab"])
        logging.info("F5-TTS graphs loaded (%d vocab entries)", len(self.vocab))

    def unload(self) -> None:
        self.session_a = self.session_b = self.session_c = None
        self.vocab = {}

    @property
    def is_loaded(self) -> bool:
        return None not in (self.session_a, self.session_b, self.session_c)

    def _resolve_paths(self, on_progress: Optional[ProgressCallback]) -> Dict[str, Path]:
        if self.model_dir is not None:
            paths = {key: self.model_dir / rel for key, rel in MODEL_FILES.items()}
            missing = [str(p) for p in paths.values() if not p.is_file()]
            if missing:
                raise ConfigurationError(f"F5-TTS model files missing: {', '.join(missing)}")
            return paths

        from huggingface_hub import hf_hub_download  # pylint: disable=import-outside-toplevel
        paths = {}
        total = len(MODEL_FILES)
        for idx, (key, rel) in enumerate(MODEL_FILES.items(), start=1):
            logging.info("Fetching %s from %s", rel, self.repo_id)
            paths[key] = Path(hf_hub_download(repo_id=self.repo_id, filename=rel))
            if on_progress is not None:
                on_progress(idx / total * 100, f"Downloaded {Path(rel).name}")
        return paths

    @staticmethod
    def _load_vocab(path: Path) -> Dict[str, int]:
        vocab: Dict[str, int] = {}
        with open(path, "r", encoding="utf-8") as fh:
            for idx, line in enumerate(fh.read().split("\n")):
                char = line.strip()
                if char:
                    vocab[char] = idx
        return vocab

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------
    def tokenize(self, text: str) -> List[int]:
        """Map each character to its vocabulary index (0 when unknown)."""
        return [self.vocab.get(ch, 0) for ch in text]

    def inference(  # pylint: disable=too-many-locals
        self,
        ref_audio: np.ndarray,
        ref_text: str,
        gen_text: str,
        *,
        speed: float = 1.0,
        nfe_steps: int = 32,
        on_progress: Optional[ProgressCallback] = None,
    ) -> np.ndarray:
        """Synthesize *gen_text* in the voice of *ref_audio*; returns float32 samples."""

        if not self.is_loaded:
            raise RuntimeError("Models not loaded")

        audio = np.asarray(ref_audio, dtype=np.float32).reshape(-1)
        ref_rms = calculate_rms(audio)
        if 0 < ref_rms < self.TARGET_RMS:
            audio = audio * (self.TARGET_RMS / ref_rms)

        audio_int16 = normalize_to_int16(audio).reshape(1, 1, -1)

        tokens = self.tokenize(f"{ref_text} {gen_text}")
        text_ids = np.asarray([tokens], dtype=np.int32)

        ref_audio_len = audio.size // self.HOP_LENGTH
        duration = ref_audio_len + int(ref_audio_len / (len(ref_text) + 1) * len(gen_text) / speed)
        duration_t = np.asarray([duration], dtype=np.int64)

        # Stage A: preprocess
        a_inputs = [i.name for i in self.session_a.get_inputs()]
        (noise, cos_q, sin_q, cos_k, sin_k, cat_mel_text, cat_mel_text_drop, ref_signal_len) = self.session_a.run(
            None, dict(zip(a_inputs, (audio_int16, text_ids, duration_t)))
        )

        # Stage B: one transformer pass per flow step
        b_inputs = [i.name for i in self.session_b.get_inputs()]
        time_step = np.asarray([0], dtype=np.int32)
        for step in range(nfe_steps - 1):
            noise, time_step = self.session_b.run(
                None,
                dict(zip(b_inputs, (noise, cos_q, sin_q, cos_k, sin_k, cat_mel_text, cat_mel_text_drop, time_step))),
            )[:2]
            if on_progress is not None:
                on_progress((step + 1) / nfe_steps * 100, f"NFE Step {step + 1}/{nfe_steps}")

        # Stage C: decode
        c_inputs = [i.name for i in self.session_c.get_inputs()]
        generated = self.session_c.run(None, dict(zip(c_inputs, (noise, ref_signal_len))))[0]

        out = np.asarray(generated).astype(np.float32).reshape(-1) / 32767.0
        if 0 < ref_rms < self.TARGET_RMS:
            out = out * (ref_rms / self.TARGET_RMS)
        return out.astype(np.float32)
