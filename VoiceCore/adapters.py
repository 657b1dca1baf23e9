from __future__ import annotations

"""Adapters hosted inside an execution context, and the registry naming them.

An adapter is constructed *inside* the execution context by a factory
``factory(config, emit)`` and must implement ``initialize()``,
``process(inputs)`` and ``dispose()``.  ``emit(event_type, data)`` is
fire-and-forget; the data for progress events is ``{"value", "message"}``.

Factories travel to spawned processes by reference, so every factory in
:data:`ADAPTER_REGISTRY` has to be a module-level callable.
"""

import logging
from typing import Any, Callable, Dict, Mapping

import numpy as np

from ipc.tensor import Tensor
from VoiceCore.errors import ConfigurationError

__all__ = [
    "ModelAdapter",
    "F5TTSAdapter",
    "TranscriberAdapter",
    "ADAPTER_REGISTRY",
    "register_adapter",
    "get_adapter_factory",
]

EmitFn = Callable[[str, Any], None]
AdapterFactory = Callable[[Dict[str, Any], EmitFn], "ModelAdapter"]


def _noop_emit(_event_type: str, _data: Any = None) -> None:
    return None


def _as_waveform(value: Any) -> np.ndarray:
    if isinstance(value, Tensor):
        return value.numpy().reshape(-1).astype(np.float32)
    return np.asarray(value, dtype=np.float32).reshape(-1)


class ModelAdapter:
    """Base class for everything an execution context can host."""

    def __init__(self, config: Mapping[str, Any] | None = None, emit: EmitFn | None = None):
        self.config: Dict[str, Any] = dict(config or {})
        self.emit: EmitFn = emit or _noop_emit

    def initialize(self) -> None:
        raise NotImplementedError("initialize() must be implemented")

    def process(self, inputs: Any) -> Any:
        raise NotImplementedError("process() must be implemented")

    def dispose(self) -> None:
        """Optional cleanup."""

    def progress(self, event_type: str, value: float, message: str = "") -> None:
        self.emit(event_type, {"value": float(value), "message": message})


# ---------------------------------------------------------------------------
# Concrete adapters
# ---------------------------------------------------------------------------

class F5TTSAdapter(ModelAdapter):
    """Zero-shot voice cloning with the F5-TTS ONNX graphs.

    Config keys: ``model_dir`` (local checkout; downloaded from ``repo_id``
    when absent), ``repo_id``, ``providers``.
    """

    def __init__(self, config=None, emit=None):
        super().__init__(config, emit)
        self.engine = None

    def initialize(self) -> None:
        from VoiceCore.f5_engine import DEFAULT_REPO_ID, F5TTSEngine  # pylint: disable=import-outside-toplevel

        self.progress("initialize", 0, "Loading TTS model...")
        engine = F5TTSEngine(
            self.config.get("model_dir"),
            repo_id=self.config.get("repo_id") or DEFAULT_REPO_ID,
            providers=self.config.get("providers"),
        )
        engine.load(on_progress=lambda value, message: self.progress("download", value, message))
        self.engine = engine
        self.progress("initialize", 100, "TTS model loaded successfully")

    def process(self, inputs: Any) -> Tensor:
        if self.engine is None:
            raise RuntimeError("F5TTS engine not initialized")
        inputs = dict(inputs or {})
        audio = self.engine.inference(
            _as_waveform(inputs["ref_audio"]),
            str(inputs.get("ref_text", "")),
            str(inputs.get("gen_text", "")),
            speed=float(inputs.get("speed", 1.0)),
            nfe_steps=int(inputs.get("nfe_steps", 32)),
            on_progress=lambda value, message: self.progress("inference", value, message),
        )
        return Tensor.from_numpy(np.asarray(audio, dtype=np.float32).reshape(-1))

    def dispose(self) -> None:
        if self.engine is not None:
            self.engine.unload()
        self.engine = None


class TranscriberAdapter(ModelAdapter):
    """Produce reference text from reference audio with Parakeet.

    Config keys: ``model_name``.
    """

    def __init__(self, config=None, emit=None):
        super().__init__(config, emit)
        self.engine = None

    def initialize(self) -> None:
        from VoiceCore.transcriber import TranscriptionEngine  # pylint: disable=import-outside-toplevel

        self.progress("initialize", 0, "Loading transcription model...")
        engine = TranscriptionEngine(self.config.get("model_name"))
        engine.load_model()
        self.engine = engine
        self.progress("initialize", 100, "Transcriber loaded successfully")

    def process(self, inputs: Any) -> str:
        if self.engine is None:
            raise RuntimeError("Model not loaded")
        inputs = dict(inputs or {})
        self.progress("inference", 0, "Transcribing reference audio...")
        text = self.engine.get_plain_transcription(
            _as_waveform(inputs["audio"]),
            int(inputs.get("sample_rate", 24_000)),
        )
        self.progress("inference", 100, "Transcription complete")
        return text

    def dispose(self) -> None:
        if self.engine is not None:
            self.engine.unload_model()
        self.engine = None


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

ADAPTER_REGISTRY: Dict[str, AdapterFactory] = {
    "f5tts": F5TTSAdapter,
    "transcriber": TranscriberAdapter,
}


def register_adapter(kind: str, factory: AdapterFactory) -> None:
    """Add (or replace) the factory for *kind*.  Call at import time."""
    if kind in ADAPTER_REGISTRY and ADAPTER_REGISTRY[kind] is not factory:
        logging.warning("Replacing adapter factory for %r", kind)
    ADAPTER_REGISTRY[kind] = factory


def get_adapter_factory(kind: str) -> AdapterFactory:
    try:
        return ADAPTER_REGISTRY[kind]
    except KeyError:
        raise ConfigurationError(f"Unknown adapter type: {kind}") from None
