from __future__ import annotations

"""Batch synthesis – many segments, many chunks, one progress bar.

A *segment* pairs a reference voice (audio + transcript) with the text to
speak.  :class:`BatchSynthesizer` re-chunks every segment's text to the budget
its reference clip allows, sends the chunks to the hosted model strictly one at
a time in order, and stitches each segment's chunk outputs back together with
the dead air at the seams removed.

Progress from the model (per flow step of the chunk in flight) is folded into
one run-wide percentage by :class:`~VoiceCore.progress.ProgressAggregator`.
Any failure aborts the whole run: no partial output is returned, an
``Error: ...`` progress at 0 is emitted and the exception propagates.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ipc.tensor import Tensor
from VoiceCore.progress import Progress, ProgressAggregator, ProgressSink
from VoiceCore.silence import remove_silence
from VoiceCore.text_chunker import parse_split_words, split_gen_text

__all__ = [
    "Segment",
    "SynthesisSettings",
    "RunState",
    "BatchSynthesizer",
    "batch_inference",
    "transcribe_reference",
    "f5_model_config",
    "TTS_MODEL_ID",
    "TRANSCRIBER_MODEL_ID",
]

TTS_MODEL_ID = "ttsEngine"
TRANSCRIBER_MODEL_ID = "transcriptionModel"


@dataclass(frozen=True)
class Segment:
    ref_audio: Tensor
    ref_text: str
    gen_text: str


@dataclass(frozen=True)
class SynthesisSettings:  # pylint: disable=too-many-instance-attributes
    speed: float = 1.0
    nfe_steps: int = 32
    enable_chunking: bool = True
    split_words: Tuple[str, ...] = field(default_factory=tuple)
    max_output_seconds: float = 25
    sample_rate: int = 24_000
    silence_thresh_db: float = -45
    min_silence_ms: float = 800
    silence_pad_ms: float = 300
    seek_step_ms: float = 10

    @classmethod
    def from_config(cls, config) -> "SynthesisSettings":
        """Build from a :class:`~VoiceCore.config_manager.ConfigManager` (or any ``.get`` mapping)."""
        return cls(
            speed=float(config.get("speed", 1.0)),
            nfe_steps=int(config.get("nfe_steps", 32)),
            enable_chunking=bool(config.get("enable_chunking", True)),
            split_words=tuple(parse_split_words(config.get("custom_split_words", ""))),
            max_output_seconds=float(config.get("max_output_seconds", 25)),
            sample_rate=int(config.get("sample_rate", 24_000)),
            silence_thresh_db=float(config.get("silence_thresh_db", -45)),
            min_silence_ms=float(config.get("min_silence_ms", 800)),
            silence_pad_ms=float(config.get("silence_pad_ms", 300)),
            seek_step_ms=float(config.get("seek_step_ms", 10)),
        )

    def silence_kwargs(self) -> Dict[str, Any]:
        return {
            "sample_rate": self.sample_rate,
            "min_silence_ms": self.min_silence_ms,
            "silence_thresh_db": self.silence_thresh_db,
            "pad_ms": self.silence_pad_ms,
            "seek_step_ms": self.seek_step_ms,
        }


def f5_model_config(config) -> Dict[str, Any]:
    """Adapter config for the ``f5tts`` model out of the application config."""
    return {
        "model_dir": config.get("f5_model_dir"),
        "repo_id": config.get("f5_repo_id"),
    }


class RunState(str, enum.Enum):
    IDLE = "idle"
    CHUNKING = "chunking"
    RUNNING = "running"
    STITCHING = "stitching"
    DONE = "done"
    FAILED = "failed"


class BatchSynthesizer:
    """Run an ordered list of segments through one hosted TTS model."""

    def __init__(self, model, settings: SynthesisSettings | None = None, on_progress: ProgressSink | None = None):
        self.model = model
        self.settings = settings or SynthesisSettings()
        self.state = RunState.IDLE
        self.current: Tuple[int, int] = (0, 0)
        self._aggregator = ProgressAggregator(0, on_progress)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def plan(self, segments: Sequence[Segment]) -> List[List[Segment]]:
        """Split every segment's text into model-sized chunks (one list per segment)."""
        return [self._chunk(segment) for segment in segments]

    def run(self, segments: Sequence[Segment]) -> List[Tensor]:
        """Synthesize *segments* in order and return one waveform per segment."""
        aggregator = self._aggregator
        listener = lambda progress: aggregator.chunk_progress(progress.value, progress.message)  # noqa: E731
        self.model.on("inference", listener)
        try:
            self.state = RunState.CHUNKING
            plan = self.plan(segments)
            total = sum(len(slices) for slices in plan)
            aggregator.total_chunks = total
            aggregator.completed = 0
            logging.debug("Total chunks to process: %d", total)
            logging.debug("Chunk texts: %s", [[c.gen_text for c in slices] for slices in plan])

            aggregator.report(0, "Generating audio...")
            results: List[Tensor] = []
            done = 0
            for slices in plan:
                self.state = RunState.RUNNING
                outputs: List[Tensor] = []
                for chunk in slices:
                    done += 1
                    self.current = (done, total)
                    logging.debug("Processing chunk %d/%d: %r", done, total, chunk.gen_text)
                    outputs.append(self.model.process(self._request(chunk)))
                    aggregator.chunk_done(f"Chunk {done}/{total} done")
                self.state = RunState.STITCHING
                results.append(self._stitch(outputs))

            self.state = RunState.DONE
            aggregator.report(100, "Generation complete!")
            logging.debug("Batch synthesis complete (%d segments)", len(results))
            return results
        except Exception as exc:
            self.state = RunState.FAILED
            logging.error("Batch synthesis failed: %s", exc)
            aggregator.report(0, f"Error: {exc}")
            raise
        finally:
            self.model.off("inference", listener)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _chunk(self, segment: Segment) -> List[Segment]:
        if not self.settings.enable_chunking:
            return [segment]
        texts = split_gen_text(
            segment.gen_text,
            ref_text=segment.ref_text,
            ref_audio_seconds=segment.ref_audio.size / self.settings.sample_rate,
            max_output_seconds=self.settings.max_output_seconds,
            split_words=self.settings.split_words,
            speed=self.settings.speed,
        )
        return [Segment(segment.ref_audio, segment.ref_text, text) for text in texts]

    def _request(self, chunk: Segment) -> Dict[str, Any]:
        return {
            "ref_audio": chunk.ref_audio,
            "ref_text": chunk.ref_text,
            "gen_text": chunk.gen_text,
            "speed": self.settings.speed,
            "nfe_steps": self.settings.nfe_steps,
        }

    def _stitch(self, outputs: List[Tensor]) -> Tensor:
        if not outputs:
            return Tensor("float32", np.empty(0, dtype=np.float32))
        audio = np.concatenate([t.numpy().reshape(-1).astype(np.float32) for t in outputs])
        return Tensor.from_numpy(remove_silence(audio, **self.settings.silence_kwargs()))


# ---------------------------------------------------------------------------
# Convenience entry points
# ---------------------------------------------------------------------------

def _forwarder(on_progress: ProgressSink | None):
    def forward(progress: Progress) -> None:
        if on_progress is not None:
            on_progress("progress", progress)

    return forward


def batch_inference(
    registry,
    segments: Sequence[Segment],
    settings: SynthesisSettings | None = None,
    on_progress: ProgressSink | None = None,
    *,
    model_config: Optional[Dict[str, Any]] = None,
) -> List[Tensor]:
    """Initialize the shared ``f5tts`` model and run *segments* through it."""
    model = registry.get_or_create_model("f5tts", TTS_MODEL_ID, config=model_config).reset_listeners()
    forward = _forwarder(on_progress)
    model.on("initialize", forward).on("download", forward)

    try:
        model.initialize()
    except Exception as exc:
        logging.error("TTS model failed to initialize: %s", exc)
        forward(Progress(0, f"Error: {exc}"))
        raise

    return BatchSynthesizer(model, settings, on_progress).run(segments)


def transcribe_reference(
    registry,
    audio: Tensor,
    *,
    sample_rate: int = 24_000,
    on_progress: ProgressSink | None = None,
    model_config: Optional[Dict[str, Any]] = None,
) -> str:
    """Produce the transcript of a reference clip with the shared ``transcriber`` model."""
    model = registry.get_or_create_model("transcriber", TRANSCRIBER_MODEL_ID, config=model_config).reset_listeners()
    forward = _forwarder(on_progress)
    for event_type in ("initialize", "download", "inference"):
        model.on(event_type, forward)

    model.initialize()
    text = model.process({"audio": audio, "sample_rate": sample_rate})
    logging.info("Transcribed reference audio: %r", text)
    return str(text)
