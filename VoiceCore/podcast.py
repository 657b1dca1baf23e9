from __future__ import annotations

"""Multi-speaker scripts rendered as one continuous recording.

A script is free text with ``Name:`` markers::

    Alice: Welcome to the show.
    Bob: Thanks for having me.

Each marker must name a configured speaker (case-insensitive); a turn runs
non-greedily up to the next marker or the end of the script, so a turn may span
several lines.  Turns are synthesized as one batch in script order and joined
with a short pause.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Pattern

import numpy as np

from ipc.tensor import Tensor
from VoiceCore.batch_synthesizer import Segment, SynthesisSettings, batch_inference
from VoiceCore.errors import ValidationError
from VoiceCore.progress import ProgressSink
from VoiceCore.silence import empty_segment

__all__ = [
    "SpeakerProfile",
    "ScriptLine",
    "parse_script",
    "build_segments",
    "generate_podcast",
]


@dataclass(frozen=True)
class SpeakerProfile:
    ref_audio: Optional[Tensor] = None
    ref_text: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.ref_audio is not None and bool(self.ref_text)


@dataclass(frozen=True)
class ScriptLine:
    speaker: str
    text: str


def _speaker_pattern(names: List[str]) -> Pattern[str]:
    alternatives = "|".join(re.escape(name) for name in names)
    return re.compile(rf"({alternatives}):\s*(.+?)(?=(?:{alternatives}):|$)", re.IGNORECASE | re.DOTALL)


def parse_script(script: str, speakers: Mapping[str, SpeakerProfile]) -> List[ScriptLine]:
    """Split *script* into turns, reported under each speaker's configured name."""
    names = [name.strip() for name in speakers if name.strip()]
    if not names:
        return []
    # Longest first so "Bob" cannot shadow "Bobby".
    names.sort(key=len, reverse=True)
    canonical: Dict[str, str] = {name.lower(): name for name in names}

    lines: List[ScriptLine] = []
    for match in _speaker_pattern(names).finditer(script):
        text = match.group(2).strip()
        if text:
            lines.append(ScriptLine(canonical[match.group(1).strip().lower()], text))
    return lines


def build_segments(lines: List[ScriptLine], speakers: Mapping[str, SpeakerProfile]) -> List[Segment]:
    """Attach each turn's reference voice; turns of incomplete speakers are skipped."""
    profiles = {name.strip(): profile for name, profile in speakers.items()}
    segments: List[Segment] = []
    for line in lines:
        profile = profiles.get(line.speaker)
        if profile is None or not profile.is_complete:
            logging.warning("Skipping line for %s: no reference audio/text configured", line.speaker)
            continue
        segments.append(Segment(profile.ref_audio, profile.ref_text, line.text))
    return segments


def generate_podcast(  # pylint: disable=too-many-arguments
    registry,
    script: str,
    speakers: Mapping[str, SpeakerProfile],
    settings: SynthesisSettings | None = None,
    on_progress: ProgressSink | None = None,
    *,
    pause_ms: float = 250,
    model_config: Optional[Dict] = None,
) -> Tensor:
    """Render *script* and return the stitched float32 waveform."""
    settings = settings or SynthesisSettings()
    segments = build_segments(parse_script(script, speakers), speakers)
    if not segments:
        raise ValidationError("Script contains no lines for any configured speaker")
    logging.info("Podcast: %d turns across %d speakers", len(segments), len(speakers))

    turns = batch_inference(registry, segments, settings, on_progress, model_config=model_config)

    pause = empty_segment(duration_ms=pause_ms, sample_rate=settings.sample_rate)
    pieces: List[np.ndarray] = []
    for idx, turn in enumerate(turns):
        if idx and pause.size:
            pieces.append(pause)
        pieces.append(turn.numpy().reshape(-1).astype(np.float32))
    return Tensor.from_numpy(np.concatenate(pieces))
