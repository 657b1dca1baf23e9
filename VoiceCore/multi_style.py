from __future__ import annotations

"""One voice, several speaking styles, marked inline.

Style markers are parenthesised names in front of the text they apply to::

    (Regular) Hello there! (Excited) This is amazing! (Sad) I'm feeling down...

Every style names a reference clip recorded in that manner.  Text with no
markers at all is spoken in the regular style, and so is any text before the
first marker.  A style that has no complete reference falls back to the regular
voice.  Segments are synthesized as one batch and joined back to back.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

import numpy as np

from ipc.tensor import Tensor
from VoiceCore.batch_synthesizer import Segment, SynthesisSettings, batch_inference
from VoiceCore.errors import ValidationError
from VoiceCore.podcast import SpeakerProfile
from VoiceCore.progress import ProgressSink

__all__ = [
    "REGULAR_STYLE",
    "StyledText",
    "parse_styled_text",
    "build_style_segments",
    "generate_multi_style",
]

REGULAR_STYLE = "Regular"

_STYLE_MARKER = re.compile(r"\(([^)]+)\)\s*([^(]*)")


@dataclass(frozen=True)
class StyledText:
    style: str
    text: str


def parse_styled_text(text: str) -> List[StyledText]:
    """Split *text* at ``(Style)`` markers, dropping markers with nothing after them."""
    parts: List[StyledText] = []
    first = _STYLE_MARKER.search(text)
    leading = (text if first is None else text[: first.start()]).strip()
    if leading:
        parts.append(StyledText(REGULAR_STYLE, leading))

    for match in _STYLE_MARKER.finditer(text):
        content = match.group(2).strip()
        if content:
            parts.append(StyledText(match.group(1).strip(), content))
    return parts


def build_style_segments(
    parts: List[StyledText],
    regular: SpeakerProfile,
    styles: Mapping[str, SpeakerProfile],
) -> List[Segment]:
    """Pick the reference voice for every part; unknown or incomplete styles use *regular*."""
    if not regular.is_complete:
        raise ValidationError("The regular style needs both reference audio and reference text")

    by_name: Dict[str, SpeakerProfile] = {name.strip().lower(): profile for name, profile in styles.items()}
    segments: List[Segment] = []
    for part in parts:
        profile = by_name.get(part.style.lower())
        if profile is None or not profile.is_complete:
            if part.style.lower() != REGULAR_STYLE.lower():
                logging.info("No reference for style %r – using the regular voice", part.style)
            profile = regular
        segments.append(Segment(profile.ref_audio, profile.ref_text, part.text))
    return segments


def generate_multi_style(  # pylint: disable=too-many-arguments
    registry,
    text: str,
    regular: SpeakerProfile,
    styles: Optional[Mapping[str, SpeakerProfile]] = None,
    settings: SynthesisSettings | None = None,
    on_progress: ProgressSink | None = None,
    *,
    model_config: Optional[Dict] = None,
) -> Tensor:
    """Render style-tagged *text* and return the concatenated float32 waveform."""
    parts = parse_styled_text(text)
    if not parts:
        raise ValidationError("Nothing to generate: the text is empty")
    segments = build_style_segments(parts, regular, styles or {})
    logging.info("Multi-style: %d segments in %d styles", len(segments), len({p.style.lower() for p in parts}))

    outputs = batch_inference(registry, segments, settings, on_progress, model_config=model_config)
    return Tensor.from_numpy(np.concatenate([t.numpy().reshape(-1).astype(np.float32) for t in outputs]))
