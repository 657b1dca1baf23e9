"""Command-line front-end.

Usage::

    clonecast tts --ref-audio voice.wav --text "Hello there." -o hello.wav
    clonecast podcast --script show.txt \
        --speaker Alice=alice.wav:alice.txt --speaker Bob=bob.wav -o show.wav
    clonecast styles --ref-audio calm.wav --style Excited=excited.wav:excited.txt \
        --text "(Regular) Hello. (Excited) We won!" -o styles.wav

Reference text that is not supplied is transcribed from the reference audio.
Progress is printed as ``[ 42.0%] message``; errors print ``Error: ...`` and
exit with status 1.
"""
from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from pathlib import Path
from typing import Dict, List, Tuple

from clonecast import __version__
from clonecast.logging_config import setup_logging
from VoiceCore.audio_io import prepare_reference_audio, write_wav
from VoiceCore.batch_synthesizer import (
    Segment,
    SynthesisSettings,
    batch_inference,
    f5_model_config,
    transcribe_reference,
)
from VoiceCore.config_manager import ConfigManager
from VoiceCore.errors import ClonecastError, ValidationError
from VoiceCore.model_registry import ModelRegistry
from VoiceCore.multi_style import generate_multi_style
from VoiceCore.podcast import SpeakerProfile, generate_podcast
from VoiceCore.progress import Progress


def print_progress(_event_type: str, progress: Progress) -> None:
    print(f"[{progress.value:5.1f}%] {progress.message}", flush=True)


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def parse_speaker(value: str) -> Tuple[str, str, str | None]:
    """Parse ``NAME=AUDIO[:REFTEXT_FILE]`` into ``(name, audio, reftext_file)``."""
    name, sep, rest = value.partition("=")
    if not sep or not name.strip() or not rest:
        raise argparse.ArgumentTypeError(f"Expected NAME=AUDIO[:REFTEXT_FILE], got {value!r}")
    audio, ref_file = rest, None
    head, colon, tail = rest.rpartition(":")
    # Only split when the suffix is an existing file, so URLs and drive letters survive.
    if colon and head and Path(tail).is_file():
        audio, ref_file = head, tail
    return name.strip(), audio, ref_file


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="clonecast", description="Zero-shot voice cloning with F5-TTS")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--backend", choices=("process", "thread"), help="Execution context for models")
    parser.add_argument("--speed", type=float, help="Speech speed multiplier")
    parser.add_argument("--nfe-steps", type=int, help="Flow-matching steps per chunk")
    parser.add_argument("--no-chunking", action="store_true", help="Send each text to the model in one piece")
    parser.add_argument("--log-file", default="logs/app.log", help="Rotating log file path")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logs on the console")

    sub = parser.add_subparsers(dest="command", required=True)

    tts = sub.add_parser("tts", help="Speak a text in the reference voice")
    tts.add_argument("--ref-audio", required=True, help="Reference clip (path or http(s) URL)")
    tts.add_argument("--ref-text", help="Transcript of the reference clip (transcribed when omitted)")
    text = tts.add_mutually_exclusive_group(required=True)
    text.add_argument("--text", help="Text to speak")
    text.add_argument("--text-file", type=Path, help="UTF-8 file holding the text to speak")
    tts.add_argument("-o", "--output", type=Path, required=True, help="Output WAV path")

    pod = sub.add_parser("podcast", help="Render a multi-speaker script")
    pod.add_argument("--script", type=Path, required=True, help="UTF-8 script with 'Name: text' turns")
    pod.add_argument(
        "--speaker",
        action="append",
        type=parse_speaker,
        required=True,
        metavar="NAME=AUDIO[:REFTEXT_FILE]",
        help="Reference voice for one speaker (repeatable)",
    )
    pod.add_argument("--pause-ms", type=float, help="Silence inserted between turns")
    pod.add_argument("-o", "--output", type=Path, required=True, help="Output WAV path")

    sty = sub.add_parser("styles", help="Speak '(Style) text' passages with per-style reference clips")
    sty.add_argument("--ref-audio", required=True, help="Regular-style reference clip (path or http(s) URL)")
    sty.add_argument("--ref-text", help="Transcript of the regular clip (transcribed when omitted)")
    sty.add_argument(
        "--style",
        action="append",
        type=parse_speaker,
        default=[],
        metavar="NAME=AUDIO[:REFTEXT_FILE]",
        help="Reference clip for one style (repeatable); unknown styles use the regular voice",
    )
    styled = sty.add_mutually_exclusive_group(required=True)
    styled.add_argument("--text", help="Text with (Style) markers")
    styled.add_argument("--text-file", type=Path, help="UTF-8 file holding the text")
    sty.add_argument("-o", "--output", type=Path, required=True, help="Output WAV path")
    return parser


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _settings(args: argparse.Namespace, cfg: ConfigManager) -> SynthesisSettings:
    settings = SynthesisSettings.from_config(cfg)
    overrides = {}
    if args.speed is not None:
        overrides["speed"] = args.speed
    if args.nfe_steps is not None:
        overrides["nfe_steps"] = args.nfe_steps
    if args.no_chunking:
        overrides["enable_chunking"] = False
    return dataclasses.replace(settings, **overrides)


def _load_reference(source: str, cfg: ConfigManager):
    return prepare_reference_audio(
        source,
        sample_rate=int(cfg.get("sample_rate")),
        max_seconds=float(cfg.get("reference_max_seconds")),
        silence_thresh_db=float(cfg.get("silence_thresh_db")),
        min_silence_ms=float(cfg.get("min_silence_ms")),
        pad_ms=float(cfg.get("silence_pad_ms")),
        seek_step_ms=float(cfg.get("seek_step_ms")),
        fetch_timeout=float(cfg.get("fetch_timeout_sec")),
    )


def _load_profile(name: str, audio: str, ref_file: str | None, cfg, registry, settings) -> SpeakerProfile:
    ref_audio = _load_reference(audio, cfg)
    if ref_file:
        ref_text = Path(ref_file).read_text(encoding="utf-8").strip()
    else:
        logging.info("No reference text for %s – transcribing", name)
        ref_text = transcribe_reference(
            registry, ref_audio, sample_rate=settings.sample_rate, on_progress=print_progress
        )
    return SpeakerProfile(ref_audio, ref_text)


def _read_text(args) -> str:
    text = args.text if args.text is not None else args.text_file.read_text(encoding="utf-8")
    if not text.strip():
        raise ValidationError("Nothing to synthesize: the text is empty")
    return text


def _run_tts(args, cfg, registry, settings) -> None:
    ref_audio = _load_reference(args.ref_audio, cfg)
    ref_text = args.ref_text or transcribe_reference(
        registry, ref_audio, sample_rate=settings.sample_rate, on_progress=print_progress
    )
    gen_text = _read_text(args)

    results = batch_inference(
        registry,
        [Segment(ref_audio, ref_text, gen_text)],
        settings,
        print_progress,
        model_config=f5_model_config(cfg),
    )
    write_wav(args.output, results[0], sample_rate=settings.sample_rate)


def _run_podcast(args, cfg, registry, settings) -> None:
    speakers: Dict[str, SpeakerProfile] = {
        name: _load_profile(name, audio, ref_file, cfg, registry, settings)
        for name, audio, ref_file in args.speaker
    }

    pause_ms = args.pause_ms if args.pause_ms is not None else float(cfg.get("podcast_pause_ms"))
    audio = generate_podcast(
        registry,
        args.script.read_text(encoding="utf-8"),
        speakers,
        settings,
        print_progress,
        pause_ms=pause_ms,
        model_config=f5_model_config(cfg),
    )
    write_wav(args.output, audio, sample_rate=settings.sample_rate)


def _run_styles(args, cfg, registry, settings) -> None:
    text = _read_text(args)
    ref_audio = _load_reference(args.ref_audio, cfg)
    ref_text = args.ref_text or transcribe_reference(
        registry, ref_audio, sample_rate=settings.sample_rate, on_progress=print_progress
    )
    styles = {
        name: _load_profile(name, audio, ref_file, cfg, registry, settings)
        for name, audio, ref_file in args.style
    }

    audio = generate_multi_style(
        registry,
        text,
        SpeakerProfile(ref_audio, ref_text),
        styles,
        settings,
        print_progress,
        model_config=f5_model_config(cfg),
    )
    write_wav(args.output, audio, sample_rate=settings.sample_rate)


_COMMANDS = {
    "tts": _run_tts,
    "podcast": _run_podcast,
    "styles": _run_styles,
}


def main(argv: List[str] | None = None) -> int:  # noqa: D401 – CLI entry-point
    args = _build_parser().parse_args(argv)
    setup_logging(
        log_file=args.log_file,
        console_level=logging.DEBUG if args.verbose else logging.WARNING,
        level=logging.DEBUG if args.verbose else logging.INFO,
    )

    cfg = ConfigManager()
    if args.backend:
        cfg.set("execution_backend", args.backend, auto_save=False)

    try:
        settings = _settings(args, cfg)
        with ModelRegistry.from_config(cfg) as registry:
            _COMMANDS[args.command](args, cfg, registry, settings)
    except (ClonecastError, OSError, TimeoutError) as exc:
        logging.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Saved {args.output}")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
