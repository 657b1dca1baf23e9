from __future__ import annotations

"""JSON-backed settings for clonecast.

The file lives in the per-user application data directory
(``%APPDATA%\\clonecast\\config.json`` on Windows, ``$XDG_CONFIG_HOME`` or
``~/.config`` elsewhere).  Only keys the user actually changed need to be in
the file; everything else falls back to :attr:`ConfigManager.DEFAULTS`, so
configs written by older releases keep working when new keys are added.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from VoiceCore.errors import ConfigurationError

_BACKENDS = ("process", "thread")
_PADDING_KEYS = {"silence_pad_ms", "min_silence_ms"}


class ConfigManager:
    """Load, validate and persist the user's synthesis settings."""

    _FILENAME = "config.json"

    #: Default synthesis settings shipped with clonecast.
    DEFAULTS: Dict[str, Any] = {
        "sample_rate": 24000,
        "speed": 1.0,
        "nfe_steps": 32,
        "enable_chunking": True,
        "custom_split_words": "",        # comma-separated extra split markers
        "max_output_seconds": 25,        # reference + generated audio per model call
        # Silence trimming applied to reference audio and stitched output
        "silence_thresh_db": -45,
        "min_silence_ms": 800,
        "silence_pad_ms": 300,
        "seek_step_ms": 10,
        "reference_max_seconds": 10,
        "podcast_pause_ms": 250,
        # Execution context
        "execution_backend": "process",  # "process" or "thread"
        "process_timeout_sec": None,     # None = wait indefinitely
        "fetch_timeout_sec": 30,
        # F5-TTS ONNX model location
        "f5_model_dir": None,
        "f5_repo_id": "nsarang/F5-TTS-ONNX",
    }

    _POSITIVE = ("sample_rate", "speed", "nfe_steps", "max_output_seconds", "min_silence_ms", "seek_step_ms",
                 "reference_max_seconds", "fetch_timeout_sec")

    def __init__(self, app_name: str = "clonecast") -> None:
        self.app_name = app_name
        self._config_path: Path = self._resolve_config_path()
        self.settings: Dict[str, Any] = {}
        self._load()

    # ---------------------------------------------------------------------
    # Public helpers
    # ---------------------------------------------------------------------
    def get(self, key: str, default: Optional[Any] = None) -> Any:
        """Return the value for *key*: user setting, then shipped default, then *default*."""
        if key in self.settings:
            return self.settings[key]
        return self.DEFAULTS.get(key, default)

    def set(self, key: str, value: Any, *, auto_save: bool = True) -> None:
        """Validate and store *value* under *key*; persisted unless *auto_save* is off."""
        self.update({key: value}, auto_save=auto_save)

    def update(self, values: Mapping[str, Any], *, auto_save: bool = True) -> None:
        """Validate all of *values* against the resulting configuration, then store them together."""
        for key, value in values.items():
            self.validate(key, value)
        if _PADDING_KEYS.intersection(values):
            candidate = self.as_dict()
            candidate.update(values)
            self._check_silence_padding(candidate)
        self.settings.update(values)
        if auto_save:
            self._save()

    def as_dict(self) -> Dict[str, Any]:
        """Effective configuration (defaults overlaid with user settings)."""
        merged = dict(self.DEFAULTS)
        merged.update(self.settings)
        return merged

    def reload(self) -> None:
        """Force reload configuration from disk, discarding local changes."""
        self._load()

    @property
    def path(self) -> Path:
        return self._config_path

    @classmethod
    def validate(cls, key: str, value: Any) -> None:
        """Raise :class:`ConfigurationError` for values the pipeline cannot use."""
        if key == "execution_backend" and value not in _BACKENDS:
            raise ConfigurationError(f"execution_backend must be one of {_BACKENDS}, got {value!r}")
        if key in cls._POSITIVE:
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigurationError(f"{key} must be a positive number, got {value!r}")
        if key == "process_timeout_sec" and value is not None and (not isinstance(value, (int, float)) or value <= 0):
            raise ConfigurationError(f"process_timeout_sec must be positive or null, got {value!r}")
        if key == "silence_pad_ms" and (isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0):
            raise ConfigurationError(f"silence_pad_ms must be a non-negative number, got {value!r}")

    @staticmethod
    def _check_silence_padding(values: Mapping[str, Any]) -> None:
        pad, min_silence = values["silence_pad_ms"], values["min_silence_ms"]
        if 2 * pad >= min_silence:
            raise ConfigurationError(
                f"silence_pad_ms must be below half of min_silence_ms ({min_silence / 2}), got {pad!r}"
            )

    # ------------------------------------------------------------------
    # Implementation details
    # ------------------------------------------------------------------
    def _resolve_config_path(self) -> Path:
        # APPDATA wins whenever it is set so tests can redirect it on any OS.
        if os.environ.get("APPDATA"):
            base_dir = Path(os.environ["APPDATA"])
        elif os.name == "nt":
            base_dir = Path.home()
        else:
            base_dir = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))

        return base_dir / self.app_name.replace(" ", "_") / self._FILENAME

    def _load(self) -> None:
        """Read the user's settings, creating the file with defaults on first run."""
        try:
            if not self._config_path.exists():
                self.settings = self.DEFAULTS.copy()
                self._write_to_disk(self.settings)
                logging.info("Created default config at %s", self._config_path)
                return
            with self._config_path.open("r", encoding="utf-8") as fh:
                loaded = json.load(fh)
            if not isinstance(loaded, dict):
                raise ValueError(f"expected a JSON object, got {type(loaded).__name__}")
            self.settings = loaded
        except (json.JSONDecodeError, ValueError, OSError) as exc:
            logging.warning("Failed to load config – using defaults: %s", exc)
            self.settings = self.DEFAULTS.copy()
            try:
                self._write_to_disk(self.settings)
            except OSError as write_exc:
                logging.error("Unable to write default config: %s", write_exc)

    def _save(self) -> None:
        self._write_to_disk(self.settings)

    def _write_to_disk(self, data: Dict[str, Any]) -> None:
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        with self._config_path.open("w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=4)

    # ------------------------------------------------------------------
    # Convenience dunder methods
    # ------------------------------------------------------------------
    def __getitem__(self, item: str) -> Any:
        if item in self.settings:
            return self.settings[item]
        return self.DEFAULTS[item]

    def __setitem__(self, key: str, value: Any) -> None:
        self.set(key, value)

    def __contains__(self, item: str) -> bool:
        return item in self.settings

    def __repr__(self) -> str:  # pragma: no cover
        return f"<ConfigManager path={self._config_path!s} keys={list(self.settings.keys())}>"
