import os
import json
from pathlib import Path

import pytest

# Ensure the root of the repo is on sys.path if tests run via `python -m pytest` from subdir
import sys, inspect
ROOT_DIR = Path(inspect.getfile(inspect.currentframe())).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from VoiceCore.config_manager import ConfigManager  # noqa: E402


@pytest.fixture()
def temp_appdata(monkeypatch, tmp_path):
    """Redirect %APPDATA% to a temporary directory for test isolation."""
    monkeypatch.setenv("APPDATA", str(tmp_path))
    return tmp_path


def test_save_load_round_trip(temp_appdata):
    """Settings saved by one instance should be visible when reloaded by another."""
    # GIVEN a pristine configuration environment
    cm1 = ConfigManager(app_name="TestApp")

    # WHEN we mutate a setting and rely on the default auto-save behaviour
    cm1.set("nfe_steps", 16)

    # THEN a brand-new instance should observe the persisted value
    cm2 = ConfigManager(app_name="TestApp")
    assert cm2.get("nfe_steps") == 16

    # AND the config file should exist on disk inside the redirected %APPDATA%
    expected_path = Path(os.environ["APPDATA"]) / "TestApp" / "config.json"
    assert expected_path.is_file()
    assert cm2.path == expected_path

    data = json.loads(expected_path.read_text(encoding="utf-8"))
    assert data["nfe_steps"] == 16


def test_first_run_writes_defaults(temp_appdata):
    cm = ConfigManager(app_name="Fresh")

    assert cm.get("sample_rate") == 24000
    assert cm.get("execution_backend") == "process"
    assert cm.get("process_timeout_sec") is None
    assert json.loads(cm.path.read_text(encoding="utf-8"))["f5_repo_id"] == "nsarang/F5-TTS-ONNX"


def test_missing_keys_fall_back_to_defaults(temp_appdata):
    # GIVEN a config written by an older release that lacks newer keys
    path = temp_appdata / "Old" / "config.json"
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps({"speed": 1.2}), encoding="utf-8")

    cm = ConfigManager(app_name="Old")

    assert cm.get("speed") == 1.2
    assert cm.get("podcast_pause_ms") == 250
    assert "podcast_pause_ms" not in cm


def test_corrupt_file_is_replaced_by_defaults(temp_appdata, caplog):
    path = temp_appdata / "Broken" / "config.json"
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")

    cm = ConfigManager(app_name="Broken")

    assert cm.get("nfe_steps") == 32
    assert "using defaults" in caplog.text
    assert json.loads(path.read_text(encoding="utf-8"))["nfe_steps"] == 32


def test_invalid_values_are_rejected(temp_appdata):
    from VoiceCore.errors import ConfigurationError

    cm = ConfigManager(app_name="Strict")

    with pytest.raises(ConfigurationError, match="execution_backend"):
        cm.set("execution_backend", "gpu")
    with pytest.raises(ConfigurationError, match="nfe_steps"):
        cm["nfe_steps"] = 0
    with pytest.raises(ConfigurationError, match="silence_pad_ms"):
        cm.set("silence_pad_ms", 400)

    # Nothing invalid reached the file
    assert json.loads(cm.path.read_text(encoding="utf-8"))["execution_backend"] == "process"


def test_update_and_effective_view(temp_appdata):
    cm = ConfigManager(app_name="Bulk")
    cm.update({"speed": 0.8, "process_timeout_sec": 90})

    merged = ConfigManager(app_name="Bulk").as_dict()
    assert merged["speed"] == 0.8
    assert merged["process_timeout_sec"] == 90
    assert merged["min_silence_ms"] == 800


def test_padding_is_checked_against_configured_min_silence(temp_appdata):
    from VoiceCore.errors import ConfigurationError

    cm = ConfigManager(app_name="Padding")

    # GIVEN a longer minimum silence, a larger pad becomes legal
    cm.set("min_silence_ms", 2000)
    cm.set("silence_pad_ms", 500)
    assert cm.get("silence_pad_ms") == 500

    # WHEN the minimum silence shrinks below twice the stored pad
    with pytest.raises(ConfigurationError, match="below half of min_silence_ms"):
        cm.set("min_silence_ms", 200)

    # THEN the rejected value was neither kept nor persisted
    assert cm.get("min_silence_ms") == 2000
    assert json.loads(cm.path.read_text(encoding="utf-8"))["min_silence_ms"] == 2000


def test_update_checks_the_combined_result(temp_appdata):
    cm = ConfigManager(app_name="PaddingBulk")

    # Pad listed first would fail on its own against the old minimum
    cm.update({"silence_pad_ms": 900, "min_silence_ms": 2400})

    assert cm.as_dict()["silence_pad_ms"] == 900
    assert cm.as_dict()["min_silence_ms"] == 2400
