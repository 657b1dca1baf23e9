import inspect
import logging
import logging.handlers
import sys
from pathlib import Path

import pytest

# Ensure repo root on sys.path so local imports resolve
ROOT_DIR = Path(inspect.getfile(inspect.currentframe())).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from clonecast import logging_config  # noqa: E402


@pytest.fixture()
def pristine_root(monkeypatch):
    """Let setup_logging run again and put the root logger back afterwards."""
    monkeypatch.setattr(logging_config, "_CONFIGURED", False)
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in saved_handlers:
            handler.close()
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


def test_setup_installs_file_and_console_handlers_once(pristine_root, tmp_path):
    log_file = tmp_path / "nested" / "app.log"
    before = len(pristine_root.handlers)

    # WHEN logging is configured twice
    logging_config.setup_logging(log_file=log_file, console_level=logging.WARNING)
    logging_config.setup_logging(log_file=tmp_path / "other.log")

    # THEN only the first call added handlers
    added = pristine_root.handlers[before:]
    assert len(added) == 2
    file_handler = next(h for h in added if isinstance(h, logging.handlers.RotatingFileHandler))
    console = next(h for h in added if not isinstance(h, logging.handlers.RotatingFileHandler))
    assert console.level == logging.WARNING
    assert not (tmp_path / "other.log").exists()

    # AND records reach the rotating file
    logging.getLogger("clonecast.test").info("hello from the test")
    file_handler.flush()
    assert "hello from the test" in log_file.read_text(encoding="utf-8")
    assert logging.getLogger("huggingface_hub").level == logging.WARNING
