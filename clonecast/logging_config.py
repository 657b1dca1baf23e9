"""Root-logger setup shared by the CLI and anything embedding clonecast.

:func:`setup_logging` attaches two handlers to the root logger: a size-rotated
log file (``logs/app.log`` unless told otherwise) and a console stream.  Only
the first call has any effect; model workers spawned later log through the
same root logger of their own process and are not configured here.
"""
from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List

_CONFIGURED: bool = False

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Download and HTTP libraries that are noisy at INFO
QUIET_LOGGERS = ("urllib3", "huggingface_hub", "filelock")


def _build_handlers(
    log_path: Path,
    max_bytes: int,
    backup_count: int,
    console_level: int | str,
) -> List[logging.Handler]:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    log_path.parent.mkdir(parents=True, exist_ok=True)
    to_file = RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")

    to_console = logging.StreamHandler()
    to_console.setLevel(console_level)

    for handler in (to_file, to_console):
        handler.setFormatter(formatter)
    return [to_file, to_console]


def setup_logging(
    *,
    log_file: str | os.PathLike[str] = "logs/app.log",
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    level: int | str = logging.INFO,
    console_level: int | str | None = None,
) -> None:
    """Install the file and console handlers on the root logger, once per process.

    Parameters
    ----------
    log_file:
        Where the rotating log is written; missing parent directories are created.
    max_bytes, backup_count:
        Rotation size and how many ``.N`` backups survive.
    level:
        Root logger threshold.
    console_level:
        Threshold for the console only.  ``None`` means the same as *level*; the
        CLI passes ``WARNING`` so its progress lines stay readable.
    """

    global _CONFIGURED  # noqa: PLW0603 – module-level singleton guard

    if _CONFIGURED:
        return

    handlers = _build_handlers(
        Path(log_file),
        max_bytes,
        backup_count,
        level if console_level is None else console_level,
    )

    root = logging.getLogger()
    root.setLevel(level)
    for handler in handlers:
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _CONFIGURED = True
