from __future__ import annotations

"""Progress reporting shared by adapters, model instances and the orchestrator."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

__all__ = [
    "Progress",
    "ProgressSink",
    "ProgressAggregator",
]

#: ``sink(event_type, progress)`` – called many times per run.
ProgressSink = Callable[[str, "Progress"], None]


@dataclass(frozen=True)
class Progress:
    """Percent complete (0–100) plus a human-readable status line."""

    value: float
    message: str = ""

    @classmethod
    def from_event(cls, data: Any) -> "Progress":
        """Build from an adapter event payload (``{"value", "message"}``)."""
        if isinstance(data, Progress):
            return data
        if isinstance(data, Mapping):
            return cls(value=float(data.get("value", 0.0) or 0.0), message=str(data.get("message", "") or ""))
        return cls(value=float(data or 0.0))

    def as_dict(self) -> dict:
        return {"value": self.value, "message": self.message}


class ProgressAggregator:
    """Fold per-chunk progress into one global percentage for a whole run.

    ``global = (completed + fraction) / total * 100`` where *fraction* is the
    in-chunk progress of the chunk currently running.  Values never go
    backwards within one run: late or out-of-order events are clamped.
    """

    def __init__(self, total_chunks: int, sink: ProgressSink | None = None, *, event_type: str = "progress"):
        self.total_chunks = max(0, int(total_chunks))
        self.completed = 0
        self._sink = sink
        self._event_type = event_type
        self._last = 0.0

    @property
    def value(self) -> float:
        return self._last

    def report(self, value: float, message: str = "") -> Progress:
        """Emit *value* as-is (used for run start/end and error resets)."""
        self._last = float(value)
        progress = Progress(self._last, message)
        self._emit(progress)
        return progress

    def chunk_progress(self, fraction_percent: float, message: str = "") -> Progress:
        """The running chunk reached *fraction_percent* (0–100) of its own work."""
        if self.total_chunks == 0:
            return self.report(100.0, message)
        fraction = min(max(float(fraction_percent), 0.0), 100.0) / 100.0
        overall = (self.completed + fraction) / self.total_chunks * 100.0
        self._last = max(self._last, min(overall, 100.0))
        progress = Progress(self._last, message)
        self._emit(progress)
        return progress

    def chunk_done(self, message: str = "") -> Progress:
        self.completed = min(self.completed + 1, self.total_chunks)
        return self.chunk_progress(0.0, message or f"Chunk {self.completed}/{self.total_chunks} done")

    def _emit(self, progress: Progress) -> None:
        if self._sink is None:
            return
        try:
            self._sink(self._event_type, progress)
        except Exception:  # pylint: disable=broad-except – UI sinks must not abort synthesis
            logging.exception("Progress sink failed")
