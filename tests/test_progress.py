import inspect
import sys
from pathlib import Path

import pytest

# Ensure repo root on sys.path so local imports resolve
ROOT_DIR = Path(inspect.getfile(inspect.currentframe())).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from VoiceCore.progress import Progress, ProgressAggregator  # noqa: E402


@pytest.fixture()
def sink():
    events = []

    def _sink(event_type, progress):
        events.append((event_type, progress))

    _sink.events = events
    return _sink


def test_global_progress_after_four_of_six_chunks(sink):
    # GIVEN a run of 6 chunks with 4 already completed
    agg = ProgressAggregator(6, sink)
    for _ in range(4):
        agg.chunk_done()

    # WHEN the 5th chunk reports 50 %
    progress = agg.chunk_progress(50, "NFE Step 16/32")

    # THEN the run-wide value is (4 + 0.5) / 6 * 100
    assert progress.value == pytest.approx(75.0)
    assert sink.events[-1] == ("progress", Progress(pytest.approx(75.0), "NFE Step 16/32"))


def test_progress_never_goes_backwards(sink):
    agg = ProgressAggregator(2, sink)
    agg.chunk_progress(80)
    late = agg.chunk_progress(10)

    assert late.value == pytest.approx(40.0)
    values = [p.value for _, p in sink.events]
    assert values == sorted(values)


def test_report_resets_for_errors(sink):
    agg = ProgressAggregator(3, sink)
    agg.chunk_progress(90)
    agg.report(0, "Error: boom")
    assert sink.events[-1][1] == Progress(0, "Error: boom")


def test_failing_sink_does_not_raise(caplog):
    def broken(_event_type, _progress):
        raise RuntimeError("UI went away")

    agg = ProgressAggregator(1, broken)
    agg.chunk_progress(50)
    assert "Progress sink failed" in caplog.text


def test_progress_from_event_payloads():
    assert Progress.from_event({"value": 12.5, "message": "x"}) == Progress(12.5, "x")
    assert Progress.from_event(None) == Progress(0.0, "")
    assert Progress.from_event(Progress(3, "y")).as_dict() == {"value": 3, "message": "y"}
