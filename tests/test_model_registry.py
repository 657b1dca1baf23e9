import inspect
import sys
import time
from pathlib import Path

import pytest

# Ensure repo root on sys.path so local imports resolve
ROOT_DIR = Path(inspect.getfile(inspect.currentframe())).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from VoiceCore.adapters import ADAPTER_REGISTRY, ModelAdapter, get_adapter_factory, register_adapter  # noqa: E402
from VoiceCore.errors import ConfigurationError, TransportError  # noqa: E402
from VoiceCore.model_registry import ModelRegistry  # noqa: E402
from VoiceCore.model_worker import ChannelState  # noqa: E402
from VoiceCore.progress import Progress  # noqa: E402


class CounterAdapter(ModelAdapter):
    def initialize(self):
        self.calls = 0
        self.progress("initialize", 0, "Loading counter...")
        self.progress("initialize", 100, "Counter loaded")

    def process(self, inputs):
        time.sleep(inputs.get("delay", 0))
        self.calls += 1
        self.progress("inference", 100, f"call {self.calls}")
        return self.calls


@pytest.fixture()
def registry(monkeypatch):
    monkeypatch.setitem(ADAPTER_REGISTRY, "counter", CounterAdapter)
    with ModelRegistry(backend="thread") as reg:
        yield reg


def test_get_or_create_memoizes_by_id(registry):
    a = registry.get_or_create_model("counter", "shared")
    b = registry.get_or_create_model("counter", "shared")
    c = registry.get_or_create_model("counter")
    d = registry.get_or_create_model("counter")

    assert a is b
    assert c is not d
    assert c.key.startswith("counter_")
    assert len(registry) == 3
    assert "shared" in registry


def test_unknown_kind_raises_configuration_error(registry):
    with pytest.raises(ConfigurationError, match="Unknown adapter type"):
        registry.get_or_create_model("wavenet", "x")
    with pytest.raises(ConfigurationError):
        get_adapter_factory("wavenet")


def test_builtin_kinds_are_registered():
    assert {"f5tts", "transcriber"} <= set(ADAPTER_REGISTRY)


def test_register_adapter(monkeypatch):
    monkeypatch.setattr("VoiceCore.adapters.ADAPTER_REGISTRY", dict(ADAPTER_REGISTRY))
    register_adapter("counter2", CounterAdapter)
    assert get_adapter_factory("counter2") is CounterAdapter


def test_channel_is_created_lazily(registry):
    model = registry.get_or_create_model("counter", "lazy")
    assert model.state is ChannelState.UNINITIALIZED

    model.initialize()
    assert model.state is ChannelState.READY
    assert model.process({}) == 1
    assert model.process({}) == 2


def test_listeners_receive_progress(registry):
    # GIVEN listeners registered through the chainable API
    initialize_events, inference_events, removed = [], [], []
    model = (
        registry.get_or_create_model("counter", "events")
        .on("initialize", initialize_events.append)
        .on("inference", inference_events.append)
        .on("inference", removed.append)
        .off("inference", removed.append)
    )

    # WHEN the model is used
    model.initialize()
    model.process({})

    # THEN handlers saw Progress objects, removed handlers saw nothing
    assert initialize_events == [Progress(0, "Loading counter..."), Progress(100, "Counter loaded")]
    assert inference_events == [Progress(100, "call 1")]
    assert removed == []

    # AND reset_listeners drops them
    model.reset_listeners("inference")
    assert model.listener_count("inference") == 0
    assert model.listener_count("initialize") == 1
    model.reset_listeners()
    assert model.listener_count("initialize") == 0


def test_process_timeout(registry):
    model = registry.get_or_create_model("counter", "slow")
    model.initialize()

    with pytest.raises(TimeoutError):
        model.process({"delay": 0.5}, timeout=0.05)


def test_submit_returns_future(registry):
    model = registry.get_or_create_model("counter", "futures")
    futures = [model.submit({}) for _ in range(3)]
    assert [f.result(timeout=10) for f in futures] == [1, 2, 3]


def test_dispose_model_and_scope_exit(monkeypatch):
    monkeypatch.setitem(ADAPTER_REGISTRY, "counter", CounterAdapter)

    with ModelRegistry(backend="thread") as reg:
        kept = reg.get_or_create_model("counter", "kept")
        dropped = reg.get_or_create_model("counter", "dropped")
        kept.initialize()
        dropped.initialize()

        reg.dispose_model("dropped")
        assert "dropped" not in reg
        assert dropped.state is ChannelState.DISPOSED
        with pytest.raises(TransportError):
            dropped.process({})

    # Leaving the scope disposed everything else
    assert kept.state is ChannelState.DISPOSED
    assert len(reg) == 0
