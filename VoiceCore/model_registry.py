from __future__ import annotations

"""Caller-side handles on hosted adapters.

:class:`ModelInstance` is what the orchestrator talks to: it owns listener
sets per event type and creates its :class:`~VoiceCore.model_worker.RPCChannel`
(and with it the execution context) lazily on first use.
:class:`ModelRegistry` memoizes instances by key for the lifetime of one
scope and disposes all of them when the scope ends.
"""

import concurrent.futures
import logging
import threading
import time
import uuid
from typing import Any, Callable, Dict, Optional

from VoiceCore.adapters import get_adapter_factory
from VoiceCore.errors import TransportError
from VoiceCore.model_worker import ChannelState, RPCChannel
from VoiceCore.progress import Progress

__all__ = ["ModelInstance", "ModelRegistry"]

_log = logging.getLogger(__name__)

Handler = Callable[[Progress], None]


class ModelInstance:  # pylint: disable=too-many-instance-attributes
    """One hosted adapter plus the listeners interested in its events."""

    def __init__(
        self,
        key: str,
        adapter_kind: str,
        factory: Callable,
        config: Optional[Dict[str, Any]] = None,
        *,
        backend: str = "process",
        default_timeout: Optional[float] = None,
    ) -> None:
        self.key = key
        self.adapter_kind = adapter_kind
        self.config = dict(config or {})
        self.backend = backend
        self.default_timeout = default_timeout
        self._factory = factory
        # dict keys double as an insertion-ordered set
        self._listeners: Dict[str, Dict[Handler, None]] = {}
        self._listeners_lock = threading.Lock()
        self._channel_lock = threading.Lock()
        self._channel: Optional[RPCChannel] = None
        self._disposed = False
        _log.debug("Created ModelInstance %s (%s) with config %s", key, adapter_kind, self.config)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------
    def on(self, event_type: str, handler: Handler) -> "ModelInstance":
        with self._listeners_lock:
            self._listeners.setdefault(event_type, {})[handler] = None
        return self

    def off(self, event_type: str, handler: Handler) -> "ModelInstance":
        with self._listeners_lock:
            self._listeners.get(event_type, {}).pop(handler, None)
        return self

    def reset_listeners(self, event_type: Optional[str] = None) -> "ModelInstance":
        with self._listeners_lock:
            if event_type is None:
                self._listeners.clear()
            else:
                self._listeners.pop(event_type, None)
        return self

    def listener_count(self, event_type: str) -> int:
        with self._listeners_lock:
            return len(self._listeners.get(event_type, {}))

    def _dispatch_event(self, event_type: str, data: Any) -> None:
        with self._listeners_lock:
            handlers = list(self._listeners.get(event_type, {}))
        if not handlers:
            return
        progress = Progress.from_event(data)
        for handler in handlers:
            try:
                handler(progress)
            except Exception:  # pylint: disable=broad-except
                _log.exception("%s listener for %r failed", self.key, event_type)

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------
    def initialize(self, timeout: Optional[float] = None) -> None:
        """Block until the adapter is READY (raises ``ModelError`` if setup failed)."""
        self._wait(self._get_channel().initialize(), timeout)

    def submit(self, inputs: Any) -> concurrent.futures.Future:
        """Queue one call and return its future without waiting."""
        return self._get_channel().process(inputs)

    def process(self, inputs: Any, timeout: Optional[float] = None) -> Any:
        return self._wait(self.submit(inputs), timeout)

    def dispose(self) -> None:
        with self._channel_lock:
            if self._disposed:
                return
            self._disposed = True
            channel, self._channel = self._channel, None
        if channel is not None:
            channel.dispose()
        _log.debug("Disposed ModelInstance %s", self.key)

    @property
    def state(self) -> ChannelState:
        if self._disposed:
            return ChannelState.DISPOSED
        channel = self._channel
        return channel.state if channel is not None else ChannelState.UNINITIALIZED

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _get_channel(self) -> RPCChannel:
        with self._channel_lock:
            if self._disposed:
                raise TransportError(f"Model {self.key} has been disposed")
            if self._channel is None:
                self._channel = RPCChannel(
                    self.adapter_kind,
                    self._factory,
                    self.config,
                    backend=self.backend,
                    on_event=self._dispatch_event,
                )
            return self._channel

    def _wait(self, future: concurrent.futures.Future, timeout: Optional[float]) -> Any:
        timeout = self.default_timeout if timeout is None else timeout
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            raise TimeoutError(f"{self.key}: no response within {timeout}s") from None

    def __repr__(self) -> str:  # pragma: no cover
        return f"<ModelInstance key={self.key} kind={self.adapter_kind} state={self.state.value}>"


class ModelRegistry:
    """Scope owning every :class:`ModelInstance` created through it."""

    def __init__(self, *, backend: str = "process", default_timeout: Optional[float] = None) -> None:
        self.backend = backend
        self.default_timeout = default_timeout
        self._models: Dict[str, ModelInstance] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config) -> "ModelRegistry":
        """Build from a :class:`~VoiceCore.config_manager.ConfigManager`."""
        return cls(
            backend=config.get("execution_backend", "process"),
            default_timeout=config.get("process_timeout_sec"),
        )

    def get_or_create_model(
        self,
        adapter_kind: str,
        model_id: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> ModelInstance:
        """Return the instance under *model_id*, creating it on first use.

        Without *model_id* a fresh, randomly keyed instance is created every
        time.  Raises ``ConfigurationError`` for an unknown *adapter_kind*.
        """
        factory = get_adapter_factory(adapter_kind)
        key = model_id or f"{adapter_kind}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:7]}"
        with self._lock:
            model = self._models.get(key)
            if model is None:
                model = ModelInstance(
                    key,
                    adapter_kind,
                    factory,
                    config,
                    backend=self.backend,
                    default_timeout=self.default_timeout,
                )
                self._models[key] = model
            elif model.adapter_kind != adapter_kind:
                _log.warning("Model %s already exists as %s; ignoring requested kind %s", key, model.adapter_kind, adapter_kind)
        return model

    def dispose_model(self, model_or_id: ModelInstance | str) -> None:
        key = model_or_id if isinstance(model_or_id, str) else model_or_id.key
        with self._lock:
            model = self._models.pop(key, None)
        if model is not None:
            model.dispose()

    def dispose_all(self) -> None:
        with self._lock:
            models = list(self._models.values())
            self._models.clear()
        for model in models:
            try:
                model.dispose()
            except Exception:  # pylint: disable=broad-except – keep tearing down the rest
                _log.exception("Failed to dispose %s", model.key)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._models

    def __len__(self) -> int:
        with self._lock:
            return len(self._models)

    def __enter__(self) -> "ModelRegistry":
        return self

    def __exit__(self, *_exc) -> None:
        self.dispose_all()
