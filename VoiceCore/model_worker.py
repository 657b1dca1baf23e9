from __future__ import annotations

"""Request/response channel to one isolated model execution context.

One :class:`RPCChannel` owns one execution context (a spawned process, or a
thread for tests and lightweight adapters) that hosts exactly one adapter.
The two sides talk only through queues of :class:`~ipc.messages.Message`
envelopes whose payloads went through :mod:`ipc.serialization`, so nothing is
shared – every value crossing the boundary is a copy.

Correlation is strictly by id: every INITIALIZE/PROCESS gets a fresh, monotonic
id and resolves the :class:`concurrent.futures.Future` registered under it when
the matching READY/RESULT/ERROR arrives.  A dispatcher thread drains the
response queue, resolves futures and forwards EVENT messages to the owner.

Lifecycle::

    UNINITIALIZED → INITIALIZING → READY ⇄ PROCESSING → DISPOSED
    (any started state) → BROKEN → DISPOSED

Disposing abandons whatever is still pending: those futures are never
resolved, so callers must not wait on a disposed channel.  A channel whose
context died is BROKEN: pending calls fail with TransportError and so does
every later request until it is disposed.
"""

import enum
import itertools
import logging
import multiprocessing as _mp
import pickle
import threading
from concurrent.futures import Future
from multiprocessing.reduction import ForkingPickler
from typing import Any, Callable, Dict, Optional

from ipc.messages import Message, MessageType
from ipc.queue_wrapper import CopyingQueue, IPCQueue
from ipc.serialization import deserialize, serialize
from VoiceCore.errors import ClonecastError, ConfigurationError, ModelError, TransportError

__all__ = [
    "ChannelState",
    "RPCChannel",
    "EXECUTION_BACKENDS",
]

_log = logging.getLogger(__name__)

#: ``factory(config, emit) -> adapter``; must be importable (picklable) for the process backend.
AdapterFactory = Callable[[Dict[str, Any], Callable[[str, Any], None]], Any]
EventCallback = Callable[[str, Any], None]

_SEND_ERRORS = (pickle.PicklingError, TypeError, AttributeError, OSError, ValueError, TimeoutError)


class ChannelState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    PROCESSING = "processing"
    BROKEN = "broken"
    DISPOSED = "disposed"


# ---------------------------------------------------------------------------
# Execution-context loop
# ---------------------------------------------------------------------------

def _worker_process(request_q, response_q, factory: AdapterFactory) -> None:
    """Entry-point executed inside the execution context."""

    adapter = None

    def emit(event_type: str, data: Any = None) -> None:
        response_q.put(Message(MessageType.EVENT, None, {"event": event_type, "data": serialize(data)}))

    while True:
        msg = request_q.get()  # blocking – the caller owns every timeout
        if not isinstance(msg, Message):
            logging.error("Execution context ignored malformed message: %r", msg)
            continue

        if msg.type is MessageType.DISPOSE:
            if adapter is not None:
                try:
                    adapter.dispose()
                except Exception:  # pylint: disable=broad-except – teardown continues regardless
                    logging.exception("Adapter dispose failed")
            logging.info("Execution context shutting down")
            break

        try:
            if msg.type is MessageType.INITIALIZE:
                payload = msg.payload or {}
                logging.debug("Constructing %s adapter", payload.get("kind"))
                adapter = factory(deserialize(payload.get("config") or {}), emit)
                adapter.initialize()
                response_q.put(Message(MessageType.READY, msg.id))
            elif msg.type is MessageType.PROCESS:
                if adapter is None:
                    raise RuntimeError("Adapter not initialized – send INITIALIZE first")
                result = adapter.process(deserialize(msg.payload))
                response_q.put(Message(MessageType.RESULT, msg.id, serialize(result)))
            else:
                raise TransportError(f"Unexpected request type: {msg.type!r}")
        except Exception as exc:  # pylint: disable=broad-except – returned to the caller as ERROR
            logging.warning("Request %s (%s) failed: %s", msg.id, msg.type.value, exc)
            response_q.put(Message(MessageType.ERROR, msg.id, ModelError.to_payload(exc)))


# ---------------------------------------------------------------------------
# Execution contexts
# ---------------------------------------------------------------------------

class _ProcessContext:
    """Adapter hosted in a *spawned* child process."""

    def __init__(self, factory: AdapterFactory):
        self._ctx = _mp.get_context("spawn")
        self._factory = factory
        self._requests: IPCQueue[Message] = IPCQueue(ctx=self._ctx)
        self._responses: IPCQueue[Message] = IPCQueue(ctx=self._ctx)
        self._proc: Optional[_mp.process.BaseProcess] = None

    def start(self) -> None:
        self._proc = self._ctx.Process(
            target=_worker_process,
            args=(self._requests.raw, self._responses.raw, self._factory),
            daemon=True,
        )
        try:
            self._proc.start()
        except Exception as exc:  # pickling errors, fork limits, …
            self._proc = None
            raise TransportError(f"Execution context failed to start: {exc}") from exc
        _log.info("Execution context process started (pid=%d)", self._proc.pid)

    def send(self, msg: Message) -> None:
        # mp.Queue pickles on its feeder thread, where a failure is only printed.
        ForkingPickler.dumps(msg)
        self._requests.put(msg)

    def receive(self, timeout: float | None) -> Message:
        return self._responses.get(timeout=timeout)

    def is_alive(self) -> bool:
        return self._proc is not None and self._proc.is_alive()

    def terminate(self, timeout: float) -> None:
        if self._proc is None:
            return
        self._proc.join(timeout=timeout)
        if self._proc.is_alive():
            _log.warning("Execution context did not exit in %.1fs – killing pid %d", timeout, self._proc.pid)
            self._proc.kill()
            self._proc.join(timeout=1)
        self._proc = None
        _log.info("Execution context process stopped")

    def close(self) -> None:
        for q in (self._requests, self._responses):
            try:
                q.close()
            except (ValueError, OSError):
                pass  # already closed


class _ThreadContext:
    """Adapter hosted in a daemon thread; queues still copy every message."""

    def __init__(self, factory: AdapterFactory):
        self._factory = factory
        self._requests: CopyingQueue[Message] = CopyingQueue()
        self._responses: CopyingQueue[Message] = CopyingQueue()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=_worker_process,
            args=(self._requests, self._responses, self._factory),
            name="model-context",
            daemon=True,
        )
        try:
            self._thread.start()
        except RuntimeError as exc:
            self._thread = None
            raise TransportError(f"Execution context failed to start: {exc}") from exc

    def send(self, msg: Message) -> None:
        self._requests.put(msg)

    def receive(self, timeout: float | None) -> Message:
        return self._responses.get(timeout=timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def terminate(self, timeout: float) -> None:
        if self._thread is None:
            return
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            # Threads cannot be killed; the daemon flag lets the interpreter exit anyway.
            _log.warning("Execution context thread still busy after %.1fs – abandoning it", timeout)
        self._thread = None

    def close(self) -> None:
        self._requests.close()
        self._responses.close()


EXECUTION_BACKENDS = {
    "process": _ProcessContext,
    "thread": _ThreadContext,
}


# ---------------------------------------------------------------------------
# Channel
# ---------------------------------------------------------------------------

class RPCChannel:  # pylint: disable=too-many-instance-attributes
    """Caller-side end of the channel to one execution context."""

    _POLL_INTERVAL = 0.1
    _DISPOSE_TIMEOUT = 5.0

    def __init__(
        self,
        adapter_kind: str,
        factory: AdapterFactory,
        config: Optional[Dict[str, Any]] = None,
        *,
        backend: str = "process",
        on_event: Optional[EventCallback] = None,
    ) -> None:
        if backend not in EXECUTION_BACKENDS:
            raise ConfigurationError(
                f"Unknown execution backend {backend!r}; expected one of {sorted(EXECUTION_BACKENDS)}"
            )
        self.adapter_kind = adapter_kind
        self.backend = backend
        self._config = dict(config or {})
        self._context = EXECUTION_BACKENDS[backend](factory)
        self._on_event = on_event

        self._ids = itertools.count(1)
        self._pending: Dict[int, Future] = {}
        self._ready: Optional[Future] = None
        self._in_flight = 0
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._dispatcher: Optional[threading.Thread] = None
        self._started = False
        self._broken: Optional[TransportError] = None
        self.state = ChannelState.UNINITIALIZED

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------
    def initialize(self) -> Future:
        """Send INITIALIZE once; every caller before and after READY shares the same future."""
        payload = {"kind": self.adapter_kind, "config": serialize(self._config)}
        with self._lock:
            self._check_open()
            if self._ready is not None:
                return self._ready
            self._ensure_started()
            msg_id = next(self._ids)
            self._ready = Future()
            self._pending[msg_id] = self._ready
            self.state = ChannelState.INITIALIZING
        _log.debug("%s: INITIALIZE id=%d", self.adapter_kind, msg_id)
        self._post(Message(MessageType.INITIALIZE, msg_id, payload))
        return self._ready

    def process(self, inputs: Any) -> Future:
        """Queue one PROCESS call; it is sent once the adapter is READY."""
        payload = serialize(inputs)  # fail closed before anything is queued
        ready = self.initialize()
        result: Future = Future()

        def _send(ready_future: Future) -> None:
            exc = ready_future.exception()
            if exc is not None:
                result.set_exception(exc)
                return
            with self._lock:
                if self.state is ChannelState.DISPOSED:
                    return  # abandoned together with everything else
                broken = self._broken if self.state is ChannelState.BROKEN else None
                if broken is None:
                    msg_id = next(self._ids)
                    self._pending[msg_id] = result
                    self._in_flight += 1
                    self.state = ChannelState.PROCESSING
            if broken is not None:
                result.set_exception(broken)
                return
            _log.debug("%s: PROCESS id=%d", self.adapter_kind, msg_id)
            self._post(Message(MessageType.PROCESS, msg_id, payload))

        ready.add_done_callback(_send)
        return result

    def dispose(self) -> None:
        """Best-effort DISPOSE, then terminate the execution context."""
        with self._lock:
            if self.state is ChannelState.DISPOSED:
                return
            self.state = ChannelState.DISPOSED
            started = self._started
            abandoned = len(self._pending)
            self._pending.clear()
        self._stop.set()
        if not started:
            return

        if abandoned:
            _log.warning(
                "Disposing %s channel with %d pending call(s); they will never resolve",
                self.adapter_kind,
                abandoned,
            )
        try:
            self._context.send(Message(MessageType.DISPOSE))
        except (OSError, ValueError, TimeoutError) as exc:
            _log.debug("DISPOSE not delivered: %s", exc)
        self._context.terminate(self._DISPOSE_TIMEOUT)
        if self._dispatcher is not None and self._dispatcher is not threading.current_thread():
            self._dispatcher.join(timeout=1.0)
        self._context.close()

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _check_open(self) -> None:
        if self.state is ChannelState.DISPOSED:
            raise TransportError(f"{self.adapter_kind} channel has been disposed")
        if self.state is ChannelState.BROKEN:
            raise TransportError(f"{self.adapter_kind} channel is broken: {self._broken}")

    def _post(self, msg: Message) -> None:
        """Queue *msg*; if it cannot be sent its own future fails with TransportError."""
        try:
            self._context.send(msg)
        except _SEND_ERRORS as exc:
            with self._lock:
                fut = self._pending.pop(msg.id, None)
                if fut is self._ready:
                    self.state = ChannelState.UNINITIALIZED
                elif fut is not None:
                    self._in_flight -= 1
                    if self._in_flight == 0 and self.state is ChannelState.PROCESSING:
                        self.state = ChannelState.READY
            _log.error("%s: could not send %s id=%s: %s", self.adapter_kind, msg.type.value, msg.id, exc)
            if fut is not None:
                fut.set_exception(TransportError(f"Could not send {msg.type.value} to {self.adapter_kind}: {exc}"))

    def _ensure_started(self) -> None:
        """Start the execution context and dispatcher (caller holds the lock)."""
        if self._started:
            return
        self._context.start()
        self._dispatcher = threading.Thread(
            target=self._dispatch_loop,
            name=f"rpc-dispatch-{self.adapter_kind}",
            daemon=True,
        )
        self._dispatcher.start()
        self._started = True

    def _dispatch_loop(self) -> None:
        while not self._stop.is_set():
            try:
                msg = self._context.receive(timeout=self._POLL_INTERVAL)
            except TimeoutError:
                if not self._stop.is_set() and not self._context.is_alive():
                    self._fail_pending(TransportError(f"{self.adapter_kind} execution context exited unexpectedly"))
                    return
                continue
            except (EOFError, OSError, ValueError) as exc:
                if not self._stop.is_set():
                    self._fail_pending(TransportError(f"{self.adapter_kind} channel broken: {exc}"))
                return
            self._handle(msg)

    def _handle(self, msg: Any) -> None:
        if not isinstance(msg, Message) or not isinstance(msg.type, MessageType):
            _log.error("Malformed message from %s execution context: %r", self.adapter_kind, msg)
            with self._lock:
                fut = self._pending.pop(getattr(msg, "id", None), None)
            if fut is not None:
                fut.set_exception(TransportError(f"Malformed message: {msg!r}"))
            return

        if msg.type is MessageType.EVENT:
            self._deliver_event(msg.payload or {})
            return

        with self._lock:
            fut = self._pending.pop(msg.id, None)
            if fut is None:
                _log.warning("%s: dropping %s for unknown id %s", self.adapter_kind, msg.type.value, msg.id)
                return
            if fut is self._ready:
                self.state = ChannelState.READY if msg.type is MessageType.READY else ChannelState.UNINITIALIZED
            else:
                self._in_flight -= 1
                if self._in_flight == 0 and self.state is ChannelState.PROCESSING:
                    self.state = ChannelState.READY

        if msg.type is MessageType.READY:
            _log.info("%s adapter ready", self.adapter_kind)
            fut.set_result(None)
        elif msg.type is MessageType.RESULT:
            try:
                value = deserialize(msg.payload)
            except ClonecastError as exc:
                fut.set_exception(exc)
            else:
                fut.set_result(value)
        elif msg.type is MessageType.ERROR:
            fut.set_exception(ModelError.from_payload(msg.payload))
        else:
            fut.set_exception(TransportError(f"Unexpected response type: {msg.type.value}"))

    def _deliver_event(self, payload: Dict[str, Any]) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(str(payload.get("event")), deserialize(payload.get("data")))
        except Exception:  # pylint: disable=broad-except – a listener must not kill the dispatcher
            _log.exception("%s event listener failed", self.adapter_kind)

    def _fail_pending(self, exc: TransportError) -> None:
        with self._lock:
            if self.state is not ChannelState.DISPOSED:
                self.state = ChannelState.BROKEN
                self._broken = exc
            pending = list(self._pending.values())
            self._pending.clear()
            self._in_flight = 0
        _log.error("%s (failing %d pending call(s))", exc, len(pending))
        for fut in pending:
            fut.set_exception(exc)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<RPCChannel kind={self.adapter_kind} backend={self.backend} state={self.state.value}>"
