from __future__ import annotations

"""The two queue flavours an :class:`~VoiceCore.model_worker.RPCChannel` talks over.

Both raise :class:`TimeoutError` instead of :class:`queue.Empty` /
:class:`queue.Full`, so the channel's dispatcher handles an idle poll the same
way whichever execution context sits on the other end.

* :class:`IPCQueue` wraps a spawn-context :class:`multiprocessing.Queue` and
  feeds a worker *process*.
* :class:`CopyingQueue` feeds a worker *thread*.  Items are pickled on ``put``
  and unpickled on ``get``, so the two sides never share an object.
"""

import multiprocessing as _mp
import pickle
import queue as _queue
from typing import Any, Generic, TypeVar

__all__ = [
    "IPCQueue",
    "CopyingQueue",
]

_T = TypeVar("_T")


class _TimeoutQueue(Generic[_T]):
    _label = "queue"

    def _put(self, item: _T, timeout: float | None) -> None:
        raise NotImplementedError

    def _get(self, timeout: float | None) -> _T:
        raise NotImplementedError

    def put(self, item: _T, timeout: float | None = None) -> None:
        """Enqueue *item*; a full queue after *timeout* seconds raises :class:`TimeoutError`."""
        try:
            self._put(item, timeout)
        except _queue.Full as exc:  # pragma: no cover – queues are unbounded in practice
            raise TimeoutError(f"{self._label} stayed full for {timeout}s") from exc

    def get(self, timeout: float | None = None) -> _T:
        """Dequeue one item; nothing arriving within *timeout* seconds raises :class:`TimeoutError`."""
        try:
            return self._get(timeout)
        except _queue.Empty as exc:
            raise TimeoutError(f"Nothing arrived on {self._label} within {timeout}s") from exc


class IPCQueue(_TimeoutQueue[_T]):
    """Process-safe queue; pass :attr:`raw` to the spawned worker."""

    _label = "IPCQueue"

    def __init__(self, maxsize: int = 0, *, ctx: Any = None):
        self._queue = (ctx or _mp.get_context("spawn")).Queue(maxsize)

    def _put(self, item: _T, timeout: float | None) -> None:
        self._queue.put(item, timeout=timeout)

    def _get(self, timeout: float | None) -> _T:
        return self._queue.get(timeout=timeout)

    @property
    def raw(self):
        """The underlying :class:`multiprocessing.Queue`, picklable into a child process."""
        return self._queue

    def close(self) -> None:
        self._queue.close()
        self._queue.join_thread()


class CopyingQueue(_TimeoutQueue[_T]):
    """Thread queue holding pickled copies of its items."""

    _label = "CopyingQueue"

    def __init__(self, maxsize: int = 0):
        self._queue: _queue.Queue[bytes] = _queue.Queue(maxsize)

    def _put(self, item: _T, timeout: float | None) -> None:
        self._queue.put(pickle.dumps(item, protocol=pickle.HIGHEST_PROTOCOL), timeout=timeout)

    def _get(self, timeout: float | None) -> _T:
        return pickle.loads(self._queue.get(timeout=timeout))

    @property
    def raw(self) -> "CopyingQueue[_T]":
        # Worker threads receive the wrapper itself.
        return self

    def close(self) -> None:
        """Nothing to release for an in-process queue."""

    def __len__(self) -> int:
        return self._queue.qsize()
