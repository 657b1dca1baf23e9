from __future__ import annotations

"""Inter-process communication helpers for clonecast.

This package provides typed messages, queue helpers and the transfer codec
used by the caller and the model execution contexts.  Keeping the IPC layer
in a dedicated top-level package avoids pickle import-path issues when using
``multiprocessing.get_context('spawn')``.
"""

# Export public symbols so ``from ipc import *`` exposes them.
from .messages import Message, MessageType  # noqa: F401
from .queue_wrapper import CopyingQueue, IPCQueue  # noqa: F401
from .serialization import deserialize, is_serializable, register_type, serialize  # noqa: F401
from .tensor import Tensor  # noqa: F401  – importing registers the Tensor codec
