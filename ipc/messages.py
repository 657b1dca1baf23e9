from __future__ import annotations

"""Typed dataclass messages passed between the caller and an execution context.

Using `dataclass` ensures the envelope is pickleable by the `multiprocessing`
backend while still providing a type-safe interface for the rest of the
application code.  Payloads are always run through :mod:`ipc.serialization`
before they are wrapped, so the envelope itself only ever carries plain data.
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Optional

__all__ = [
    "MessageType",
    "Message",
    "REQUEST_TYPES",
    "RESPONSE_TYPES",
]


class MessageType(str, enum.Enum):
    """Wire-level message kinds."""

    INITIALIZE = "initialize"
    PROCESS = "process"
    EVENT = "event"
    DISPOSE = "dispose"
    READY = "ready"
    RESULT = "result"
    ERROR = "error"


#: Sent by the caller.
REQUEST_TYPES = frozenset({MessageType.INITIALIZE, MessageType.PROCESS, MessageType.DISPOSE})

#: Sent by the execution context.  EVENT carries no id.
RESPONSE_TYPES = frozenset({MessageType.READY, MessageType.RESULT, MessageType.ERROR, MessageType.EVENT})


@dataclass(slots=True)
class Message:
    """One envelope on the request or response queue."""

    type: MessageType
    id: Optional[int] = None
    payload: Any = field(default=None)

    def as_dict(self) -> dict:
        """Return the flat ``{type, id, ...payload}`` wire shape (for logs and debugging)."""
        out = {"type": self.type.value, "id": self.id}
        if isinstance(self.payload, dict):
            out.update(self.payload)
        elif self.payload is not None:
            out["payload"] = self.payload
        return out
