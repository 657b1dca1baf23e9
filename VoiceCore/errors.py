from __future__ import annotations

"""Exception taxonomy shared by every clonecast component.

Errors raised inside an execution context cannot be pickled reliably (custom
constructors, unpicklable attributes, tracebacks), so the worker flattens them
into a plain ``{name, message, stack}`` payload and the parent rebuilds a
:class:`ModelError` from it.
"""

import traceback
from typing import Any, Dict, Optional

__all__ = [
    "ClonecastError",
    "ConfigurationError",
    "TransportError",
    "ModelError",
    "ValidationError",
]


class ClonecastError(Exception):
    """Base class for all errors raised by clonecast."""


class ConfigurationError(ClonecastError):
    """Unknown adapter kind or unregistered serialization type."""


class TransportError(ClonecastError):
    """The execution context failed to start, died, or sent a malformed message."""


class ValidationError(ClonecastError, ValueError):
    """Input violates a documented precondition (chunk budget, padding, dims)."""


class ModelError(ClonecastError):
    """An adapter rejected ``initialize`` or ``process`` inside its execution context."""

    def __init__(self, message: str, *, name: str = "Error", remote_traceback: str = ""):
        super().__init__(message)
        self.name = name
        self.message = message
        self.remote_traceback = remote_traceback

    def __str__(self) -> str:
        return f"{self.name}: {self.message}" if self.name else self.message

    # ------------------------------------------------------------------
    # Wire helpers
    # ------------------------------------------------------------------
    @staticmethod
    def to_payload(exc: BaseException) -> Dict[str, str]:
        """Flatten *exc* into the ERROR message payload."""
        if isinstance(exc, ModelError):
            return {"name": exc.name, "message": exc.message, "stack": exc.remote_traceback}
        return {
            "name": type(exc).__name__,
            "message": str(exc),
            "stack": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        }

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "ModelError":
        payload = payload or {}
        return cls(
            str(payload.get("message", "")),
            name=str(payload.get("name", "Error")),
            remote_traceback=str(payload.get("stack", "")),
        )
