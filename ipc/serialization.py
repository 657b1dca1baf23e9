from __future__ import annotations

"""Type-preserving value transfer across the execution-context boundary.

Every value handed to or returned from a model adapter goes through
:func:`serialize` before it is queued and through :func:`deserialize` on the
other side.  Plain data passes through structurally; richer objects must be
registered once at import time:

    register_type("Tensor", Tensor, Tensor.encode, Tensor.decode)

A registered object travels as ``{"tag": name, "content": encode(obj)}``.
Anything neither plain nor registered is rejected with
:class:`~VoiceCore.errors.ConfigurationError` instead of being dropped.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Type

import numpy as np

from VoiceCore.errors import ConfigurationError

__all__ = [
    "register_type",
    "get_type",
    "get_type_name",
    "serialize",
    "deserialize",
    "is_serializable",
    "TAG_KEY",
    "CONTENT_KEY",
]

TAG_KEY = "tag"
CONTENT_KEY = "content"

# Raw buffers and scalars cross the boundary as-is (pickle copies them).
# A memoryview is copied into bytes first; object-dtype arrays are refused.
_PASSTHROUGH = (type(None), bool, int, float, complex, str, bytes, bytearray, np.ndarray, np.generic)


@dataclass(frozen=True)
class _Codec:
    name: str
    cls: type
    encode: Callable[[Any], Any]
    decode: Callable[[Any], Any]


_BY_NAME: Dict[str, _Codec] = {}
_BY_CLASS: Dict[type, _Codec] = {}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

def register_type(
    name: str,
    cls: Type[Any],
    encode: Callable[[Any], Any],
    decode: Callable[[Any], Any],
) -> None:
    """Register *cls* as transferable under *name*.

    Re-registering the same class under the same name is a no-op so module
    reloads stay harmless; any other clash raises :class:`ConfigurationError`.
    """
    existing = _BY_NAME.get(name)
    if existing is not None:
        if existing.cls is cls:
            return
        raise ConfigurationError(f"Type name {name!r} already registered for {existing.cls.__name__}")
    if cls in _BY_CLASS:
        raise ConfigurationError(f"Class {cls.__name__} already registered as {_BY_CLASS[cls].name!r}")

    codec = _Codec(name=name, cls=cls, encode=encode, decode=decode)
    _BY_NAME[name] = codec
    _BY_CLASS[cls] = codec


def get_type(name: str) -> type:
    """Return the class registered under *name*."""
    try:
        return _BY_NAME[name].cls
    except KeyError:
        raise ConfigurationError(f"Unknown type: {name}") from None


def get_type_name(cls: type) -> str:
    """Return the registered name of *cls*."""
    try:
        return _BY_CLASS[cls].name
    except KeyError:
        raise ConfigurationError(f"Unknown type: {cls.__name__} is not registered for transfer") from None


# ---------------------------------------------------------------------------
# Encode / decode
# ---------------------------------------------------------------------------

def _is_tagged(value: Dict[Any, Any]) -> bool:
    return len(value) == 2 and TAG_KEY in value and CONTENT_KEY in value


def serialize(value: Any) -> Any:
    """Return a transfer-safe representation of *value*."""
    if isinstance(value, np.ndarray) and value.dtype.hasobject:
        # Elements of an object array would bypass the registry.
        raise ConfigurationError(f"Unknown type: ndarray of dtype {value.dtype} is not registered for transfer")
    if isinstance(value, _PASSTHROUGH):
        return value
    if isinstance(value, memoryview):
        return value.tobytes()
    if isinstance(value, list):
        return [serialize(item) for item in value]
    if isinstance(value, tuple):
        return tuple(serialize(item) for item in value)
    if type(value) is dict:
        return {key: serialize(item) for key, item in value.items()}

    codec = _BY_CLASS.get(type(value))
    if codec is None:
        raise ConfigurationError(f"Unknown type: {type(value).__name__} is not registered for transfer")
    return {TAG_KEY: codec.name, CONTENT_KEY: codec.encode(value)}


def deserialize(value: Any) -> Any:
    """Structural inverse of :func:`serialize`."""
    if isinstance(value, _PASSTHROUGH):
        return value
    if isinstance(value, list):
        return [deserialize(item) for item in value]
    if isinstance(value, tuple):
        return tuple(deserialize(item) for item in value)
    if isinstance(value, dict):
        if _is_tagged(value) and isinstance(value[TAG_KEY], str):
            codec = _BY_NAME.get(value[TAG_KEY])
            if codec is None:
                raise ConfigurationError(f"Unknown type: {value[TAG_KEY]}")
            return codec.decode(value[CONTENT_KEY])
        return {key: deserialize(item) for key, item in value.items()}
    return value


def is_serializable(value: Any) -> bool:
    """Return *True* when :func:`serialize` would accept *value*."""
    try:
        serialize(value)
    except ConfigurationError:
        return False
    return True
