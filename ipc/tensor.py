from __future__ import annotations

"""Flat numeric tensor used for audio and model I/O.

A :class:`Tensor` is a ``(dtype, dims, data)`` triple where *data* is a
contiguous 1-D NumPy buffer whose length equals ``prod(dims)``.  It is the only
rich payload kind registered with :mod:`ipc.serialization`.
"""

import math
from typing import Any, Dict, Iterable, Sequence, Tuple

import numpy as np

from VoiceCore.errors import ValidationError
from ipc.serialization import register_type

__all__ = [
    "Tensor",
    "SUPPORTED_DTYPES",
]

SUPPORTED_DTYPES = frozenset(
    {"bool", "int8", "int16", "int32", "int64", "uint8", "float16", "float32", "float64"}
)


class Tensor:
    """Immutable-by-convention wrapper around a flat NumPy buffer."""

    __slots__ = ("_data", "_dims")

    def __init__(self, dtype: str, data: Any, dims: Sequence[int] | None = None):
        dtype = str(np.dtype(dtype))
        if dtype not in SUPPORTED_DTYPES:
            raise ValidationError(f"Unsupported tensor dtype: {dtype}")

        flat = np.ascontiguousarray(np.asarray(data, dtype=dtype).reshape(-1))
        dims_t: Tuple[int, ...] = tuple(int(d) for d in (dims if dims is not None else (flat.size,)))
        if any(d <= 0 for d in dims_t) and flat.size:
            raise ValidationError(f"Tensor dims must be positive, got {list(dims_t)}")
        if math.prod(dims_t) != flat.size:
            raise ValidationError(
                f"Buffer length {flat.size} does not match dims {list(dims_t)} (product {math.prod(dims_t)})"
            )
        self._data = flat
        self._dims = dims_t

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------
    @classmethod
    def from_numpy(cls, array: np.ndarray) -> "Tensor":
        array = np.asarray(array)
        dims = array.shape if array.ndim else (1,)
        return cls(str(array.dtype), array.reshape(-1), dims)

    @classmethod
    def cat(cls, tensors: Iterable["Tensor"]) -> "Tensor":
        """Concatenate 1-D tensors end to end."""
        parts = [t.data for t in tensors]
        if not parts:
            raise ValidationError("Cannot concatenate an empty list of tensors")
        return cls.from_numpy(np.concatenate(parts))

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def dtype(self) -> str:
        return str(self._data.dtype)

    @property
    def dims(self) -> Tuple[int, ...]:
        return self._dims

    @property
    def data(self) -> np.ndarray:
        """The flat buffer (read it, do not mutate it)."""
        return self._data

    @property
    def size(self) -> int:
        return int(self._data.size)

    def numpy(self) -> np.ndarray:
        """Return a shaped *copy* of the buffer."""
        return self._data.reshape(self._dims).copy()

    def to(self, dtype: str) -> "Tensor":
        return Tensor(dtype, self._data.astype(dtype), self._dims)

    # ------------------------------------------------------------------
    # Transfer codec
    # ------------------------------------------------------------------
    def encode(self) -> Dict[str, Any]:
        return {"dtype": self.dtype, "dims": list(self._dims), "data": self._data.tobytes()}

    @classmethod
    def decode(cls, content: Dict[str, Any]) -> "Tensor":
        dtype = content["dtype"]
        data = np.frombuffer(content["data"], dtype=dtype).copy()
        return cls(dtype, data, content["dims"])

    # ------------------------------------------------------------------
    # Dunder helpers
    # ------------------------------------------------------------------
    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Tensor):
            return NotImplemented
        return (
            self.dtype == other.dtype
            and self._dims == other._dims
            and self._data.tobytes() == other._data.tobytes()
        )

    __hash__ = None  # type: ignore[assignment]

    def __len__(self) -> int:
        return self._dims[0]

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Tensor dtype={self.dtype} dims={list(self._dims)}>"


register_type("Tensor", Tensor, Tensor.encode, Tensor.decode)
