"""
Embedding wire format: exactly D little-endian float32 values.
"""

from typing import Sequence, Union

import numpy as np

from .errors import InvalidDimensionError, InvalidVectorError, SerializationError

_WIRE_DTYPE = np.dtype("<f4")

VectorLike = Union[Sequence[float], np.ndarray]


def as_vector(values: VectorLike, dimension: int) -> np.ndarray:
    """
    Coerce `values` into a float32 vector of length `dimension`.

    Raises InvalidVectorError for anything that is not numeric or holds
    NaN/inf, and InvalidDimensionError for a vector of the wrong shape.
    """
    try:
        vector = np.asarray(values, dtype=np.float32)
    except (TypeError, ValueError) as exc:
        raise InvalidVectorError(f"Embedding is not a numeric vector: {exc}") from exc
    if vector.ndim != 1:
        raise InvalidDimensionError(dimension, vector.size)
    if vector.shape[0] != dimension:
        raise InvalidDimensionError(dimension, vector.shape[0])
    if not np.isfinite(vector).all():
        raise InvalidVectorError("Embedding contains NaN or infinite values")
    return vector


def l2_norm(vector: np.ndarray) -> float:
    # float64 accumulation; the result is stored as the row's magnitude.
    return float(np.linalg.norm(vector.astype(np.float64)))


def serialize_vector(vector: np.ndarray) -> bytes:
    return vector.astype(_WIRE_DTYPE, copy=False).tobytes()


def deserialize_vector(data: bytes, dimension: int) -> np.ndarray:
    """Decode a stored blob, rejecting any byte length other than 4 * dimension."""
    if data is None or len(data) != dimension * _WIRE_DTYPE.itemsize:
        size = 0 if data is None else len(data)
        raise SerializationError(
            f"Failed to deserialize vector: expected {dimension * _WIRE_DTYPE.itemsize} "
            f"bytes, got {size}"
        )
    return np.frombuffer(data, dtype=_WIRE_DTYPE).astype(np.float32)
