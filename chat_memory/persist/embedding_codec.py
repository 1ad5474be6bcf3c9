"""
Embedding blob codec.

Vectors are stored as little-endian float32 bytes, the same layout the
embedding cache uses, so a blob is ``4 * dim`` bytes long.
"""

from typing import Sequence

import numpy as np


DTYPE = np.dtype("<f4")


def encode_embedding(vector: Sequence[float]) -> bytes:
    """
    Encode an embedding vector to bytes.

    Raises:
        ValueError: If the vector is empty, not one-dimensional, or non-finite
    """
    arr = np.asarray(vector, dtype=DTYPE)
    if arr.ndim != 1 or arr.size == 0:
        raise ValueError(f"Embedding must be a non-empty 1-D vector, got shape {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise ValueError("Embedding contains NaN or infinite values")
    return arr.tobytes()


def decode_embedding(blob: bytes) -> np.ndarray:
    """
    Decode bytes produced by :func:`encode_embedding`.

    Raises:
        ValueError: If the blob is empty, truncated, or holds non-finite values
    """
    if not isinstance(blob, (bytes, bytearray, memoryview)):
        raise ValueError(f"Embedding blob must be bytes, got {type(blob).__name__}")

    data = bytes(blob)
    if not data or len(data) % DTYPE.itemsize:
        raise ValueError(f"Embedding blob has invalid length {len(data)}")

    arr = np.frombuffer(data, dtype=DTYPE)
    if not np.all(np.isfinite(arr)):
        raise ValueError("Embedding blob contains NaN or infinite values")
    return arr
