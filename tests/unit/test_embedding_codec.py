"""
Unit tests for embedding blob encoding.
"""

import numpy as np
import pytest

from chat_memory.persist.embedding_codec import decode_embedding, encode_embedding


def test_blob_is_float32_bytes(tiny_vector):
    blob = encode_embedding(tiny_vector)
    assert len(blob) == 4 * len(tiny_vector)
    np.testing.assert_allclose(decode_embedding(blob), tiny_vector, rtol=1e-6)


def test_accepts_numpy_input():
    vector = np.arange(3, dtype=np.float64)
    assert decode_embedding(encode_embedding(vector)).tolist() == [0.0, 1.0, 2.0]


@pytest.mark.parametrize("vector", [[], [[1.0, 2.0]], [float("nan")], [1.0, float("-inf")]])
def test_encode_rejects_bad_vectors(vector):
    with pytest.raises(ValueError):
        encode_embedding(vector)


@pytest.mark.parametrize("blob", [b"", b"\x00\x01\x02", b"\x00" * 7, "not bytes", None])
def test_decode_rejects_corrupt_blobs(blob):
    with pytest.raises(ValueError):
        decode_embedding(blob)


def test_decode_rejects_non_finite_blob():
    blob = np.array([1.0, np.inf], dtype="<f4").tobytes()
    with pytest.raises(ValueError):
        decode_embedding(blob)


@pytest.fixture
def tiny_vector():
    return [0.25, -1.5, 3.0, 1e-3]
