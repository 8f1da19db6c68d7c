"""float32 BLOB encoding for fragment embeddings."""

from __future__ import annotations

import struct

import sqlite_vec

_FLOAT_SIZE = struct.calcsize("f")


def encode_vector(vector: list[float]) -> bytes:
    """Serialize *vector* as packed float32 (the sqlite-vec BLOB format)."""
    return sqlite_vec.serialize_float32(list(vector))


def decode_vector(blob: bytes) -> list[float]:
    """Decode a packed float32 BLOB back into a list of floats.

    A blob whose length is not a multiple of 4 is truncated to its largest
    whole-float prefix instead of raising.
    """
    count = len(blob) // _FLOAT_SIZE
    if count == 0:
        return []
    return list(struct.unpack(f"{count}f", blob[: count * _FLOAT_SIZE]))
