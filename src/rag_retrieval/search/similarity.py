"""
Cosine similarity over stored float32 embeddings.

Two interchangeable backends: a portable scalar loop and a vectorized numpy
path. Both treat malformed or mismatched vectors as "no score" in batch mode
so one bad row never fails a search.
"""

from __future__ import annotations

import math
from typing import Protocol, Sequence

import numpy as np

from ..errors import InvalidEmbeddingError
from ..vectors import (
    FLOAT_SIZE,
    decode_vector,
    describe_vector,
    dimension,
    encode_vector,
    is_valid,
    vector_from_json,
)


def _finalize(value: float) -> float:
    if math.isnan(value) or math.isinf(value):
        return 0.0
    return max(-1.0, min(1.0, value))


def _scalar_cosine(a: Sequence[float], b: Sequence[float]) -> float:
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return _finalize(dot / (math.sqrt(norm_a) * math.sqrt(norm_b)))


def cosine_similarity(a: bytes, b: bytes) -> float:
    """Cosine similarity of two stored embeddings, in [-1, 1].

    Raises ``InvalidEmbeddingError`` when either buffer is invalid or the
    dimensions differ. A zero-magnitude vector scores 0.0.
    """
    if not is_valid(a) or not is_valid(b):
        raise InvalidEmbeddingError("Both embeddings must be valid float32 buffers.")
    if len(a) != len(b):
        raise InvalidEmbeddingError(
            f"Embedding dimensions differ: {len(a) // FLOAT_SIZE} != {len(b) // FLOAT_SIZE}."
        )
    return _scalar_cosine(decode_vector(a), decode_vector(b))


class SimilarityBackend(Protocol):
    """Scores candidates against a query vector."""

    name: str

    def cosine(self, a: bytes, b: bytes) -> float:
        """Cosine of two valid, same-size embeddings."""

    def similarities(self, query: bytes, candidates: Sequence[bytes]) -> list[float | None]:
        """One score per candidate; None for invalid or mismatched candidates."""


class PythonBackend:
    """Reference implementation using plain Python floats."""

    name = "python"

    def cosine(self, a: bytes, b: bytes) -> float:
        return cosine_similarity(a, b)

    def similarities(self, query: bytes, candidates: Sequence[bytes]) -> list[float | None]:
        if not is_valid(query):
            raise InvalidEmbeddingError("Query embedding is invalid.")
        query_values = decode_vector(query)
        expected = len(query_values)
        scores: list[float | None] = []
        for candidate in candidates:
            if not is_valid(candidate, expected):
                scores.append(None)
                continue
            scores.append(_scalar_cosine(query_values, decode_vector(candidate)))
        return scores


class NumpyBackend:
    """Vectorized implementation; scores every valid candidate in one matmul."""

    name = "numpy"

    @staticmethod
    def _to_array(buffer: bytes) -> np.ndarray:
        return np.frombuffer(buffer, dtype="<f4").astype(np.float64)

    def cosine(self, a: bytes, b: bytes) -> float:
        if not is_valid(a) or not is_valid(b):
            raise InvalidEmbeddingError("Both embeddings must be valid float32 buffers.")
        if len(a) != len(b):
            raise InvalidEmbeddingError(
                f"Embedding dimensions differ: {len(a) // FLOAT_SIZE} != {len(b) // FLOAT_SIZE}."
            )
        scores = self.similarities(a, [b])
        return float(scores[0]) if scores[0] is not None else 0.0

    def similarities(self, query: bytes, candidates: Sequence[bytes]) -> list[float | None]:
        if not is_valid(query):
            raise InvalidEmbeddingError("Query embedding is invalid.")
        query_vec = self._to_array(query)
        expected_bytes = len(query)

        scores: list[float | None] = [None] * len(candidates)
        valid_index: list[int] = []
        rows: list[np.ndarray] = []
        for i, candidate in enumerate(candidates):
            if not candidate or len(candidate) != expected_bytes:
                continue
            row = self._to_array(candidate)
            if not np.all(np.isfinite(row)):
                continue
            valid_index.append(i)
            rows.append(row)
        if not rows:
            return scores

        matrix = np.vstack(rows)
        query_norm = float(np.linalg.norm(query_vec))
        row_norms = np.linalg.norm(matrix, axis=1)
        dots = matrix @ query_vec
        with np.errstate(divide="ignore", invalid="ignore"):
            raw = dots / (row_norms * query_norm)
        raw = np.where((row_norms == 0.0) | (query_norm == 0.0), 0.0, raw)
        raw = np.nan_to_num(raw, nan=0.0, posinf=0.0, neginf=0.0)
        raw = np.clip(raw, -1.0, 1.0)
        for i, value in zip(valid_index, raw.tolist()):
            scores[i] = float(value)
        return scores


_BACKENDS: dict[str, type] = {
    PythonBackend.name: PythonBackend,
    NumpyBackend.name: NumpyBackend,
}


def get_backend(name: str = "numpy") -> SimilarityBackend:
    """Return the similarity backend registered under *name*."""
    normalized = name.strip().lower()
    backend_cls = _BACKENDS.get(normalized)
    if backend_cls is None:
        raise ValueError(
            f"Unknown similarity backend {name!r}. Expected one of: {', '.join(sorted(_BACKENDS))}"
        )
    return backend_cls()


__all__ = [
    "FLOAT_SIZE",
    "NumpyBackend",
    "PythonBackend",
    "SimilarityBackend",
    "cosine_similarity",
    "decode_vector",
    "describe_vector",
    "dimension",
    "encode_vector",
    "get_backend",
    "is_valid",
    "vector_from_json",
]
