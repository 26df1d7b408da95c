"""Similarity scoring and multi-field chunk retrieval."""

from .query import RetrievalEngine, SearchResult
from .ranker import FieldMatch, RankedChunk, rank_chunks
from .similarity import (
    NumpyBackend,
    PythonBackend,
    SimilarityBackend,
    cosine_similarity,
    get_backend,
)

__all__ = [
    "RetrievalEngine",
    "SearchResult",
    "FieldMatch",
    "RankedChunk",
    "rank_chunks",
    "NumpyBackend",
    "PythonBackend",
    "SimilarityBackend",
    "cosine_similarity",
    "get_backend",
]
