"""
rag_retrieval - semantic retrieval for retrieval-augmented generation.

This package embeds queries with one of several providers (OpenAI, Azure
OpenAI, Google Gemini, or a deterministic mock for development), ranks
stored chunk field embeddings by cosine similarity and caches responses
keyed by query meaning.

Example usage:
    >>> from rag_retrieval import DuckDBStorage, RetrievalService
    >>> service = RetrievalService(DuckDBStorage("index.duckdb"))
    >>> results = service.search("termination clause", top_k=5)
"""

from .cache import CacheHit, SemanticCache, StoreOutcome
from .config import EnvironmentConfigStore, RetrievalSettings, StaticConfigStore
from .embeddings import EmbeddingGateway, GeneratedEmbedding
from .errors import (
    InvalidEmbeddingError,
    InvalidQueryError,
    NoProviderAvailableError,
    ProviderUnavailableError,
    RetrievalError,
    RetrievalFailedError,
    UnsupportedModelError,
)
from .indexing import ChunkEmbedder
from .providers import ProviderConfig, ProviderName, ProviderSelector
from .search import RetrievalEngine, SearchResult, cosine_similarity
from .service import RetrievalService
from .storage import DuckDBStorage

__all__ = [
    # Service
    "RetrievalService",
    # Search
    "RetrievalEngine",
    "SearchResult",
    "cosine_similarity",
    # Cache
    "SemanticCache",
    "CacheHit",
    "StoreOutcome",
    # Embeddings and providers
    "EmbeddingGateway",
    "GeneratedEmbedding",
    "ProviderConfig",
    "ProviderName",
    "ProviderSelector",
    "ChunkEmbedder",
    # Configuration and storage
    "RetrievalSettings",
    "EnvironmentConfigStore",
    "StaticConfigStore",
    "DuckDBStorage",
    # Errors
    "RetrievalError",
    "InvalidQueryError",
    "UnsupportedModelError",
    "ProviderUnavailableError",
    "NoProviderAvailableError",
    "InvalidEmbeddingError",
    "RetrievalFailedError",
]
