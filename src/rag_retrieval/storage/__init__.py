"""Storage contracts and the DuckDB backend."""

from .base import (
    CHUNK_FIELDS,
    CacheEntry,
    CachePersistence,
    CacheStats,
    ChunkField,
    ChunkRecord,
    ChunkStore,
    DocumentRecord,
    EmbeddedField,
    ProviderConfigStore,
)
from .duckdb import DuckDBStorage

__all__ = [
    "CHUNK_FIELDS",
    "CacheEntry",
    "CachePersistence",
    "CacheStats",
    "ChunkField",
    "ChunkRecord",
    "ChunkStore",
    "DocumentRecord",
    "EmbeddedField",
    "ProviderConfigStore",
    "DuckDBStorage",
]
