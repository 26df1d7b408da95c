"""
Storage interfaces and data models the retrieval engine depends on.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Iterator, Literal, Protocol

from ..providers.base import ProviderConfig, ProviderConfigSet, ProviderName

ChunkField = Literal["content", "header_context", "notes", "details"]
CHUNK_FIELDS: tuple[ChunkField, ...] = ("content", "header_context", "notes", "details")

DocumentStatus = Literal["pending", "processing", "completed", "failed"]


@dataclass(frozen=True)
class DocumentRecord:
    """A source document; only ``completed`` documents are searchable."""

    id: int
    file_name: str
    status: DocumentStatus
    path: str | None = None


@dataclass(frozen=True)
class ChunkRecord:
    """A retrievable unit of text with up to four embeddable fields."""

    id: int
    document_id: int
    chunk_index: int
    content: str
    header_context: str | None = None
    notes: str | None = None
    details: str | None = None

    def field_text(self, field: ChunkField) -> str | None:
        value = getattr(self, field)
        if value is None or not str(value).strip():
            return None
        return str(value)

    def present_fields(self) -> list[ChunkField]:
        return [field for field in CHUNK_FIELDS if self.field_text(field) is not None]


@dataclass(frozen=True)
class EmbeddedField:
    """One stored embedding row for a (chunk, field, model)."""

    chunk_id: int
    document_id: int
    field: ChunkField
    embedding: bytes
    model: str


@dataclass(frozen=True)
class CacheEntry:
    """A cached (query, response) pair."""

    id: int
    query_text: str
    query_embedding: bytes
    model: str
    response_text: str
    created_at: datetime
    expires_at: datetime

    def is_fresh(self, now: datetime, max_age: timedelta) -> bool:
        return now - self.created_at < max_age and now < self.expires_at


@dataclass(frozen=True)
class CacheStats:
    """Aggregate view of the cache table."""

    total_entries: int
    entries_last_hour: int
    entries_last_24_hours: int
    oldest_entry: datetime | None
    newest_entry: datetime | None
    avg_response_size: float | None
    avg_embedding_size: float | None


class ChunkStore(Protocol):
    """Read access to chunks and their field embeddings."""

    def iter_embedded_fields(
        self,
        *,
        fields: Iterable[ChunkField],
        model: str | None = None,
    ) -> Iterator[EmbeddedField]:
        """Yield stored embeddings of completed documents for the given fields."""

    def get_chunks(self, chunk_ids: Iterable[int]) -> dict[int, ChunkRecord]:
        """Fetch chunks by id."""

    def get_document(self, document_id: int) -> DocumentRecord | None:
        """Fetch a document by id."""


class ProviderConfigStore(Protocol):
    """Source of decrypted provider configuration."""

    def get_active_config(self, provider: ProviderName) -> ProviderConfig | None:
        """Return the active config for *provider*, if any."""

    def load_configs(self) -> ProviderConfigSet:
        """Return every known provider config."""


class CachePersistence(Protocol):
    """Durable storage for cache entries."""

    def insert_cache_entry(
        self,
        *,
        query_text: str,
        query_embedding: bytes,
        model: str,
        response_text: str,
        created_at: datetime,
        expires_at: datetime,
    ) -> int:
        """Insert a new entry and return its id."""

    def update_cache_entry(
        self,
        *,
        query_text: str,
        query_embedding: bytes,
        model: str,
        response_text: str,
        created_at: datetime,
        expires_at: datetime,
    ) -> int:
        """Replace entries with identical query text. Return rows updated."""

    def find_cache_entry(self, *, query_text: str, fresh_after: datetime, now: datetime) -> CacheEntry | None:
        """Newest fresh entry with identical query text."""

    def has_cache_entry(self, *, query_text: str) -> bool:
        """True when any entry (fresh or not) has identical query text."""

    def list_fresh_cache_entries(
        self,
        *,
        fresh_after: datetime,
        now: datetime,
        model: str | None = None,
    ) -> list[CacheEntry]:
        """Entries created after *fresh_after*, not past their TTL, optionally for one model."""

    def delete_expired_cache_entries(self, *, created_before: datetime, now: datetime) -> int:
        """Delete entries older than the cutoff or past their TTL."""

    def delete_cache_entries(
        self,
        *,
        entry_id: int | None = None,
        query_text: str | None = None,
        delete_all: bool = False,
    ) -> int:
        """Delete by id, by query text, or everything."""

    def cache_stats(self, *, now: datetime) -> CacheStats:
        """Return aggregate cache statistics."""

