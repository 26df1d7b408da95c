"""
Semantic response cache.

Responses are keyed by the query text and its embedding. A lookup either
matches the text literally (exact mode) or returns the most similar fresh
entry at or above a strict threshold. Entries older than the max age or past
their own TTL are never returned, whether or not a purge has run yet.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable

from .config import RetrievalSettings
from .embeddings import EmbeddingGateway
from .errors import InvalidEmbeddingError, InvalidQueryError
from .logging_config import get_logger
from .providers.base import ProviderName, require_text
from .search.similarity import SimilarityBackend, get_backend
from .storage.base import CacheEntry, CachePersistence, CacheStats
from .vectors import is_valid

logger = get_logger(__name__)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in the cache table."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StoreOutcome(str, Enum):
    ADDED = "added"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class CacheHit:
    """A cached response and how closely its query matched."""

    entry: CacheEntry
    similarity: float
    exact: bool

    @property
    def response_text(self) -> str:
        return self.entry.response_text


class SemanticCache:
    """Lookup, store and purge cached responses."""

    def __init__(
        self,
        persistence: CachePersistence,
        gateway: EmbeddingGateway,
        *,
        settings: RetrievalSettings | None = None,
        backend: SimilarityBackend | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.persistence = persistence
        self.gateway = gateway
        self.settings = settings or gateway.settings
        self.backend = backend or get_backend(self.settings.similarity_backend)
        self.clock = clock
        self._write_lock = threading.Lock()

    @property
    def max_age(self) -> timedelta:
        return timedelta(hours=self.settings.cache_max_age_hours)

    def lookup(
        self,
        query_text: str,
        *,
        threshold: float | None = None,
        exact: bool = False,
        query_embedding: bytes | None = None,
        model: str | None = None,
        provider: ProviderName | str | None = None,
    ) -> CacheHit | None:
        """Return the best fresh entry for *query_text*, or None on a miss.

        Exact mode compares text only and never calls a provider. Semantic
        mode embeds the query unless *query_embedding* is given, and only
        compares entries embedded with the same model; provider errors
        propagate.
        """
        require_text(query_text)
        min_score = self.settings.cache_similarity_threshold if threshold is None else threshold
        if not 0.0 <= min_score <= 1.0:
            raise InvalidQueryError(f"threshold must be within [0, 1], got {threshold}")

        now = self.clock()
        fresh_after = now - self.max_age

        if exact:
            entry = self.persistence.find_cache_entry(
                query_text=query_text, fresh_after=fresh_after, now=now
            )
            if entry is None:
                logger.info("Cache miss (exact)")
                return None
            logger.info("Cache hit (exact) entry=%d", entry.id)
            return CacheHit(entry=entry, similarity=1.0, exact=True)

        vector, vector_model = self._query_vector(query_text, query_embedding, model, provider)
        entries = self.persistence.list_fresh_cache_entries(
            fresh_after=fresh_after, now=now, model=vector_model
        )
        if not entries:
            logger.info("Cache miss (semantic, no entries for model %s)", vector_model)
            return None

        scores = self.backend.similarities(vector, [entry.query_embedding for entry in entries])
        best: CacheHit | None = None
        for entry, score in zip(entries, scores):
            if score is None or score < min_score:
                continue
            # Entries arrive newest first; ties keep the newest.
            if best is None or score > best.similarity:
                best = CacheHit(entry=entry, similarity=score, exact=False)

        if best is None:
            logger.info("Cache miss (semantic, %d candidates)", len(entries))
            return None
        logger.info("Cache hit (semantic) entry=%d similarity=%.4f", best.entry.id, best.similarity)
        return best

    def store(
        self,
        query_text: str,
        response: str,
        *,
        query_embedding: bytes | None = None,
        model: str | None = None,
        ttl_hours: float | None = None,
        overwrite: bool = False,
        provider: ProviderName | str | None = None,
    ) -> StoreOutcome:
        """Cache *response* for *query_text*.

        A fresh entry with the same text is kept unless *overwrite* is set;
        a stale one is replaced. The query is embedded before the write lock
        is taken, so purges and deletes never wait on a provider.
        """
        require_text(query_text)
        if not response or not response.strip():
            raise InvalidQueryError("Cached response must be non-empty.")
        ttl = self.settings.cache_max_age_hours if ttl_hours is None else ttl_hours
        if ttl <= 0:
            raise InvalidQueryError(f"ttl_hours must be > 0, got {ttl_hours}")

        if not overwrite and self._fresh_entry(query_text) is not None:
            logger.info("Cache store skipped, fresh entry exists")
            return StoreOutcome.SKIPPED

        vector, vector_model = self._query_vector(query_text, query_embedding, model, provider)

        with self._write_lock:
            fresh = self._fresh_entry(query_text)
            if fresh is not None and not overwrite:
                logger.info("Cache store skipped, fresh entry %d exists", fresh.id)
                return StoreOutcome.SKIPPED

            now = self.clock()
            values = {
                "query_text": query_text,
                "query_embedding": vector,
                "model": vector_model,
                "response_text": response,
                "created_at": now,
                "expires_at": now + timedelta(hours=ttl),
            }
            if self.persistence.has_cache_entry(query_text=query_text):
                updated = self.persistence.update_cache_entry(**values)
                logger.info("Cache store updated %d entries", updated)
                return StoreOutcome.UPDATED
            entry_id = self.persistence.insert_cache_entry(**values)
            logger.info("Cache store added entry=%d", entry_id)
            return StoreOutcome.ADDED

    def _fresh_entry(self, query_text: str) -> CacheEntry | None:
        now = self.clock()
        return self.persistence.find_cache_entry(
            query_text=query_text, fresh_after=now - self.max_age, now=now
        )

    def _query_vector(
        self,
        query_text: str,
        query_embedding: bytes | None,
        model: str | None,
        provider: ProviderName | str | None,
    ) -> tuple[bytes, str]:
        """The query vector and the model it belongs to.

        A caller-supplied embedding without a model is taken to come from the
        model the gateway would resolve for *provider*.
        """
        if query_embedding is None:
            generated = self.gateway.embed(query_text, provider=provider)
            return generated.vector, generated.model
        if not is_valid(query_embedding):
            raise InvalidEmbeddingError("Query embedding is invalid.")
        return query_embedding, model or self.gateway.resolve(provider).model

    def purge(self, max_age_hours: float | None = None) -> int:
        """Delete entries older than *max_age_hours* or past their TTL."""
        hours = self.settings.cache_max_age_hours if max_age_hours is None else max_age_hours
        if hours < 0:
            raise InvalidQueryError(f"max_age_hours must be >= 0, got {max_age_hours}")
        now = self.clock()
        with self._write_lock:
            deleted = self.persistence.delete_expired_cache_entries(
                created_before=now - timedelta(hours=hours), now=now
            )
        logger.info("Cache purge removed %d entries", deleted)
        return deleted

    def delete(
        self,
        *,
        entry_id: int | None = None,
        query_text: str | None = None,
        delete_all: bool = False,
    ) -> int:
        if entry_id is None and query_text is None and not delete_all:
            raise InvalidQueryError("Provide entry_id, query_text or delete_all.")
        with self._write_lock:
            deleted = self.persistence.delete_cache_entries(
                entry_id=entry_id, query_text=query_text, delete_all=delete_all
            )
        logger.info("Cache delete removed %d entries", deleted)
        return deleted

    def stats(self) -> CacheStats:
        return self.persistence.cache_stats(now=self.clock())
