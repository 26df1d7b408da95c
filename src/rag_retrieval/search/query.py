"""
Multi-field retrieval: embed the query once, score every enabled chunk field
and merge the scores per chunk.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from typing import Any

from ..config import MAX_TOP_K, RetrievalSettings
from ..embeddings import EmbeddingGateway, GeneratedEmbedding
from ..errors import InvalidQueryError, RetrievalError, RetrievalFailedError
from ..logging_config import get_logger
from ..providers.base import ProviderName, require_text
from ..storage.base import ChunkField, ChunkStore
from .ranker import RankedChunk, rank_chunks
from .similarity import SimilarityBackend, get_backend

logger = get_logger(__name__)


@dataclass(frozen=True)
class SearchResult:
    """One ranked chunk returned to the caller."""

    chunk_id: int
    document_id: int
    best_field: ChunkField
    matched_fields: list[ChunkField]
    max_similarity: float
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "document_id": self.document_id,
            "best_field": self.best_field,
            "matched_fields": list(self.matched_fields),
            "max_similarity": self.max_similarity,
            "content": self.content,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class _SearchPlan:
    query_text: str
    top_k: int
    threshold: float
    provider: ProviderName | None
    fields: tuple[ChunkField, ...]
    include_metadata: bool
    timeout: float | None


class RetrievalEngine:
    """Rank stored chunk fields against a query embedding."""

    def __init__(
        self,
        chunk_store: ChunkStore,
        gateway: EmbeddingGateway,
        *,
        settings: RetrievalSettings | None = None,
        backend: SimilarityBackend | None = None,
    ) -> None:
        self.chunk_store = chunk_store
        self.gateway = gateway
        self.settings = settings or gateway.settings
        self.backend = backend or get_backend(self.settings.similarity_backend)

    def search(
        self,
        query_text: str,
        *,
        top_k: int | None = None,
        similarity_threshold: float | None = None,
        provider: ProviderName | str | None = None,
        include_header_context: bool = True,
        include_notes: bool = True,
        include_details: bool = True,
        include_metadata: bool = True,
        timeout: float | None = None,
    ) -> list[SearchResult]:
        """Return up to ``top_k`` chunks scoring at least ``similarity_threshold``.

        Raises ``InvalidQueryError`` before any provider call for empty text,
        an unknown provider or a threshold outside [0, 1]. Any failure while
        embedding the query raises ``RetrievalFailedError``.
        """
        plan = self._plan(
            query_text,
            top_k=top_k,
            similarity_threshold=similarity_threshold,
            provider=provider,
            include_header_context=include_header_context,
            include_notes=include_notes,
            include_details=include_details,
            include_metadata=include_metadata,
            timeout=timeout,
        )
        if plan.top_k <= 0:
            return []
        embedding = self._embed_query(plan)
        return self._rank(plan, embedding)

    async def asearch(
        self,
        query_text: str,
        *,
        top_k: int | None = None,
        similarity_threshold: float | None = None,
        provider: ProviderName | str | None = None,
        include_header_context: bool = True,
        include_notes: bool = True,
        include_details: bool = True,
        include_metadata: bool = True,
        timeout: float | None = None,
    ) -> list[SearchResult]:
        """Async variant of :meth:`search`; cancellable while the query is embedded."""
        plan = self._plan(
            query_text,
            top_k=top_k,
            similarity_threshold=similarity_threshold,
            provider=provider,
            include_header_context=include_header_context,
            include_notes=include_notes,
            include_details=include_details,
            include_metadata=include_metadata,
            timeout=timeout,
        )
        if plan.top_k <= 0:
            return []
        embedding = await asyncio.to_thread(self._embed_query, plan)
        return self._rank(plan, embedding)

    def _plan(
        self,
        query_text: str,
        *,
        top_k: int | None,
        similarity_threshold: float | None,
        provider: ProviderName | str | None,
        include_header_context: bool,
        include_notes: bool,
        include_details: bool,
        include_metadata: bool,
        timeout: float | None,
    ) -> _SearchPlan:
        require_text(query_text)

        threshold = (
            self.settings.default_similarity_threshold
            if similarity_threshold is None
            else float(similarity_threshold)
        )
        if math.isnan(threshold) or not 0.0 <= threshold <= 1.0:
            raise InvalidQueryError(
                f"similarity_threshold must be within [0, 1], got {similarity_threshold}"
            )

        provider_name: ProviderName | None = None
        if provider is not None:
            try:
                provider_name = ProviderName.parse(provider)
            except ValueError as exc:
                raise InvalidQueryError(str(exc)) from exc

        if timeout is not None and timeout <= 0:
            raise InvalidQueryError(f"timeout must be > 0, got {timeout}")

        limit = self.settings.default_top_k if top_k is None else int(top_k)
        if limit > MAX_TOP_K:
            logger.debug("Clamping top_k %d to %d", limit, MAX_TOP_K)
            limit = MAX_TOP_K

        fields: list[ChunkField] = ["content"]
        if include_header_context:
            fields.append("header_context")
        if include_notes:
            fields.append("notes")
        if include_details:
            fields.append("details")

        return _SearchPlan(
            query_text=query_text,
            top_k=limit,
            threshold=threshold,
            provider=provider_name,
            fields=tuple(fields),
            include_metadata=include_metadata,
            timeout=timeout,
        )

    def _embed_query(self, plan: _SearchPlan) -> GeneratedEmbedding:
        try:
            return self.gateway.embed(
                plan.query_text,
                provider=plan.provider,
                timeout=plan.timeout,
            )
        except RetrievalError as exc:
            logger.warning("Query embedding failed: %s", exc)
            raise RetrievalFailedError("Could not embed the search query", exc) from exc

    def _rank(self, plan: _SearchPlan, embedding: GeneratedEmbedding) -> list[SearchResult]:
        rows = list(
            self.chunk_store.iter_embedded_fields(fields=plan.fields, model=embedding.model)
        )
        scores = self.backend.similarities(embedding.vector, [row.embedding for row in rows])

        candidates: dict[int, RankedChunk] = {}
        skipped = 0
        for row, score in zip(rows, scores):
            if score is None:
                skipped += 1
                continue
            candidate = candidates.get(row.chunk_id)
            if candidate is None:
                candidate = RankedChunk(chunk_id=row.chunk_id, document_id=row.document_id)
                candidates[row.chunk_id] = candidate
            candidate.add(row.field, score)
        if skipped:
            logger.debug("Skipped %d invalid or mismatched embeddings", skipped)

        ranked = rank_chunks(list(candidates.values()), threshold=plan.threshold, limit=plan.top_k)
        results = self._materialize(ranked, embedding, include_metadata=plan.include_metadata)
        logger.info(
            "Search scored %d embeddings across %d chunks, returning %d results",
            len(rows),
            len(candidates),
            len(results),
        )
        return results

    def _materialize(
        self,
        ranked: list[RankedChunk],
        embedding: GeneratedEmbedding,
        *,
        include_metadata: bool,
    ) -> list[SearchResult]:
        if not ranked:
            return []
        chunks = self.chunk_store.get_chunks(chunk.chunk_id for chunk in ranked)
        file_names: dict[int, str | None] = {}
        results: list[SearchResult] = []
        for item in ranked:
            chunk = chunks.get(item.chunk_id)
            if chunk is None:
                continue
            metadata: dict[str, Any] = {}
            if include_metadata:
                if chunk.document_id not in file_names:
                    document = self.chunk_store.get_document(chunk.document_id)
                    file_names[chunk.document_id] = document.file_name if document else None
                metadata = {
                    "file_name": file_names[chunk.document_id],
                    "chunk_index": chunk.chunk_index,
                    "header_context": chunk.header_context,
                    "notes": chunk.notes,
                    "details": chunk.details,
                    "provider": embedding.provider.value,
                    "model": embedding.model,
                }
            results.append(
                SearchResult(
                    chunk_id=item.chunk_id,
                    document_id=item.document_id,
                    best_field=item.best_field,
                    matched_fields=[match.field for match in item.matched_fields],
                    max_similarity=item.max_similarity,
                    content=chunk.content,
                    metadata=metadata,
                )
            )
        return results
