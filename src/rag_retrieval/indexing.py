"""
Chunk field embedding.

Keeps stored embeddings in step with chunk text: after a chunk is written,
every non-blank field without an embedding for the active model gets one.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .embeddings import EmbeddingGateway
from .logging_config import get_logger
from .providers import ProviderName
from .storage import ChunkField, DuckDBStorage

logger = get_logger(__name__)


@dataclass(frozen=True)
class EmbeddingRunResult:
    """Summary of one embedding pass."""

    chunks_seen: int
    embeddings_written: int
    provider: str
    model: str
    fields: dict[int, list[ChunkField]] = field(default_factory=dict)


class ChunkEmbedder:
    """Generate missing field embeddings for stored chunks."""

    def __init__(self, storage: DuckDBStorage, gateway: EmbeddingGateway) -> None:
        self.storage = storage
        self.gateway = gateway

    def write_chunk(
        self,
        *,
        document_id: int,
        chunk_index: int,
        content: str,
        header_context: str | None = None,
        notes: str | None = None,
        details: str | None = None,
        chunk_id: int | None = None,
        provider: ProviderName | str | None = None,
    ) -> int:
        """Insert or rewrite a chunk and embed the fields that need it."""
        stored_id = self.storage.upsert_chunk(
            document_id=document_id,
            chunk_index=chunk_index,
            content=content,
            header_context=header_context,
            notes=notes,
            details=details,
            chunk_id=chunk_id,
        )
        self.embed_chunks([stored_id], provider=provider)
        return stored_id

    def embed_chunks(
        self,
        chunk_ids: list[int],
        *,
        provider: ProviderName | str | None = None,
    ) -> EmbeddingRunResult:
        resolved = self.gateway.resolve(provider)
        chunks = self.storage.get_chunks(chunk_ids)
        written: dict[int, list[ChunkField]] = {}
        total = 0
        for chunk_id in sorted(chunks):
            chunk = chunks[chunk_id]
            existing = self.storage.embedded_fields(chunk_id, model=resolved.model)
            for field_name in chunk.present_fields():
                if field_name in existing:
                    continue
                text = chunk.field_text(field_name)
                if text is None:
                    continue
                embedding = self.gateway.embed(text, resolved=resolved)
                stored = self.storage.store_field_embedding(
                    chunk_id=chunk_id,
                    field=field_name,
                    model=embedding.model,
                    embedding=embedding.vector,
                    source_text=text,
                )
                if not stored:
                    logger.debug(
                        "Chunk %d field %s changed while embedding, vector dropped",
                        chunk_id,
                        field_name,
                    )
                    continue
                written.setdefault(chunk_id, []).append(field_name)
                total += 1

        logger.info(
            "Embedded %d fields across %d chunks with %s (model=%s)",
            total,
            len(chunks),
            resolved.provider.value,
            resolved.model,
        )
        return EmbeddingRunResult(
            chunks_seen=len(chunks),
            embeddings_written=total,
            provider=resolved.provider.value,
            model=resolved.model,
            fields=written,
        )
