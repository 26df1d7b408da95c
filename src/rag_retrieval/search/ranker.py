"""
Per-chunk aggregation and ranking of field similarity scores.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..storage.base import CHUNK_FIELDS, ChunkField


@dataclass(frozen=True)
class FieldMatch:
    """Similarity of the query against one field of a chunk."""

    field: ChunkField
    similarity: float


@dataclass
class RankedChunk:
    """Best field scores collected for a single chunk."""

    chunk_id: int
    document_id: int
    matches: dict[ChunkField, float] = field(default_factory=dict)

    def add(self, field_name: ChunkField, similarity: float) -> None:
        current = self.matches.get(field_name)
        if current is None or similarity > current:
            self.matches[field_name] = similarity

    @property
    def max_similarity(self) -> float:
        return max(self.matches.values()) if self.matches else 0.0

    @property
    def matched_fields(self) -> list[FieldMatch]:
        # Equal scores keep field declaration order.
        ordered = sorted(
            self.matches.items(),
            key=lambda item: (-item[1], CHUNK_FIELDS.index(item[0])),
        )
        return [FieldMatch(field=name, similarity=score) for name, score in ordered]

    @property
    def best_field(self) -> ChunkField:
        return self.matched_fields[0].field


def rank_chunks(
    chunks: list[RankedChunk], *, threshold: float, limit: int
) -> list[RankedChunk]:
    """Keep field matches at or above *threshold*, order chunks by score, apply limit.

    A chunk with no field left after filtering is dropped.
    """
    kept: list[RankedChunk] = []
    for chunk in chunks:
        matches = {name: score for name, score in chunk.matches.items() if score >= threshold}
        if matches:
            kept.append(
                RankedChunk(chunk_id=chunk.chunk_id, document_id=chunk.document_id, matches=matches)
            )
    ordered = sorted(
        kept,
        key=lambda chunk: (-chunk.max_similarity, chunk.chunk_id, chunk.document_id),
    )
    return ordered[: max(limit, 0)]
