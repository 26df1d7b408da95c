"""
DuckDB storage backend for documents, chunks, field embeddings and the
semantic cache.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterable, Iterator

import duckdb

from .base import (
    CHUNK_FIELDS,
    CacheEntry,
    CacheStats,
    ChunkField,
    ChunkRecord,
    DocumentRecord,
    DocumentStatus,
    EmbeddedField,
)

_DOCUMENT_STATUSES: tuple[str, ...] = ("pending", "processing", "completed", "failed")
_CACHE_COLUMNS = "id, query_text, query_embedding, model, response_text, created_at, expires_at"


def _check_fields(fields: Iterable[str]) -> list[str]:
    selected = list(dict.fromkeys(fields))
    for field in selected:
        if field not in CHUNK_FIELDS:
            raise ValueError(f"Unknown chunk field: {field!r}")
    return selected


class DuckDBStorage:
    """DuckDB-backed persistence shared by search, indexing and the cache.

    One connection per instance; every statement runs under a lock so the
    cache can be used from concurrent request threads.
    """

    def __init__(
        self,
        db_path: str,
        *,
        read_only: bool = False,
        initialize: bool = True,
    ) -> None:
        self.db_path = str(Path(db_path).expanduser().resolve())
        self.read_only = read_only
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = duckdb.connect(self.db_path, read_only=read_only)
        self._lock = threading.RLock()
        if initialize and not read_only:
            self.initialize()

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        with self._lock:
            self._conn.close()

    def initialize(self) -> None:
        with self._lock:
            for sequence in ("documents_id_seq", "chunks_id_seq", "semantic_cache_id_seq"):
                self._conn.execute(f"CREATE SEQUENCE IF NOT EXISTS {sequence} START 1")
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY DEFAULT nextval('documents_id_seq'),
                    file_name VARCHAR NOT NULL,
                    path VARCHAR,
                    status VARCHAR NOT NULL DEFAULT 'pending',
                    uploaded_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chunks (
                    id INTEGER PRIMARY KEY DEFAULT nextval('chunks_id_seq'),
                    document_id INTEGER NOT NULL,
                    chunk_index INTEGER NOT NULL,
                    content VARCHAR NOT NULL,
                    header_context VARCHAR,
                    notes VARCHAR,
                    details VARCHAR,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chunk_embeddings (
                    chunk_id INTEGER NOT NULL,
                    field VARCHAR NOT NULL,
                    model VARCHAR NOT NULL,
                    embedding BLOB NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (chunk_id, field, model)
                );
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS semantic_cache (
                    id INTEGER PRIMARY KEY DEFAULT nextval('semantic_cache_id_seq'),
                    query_text VARCHAR NOT NULL,
                    query_embedding BLOB NOT NULL,
                    model VARCHAR NOT NULL,
                    response_text VARCHAR NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    expires_at TIMESTAMP NOT NULL
                );
                """
            )

    # -- documents -------------------------------------------------------

    def add_document(
        self,
        file_name: str,
        *,
        path: str | None = None,
        status: DocumentStatus = "pending",
    ) -> int:
        self._check_status(status)
        with self._lock:
            row = self._conn.execute(
                "INSERT INTO documents (file_name, path, status) VALUES (?, ?, ?) RETURNING id",
                [file_name, path, status],
            ).fetchone()
        if row is None:
            raise RuntimeError(f"Failed to create document: {file_name}")
        return int(row[0])

    def set_document_status(self, document_id: int, status: DocumentStatus) -> None:
        self._check_status(status)
        with self._lock:
            self._conn.execute(
                "UPDATE documents SET status = ? WHERE id = ?",
                [status, document_id],
            )

    def get_document(self, document_id: int) -> DocumentRecord | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT id, file_name, status, path FROM documents WHERE id = ?",
                [document_id],
            ).fetchone()
        if row is None:
            return None
        return DocumentRecord(
            id=int(row[0]),
            file_name=str(row[1]),
            status=str(row[2]),  # type: ignore[arg-type]
            path=str(row[3]) if row[3] is not None else None,
        )

    # -- chunks ----------------------------------------------------------

    def upsert_chunk(
        self,
        *,
        document_id: int,
        chunk_index: int,
        content: str,
        header_context: str | None = None,
        notes: str | None = None,
        details: str | None = None,
        chunk_id: int | None = None,
    ) -> int:
        """Insert a chunk, or rewrite one and drop embeddings of changed fields.

        An embedding must always describe the current text of its field, so
        any field whose text changes loses its stored vectors for all models.
        """
        if not content or not content.strip():
            raise ValueError("Chunk content must be non-empty.")
        new_values: dict[str, str | None] = {
            "content": content,
            "header_context": header_context,
            "notes": notes,
            "details": details,
        }
        with self._lock:
            if chunk_id is None:
                row = self._conn.execute(
                    """
                    INSERT INTO chunks (document_id, chunk_index, content, header_context, notes, details)
                    VALUES (?, ?, ?, ?, ?, ?)
                    RETURNING id
                    """,
                    [document_id, chunk_index, content, header_context, notes, details],
                ).fetchone()
                if row is None:
                    raise RuntimeError("Failed to insert chunk")
                return int(row[0])

            current = self._fetch_chunk(chunk_id)
            if current is None:
                raise ValueError(f"No such chunk: {chunk_id}")
            changed = [
                field for field in CHUNK_FIELDS if getattr(current, field) != new_values[field]
            ]
            if changed:
                placeholders = ", ".join(["?"] * len(changed))
                self._conn.execute(
                    f"DELETE FROM chunk_embeddings WHERE chunk_id = ? AND field IN ({placeholders})",
                    [chunk_id, *changed],
                )
            self._conn.execute(
                """
                UPDATE chunks
                SET document_id = ?, chunk_index = ?, content = ?, header_context = ?,
                    notes = ?, details = ?, updated_at = now()
                WHERE id = ?
                """,
                [document_id, chunk_index, content, header_context, notes, details, chunk_id],
            )
            return chunk_id

    def get_chunk(self, chunk_id: int) -> ChunkRecord | None:
        with self._lock:
            return self._fetch_chunk(chunk_id)

    def get_chunks(self, chunk_ids: Iterable[int]) -> dict[int, ChunkRecord]:
        ids = sorted({int(cid) for cid in chunk_ids})
        if not ids:
            return {}
        placeholders = ", ".join(["?"] * len(ids))
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT id, document_id, chunk_index, content, header_context, notes, details
                FROM chunks
                WHERE id IN ({placeholders})
                """,
                ids,
            ).fetchall()
        return {int(row[0]): self._row_to_chunk(row) for row in rows}

    def count_chunks(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()
        return int(row[0]) if row else 0

    # -- embeddings ------------------------------------------------------

    def store_field_embedding(
        self,
        *,
        chunk_id: int,
        field: ChunkField,
        model: str,
        embedding: bytes,
        source_text: str | None = None,
    ) -> bool:
        """Write the single embedding for (chunk, field, model), replacing any previous one.

        With *source_text*, the write only happens while the field still holds
        that text; a chunk rewritten since it was read keeps no stale vector.
        Returns whether the row was written.
        """
        _check_fields([field])
        with self._lock:
            if source_text is not None:
                current = self._fetch_chunk(chunk_id)
                if current is None or current.field_text(field) != source_text:
                    return False
            self._conn.execute(
                """
                INSERT OR REPLACE INTO chunk_embeddings (chunk_id, field, model, embedding)
                VALUES (?, ?, ?, ?)
                """,
                [chunk_id, field, model, embedding],
            )
        return True

    def embedded_fields(self, chunk_id: int, *, model: str) -> set[ChunkField]:
        """Fields of *chunk_id* that already have an embedding for *model*."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT field FROM chunk_embeddings WHERE chunk_id = ? AND model = ?",
                [chunk_id, model],
            ).fetchall()
        return {str(row[0]) for row in rows}  # type: ignore[misc]

    def has_embeddings(self) -> bool:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) FROM chunk_embeddings").fetchone()
        return bool(row and int(row[0]) > 0)

    def iter_embedded_fields(
        self,
        *,
        fields: Iterable[ChunkField],
        model: str | None = None,
    ) -> Iterator[EmbeddedField]:
        """Yield embeddings of non-blank fields belonging to completed documents."""
        selected = _check_fields(fields)
        if not selected:
            return
        placeholders = ", ".join(["?"] * len(selected))
        field_text = (
            "CASE e.field "
            "WHEN 'content' THEN c.content "
            "WHEN 'header_context' THEN c.header_context "
            "WHEN 'notes' THEN c.notes "
            "WHEN 'details' THEN c.details END"
        )
        sql = f"""
            SELECT e.chunk_id, c.document_id, e.field, e.embedding, e.model
            FROM chunk_embeddings e
            JOIN chunks c ON c.id = e.chunk_id
            JOIN documents d ON d.id = c.document_id
            WHERE d.status = 'completed'
              AND e.field IN ({placeholders})
              AND length(trim(coalesce({field_text}, ''))) > 0
        """
        params: list[Any] = list(selected)
        if model is not None:
            sql += " AND e.model = ?"
            params.append(model)
        sql += " ORDER BY e.chunk_id, e.field"

        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        for row in rows:
            yield EmbeddedField(
                chunk_id=int(row[0]),
                document_id=int(row[1]),
                field=str(row[2]),  # type: ignore[arg-type]
                embedding=bytes(row[3]) if row[3] is not None else b"",
                model=str(row[4]),
            )

    # -- semantic cache --------------------------------------------------

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
        with self._lock:
            row = self._conn.execute(
                """
                INSERT INTO semantic_cache
                    (query_text, query_embedding, model, response_text, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?)
                RETURNING id
                """,
                [query_text, query_embedding, model, response_text, created_at, expires_at],
            ).fetchone()
        if row is None:
            raise RuntimeError("Failed to insert cache entry")
        return int(row[0])

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
        with self._lock:
            count_row = self._conn.execute(
                "SELECT COUNT(*) FROM semantic_cache WHERE query_text = ?",
                [query_text],
            ).fetchone()
            self._conn.execute(
                """
                UPDATE semantic_cache
                SET query_embedding = ?, model = ?, response_text = ?, created_at = ?, expires_at = ?
                WHERE query_text = ?
                """,
                [query_embedding, model, response_text, created_at, expires_at, query_text],
            )
        return int(count_row[0]) if count_row else 0

    def has_cache_entry(self, *, query_text: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM semantic_cache WHERE query_text = ? LIMIT 1",
                [query_text],
            ).fetchone()
        return row is not None

    def find_cache_entry(
        self,
        *,
        query_text: str,
        fresh_after: datetime,
        now: datetime,
    ) -> CacheEntry | None:
        with self._lock:
            row = self._conn.execute(
                f"""
                SELECT {_CACHE_COLUMNS}
                FROM semantic_cache
                WHERE query_text = ? AND created_at > ? AND expires_at > ?
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """,
                [query_text, fresh_after, now],
            ).fetchone()
        return self._row_to_cache_entry(row) if row is not None else None

    def list_fresh_cache_entries(
        self,
        *,
        fresh_after: datetime,
        now: datetime,
        model: str | None = None,
    ) -> list[CacheEntry]:
        sql = f"""
            SELECT {_CACHE_COLUMNS}
            FROM semantic_cache
            WHERE created_at > ? AND expires_at > ?
        """
        params: list[Any] = [fresh_after, now]
        if model is not None:
            sql += " AND model = ?"
            params.append(model)
        sql += " ORDER BY created_at DESC, id DESC"
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [self._row_to_cache_entry(row) for row in rows]

    def delete_expired_cache_entries(self, *, created_before: datetime, now: datetime) -> int:
        with self._lock:
            row = self._conn.execute(
                """
                DELETE FROM semantic_cache
                WHERE created_at <= ? OR expires_at <= ?
                RETURNING id
                """,
                [created_before, now],
            ).fetchall()
        return len(row)

    def delete_cache_entries(
        self,
        *,
        entry_id: int | None = None,
        query_text: str | None = None,
        delete_all: bool = False,
    ) -> int:
        if delete_all:
            sql, params = "DELETE FROM semantic_cache RETURNING id", []
        elif entry_id is not None:
            sql, params = "DELETE FROM semantic_cache WHERE id = ? RETURNING id", [entry_id]
        elif query_text is not None:
            sql, params = "DELETE FROM semantic_cache WHERE query_text = ? RETURNING id", [query_text]
        else:
            return 0
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return len(rows)

    def cache_stats(self, *, now: datetime) -> CacheStats:
        with self._lock:
            row = self._conn.execute(
                """
                SELECT
                    COUNT(*),
                    COUNT(*) FILTER (WHERE created_at >= ?),
                    COUNT(*) FILTER (WHERE created_at >= ?),
                    MIN(created_at),
                    MAX(created_at),
                    AVG(strlen(response_text)),
                    AVG(octet_length(query_embedding))
                FROM semantic_cache
                """,
                [now - timedelta(hours=1), now - timedelta(hours=24)],
            ).fetchone()
        if row is None:
            return CacheStats(0, 0, 0, None, None, None, None)
        return CacheStats(
            total_entries=int(row[0]),
            entries_last_hour=int(row[1]),
            entries_last_24_hours=int(row[2]),
            oldest_entry=row[3],
            newest_entry=row[4],
            avg_response_size=float(row[5]) if row[5] is not None else None,
            avg_embedding_size=float(row[6]) if row[6] is not None else None,
        )

    # -- helpers ---------------------------------------------------------

    def _fetch_chunk(self, chunk_id: int) -> ChunkRecord | None:
        row = self._conn.execute(
            """
            SELECT id, document_id, chunk_index, content, header_context, notes, details
            FROM chunks
            WHERE id = ?
            """,
            [chunk_id],
        ).fetchone()
        return self._row_to_chunk(row) if row is not None else None

    @staticmethod
    def _check_status(status: str) -> None:
        if status not in _DOCUMENT_STATUSES:
            raise ValueError(f"Unknown document status: {status!r}")

    @staticmethod
    def _row_to_chunk(row: tuple[Any, ...]) -> ChunkRecord:
        return ChunkRecord(
            id=int(row[0]),
            document_id=int(row[1]),
            chunk_index=int(row[2]),
            content=str(row[3]),
            header_context=row[4],
            notes=row[5],
            details=row[6],
        )

    @staticmethod
    def _row_to_cache_entry(row: tuple[Any, ...]) -> CacheEntry:
        return CacheEntry(
            id=int(row[0]),
            query_text=str(row[1]),
            query_embedding=bytes(row[2]),
            model=str(row[3]),
            response_text=str(row[4]),
            created_at=row[5],
            expires_at=row[6],
        )
