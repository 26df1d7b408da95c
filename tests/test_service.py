"""Tests for the retrieval service facade."""

from __future__ import annotations

import json
from typing import Any

import pytest
from pydantic import SecretStr
from tenacity import wait_none

from rag_retrieval.cache import StoreOutcome
from rag_retrieval.config import RetrievalSettings, StaticConfigStore
from rag_retrieval.embeddings import EmbeddingGateway
from rag_retrieval.errors import (
    InvalidQueryError,
    ProviderUnavailableError,
    RetrievalFailedError,
    UnsupportedModelError,
)
from rag_retrieval.providers import MockAdapter, ProviderConfig, ProviderName
from rag_retrieval.service import RetrievalService, is_transient
from rag_retrieval.storage import DuckDBStorage
from rag_retrieval.vectors import encode_vector


class _FlakyAdapter:
    """Fails a fixed number of times, then returns a constant vector."""

    provider = ProviderName.OPENAI

    def __init__(self, failures: int, error: Exception | None = None) -> None:
        self.failures = failures
        self.error = error or ProviderUnavailableError("openai", "503 upstream", status_code=503)
        self.calls = 0

    def supports_model(self, model: str) -> bool:
        return True

    def generate_embedding(self, text, model, config, *, timeout=None) -> list[float]:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return [1.0, 0.0]


def _service(
    storage: DuckDBStorage,
    adapter: Any,
    **settings_overrides: Any,
) -> RetrievalService:
    settings = RetrievalSettings(similarity_backend="python", **settings_overrides)
    config_store = StaticConfigStore(
        ProviderConfig(
            provider=ProviderName.OPENAI,
            model="text-embedding-3-small",
            api_key=SecretStr("sk-secret-value"),
        )
    )
    gateway = EmbeddingGateway(
        config_store,
        settings=settings,
        adapters={ProviderName.OPENAI: adapter, ProviderName.MOCK: MockAdapter(dimensions=8)},
    )
    service = RetrievalService(storage, gateway=gateway)
    service.retry_wait = wait_none()
    return service


def test_is_transient_only_for_provider_failures() -> None:
    unavailable = ProviderUnavailableError("openai", "down")

    assert is_transient(unavailable)
    assert is_transient(RetrievalFailedError("search failed", unavailable))
    assert not is_transient(RetrievalFailedError("search failed", UnsupportedModelError("openai", "x")))
    assert not is_transient(InvalidQueryError("bad"))


def test_search_does_not_retry_by_default(storage: DuckDBStorage) -> None:
    adapter = _FlakyAdapter(failures=1)
    service = _service(storage, adapter)

    with pytest.raises(RetrievalFailedError):
        service.search("vacation policy", top_k=3)
    assert adapter.calls == 1


def test_search_retries_transient_failures_when_enabled(storage: DuckDBStorage) -> None:
    adapter = _FlakyAdapter(failures=2)
    service = _service(storage, adapter, search_retries=2)

    assert service.search("vacation policy", top_k=3) == []
    assert adapter.calls == 3


def test_search_gives_up_after_configured_retries(storage: DuckDBStorage) -> None:
    adapter = _FlakyAdapter(failures=5)
    service = _service(storage, adapter, search_retries=1)

    with pytest.raises(RetrievalFailedError):
        service.search("vacation policy", top_k=3)
    assert adapter.calls == 2


def test_search_does_not_retry_permanent_errors(storage: DuckDBStorage) -> None:
    adapter = _FlakyAdapter(failures=5, error=UnsupportedModelError("openai", "text-embedding-3-small"))
    service = _service(storage, adapter, search_retries=3)

    with pytest.raises(RetrievalFailedError):
        service.search("vacation policy", top_k=3)
    assert adapter.calls == 1


def test_cache_lookup_tries_exact_match_first(storage: DuckDBStorage) -> None:
    adapter = _FlakyAdapter(failures=0)
    service = _service(storage, adapter)

    assert service.cache_store("refund policy?", "30 days") is StoreOutcome.ADDED
    calls_after_store = adapter.calls

    assert service.cache_lookup("refund policy?") == "30 days"
    assert adapter.calls == calls_after_store

    # Every query embeds to the same vector, so a different text is a semantic hit.
    assert service.cache_lookup("refunds?") == "30 days"
    assert adapter.calls == calls_after_store + 1


def test_list_providers_hides_credentials(storage: DuckDBStorage) -> None:
    service = _service(storage, _FlakyAdapter(failures=0))

    rows = service.list_providers()

    assert [row["provider"] for row in rows] == ["openai", "gemini", "azure_openai"]
    assert rows[0]["available"] is True
    assert rows[0]["model"] == "text-embedding-3-small"
    assert rows[1]["configured"] is False
    assert "sk-secret-value" not in json.dumps(rows)


def test_test_embedding_reports_dimension(storage: DuckDBStorage) -> None:
    service = _service(storage, _FlakyAdapter(failures=0))

    result = service.test_embedding("Hello, world!")

    assert result["provider"] == "openai"
    assert result["dimension"] == 2
    assert result["preview"] == "[1.000000, 0.000000]"

    with pytest.raises(InvalidQueryError):
        service.test_embedding("Hello", provider="cohere")


def test_write_chunk_embeds_every_present_field(storage: DuckDBStorage) -> None:
    adapter = _FlakyAdapter(failures=0)
    service = _service(storage, adapter)
    doc_id = storage.add_document("policy.md", status="completed")

    chunk_id = service.embedder.write_chunk(
        document_id=doc_id,
        chunk_index=0,
        content="Refunds within 30 days.",
        details="Applies to unopened items.",
    )
    assert storage.embedded_fields(chunk_id, model="text-embedding-3-small") == {
        "content",
        "details",
    }
    assert adapter.calls == 2

    service.embedder.write_chunk(
        document_id=doc_id,
        chunk_index=0,
        content="Refunds within 30 days.",
        details="Applies to all items.",
        chunk_id=chunk_id,
    )
    assert adapter.calls == 3


def test_embed_chunks_backfills_missing_fields(storage: DuckDBStorage) -> None:
    adapter = _FlakyAdapter(failures=0)
    service = _service(storage, adapter)
    doc_id = storage.add_document("policy.md", status="completed")
    chunk_id = storage.upsert_chunk(
        document_id=doc_id,
        chunk_index=0,
        content="Refunds within 30 days.",
        header_context="Returns",
        notes=None,
        details=None,
    )

    first = service.embedder.embed_chunks([chunk_id])
    second = service.embedder.embed_chunks([chunk_id])

    assert first.embeddings_written == 2
    assert first.fields == {chunk_id: ["content", "header_context"]}
    assert second.embeddings_written == 0
    assert adapter.calls == 2


class _RewritingAdapter:
    """Rewrites the chunk the first time it is asked to embed its old text."""

    provider = ProviderName.OPENAI

    def __init__(self, storage: DuckDBStorage) -> None:
        self.storage = storage
        self.chunk_id: int | None = None
        self.document_id: int | None = None

    def supports_model(self, model: str) -> bool:
        return True

    def generate_embedding(self, text, model, config, *, timeout=None) -> list[float]:
        if text == "old text" and self.chunk_id is not None:
            self.storage.upsert_chunk(
                document_id=self.document_id,
                chunk_index=0,
                content="new text",
                chunk_id=self.chunk_id,
            )
            return [1.0, 0.0]
        return [0.0, 1.0]


def test_chunk_rewritten_during_embedding_keeps_no_stale_vector(storage: DuckDBStorage) -> None:
    adapter = _RewritingAdapter(storage)
    service = _service(storage, adapter)
    doc_id = storage.add_document("policy.md", status="completed")
    chunk_id = storage.upsert_chunk(document_id=doc_id, chunk_index=0, content="old text")
    adapter.chunk_id, adapter.document_id = chunk_id, doc_id

    first = service.embedder.embed_chunks([chunk_id])

    assert storage.get_chunk(chunk_id).content == "new text"
    assert first.embeddings_written == 0
    assert storage.embedded_fields(chunk_id, model="text-embedding-3-small") == set()

    adapter.chunk_id = None
    second = service.embedder.embed_chunks([chunk_id])

    assert second.embeddings_written == 1
    rows = list(storage.iter_embedded_fields(fields=["content"], model="text-embedding-3-small"))
    assert [row.embedding for row in rows] == [encode_vector([0.0, 1.0])]


def test_test_all_providers_reports_each_provider(storage: DuckDBStorage) -> None:
    service = _service(storage, _FlakyAdapter(failures=0))

    rows = {row["provider"]: row for row in service.test_all_providers("Hello, world!")}

    assert rows["openai"]["success"] is True
    assert rows["openai"]["dimension"] == 2
    assert rows["gemini"]["skipped"] is True
    assert rows["azure_openai"]["skipped"] is True


def test_test_all_providers_records_failures(storage: DuckDBStorage) -> None:
    service = _service(storage, _FlakyAdapter(failures=5))

    rows = service.test_all_providers("Hello, world!")

    assert rows[0]["provider"] == "openai"
    assert rows[0]["success"] is False
    assert rows[0]["skipped"] is False
    assert "503 upstream" in rows[0]["error"]
