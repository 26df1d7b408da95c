"""Tests for the REST endpoints."""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr

import rag_retrieval.server as server_module
from rag_retrieval.config import RetrievalSettings, StaticConfigStore
from rag_retrieval.embeddings import EmbeddingGateway
from rag_retrieval.errors import ProviderUnavailableError
from rag_retrieval.providers import ProviderConfig, ProviderName
from rag_retrieval.server import app
from rag_retrieval.service import RetrievalService
from rag_retrieval.storage import DuckDBStorage


@pytest.fixture()
def db_path(tmp_path: Path, monkeypatch):
    """Mock-mode service on a fresh database; returns its path."""
    monkeypatch.setenv("RAG_MOCK_MODE", "true")
    monkeypatch.setenv("RAG_MOCK_DIMENSIONS", "32")
    monkeypatch.setenv("RAG_SIMILARITY_BACKEND", "python")
    path = str(tmp_path / "index.duckdb")
    yield path
    server_module.reset_services()


@pytest.fixture()
def indexed_db(db_path: str) -> str:
    service = server_module._get_service(db_path)
    doc_id = service.storage.add_document("faq.md", status="completed")
    service.embedder.write_chunk(
        document_id=doc_id,
        chunk_index=0,
        content="Refunds are issued within 30 days of purchase.",
        notes="refund window",
    )
    service.embedder.write_chunk(
        document_id=doc_id,
        chunk_index=1,
        content="Standard shipping takes five business days.",
    )
    return db_path


class _FailingAdapter:
    provider = ProviderName.OPENAI

    def supports_model(self, model: str) -> bool:
        return True

    def generate_embedding(self, text, model, config, *, timeout=None) -> list[float]:
        raise ProviderUnavailableError("openai", "upstream 500", status_code=500)


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


def test_search_returns_ranked_results(indexed_db: str) -> None:
    client = TestClient(app)

    response = client.post(
        "/api/search",
        json={
            "query": "Refunds are issued within 30 days of purchase.",
            "top_k": 5,
            "similarity_threshold": 0.9,
            "db_path": indexed_db,
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 1
    hit = data["results"][0]
    assert hit["best_field"] == "content"
    assert hit["max_similarity"] == pytest.approx(1.0, abs=1e-6)
    assert hit["metadata"]["file_name"] == "faq.md"
    assert hit["metadata"]["provider"] == "mock"


def test_search_without_matches_is_empty_success(indexed_db: str) -> None:
    client = TestClient(app)

    response = client.post(
        "/api/search",
        json={"query": "quarterly revenue", "similarity_threshold": 0.99, "db_path": indexed_db},
    )

    assert response.status_code == 200
    assert response.json()["results"] == []


@pytest.mark.parametrize(
    "payload",
    [
        {"query": "refunds", "similarity_threshold": 1.01},
        {"query": "refunds", "top_k": 51},
        {"query": "   "},
        {"query": "refunds", "provider": "cohere"},
    ],
)
def test_search_rejects_invalid_requests(db_path: str, payload: dict) -> None:
    client = TestClient(app)

    response = client.post("/api/search", json={**payload, "db_path": db_path})

    assert response.status_code == 400
    assert "error" in response.json()


def test_search_reports_missing_provider(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("RAG_ENV", "production")
    client = TestClient(app)
    try:
        response = client.post(
            "/api/search",
            json={"query": "refunds", "db_path": str(tmp_path / "prod.duckdb")},
        )
    finally:
        server_module.reset_services()

    assert response.status_code == 503
    assert response.json()["error_type"] == "no_provider"


def test_search_reports_provider_failure(tmp_path: Path, monkeypatch) -> None:
    settings = RetrievalSettings(similarity_backend="python")
    gateway = EmbeddingGateway(
        StaticConfigStore(
            ProviderConfig(
                provider=ProviderName.OPENAI,
                model="text-embedding-3-small",
                api_key=SecretStr("sk-test"),
            )
        ),
        settings=settings,
        adapters={ProviderName.OPENAI: _FailingAdapter()},
    )
    storage = DuckDBStorage(str(tmp_path / "failing.duckdb"))
    service = RetrievalService(storage, gateway=gateway)
    monkeypatch.setattr(server_module, "_get_service", lambda db_path: service)
    client = TestClient(app)

    response = client.post("/api/search", json={"query": "refunds"})
    storage.close()

    assert response.status_code == 502
    body = response.json()
    assert body["error_type"] == "provider_failed"
    assert "upstream 500" in body["error"]


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


def test_cache_store_lookup_and_stats(db_path: str) -> None:
    client = TestClient(app)

    stored = client.post(
        "/api/cache",
        json={"query": "refund policy?", "response": "30 days", "db_path": db_path},
    )
    assert stored.status_code == 200
    assert stored.json()["outcome"] == "added"

    again = client.post(
        "/api/cache",
        json={"query": "refund policy?", "response": "45 days", "db_path": db_path},
    )
    assert again.json()["outcome"] == "skipped"

    hit = client.post("/api/cache/lookup", json={"query": "refund policy?", "db_path": db_path})
    assert hit.status_code == 200
    assert hit.json()["hit"] is True
    assert hit.json()["response"] == "30 days"
    assert hit.json()["exact"] is True

    miss = client.post(
        "/api/cache/lookup",
        json={"query": "shipping times?", "db_path": db_path},
    )
    assert miss.json() == {"hit": False, "response": None}

    stats = client.get("/api/cache/stats", params={"db_path": db_path})
    assert stats.status_code == 200
    assert stats.json()["total_entries"] == 1
    assert stats.json()["avg_embedding_size"] == 128.0


def test_cache_purge_and_delete(db_path: str) -> None:
    client = TestClient(app)
    client.post("/api/cache", json={"query": "a?", "response": "A", "db_path": db_path})
    client.post("/api/cache", json={"query": "b?", "response": "B", "db_path": db_path})

    purged = client.post("/api/cache/purge", json={"db_path": db_path})
    assert purged.json() == {"deleted": 0}

    deleted = client.delete("/api/cache", params={"query": "a?", "db_path": db_path})
    assert deleted.json() == {"deleted": 1}

    everything = client.delete("/api/cache", params={"all": "true", "db_path": db_path})
    assert everything.json() == {"deleted": 1}

    nothing = client.delete("/api/cache", params={"db_path": db_path})
    assert nothing.status_code == 400


def test_cache_lookup_rejects_bad_threshold(db_path: str) -> None:
    client = TestClient(app)

    response = client.post(
        "/api/cache/lookup",
        json={"query": "refunds", "threshold": 2.0, "db_path": db_path},
    )

    assert response.status_code == 400


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


def test_providers_listing_and_test_embedding(db_path: str, monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-do-not-leak")
    client = TestClient(app)

    listing = client.get("/api/providers", params={"db_path": db_path})
    assert listing.status_code == 200
    providers = listing.json()["providers"]
    assert providers[0]["provider"] == "openai"
    assert providers[0]["available"] is True
    assert "sk-do-not-leak" not in listing.text

    embedded = client.post(
        "/api/providers/test-embedding",
        json={"text": "Hello, world!", "db_path": db_path},
    )
    assert embedded.status_code == 200
    assert embedded.json()["provider"] == "mock"
    assert embedded.json()["dimension"] == 32


def test_test_all_providers_skips_unconfigured(db_path: str) -> None:
    client = TestClient(app)

    response = client.post("/api/providers/test-all", json={"db_path": db_path})

    assert response.status_code == 200
    results = response.json()["results"]
    assert [row["provider"] for row in results] == ["openai", "gemini", "azure_openai"]
    assert all(row["skipped"] for row in results)
