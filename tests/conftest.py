from __future__ import annotations

from pathlib import Path

import pytest

from rag_retrieval.storage import DuckDBStorage

_PROVIDER_ENV_VARS = (
    "OPENAI_API_KEY",
    "OPENAI_BASE_URL",
    "OPENAI_EMBEDDING_MODEL",
    "OPENAI_ACTIVE",
    "OPENAI_EMBEDDING_DIM",
    "GEMINI_API_KEY",
    "GOOGLE_API_KEY",
    "GEMINI_EMBEDDING_MODEL",
    "GEMINI_BASE_URL",
    "GEMINI_ACTIVE",
    "GEMINI_EMBEDDING_DIM",
    "AZURE_OPENAI_API_KEY",
    "AZURE_OPENAI_ENDPOINT",
    "AZURE_OPENAI_EMBEDDING_DEPLOYMENT",
    "AZURE_OPENAI_ACTIVE",
    "AZURE_OPENAI_API_VERSION",
    "RAG_ENV",
    "RAG_MOCK_MODE",
    "RAG_DEFAULT_PROVIDER",
    "RAG_DEFAULT_TOP_K",
    "RAG_SIMILARITY_THRESHOLD",
    "RAG_CACHE_SIMILARITY_THRESHOLD",
    "RAG_CACHE_MAX_AGE_HOURS",
    "RAG_PROVIDER_TIMEOUT_SECONDS",
    "RAG_SIMILARITY_BACKEND",
    "RAG_MOCK_DIMENSIONS",
    "RAG_SEARCH_RETRIES",
    "RAG_RETRIEVAL_DB_PATH",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch) -> None:
    """Keep real credentials and local overrides out of every test."""
    for name in _PROVIDER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def storage(tmp_path: Path):
    store = DuckDBStorage(str(tmp_path / "index.duckdb"))
    yield store
    store.close()
