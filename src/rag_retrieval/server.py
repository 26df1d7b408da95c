"""
FastAPI server exposing retrieval search, the semantic cache and provider
diagnostics.

Errors are returned as ``{"error": ...}`` bodies: invalid requests are 400,
a missing provider configuration is 503 and a failed provider call is 502.
An empty result list is a normal 200 response.
"""

import asyncio
from datetime import datetime
from typing import Any

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import MAX_TOP_K, resolve_db_path
from .errors import (
    InvalidEmbeddingError,
    InvalidQueryError,
    NoProviderAvailableError,
    ProviderUnavailableError,
    RetrievalFailedError,
    UnsupportedModelError,
)
from .logging_config import get_logger
from .service import RetrievalService
from .storage import DuckDBStorage

logger = get_logger(__name__)

app = FastAPI(title="rag-retrieval", description="Multi-provider semantic retrieval and response cache")

_services: dict[str, RetrievalService] = {}


def _get_service(db_path: str | None) -> RetrievalService:
    """Return the shared service for a database path, creating one if needed."""
    resolved = resolve_db_path(db_path)
    service = _services.get(resolved)
    if service is None:
        service = RetrievalService(DuckDBStorage(resolved))
        _services[resolved] = service
    return service


def reset_services() -> None:
    """Close and forget every cached service."""
    for service in _services.values():
        service.storage.close()
    _services.clear()


def _error_response(exc: Exception) -> JSONResponse:
    if isinstance(exc, InvalidQueryError):
        return JSONResponse({"error": str(exc)}, status_code=400)
    no_provider = isinstance(exc, NoProviderAvailableError) or (
        isinstance(exc, RetrievalFailedError) and isinstance(exc.cause, NoProviderAvailableError)
    )
    if no_provider:
        return JSONResponse(
            {"error": str(exc), "error_type": "no_provider"}, status_code=503
        )
    if isinstance(
        exc,
        (
            RetrievalFailedError,
            ProviderUnavailableError,
            UnsupportedModelError,
            InvalidEmbeddingError,
        ),
    ):
        return JSONResponse(
            {"error": str(exc), "error_type": "provider_failed"}, status_code=502
        )
    logger.exception("Unhandled error while serving request")
    return JSONResponse({"error": str(exc)}, status_code=500)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class SearchRequest(BaseModel):
    """Request model for search queries."""

    query: str
    top_k: int | None = None
    similarity_threshold: float | None = None
    provider: str | None = None
    include_header_context: bool = True
    include_notes: bool = True
    include_details: bool = True
    include_metadata: bool = True
    db_path: str | None = None


class CacheLookupRequest(BaseModel):
    """Request model for cache lookups."""

    query: str
    threshold: float | None = None
    exact_only: bool = False
    db_path: str | None = None


class CacheStoreRequest(BaseModel):
    """Request model for storing a response in the cache."""

    query: str
    response: str
    ttl_hours: float | None = None
    overwrite: bool = False
    db_path: str | None = None


class CachePurgeRequest(BaseModel):
    max_age_hours: float | None = None
    db_path: str | None = None


class TestEmbeddingRequest(BaseModel):
    text: str
    provider: str | None = None
    db_path: str | None = None


class TestAllProvidersRequest(BaseModel):
    text: str = "This is a test embedding."
    db_path: str | None = None


@app.post("/api/search")
async def search(request: SearchRequest):
    """Rank stored chunks against the query."""
    if request.top_k is not None and request.top_k > MAX_TOP_K:
        return JSONResponse(
            {"error": f"top_k must be at most {MAX_TOP_K}, got {request.top_k}"},
            status_code=400,
        )
    try:
        service = _get_service(request.db_path)
        results = await asyncio.to_thread(
            service.search,
            request.query,
            top_k=request.top_k,
            similarity_threshold=request.similarity_threshold,
            provider=request.provider,
            include_header_context=request.include_header_context,
            include_notes=request.include_notes,
            include_details=request.include_details,
            include_metadata=request.include_metadata,
        )
    except Exception as exc:
        return _error_response(exc)

    return {
        "query": request.query,
        "count": len(results),
        "results": [result.to_dict() for result in results],
    }


@app.post("/api/cache/lookup")
async def cache_lookup(request: CacheLookupRequest):
    """Exact match first, then the closest fresh entry above the threshold."""
    try:
        service = _get_service(request.db_path)
        hit = await asyncio.to_thread(
            service.cache_lookup_hit,
            request.query,
            threshold=request.threshold,
            exact_only=request.exact_only,
        )
    except Exception as exc:
        return _error_response(exc)

    if hit is None:
        return {"hit": False, "response": None}
    return {
        "hit": True,
        "response": hit.response_text,
        "entry_id": hit.entry.id,
        "model": hit.entry.model,
        "similarity": hit.similarity,
        "exact": hit.exact,
        "created_at": _iso(hit.entry.created_at),
        "expires_at": _iso(hit.entry.expires_at),
    }


@app.post("/api/cache")
async def cache_store(request: CacheStoreRequest):
    try:
        service = _get_service(request.db_path)
        outcome = await asyncio.to_thread(
            service.cache_store,
            request.query,
            request.response,
            ttl_hours=request.ttl_hours,
            overwrite=request.overwrite,
        )
    except Exception as exc:
        return _error_response(exc)
    return {"query": request.query, "outcome": outcome.value}


@app.delete("/api/cache")
async def cache_delete(
    entry_id: int | None = None,
    query: str | None = None,
    all: bool = False,
    db_path: str | None = None,
):
    """Delete cache entries by id, by exact query text, or all of them."""
    try:
        service = _get_service(db_path)
        deleted = await asyncio.to_thread(
            service.delete_cache, entry_id=entry_id, query_text=query, delete_all=all
        )
    except Exception as exc:
        return _error_response(exc)
    return {"deleted": deleted}


@app.post("/api/cache/purge")
async def cache_purge(request: CachePurgeRequest):
    try:
        service = _get_service(request.db_path)
        deleted = await asyncio.to_thread(service.purge_cache, request.max_age_hours)
    except Exception as exc:
        return _error_response(exc)
    return {"deleted": deleted}


@app.get("/api/cache/stats")
async def cache_stats(db_path: str | None = None):
    try:
        service = _get_service(db_path)
        stats = await asyncio.to_thread(service.cache_stats)
    except Exception as exc:
        return _error_response(exc)
    return {
        "total_entries": stats.total_entries,
        "entries_last_hour": stats.entries_last_hour,
        "entries_last_24_hours": stats.entries_last_24_hours,
        "oldest_entry": _iso(stats.oldest_entry),
        "newest_entry": _iso(stats.newest_entry),
        "avg_response_size": stats.avg_response_size,
        "avg_embedding_size": stats.avg_embedding_size,
    }


@app.get("/api/providers")
async def list_providers(db_path: str | None = None):
    """Configured providers in fallback order, without credentials."""
    try:
        service = _get_service(db_path)
        providers: list[dict[str, Any]] = service.list_providers()
    except Exception as exc:
        return _error_response(exc)
    return {"providers": providers}


@app.post("/api/providers/test-embedding")
async def test_embedding(request: TestEmbeddingRequest):
    try:
        service = _get_service(request.db_path)
        result = await asyncio.to_thread(
            service.test_embedding, request.text, provider=request.provider
        )
    except Exception as exc:
        return _error_response(exc)
    return result


@app.post("/api/providers/test-all")
async def test_all_providers(request: TestAllProvidersRequest):
    """Embed the text with every configured provider and report each outcome."""
    try:
        service = _get_service(request.db_path)
        results = await asyncio.to_thread(service.test_all_providers, request.text)
    except Exception as exc:
        return _error_response(exc)
    return {"results": results}


def run_server(host: str = "127.0.0.1", port: int = 8000) -> None:
    """Run the API with uvicorn."""
    import uvicorn

    uvicorn.run(app, host=host, port=port)
