"""
Facade over search, cache and provider diagnostics used by the HTTP and CLI
layers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, TypeVar

from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)
from tenacity.wait import wait_base

from .cache import CacheHit, SemanticCache, StoreOutcome, utcnow
from .config import EnvironmentConfigStore, RetrievalSettings
from .embeddings import EmbeddingGateway
from .errors import (
    InvalidQueryError,
    ProviderUnavailableError,
    RetrievalError,
    RetrievalFailedError,
)
from .indexing import ChunkEmbedder
from .logging_config import get_logger
from .providers import PROVIDER_PRIORITY, ProviderName, ResolvedProvider
from .providers.base import require_text
from .search import RetrievalEngine, SearchResult, get_backend
from .storage import CacheStats, DuckDBStorage, ProviderConfigStore
from .vectors import describe_vector

logger = get_logger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """True for provider failures a later attempt may not hit."""
    if isinstance(exc, ProviderUnavailableError):
        return True
    return isinstance(exc, RetrievalFailedError) and isinstance(
        exc.cause, ProviderUnavailableError
    )


class RetrievalService:
    """Search, cache and diagnostics over one DuckDB store."""

    def __init__(
        self,
        storage: DuckDBStorage,
        *,
        config_store: ProviderConfigStore | None = None,
        settings: RetrievalSettings | None = None,
        gateway: EmbeddingGateway | None = None,
        document_gateway: EmbeddingGateway | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.storage = storage
        self.settings = settings or (gateway.settings if gateway else RetrievalSettings.from_env())
        self.config_store = config_store or (
            gateway.config_store if gateway else EnvironmentConfigStore()
        )
        self.gateway = gateway or EmbeddingGateway(self.config_store, settings=self.settings)
        if document_gateway is None:
            document_gateway = (
                gateway
                if gateway is not None
                else EmbeddingGateway(
                    self.config_store,
                    settings=self.settings,
                    selector=self.gateway.selector,
                    gemini_task_type="RETRIEVAL_DOCUMENT",
                )
            )
        backend = get_backend(self.settings.similarity_backend)
        self.engine = RetrievalEngine(storage, self.gateway, settings=self.settings, backend=backend)
        self.cache = SemanticCache(
            storage, self.gateway, settings=self.settings, backend=backend, clock=clock
        )
        self.embedder = ChunkEmbedder(storage, document_gateway)
        self.retry_wait: wait_base = wait_exponential_jitter(initial=0.5, max=8)

    def _call(self, fn: Callable[[], T]) -> T:
        attempts = self.settings.search_retries + 1
        if attempts <= 1:
            return fn()
        retryer = Retrying(
            retry=retry_if_exception(is_transient),
            stop=stop_after_attempt(attempts),
            wait=self.retry_wait,
            before_sleep=lambda state: logger.warning(
                "Provider call failed, retry %d/%d", state.attempt_number, attempts - 1
            ),
            reraise=True,
        )
        return retryer(fn)

    # -- search ----------------------------------------------------------

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
        return self._call(
            lambda: self.engine.search(
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
        )

    # -- cache -----------------------------------------------------------

    def cache_lookup_hit(
        self,
        query_text: str,
        *,
        threshold: float | None = None,
        exact_only: bool = False,
    ) -> CacheHit | None:
        """Exact text match first, then the best semantic match."""
        hit = self.cache.lookup(query_text, exact=True)
        if hit is not None or exact_only:
            return hit
        return self._call(lambda: self.cache.lookup(query_text, threshold=threshold))

    def cache_lookup(self, query_text: str, *, threshold: float | None = None) -> str | None:
        hit = self.cache_lookup_hit(query_text, threshold=threshold)
        return hit.response_text if hit is not None else None

    def cache_store(
        self,
        query_text: str,
        response: str,
        *,
        ttl_hours: float | None = None,
        overwrite: bool = False,
    ) -> StoreOutcome:
        return self._call(
            lambda: self.cache.store(
                query_text, response, ttl_hours=ttl_hours, overwrite=overwrite
            )
        )

    def purge_cache(self, max_age_hours: float | None = None) -> int:
        return self.cache.purge(max_age_hours)

    def delete_cache(
        self,
        *,
        entry_id: int | None = None,
        query_text: str | None = None,
        delete_all: bool = False,
    ) -> int:
        return self.cache.delete(entry_id=entry_id, query_text=query_text, delete_all=delete_all)

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    # -- providers -------------------------------------------------------

    def list_providers(self) -> list[dict[str, Any]]:
        """Configured providers in fallback order, without credentials."""
        configs = self.config_store.load_configs()
        available = set(self.gateway.selector.available_providers(configs))
        rows: list[dict[str, Any]] = []
        for priority, name in enumerate(PROVIDER_PRIORITY, start=1):
            config = configs.get(name)
            row: dict[str, Any] = {
                "provider": name.value,
                "priority": priority,
                "configured": config is not None,
                "available": name in available,
            }
            if config is not None:
                row.update(config.describe())
            rows.append(row)
        return rows

    def test_embedding(
        self,
        text: str,
        *,
        provider: ProviderName | str | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Embed *text* once and report what came back."""
        if provider is not None:
            try:
                provider = ProviderName.parse(provider)
            except ValueError as exc:
                raise InvalidQueryError(str(exc)) from exc
        embedding = self.gateway.embed(text, provider=provider, timeout=timeout)
        return {
            "provider": embedding.provider.value,
            "model": embedding.model,
            "dimension": embedding.dimension,
            "preview": describe_vector(embedding.vector, max_values=5),
        }

    def test_all_providers(
        self,
        text: str = "This is a test embedding.",
        *,
        timeout: float | None = None,
    ) -> list[dict[str, Any]]:
        """Embed *text* with every known provider, one row per provider.

        Each usable provider is called directly with no fallback; a failure is
        recorded in its row and the remaining providers are still tried.
        Unconfigured or inactive providers are reported as skipped.
        """
        require_text(text)
        configs = self.config_store.load_configs()
        available = set(self.gateway.selector.available_providers(configs))
        rows: list[dict[str, Any]] = []
        for name in PROVIDER_PRIORITY:
            config = configs.get(name)
            row: dict[str, Any] = {"provider": name.value, "success": False, "skipped": False}
            if config is None or name not in available:
                row.update(skipped=True, error="not configured or inactive")
                rows.append(row)
                continue
            resolved = ResolvedProvider(name, config, config.model)
            try:
                embedding = self.gateway.embed(text, resolved=resolved, timeout=timeout)
            except RetrievalError as exc:
                logger.warning("Provider test failed for %s: %s", name.value, exc)
                row.update(model=config.model, error=str(exc))
            else:
                row.update(
                    success=True,
                    model=embedding.model,
                    dimension=embedding.dimension,
                    preview=describe_vector(embedding.vector, max_values=5),
                )
            rows.append(row)
        return rows
