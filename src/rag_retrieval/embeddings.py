"""
Embedding gateway: provider selection plus one adapter call.

Resolves the provider for a request, calls its adapter with the caller's
timeout and packs the result into the stored float32 byte layout.
"""

from __future__ import annotations

from dataclasses import dataclass

from .config import RetrievalSettings
from .errors import InvalidEmbeddingError
from .logging_config import get_logger
from .providers import (
    EmbeddingAdapter,
    ProviderName,
    ProviderSelector,
    ResolvedProvider,
    default_adapters,
)
from .providers.base import ProviderConfigSet, require_text
from .storage.base import ProviderConfigStore
from .vectors import encode_vector, is_valid

logger = get_logger(__name__)


@dataclass(frozen=True)
class GeneratedEmbedding:
    """A freshly generated vector and where it came from."""

    vector: bytes
    provider: ProviderName
    model: str

    @property
    def dimension(self) -> int:
        return len(self.vector) // 4


class EmbeddingGateway:
    """Generate embeddings with whichever provider the selector resolves."""

    def __init__(
        self,
        config_store: ProviderConfigStore,
        *,
        settings: RetrievalSettings | None = None,
        selector: ProviderSelector | None = None,
        adapters: dict[ProviderName, EmbeddingAdapter] | None = None,
        gemini_task_type: str = "RETRIEVAL_QUERY",
    ) -> None:
        self.settings = settings or RetrievalSettings.from_env()
        self.config_store = config_store
        self.selector = selector or ProviderSelector(
            mock_mode=self.settings.mock_mode,
            allow_mock_fallback=self.settings.allow_mock_fallback,
            mock_dimensions=self.settings.mock_dimensions,
        )
        self.adapters = adapters or default_adapters(
            mock_dimensions=self.settings.mock_dimensions,
            gemini_task_type=gemini_task_type,
        )

    def resolve(
        self,
        provider: ProviderName | str | None = None,
        *,
        configs: ProviderConfigSet | None = None,
    ) -> ResolvedProvider:
        """Pick the provider, config and model a call would use."""
        active_configs = configs if configs is not None else self.config_store.load_configs()
        preferred = provider if provider is not None else self.settings.default_provider
        return self.selector.resolve(preferred, active_configs)

    def embed(
        self,
        text: str,
        *,
        provider: ProviderName | str | None = None,
        timeout: float | None = None,
        configs: ProviderConfigSet | None = None,
        resolved: ResolvedProvider | None = None,
    ) -> GeneratedEmbedding:
        """Embed *text*; selector and adapter errors propagate unchanged."""
        require_text(text)
        if resolved is None:
            resolved = self.resolve(provider, configs=configs)
        adapter = self.adapters[resolved.provider]

        effective_timeout = timeout if timeout is not None else self.settings.provider_timeout_seconds
        logger.debug(
            "Embedding %d chars with %s (model=%s)",
            len(text),
            resolved.provider.value,
            resolved.model,
        )
        values = adapter.generate_embedding(
            text,
            resolved.model,
            resolved.config,
            timeout=effective_timeout,
        )
        try:
            vector = encode_vector(values)
        except ValueError as exc:
            raise InvalidEmbeddingError(
                f"{resolved.provider.value} returned an embedding that does not fit float32."
            ) from exc
        if not is_valid(vector):
            raise InvalidEmbeddingError(
                f"{resolved.provider.value} returned an empty or non-finite embedding."
            )
        return GeneratedEmbedding(vector=vector, provider=resolved.provider, model=resolved.model)
