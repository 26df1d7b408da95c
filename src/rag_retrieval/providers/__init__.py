"""Embedding provider adapters and selection."""

from .azure import AzureOpenAIAdapter
from .base import (
    PROVIDER_PRIORITY,
    EmbeddingAdapter,
    ProviderConfig,
    ProviderConfigSet,
    ProviderName,
)
from .gemini import GeminiAdapter
from .mock import MockAdapter, mock_vector
from .openai import OpenAIAdapter
from .selector import ProviderSelector, ResolvedProvider


def default_adapters(
    *,
    mock_dimensions: int | None = None,
    gemini_task_type: str = "RETRIEVAL_QUERY",
) -> dict[ProviderName, EmbeddingAdapter]:
    """One adapter instance per provider.

    Gemini embeds queries and documents differently; indexing passes
    ``gemini_task_type="RETRIEVAL_DOCUMENT"``.
    """
    mock = MockAdapter(dimensions=mock_dimensions) if mock_dimensions else MockAdapter()
    return {
        ProviderName.OPENAI: OpenAIAdapter(),
        ProviderName.GEMINI: GeminiAdapter(task_type=gemini_task_type),
        ProviderName.AZURE_OPENAI: AzureOpenAIAdapter(),
        ProviderName.MOCK: mock,
    }


__all__ = [
    "PROVIDER_PRIORITY",
    "EmbeddingAdapter",
    "ProviderConfig",
    "ProviderConfigSet",
    "ProviderName",
    "AzureOpenAIAdapter",
    "GeminiAdapter",
    "MockAdapter",
    "OpenAIAdapter",
    "ProviderSelector",
    "ResolvedProvider",
    "default_adapters",
    "mock_vector",
]
