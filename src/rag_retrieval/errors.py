"""
Error taxonomy for the retrieval engine.

Adapter and selector errors propagate unchanged; invalid stored vectors are
absorbed by the ranking loop and only surface through the similarity helpers.
"""

from __future__ import annotations


class RetrievalError(Exception):
    """Base class for every error raised by rag_retrieval."""


class InvalidQueryError(RetrievalError, ValueError):
    """Search or cache request rejected before any provider call."""


class UnsupportedModelError(RetrievalError, ValueError):
    """The provider does not recognize the requested embedding model."""

    def __init__(self, provider: str, model: str) -> None:
        self.provider = provider
        self.model = model
        super().__init__(f"Model {model!r} is not supported by provider {provider!r}.")


class ProviderUnavailableError(RetrievalError):
    """Network, timeout or upstream failure while calling a provider.

    Retryable by the caller. Carries the upstream status code (``None`` when
    the request never got a response) and message.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        status_code: int | None = None,
    ) -> None:
        self.provider = provider
        self.message = message
        self.status_code = status_code
        status = f" (status {status_code})" if status_code is not None else ""
        super().__init__(f"{provider} embedding request failed{status}: {message}")


class NoProviderAvailableError(RetrievalError):
    """No active, credentialed provider is configured."""

    def __init__(self, message: str = "No embedding provider is configured.") -> None:
        super().__init__(message)


class InvalidEmbeddingError(RetrievalError, ValueError):
    """A vector buffer has the wrong length or non-finite components."""


class RetrievalFailedError(RetrievalError):
    """The whole search failed; ``cause`` holds the upstream error."""

    def __init__(self, message: str, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"{message}: {cause}")


__all__ = [
    "RetrievalError",
    "InvalidQueryError",
    "UnsupportedModelError",
    "ProviderUnavailableError",
    "NoProviderAvailableError",
    "InvalidEmbeddingError",
    "RetrievalFailedError",
]
