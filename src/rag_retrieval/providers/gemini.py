"""
Google Gemini embeddings adapter.

Wraps the Google GenAI SDK. The response carries ``embeddings[0].values``
as a plain float list.
"""

from __future__ import annotations

import threading
from typing import Any, Callable

import httpx
from google.genai import Client as GenAIClient
from google.genai import errors as genai_errors
from google.genai.types import HttpOptions

from ..errors import ProviderUnavailableError, UnsupportedModelError
from ..logging_config import get_logger
from ..vectors import as_floats
from .base import ProviderConfig, ProviderName, require_text

logger = get_logger(__name__)

DEFAULT_MODEL = "models/embedding-001"
DEFAULT_DIM = 768

_KNOWN_MODELS = frozenset(
    {
        "embedding-001",
        "text-embedding-004",
        "gemini-embedding-001",
    }
)

ClientFactory = Callable[[ProviderConfig, "float | None"], Any]


def _default_client_factory(config: ProviderConfig, timeout: float | None) -> Any:
    api_key = config.api_key.get_secret_value() if config.api_key else None
    options: dict[str, Any] = {}
    if timeout is not None:
        options["timeout"] = int(timeout * 1000)
    if config.base_url:
        options["base_url"] = config.base_url
    return GenAIClient(api_key=api_key, http_options=HttpOptions(**options))


def _bare_model_name(model: str) -> str:
    return model.split("/", 1)[1] if model.startswith("models/") else model


class GeminiAdapter:
    """Generate embeddings via Google GenAI."""

    provider = ProviderName.GEMINI

    def __init__(
        self,
        *,
        client_factory: ClientFactory | None = None,
        task_type: str = "RETRIEVAL_QUERY",
    ) -> None:
        self._client_factory = client_factory or _default_client_factory
        self.task_type = task_type
        self._clients: dict[tuple[str | None, str | None, float | None], Any] = {}
        self._clients_lock = threading.Lock()

    def supports_model(self, model: str) -> bool:
        return _bare_model_name(model) in _KNOWN_MODELS

    def _client(self, config: ProviderConfig, timeout: float | None) -> Any:
        """One client per (api key, base url, timeout), reused across calls."""
        api_key = config.api_key.get_secret_value() if config.api_key else None
        key = (api_key, config.base_url, timeout)
        with self._clients_lock:
            client = self._clients.get(key)
            if client is None:
                client = self._client_factory(config, timeout)
                self._clients[key] = client
        return client

    def generate_embedding(
        self,
        text: str,
        model: str,
        config: ProviderConfig,
        *,
        timeout: float | None = None,
        task_type: str | None = None,
    ) -> list[float]:
        require_text(text)
        if not self.supports_model(model):
            raise UnsupportedModelError(self.provider.value, model)

        request_config: dict[str, Any] = {"task_type": task_type or self.task_type}
        if config.dimensions is not None:
            request_config["output_dimensionality"] = config.dimensions

        client = self._client(config, timeout)
        try:
            result = client.models.embed_content(
                model=model,
                contents=[text],
                config=request_config,
            )
        except genai_errors.APIError as exc:
            raise ProviderUnavailableError(
                self.provider.value,
                getattr(exc, "message", None) or str(exc),
                status_code=getattr(exc, "code", None),
            ) from exc
        except httpx.TimeoutException as exc:
            raise ProviderUnavailableError(self.provider.value, f"request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(self.provider.value, str(exc) or type(exc).__name__) from exc

        embeddings = getattr(result, "embeddings", None)
        if not embeddings:
            raise ProviderUnavailableError(self.provider.value, "response has no embeddings")
        raw_values = getattr(embeddings[0], "values", None)
        if not raw_values:
            raise ProviderUnavailableError(self.provider.value, "response has no embedding values")
        try:
            values = as_floats(list(raw_values))
        except ValueError as exc:
            raise ProviderUnavailableError(self.provider.value, str(exc)) from exc

        logger.info("Generated Gemini embedding with %d dimensions (model=%s)", len(values), model)
        return values
