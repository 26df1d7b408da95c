"""
Azure OpenAI embeddings adapter.

Azure addresses models by deployment, authenticates with an ``api-key``
header and returns ``data[0].embedding`` as a plain float array.
"""

from __future__ import annotations

import httpx

from ..errors import ProviderUnavailableError, UnsupportedModelError
from ..logging_config import get_logger
from ..vectors import as_floats
from .base import ProviderConfig, ProviderName, require_text
from .http import first_data_embedding, post_json

logger = get_logger(__name__)

DEFAULT_API_VERSION = "2024-02-15-preview"
DEFAULT_DEPLOYMENT = "text-embedding-ada-002"


class AzureOpenAIAdapter:
    """Generate embeddings through an Azure OpenAI deployment."""

    provider = ProviderName.AZURE_OPENAI

    def __init__(self, *, client: httpx.Client | None = None) -> None:
        self._client = client or httpx.Client()

    def supports_model(self, model: str) -> bool:
        # Deployment names are operator-chosen; any non-blank name is addressable.
        return bool(model and model.strip()) and "/" not in model

    def generate_embedding(
        self,
        text: str,
        model: str,
        config: ProviderConfig,
        *,
        timeout: float | None = None,
    ) -> list[float]:
        require_text(text)
        deployment = config.deployment_name or model
        if not self.supports_model(deployment):
            raise UnsupportedModelError(self.provider.value, deployment)
        if not config.base_url:
            raise ProviderUnavailableError(self.provider.value, "no Azure endpoint configured")

        endpoint = config.base_url.rstrip("/")
        api_key = config.api_key.get_secret_value() if config.api_key else ""
        body = post_json(
            self._client,
            self.provider,
            f"{endpoint}/openai/deployments/{deployment}/embeddings",
            headers={"api-key": api_key},
            payload={"input": text},
            params={"api-version": config.api_version or DEFAULT_API_VERSION},
            timeout=timeout,
        )
        raw_values = first_data_embedding(self.provider, body)
        if not isinstance(raw_values, list) or not raw_values:
            raise ProviderUnavailableError(
                self.provider.value, "expected a numeric array in data[0].embedding"
            )
        try:
            values = as_floats(raw_values)
        except ValueError as exc:
            raise ProviderUnavailableError(self.provider.value, str(exc)) from exc

        logger.info(
            "Generated Azure OpenAI embedding with %d dimensions (deployment=%s)",
            len(values),
            deployment,
        )
        return values
