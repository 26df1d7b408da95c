"""
OpenAI embeddings adapter.

Requests ``encoding_format=base64`` and decodes ``data[0].embedding`` from
base64-encoded little-endian float32 bytes.
"""

from __future__ import annotations

import base64
import binascii

import httpx

from ..errors import ProviderUnavailableError, UnsupportedModelError
from ..logging_config import get_logger
from ..vectors import decode_vector
from .base import ProviderConfig, ProviderName, require_text
from .http import first_data_embedding, post_json

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "text-embedding-3-small"

MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class OpenAIAdapter:
    """Generate embeddings through the OpenAI REST API."""

    provider = ProviderName.OPENAI

    def __init__(self, *, client: httpx.Client | None = None) -> None:
        self._client = client or httpx.Client()

    def supports_model(self, model: str) -> bool:
        return model in MODEL_DIMENSIONS

    def generate_embedding(
        self,
        text: str,
        model: str,
        config: ProviderConfig,
        *,
        timeout: float | None = None,
    ) -> list[float]:
        require_text(text)
        if not self.supports_model(model):
            raise UnsupportedModelError(self.provider.value, model)

        base_url = (config.base_url or DEFAULT_BASE_URL).rstrip("/")
        api_key = config.api_key.get_secret_value() if config.api_key else ""
        payload: dict[str, object] = {
            "input": text,
            "model": model,
            "encoding_format": "base64",
        }
        if config.dimensions is not None and model.startswith("text-embedding-3"):
            payload["dimensions"] = config.dimensions

        body = post_json(
            self._client,
            self.provider,
            f"{base_url}/embeddings",
            headers={"Authorization": f"Bearer {api_key}"},
            payload=payload,
            timeout=timeout,
        )
        encoded = first_data_embedding(self.provider, body)
        if not isinstance(encoded, str):
            raise ProviderUnavailableError(
                self.provider.value, "expected a base64 string in data[0].embedding"
            )
        try:
            raw = base64.b64decode(encoded, validate=True)
            values = list(decode_vector(raw))
        except (binascii.Error, ValueError) as exc:
            raise ProviderUnavailableError(
                self.provider.value, f"could not decode base64 embedding: {exc}"
            ) from exc

        logger.info("Generated OpenAI embedding with %d dimensions (model=%s)", len(values), model)
        return values
