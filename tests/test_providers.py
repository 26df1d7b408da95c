"""Tests for provider adapters and provider selection."""

from __future__ import annotations

import base64
import json
import math
import os
import struct
from dataclasses import dataclass
from typing import Any

import httpx
import pytest
from google.genai import errors as genai_errors
from pydantic import SecretStr

from rag_retrieval.errors import (
    InvalidQueryError,
    NoProviderAvailableError,
    ProviderUnavailableError,
    UnsupportedModelError,
)
from rag_retrieval.providers import (
    AzureOpenAIAdapter,
    GeminiAdapter,
    MockAdapter,
    OpenAIAdapter,
    ProviderConfig,
    ProviderConfigSet,
    ProviderName,
    ProviderSelector,
    mock_vector,
)


def _openai_config(**overrides: Any) -> ProviderConfig:
    values: dict[str, Any] = {
        "provider": ProviderName.OPENAI,
        "model": "text-embedding-3-small",
        "api_key": SecretStr("sk-openai"),
    }
    values.update(overrides)
    return ProviderConfig(**values)


def _gemini_config(**overrides: Any) -> ProviderConfig:
    values: dict[str, Any] = {
        "provider": ProviderName.GEMINI,
        "model": "models/embedding-001",
        "api_key": SecretStr("gm-key"),
    }
    values.update(overrides)
    return ProviderConfig(**values)


def _azure_config(**overrides: Any) -> ProviderConfig:
    values: dict[str, Any] = {
        "provider": ProviderName.AZURE_OPENAI,
        "model": "embeddings-prod",
        "api_key": SecretStr("az-key"),
        "base_url": "https://example.openai.azure.com/",
        "deployment_name": "embeddings-prod",
    }
    values.update(overrides)
    return ProviderConfig(**values)


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------


def test_openai_adapter_decodes_base64_float32() -> None:
    captured: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        encoded = base64.b64encode(struct.pack("<3f", 0.25, -0.5, 1.0)).decode()
        return httpx.Response(200, json={"data": [{"embedding": encoded}]})

    adapter = OpenAIAdapter(client=_client(handler))
    values = adapter.generate_embedding("hello", "text-embedding-3-small", _openai_config())

    assert values == [0.25, -0.5, 1.0]
    assert captured["url"] == "https://api.openai.com/v1/embeddings"
    assert captured["auth"] == "Bearer sk-openai"
    assert captured["body"] == {
        "input": "hello",
        "model": "text-embedding-3-small",
        "encoding_format": "base64",
    }


def test_openai_adapter_sends_dimensions_for_v3_models() -> None:
    bodies: list[dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        encoded = base64.b64encode(struct.pack("<2f", 1.0, 0.0)).decode()
        return httpx.Response(200, json={"data": [{"embedding": encoded}]})

    adapter = OpenAIAdapter(client=_client(handler))
    adapter.generate_embedding(
        "hello",
        "text-embedding-3-large",
        _openai_config(model="text-embedding-3-large", dimensions=256),
    )

    assert bodies[0]["dimensions"] == 256


def test_openai_adapter_maps_http_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="rate limited")

    adapter = OpenAIAdapter(client=_client(handler))

    with pytest.raises(ProviderUnavailableError) as excinfo:
        adapter.generate_embedding("hello", "text-embedding-3-small", _openai_config())

    assert excinfo.value.status_code == 429
    assert excinfo.value.provider == "openai"
    assert "rate limited" in excinfo.value.message


def test_openai_adapter_maps_timeouts() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    adapter = OpenAIAdapter(client=_client(handler))

    with pytest.raises(ProviderUnavailableError) as excinfo:
        adapter.generate_embedding(
            "hello", "text-embedding-3-small", _openai_config(), timeout=0.1
        )

    assert excinfo.value.status_code is None
    assert isinstance(excinfo.value.__cause__, httpx.TimeoutException)


def test_openai_adapter_rejects_malformed_payload() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": []})

    adapter = OpenAIAdapter(client=_client(handler))

    with pytest.raises(ProviderUnavailableError):
        adapter.generate_embedding("hello", "text-embedding-3-small", _openai_config())


def test_openai_adapter_validates_inputs_before_calling() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover
        raise AssertionError("no request expected")

    adapter = OpenAIAdapter(client=_client(handler))

    with pytest.raises(UnsupportedModelError):
        adapter.generate_embedding("hello", "gpt-4o", _openai_config())
    with pytest.raises(InvalidQueryError):
        adapter.generate_embedding("   ", "text-embedding-3-small", _openai_config())


# ---------------------------------------------------------------------------
# Azure OpenAI
# ---------------------------------------------------------------------------


def test_azure_adapter_uses_deployment_url_and_api_key() -> None:
    captured: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["api_version"] = request.url.params["api-version"]
        captured["api_key"] = request.headers["api-key"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2, 0.3]}]})

    adapter = AzureOpenAIAdapter(client=_client(handler))
    values = adapter.generate_embedding("hello", "embeddings-prod", _azure_config())

    assert values == [0.1, 0.2, 0.3]
    assert captured["path"] == "/openai/deployments/embeddings-prod/embeddings"
    assert captured["api_version"] == "2024-02-15-preview"
    assert captured["api_key"] == "az-key"
    assert captured["body"] == {"input": "hello"}


def test_azure_adapter_rejects_non_numeric_values() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": [{"embedding": ["a", "b"]}]})

    adapter = AzureOpenAIAdapter(client=_client(handler))

    with pytest.raises(ProviderUnavailableError):
        adapter.generate_embedding("hello", "embeddings-prod", _azure_config())


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------


@dataclass
class _FakeEmbedding:
    values: list[float]


@dataclass
class _FakeEmbedResult:
    embeddings: list[_FakeEmbedding]


class _FakeModels:
    """Records calls and returns deterministic embeddings."""

    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[dict[str, Any]] = []
        self.error = error

    def embed_content(self, *, model: str, contents: list[str], config: dict) -> _FakeEmbedResult:
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.error is not None:
            raise self.error
        dim = config.get("output_dimensionality", 4)
        return _FakeEmbedResult(embeddings=[_FakeEmbedding(values=[0.5] * dim)])


class _FakeClient:
    def __init__(self, error: Exception | None = None) -> None:
        self.models = _FakeModels(error)


def test_gemini_adapter_uses_query_task_type() -> None:
    client = _FakeClient()
    adapter = GeminiAdapter(client_factory=lambda config, timeout: client)

    values = adapter.generate_embedding("hello", "models/embedding-001", _gemini_config())

    assert values == [0.5] * 4
    call = client.models.calls[0]
    assert call["model"] == "models/embedding-001"
    assert call["contents"] == ["hello"]
    assert call["config"]["task_type"] == "RETRIEVAL_QUERY"


def test_gemini_document_adapter_requests_dimensionality() -> None:
    client = _FakeClient()
    adapter = GeminiAdapter(
        client_factory=lambda config, timeout: client, task_type="RETRIEVAL_DOCUMENT"
    )

    values = adapter.generate_embedding(
        "hello", "gemini-embedding-001", _gemini_config(model="gemini-embedding-001", dimensions=8)
    )

    assert len(values) == 8
    config = client.models.calls[0]["config"]
    assert config["task_type"] == "RETRIEVAL_DOCUMENT"
    assert config["output_dimensionality"] == 8


def test_gemini_adapter_maps_api_errors() -> None:
    error = genai_errors.APIError(
        503, {"error": {"code": 503, "message": "overloaded", "status": "UNAVAILABLE"}}
    )
    adapter = GeminiAdapter(client_factory=lambda config, timeout: _FakeClient(error))

    with pytest.raises(ProviderUnavailableError) as excinfo:
        adapter.generate_embedding("hello", "models/embedding-001", _gemini_config())

    assert excinfo.value.status_code == 503
    assert excinfo.value.provider == "gemini"


def test_gemini_adapter_maps_timeouts() -> None:
    request = httpx.Request("POST", "https://generativelanguage.googleapis.com")
    error = httpx.ReadTimeout("timed out", request=request)
    adapter = GeminiAdapter(client_factory=lambda config, timeout: _FakeClient(error))

    with pytest.raises(ProviderUnavailableError):
        adapter.generate_embedding("hello", "models/embedding-001", _gemini_config())


def test_gemini_adapter_reuses_clients() -> None:
    created: list[float | None] = []

    def factory(config, timeout):
        created.append(timeout)
        return _FakeClient()

    adapter = GeminiAdapter(client_factory=factory)

    adapter.generate_embedding("hello", "models/embedding-001", _gemini_config(), timeout=10)
    adapter.generate_embedding("again", "models/embedding-001", _gemini_config(), timeout=10)
    adapter.generate_embedding("slow", "models/embedding-001", _gemini_config(), timeout=30)

    assert created == [10, 30]


def test_gemini_adapter_rejects_unknown_models() -> None:
    adapter = GeminiAdapter(client_factory=lambda config, timeout: _FakeClient())

    with pytest.raises(UnsupportedModelError):
        adapter.generate_embedding("hello", "text-embedding-3-small", _gemini_config())


# ---------------------------------------------------------------------------
# Mock
# ---------------------------------------------------------------------------


def test_mock_vectors_are_deterministic_and_normalized() -> None:
    first = mock_vector("quarterly revenue", 64)
    second = mock_vector("quarterly revenue", 64)
    other = mock_vector("headcount plan", 64)

    assert first == second
    assert first != other
    assert math.sqrt(sum(v * v for v in first)) == pytest.approx(1.0)


def test_mock_adapter_dimensions() -> None:
    adapter = MockAdapter(dimensions=16)
    config = ProviderConfig(provider=ProviderName.MOCK, model="mock-embedding")

    assert len(adapter.generate_embedding("hello", "anything", config)) == 16
    assert len(MockAdapter().generate_embedding("hello", "anything", config)) == 1536


# ---------------------------------------------------------------------------
# Configuration records
# ---------------------------------------------------------------------------


def test_provider_config_never_exposes_the_key() -> None:
    config = _openai_config()

    assert "sk-openai" not in repr(config)
    assert "sk-openai" not in json.dumps(config.describe())
    assert config.describe()["has_credentials"] is True


def test_provider_config_set_rejects_two_active_configs() -> None:
    with pytest.raises(ValueError):
        ProviderConfigSet.of(_openai_config(), _openai_config(model="text-embedding-3-large"))

    configs = ProviderConfigSet.of(_openai_config(is_active=False), _openai_config())
    assert configs.get(ProviderName.OPENAI).is_active


def test_provider_name_parse_accepts_aliases() -> None:
    assert ProviderName.parse("AzureOpenAI") is ProviderName.AZURE_OPENAI
    assert ProviderName.parse("OpenAI") is ProviderName.OPENAI
    with pytest.raises(ValueError):
        ProviderName.parse("cohere")


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


def test_selector_prefers_requested_provider() -> None:
    configs = ProviderConfigSet.of(_openai_config(), _gemini_config())

    resolved = ProviderSelector().resolve("gemini", configs)

    assert resolved.provider is ProviderName.GEMINI
    assert resolved.model == "models/embedding-001"


def test_selector_falls_back_in_priority_order() -> None:
    configs = ProviderConfigSet.of(_azure_config(), _gemini_config())

    resolved = ProviderSelector().resolve(ProviderName.OPENAI, configs)

    assert resolved.provider is ProviderName.GEMINI


def test_selector_skips_inactive_and_incomplete_configs() -> None:
    configs = ProviderConfigSet.of(
        _openai_config(is_active=False),
        _gemini_config(api_key=None),
        _azure_config(),
    )

    resolved = ProviderSelector().resolve(None, configs)

    assert resolved.provider is ProviderName.AZURE_OPENAI


def test_selector_requires_azure_endpoint() -> None:
    configs = ProviderConfigSet.of(_azure_config(base_url=None))

    with pytest.raises(NoProviderAvailableError):
        ProviderSelector().resolve(ProviderName.AZURE_OPENAI, configs)


def test_selector_only_falls_back_to_mock_when_allowed(caplog) -> None:
    empty = ProviderConfigSet.of()

    with pytest.raises(NoProviderAvailableError):
        ProviderSelector(allow_mock_fallback=False).resolve("openai", empty)

    with caplog.at_level("WARNING", logger="rag_retrieval"):
        resolved = ProviderSelector(allow_mock_fallback=True).resolve("openai", empty)

    assert resolved.is_mock
    assert "mock" in caplog.text


def test_selector_mock_mode_overrides_real_providers() -> None:
    configs = ProviderConfigSet.of(_openai_config())

    resolved = ProviderSelector(mock_mode=True, mock_dimensions=32).resolve("openai", configs)

    assert resolved.is_mock
    assert resolved.config.dimensions == 32


def test_selector_refuses_explicit_mock_request_in_production() -> None:
    with pytest.raises(NoProviderAvailableError):
        ProviderSelector().resolve("mock", ProviderConfigSet.of(_openai_config()))


def test_available_providers_lists_usable_in_priority_order() -> None:
    configs = ProviderConfigSet.of(_azure_config(), _openai_config(), _gemini_config(is_active=False))

    assert ProviderSelector().available_providers(configs) == [
        ProviderName.OPENAI,
        ProviderName.AZURE_OPENAI,
    ]


def test_selector_rejects_unknown_provider_names() -> None:
    with pytest.raises(InvalidQueryError):
        ProviderSelector().resolve("cohere", ProviderConfigSet.of(_openai_config()))


# ---------------------------------------------------------------------------
# Real API integration test (skipped unless a Gemini key is set)
# ---------------------------------------------------------------------------

# Read at import time; the autouse env fixture clears it before each test runs.
_REAL_GEMINI_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")


@pytest.mark.skipif(not _REAL_GEMINI_KEY, reason="GEMINI_API_KEY not set, skipping real embedding test")
def test_real_gemini_embedding() -> None:
    config = ProviderConfig(
        provider=ProviderName.GEMINI,
        model="gemini-embedding-001",
        api_key=SecretStr(_REAL_GEMINI_KEY or ""),
        dimensions=128,
    )

    values = GeminiAdapter().generate_embedding("purchase price", config.model, config, timeout=30)

    assert len(values) == 128
    assert all(isinstance(v, float) for v in values)
