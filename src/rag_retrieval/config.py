"""
Configuration helpers: storage path, engine settings and provider configs.

Everything is read from environment variables with module-level defaults;
callers may also build the objects explicitly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from pydantic import SecretStr

from .providers.base import ProviderConfig, ProviderConfigSet, ProviderName
from .providers import azure, gemini, mock, openai


DEFAULT_DB_PATH = "~/.rag_retrieval/index.duckdb"
ENV_DB_PATH = "RAG_RETRIEVAL_DB_PATH"

MAX_TOP_K = 50
SIMILARITY_BACKENDS = ("numpy", "python")
_TRUE_VALUES = ("1", "true", "yes", "on")


def resolve_db_path(override_path: str | None = None) -> str:
    """
    Resolve the DuckDB path from an explicit override, env var, or default.

    Precedence:
    1) explicit override_path
    2) RAG_RETRIEVAL_DB_PATH
    3) default path
    """
    raw_path = override_path or os.getenv(ENV_DB_PATH) or DEFAULT_DB_PATH
    resolved = Path(raw_path).expanduser().resolve()
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return str(resolved)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw and raw.strip() else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw and raw.strip() else default


@dataclass(frozen=True)
class RetrievalSettings:
    """Tunables for search, cache and provider calls."""

    environment: str = "dev"
    mock_mode: bool = False
    default_provider: str = ProviderName.OPENAI.value
    default_top_k: int = 10
    default_similarity_threshold: float = 0.7
    cache_similarity_threshold: float = 0.95
    cache_max_age_hours: float = 1.0
    provider_timeout_seconds: float = 30.0
    similarity_backend: str = "numpy"
    mock_dimensions: int = mock.DEFAULT_DIM
    search_retries: int = 0

    def __post_init__(self) -> None:
        if self.environment not in ("dev", "production"):
            raise ValueError(
                f"environment must be 'dev' or 'production', got {self.environment!r}"
            )
        for name in ("default_similarity_threshold", "cache_similarity_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if not 1 <= self.default_top_k <= MAX_TOP_K:
            raise ValueError(f"default_top_k must be 1-{MAX_TOP_K}, got {self.default_top_k}")
        if self.cache_max_age_hours <= 0:
            raise ValueError("cache_max_age_hours must be > 0")
        if self.provider_timeout_seconds <= 0:
            raise ValueError("provider_timeout_seconds must be > 0")
        if self.search_retries < 0:
            raise ValueError("search_retries must be >= 0")
        ProviderName.parse(self.default_provider)
        if self.similarity_backend.strip().lower() not in SIMILARITY_BACKENDS:
            raise ValueError(
                f"similarity_backend must be one of {', '.join(SIMILARITY_BACKENDS)}, "
                f"got {self.similarity_backend!r}"
            )

    @property
    def allow_mock_fallback(self) -> bool:
        return self.environment != "production"

    @classmethod
    def from_env(cls) -> "RetrievalSettings":
        return cls(
            environment=os.getenv("RAG_ENV", "dev").strip().lower(),
            mock_mode=_env_bool("RAG_MOCK_MODE", False),
            default_provider=os.getenv("RAG_DEFAULT_PROVIDER", ProviderName.OPENAI.value),
            default_top_k=_env_int("RAG_DEFAULT_TOP_K", 10),
            default_similarity_threshold=_env_float("RAG_SIMILARITY_THRESHOLD", 0.7),
            cache_similarity_threshold=_env_float("RAG_CACHE_SIMILARITY_THRESHOLD", 0.95),
            cache_max_age_hours=_env_float("RAG_CACHE_MAX_AGE_HOURS", 1.0),
            provider_timeout_seconds=_env_float("RAG_PROVIDER_TIMEOUT_SECONDS", 30.0),
            similarity_backend=os.getenv("RAG_SIMILARITY_BACKEND", "numpy").strip().lower(),
            mock_dimensions=_env_int("RAG_MOCK_DIMENSIONS", mock.DEFAULT_DIM),
            search_retries=_env_int("RAG_SEARCH_RETRIES", 0),
        )


class StaticConfigStore:
    """Provider configuration handed in explicitly (tests, embedding hosts)."""

    def __init__(self, *configs: ProviderConfig) -> None:
        self._configs = ProviderConfigSet.of(*configs)

    def get_active_config(self, provider: ProviderName) -> ProviderConfig | None:
        config = self._configs.get(provider)
        return config if config is not None and config.is_active else None

    def load_configs(self) -> ProviderConfigSet:
        return self._configs


class EnvironmentConfigStore:
    """Provider configuration read from environment variables on every call.

    Keys are never cached or logged; a provider is disabled with
    ``<PROVIDER>_ACTIVE=false``.
    """

    def get_active_config(self, provider: ProviderName) -> ProviderConfig | None:
        config = self._read(provider)
        return config if config is not None and config.is_active else None

    def load_configs(self) -> ProviderConfigSet:
        configs = [
            config
            for name in (ProviderName.OPENAI, ProviderName.GEMINI, ProviderName.AZURE_OPENAI)
            if (config := self._read(name)) is not None
        ]
        return ProviderConfigSet.of(*configs)

    def _read(self, provider: ProviderName) -> ProviderConfig | None:
        if provider is ProviderName.OPENAI:
            key = os.getenv("OPENAI_API_KEY")
            if not key:
                return None
            return ProviderConfig(
                provider=provider,
                model=os.getenv("OPENAI_EMBEDDING_MODEL", openai.DEFAULT_MODEL),
                api_key=SecretStr(key),
                base_url=os.getenv("OPENAI_BASE_URL") or openai.DEFAULT_BASE_URL,
                is_active=_env_bool("OPENAI_ACTIVE", True),
                dimensions=_env_int("OPENAI_EMBEDDING_DIM", 0) or None,
            )
        if provider is ProviderName.GEMINI:
            key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
            if not key:
                return None
            return ProviderConfig(
                provider=provider,
                model=os.getenv("GEMINI_EMBEDDING_MODEL", gemini.DEFAULT_MODEL),
                api_key=SecretStr(key),
                base_url=os.getenv("GEMINI_BASE_URL") or None,
                is_active=_env_bool("GEMINI_ACTIVE", True),
                dimensions=_env_int("GEMINI_EMBEDDING_DIM", 0) or None,
            )
        if provider is ProviderName.AZURE_OPENAI:
            key = os.getenv("AZURE_OPENAI_API_KEY")
            if not key:
                return None
            deployment = os.getenv("AZURE_OPENAI_EMBEDDING_DEPLOYMENT", azure.DEFAULT_DEPLOYMENT)
            return ProviderConfig(
                provider=provider,
                model=deployment,
                api_key=SecretStr(key),
                base_url=os.getenv("AZURE_OPENAI_ENDPOINT") or None,
                is_active=_env_bool("AZURE_OPENAI_ACTIVE", True),
                deployment_name=deployment,
                api_version=os.getenv("AZURE_OPENAI_API_VERSION", azure.DEFAULT_API_VERSION),
            )
        return None
