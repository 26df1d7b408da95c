"""
Provider identities, configuration records and the adapter protocol.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from pydantic import SecretStr

from ..errors import InvalidQueryError


class ProviderName(str, Enum):
    """Closed set of embedding providers."""

    OPENAI = "openai"
    GEMINI = "gemini"
    AZURE_OPENAI = "azure_openai"
    MOCK = "mock"

    @classmethod
    def parse(cls, value: "str | ProviderName") -> "ProviderName":
        """Accept enum members, values, or the original CamelCase names."""
        if isinstance(value, ProviderName):
            return value
        normalized = value.strip().lower().replace("-", "_")
        aliases = {"azureopenai": "azure_openai", "azure": "azure_openai"}
        normalized = aliases.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError as exc:
            raise ValueError(f"Unknown embedding provider: {value!r}") from exc


# Fallback order when the preferred provider cannot be used.
PROVIDER_PRIORITY: tuple[ProviderName, ...] = (
    ProviderName.OPENAI,
    ProviderName.GEMINI,
    ProviderName.AZURE_OPENAI,
)


@dataclass(frozen=True)
class ProviderConfig:
    """Connection settings for one provider.

    ``api_key`` is already decrypted by whichever store produced the config;
    it is a ``SecretStr`` so it never shows up in reprs or logs.
    """

    provider: ProviderName
    model: str
    api_key: SecretStr | None = None
    base_url: str | None = None
    is_active: bool = True
    deployment_name: str | None = None
    api_version: str | None = None
    dimensions: int | None = None

    @property
    def has_credentials(self) -> bool:
        if self.provider is ProviderName.MOCK:
            return True
        if self.api_key is None or not self.api_key.get_secret_value():
            return False
        if self.provider is ProviderName.AZURE_OPENAI:
            return bool(self.base_url) and bool(self.deployment_name or self.model)
        return True

    @property
    def usable(self) -> bool:
        return self.is_active and self.has_credentials

    def describe(self) -> dict[str, object]:
        """Credential-free summary for diagnostics endpoints."""
        return {
            "provider": self.provider.value,
            "model": self.model,
            "base_url": self.base_url,
            "is_active": self.is_active,
            "has_credentials": self.has_credentials,
            "deployment_name": self.deployment_name,
            "api_version": self.api_version,
            "dimensions": self.dimensions,
        }


@dataclass(frozen=True)
class ProviderConfigSet:
    """Explicit per-call provider configuration (one entry per provider)."""

    configs: dict[ProviderName, ProviderConfig] = field(default_factory=dict)

    @classmethod
    def of(cls, *configs: ProviderConfig) -> "ProviderConfigSet":
        mapping: dict[ProviderName, ProviderConfig] = {}
        for config in configs:
            existing = mapping.get(config.provider)
            if existing is not None and existing.is_active and config.is_active:
                raise ValueError(
                    f"More than one active configuration for provider {config.provider.value!r}."
                )
            if existing is None or config.is_active:
                mapping[config.provider] = config
        return cls(configs=mapping)

    def get(self, provider: ProviderName) -> ProviderConfig | None:
        return self.configs.get(provider)

    def __iter__(self):
        return iter(self.configs.values())


class EmbeddingAdapter(Protocol):
    """One provider's text -> vector capability."""

    provider: ProviderName

    def supports_model(self, model: str) -> bool:
        """Return True if *model* is recognized by this provider."""

    def generate_embedding(
        self,
        text: str,
        model: str,
        config: ProviderConfig,
        *,
        timeout: float | None = None,
    ) -> list[float]:
        """Return the embedding of *text* as a list of floats."""


def require_text(text: str) -> str:
    if not isinstance(text, str) or not text.strip():
        raise InvalidQueryError("Text to embed must be a non-empty string.")
    return text
