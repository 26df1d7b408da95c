"""
Provider selection with a fixed fallback order.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import InvalidQueryError, NoProviderAvailableError
from ..logging_config import get_logger
from .base import PROVIDER_PRIORITY, ProviderConfig, ProviderConfigSet, ProviderName
from .mock import DEFAULT_MODEL as MOCK_MODEL

logger = get_logger(__name__)


@dataclass(frozen=True)
class ResolvedProvider:
    """Outcome of a selection: which provider, with which config and model."""

    provider: ProviderName
    config: ProviderConfig
    model: str

    @property
    def is_mock(self) -> bool:
        return self.provider is ProviderName.MOCK


class ProviderSelector:
    """Pick the provider to embed with.

    Order: the preferred provider if usable, then the first usable provider
    in ``PROVIDER_PRIORITY``. Mock is returned only when ``mock_mode`` is on
    or, with ``allow_mock_fallback``, when nothing else is configured.
    """

    def __init__(
        self,
        *,
        mock_mode: bool = False,
        allow_mock_fallback: bool = False,
        mock_dimensions: int | None = None,
    ) -> None:
        self.mock_mode = mock_mode
        self.allow_mock_fallback = allow_mock_fallback
        self.mock_dimensions = mock_dimensions

    def resolve(
        self,
        preferred: ProviderName | str | None,
        configs: ProviderConfigSet,
    ) -> ResolvedProvider:
        try:
            preferred_name = ProviderName.parse(preferred) if preferred is not None else None
        except ValueError as exc:
            raise InvalidQueryError(str(exc)) from exc

        if self.mock_mode or preferred_name is ProviderName.MOCK:
            if not self.mock_mode and not self.allow_mock_fallback:
                raise NoProviderAvailableError(
                    "Mock embeddings were requested but mock mode is disabled."
                )
            return self._mock(configs)

        if preferred_name is not None:
            config = configs.get(preferred_name)
            if config is not None and config.usable:
                return ResolvedProvider(preferred_name, config, config.model)
            logger.info(
                "Preferred provider %s is not configured or inactive, trying fallbacks",
                preferred_name.value,
            )

        for name in PROVIDER_PRIORITY:
            config = configs.get(name)
            if config is not None and config.usable:
                if preferred_name is not None:
                    logger.warning(
                        "Falling back from %s to %s", preferred_name.value, name.value
                    )
                return ResolvedProvider(name, config, config.model)

        if self.allow_mock_fallback:
            logger.warning("No embedding provider configured; using mock embeddings (dev only)")
            return self._mock(configs)

        raise NoProviderAvailableError(
            "No active embedding provider with credentials is configured "
            f"(checked: {', '.join(p.value for p in PROVIDER_PRIORITY)})."
        )

    def available_providers(self, configs: ProviderConfigSet) -> list[ProviderName]:
        """Usable providers in priority order."""
        return [
            name
            for name in PROVIDER_PRIORITY
            if (config := configs.get(name)) is not None and config.usable
        ]

    def _mock(self, configs: ProviderConfigSet) -> ResolvedProvider:
        config = configs.get(ProviderName.MOCK) or ProviderConfig(
            provider=ProviderName.MOCK,
            model=MOCK_MODEL,
            dimensions=self.mock_dimensions,
        )
        return ResolvedProvider(ProviderName.MOCK, config, config.model)
