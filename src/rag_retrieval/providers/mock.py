"""
Deterministic offline embeddings for development and tests.
"""

from __future__ import annotations

import hashlib
import math
import random

from .base import ProviderConfig, ProviderName, require_text

DEFAULT_MODEL = "mock-embedding"
DEFAULT_DIM = 1536


def mock_vector(text: str, dimensions: int = DEFAULT_DIM) -> list[float]:
    """Return a unit-length pseudo-vector seeded by the SHA-256 of *text*.

    The same text yields the same vector in every process.
    """
    seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
    rng = random.Random(seed)
    values = [rng.uniform(-1.0, 1.0) for _ in range(dimensions)]
    norm = math.sqrt(sum(v * v for v in values))
    if norm == 0.0:
        return values
    return [v / norm for v in values]


class MockAdapter:
    """Offline adapter; only used when mock mode is explicitly allowed."""

    provider = ProviderName.MOCK

    def __init__(self, *, dimensions: int = DEFAULT_DIM) -> None:
        if dimensions <= 0:
            raise ValueError("dimensions must be > 0")
        self.dimensions = dimensions

    def supports_model(self, model: str) -> bool:  # noqa: ARG002
        return True

    def generate_embedding(
        self,
        text: str,
        model: str,  # noqa: ARG002
        config: ProviderConfig,
        *,
        timeout: float | None = None,  # noqa: ARG002
    ) -> list[float]:
        require_text(text)
        return mock_vector(text, config.dimensions or self.dimensions)
