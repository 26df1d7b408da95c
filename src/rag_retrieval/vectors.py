"""
Byte layout of stored embeddings.

Every embedding is persisted as raw IEEE-754 float32 values in little-endian
order, so ``len(buffer) == dimension * 4``. Anything else is invalid.
"""

from __future__ import annotations

import json
import math
import struct
from typing import Iterable, Sequence

FLOAT_SIZE = 4
_BYTE_ORDER = "<"


def encode_vector(values: Iterable[float]) -> bytes:
    """Pack floats into the stored little-endian float32 layout.

    Raises ``ValueError`` when a component does not fit in a float32.
    """
    floats = [float(v) for v in values]
    try:
        return struct.pack(f"{_BYTE_ORDER}{len(floats)}f", *floats)
    except (OverflowError, struct.error) as exc:
        raise ValueError(f"Embedding component out of float32 range: {exc}") from exc


def decode_vector(buffer: bytes) -> tuple[float, ...]:
    """Unpack a stored buffer; raises ``ValueError`` if the length is not a multiple of 4."""
    if len(buffer) % FLOAT_SIZE != 0:
        raise ValueError(
            f"Embedding buffer length {len(buffer)} is not a multiple of {FLOAT_SIZE}."
        )
    return struct.unpack(f"{_BYTE_ORDER}{len(buffer) // FLOAT_SIZE}f", buffer)


def dimension(buffer: bytes | None) -> int | None:
    """Number of float32 components, or None when the buffer is malformed."""
    if not buffer or len(buffer) % FLOAT_SIZE != 0:
        return None
    return len(buffer) // FLOAT_SIZE


def is_valid(buffer: bytes | None, expected_dimension: int | None = None) -> bool:
    """True for a non-empty, well-sized buffer with only finite components."""
    dim = dimension(buffer)
    if dim is None:
        return False
    if expected_dimension is not None and dim != expected_dimension:
        return False
    return all(math.isfinite(v) for v in decode_vector(buffer))  # type: ignore[arg-type]


def describe_vector(buffer: bytes | None, max_values: int = 10) -> str:
    """Human-readable preview of the first *max_values* components."""
    dim = dimension(buffer)
    if dim is None:
        return "Invalid embedding"
    values = decode_vector(buffer)  # type: ignore[arg-type]
    shown = min(max_values, dim)
    rendered = ", ".join(f"{v:.6f}" for v in values[:shown])
    if shown < dim:
        return f"[{rendered}, ... ({dim} total)]"
    return f"[{rendered}]"


def vector_from_json(raw: str) -> bytes:
    """Convert a JSON array of numbers (``"[0.1, 0.2]"``) to the stored layout."""
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Embedding JSON is not valid: {exc}") from exc
    if not isinstance(parsed, list) or not parsed:
        raise ValueError("Embedding JSON must be a non-empty array of numbers.")
    if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in parsed):
        raise ValueError("Embedding JSON must contain only numbers.")
    return encode_vector(parsed)


def as_floats(values: Sequence[object]) -> list[float]:
    """Coerce a provider's numeric array into floats, rejecting non-numbers."""
    result: list[float] = []
    for value in values:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"Embedding component is not a number: {value!r}")
        result.append(float(value))
    return result
