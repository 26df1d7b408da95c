"""
Shared JSON-over-HTTP call for the REST-based adapters.
"""

from __future__ import annotations

from typing import Any

import httpx

from ..errors import ProviderUnavailableError
from .base import ProviderName

_MAX_ERROR_BODY = 500


def post_json(
    client: httpx.Client,
    provider: ProviderName,
    url: str,
    *,
    headers: dict[str, str],
    payload: dict[str, Any],
    params: dict[str, str] | None = None,
    timeout: float | None = None,
) -> dict[str, Any]:
    """POST *payload* and return the decoded JSON object.

    Transport errors, timeouts, non-2xx responses and non-JSON bodies all
    raise ``ProviderUnavailableError``; nothing is retried here.
    """
    try:
        response = client.post(
            url,
            headers=headers,
            json=payload,
            params=params,
            timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
        )
    except httpx.TimeoutException as exc:
        raise ProviderUnavailableError(provider.value, f"request timed out: {exc}") from exc
    except httpx.HTTPError as exc:
        raise ProviderUnavailableError(provider.value, str(exc) or type(exc).__name__) from exc

    if not response.is_success:
        raise ProviderUnavailableError(
            provider.value,
            response.text[:_MAX_ERROR_BODY] or response.reason_phrase,
            status_code=response.status_code,
        )

    try:
        body = response.json()
    except ValueError as exc:
        raise ProviderUnavailableError(
            provider.value,
            "response body is not valid JSON",
            status_code=response.status_code,
        ) from exc
    if not isinstance(body, dict):
        raise ProviderUnavailableError(
            provider.value,
            "response body is not a JSON object",
            status_code=response.status_code,
        )
    return body


def first_data_embedding(provider: ProviderName, body: dict[str, Any]) -> Any:
    """Return ``body["data"][0]["embedding"]`` (OpenAI-style envelope)."""
    try:
        return body["data"][0]["embedding"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ProviderUnavailableError(
            provider.value, "response has no data[0].embedding field"
        ) from exc
