"""Shared request helper that maps httpx failures onto helpportal errors."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from helpportal.errors import NotFound, PortalError, ProviderError, ProviderUnavailable

logger = logging.getLogger(__name__)

_IDEMPOTENT_METHODS = {"GET", "HEAD"}


async def send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    provider: str,
    unauthorized: type[PortalError] = ProviderError,
    **kwargs: Any,
) -> httpx.Response:
    """Send one request and return the 2xx response.

    Idempotent methods get one inline retry on timeout, transport failure or
    5xx. Everything else surfaces as:

    - 401 -> ``unauthorized`` (ReconnectRequired for OAuth-backed clients)
    - 404 -> NotFound
    - 5xx / timeout / transport -> ProviderUnavailable
    - any other 4xx -> ProviderError
    """
    attempts = 2 if method.upper() in _IDEMPOTENT_METHODS else 1
    for attempt in range(1, attempts + 1):
        try:
            resp = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("%s %s timed out (attempt %d/%d)", provider, method, attempt, attempts)
            if attempt < attempts:
                continue
            raise ProviderUnavailable(f"{provider} timed out: {exc}") from exc
        except httpx.TransportError as exc:
            logger.warning("%s %s transport error (attempt %d/%d): %s", provider, method, attempt, attempts, exc)
            if attempt < attempts:
                continue
            raise ProviderUnavailable(f"{provider} transport error: {exc}") from exc

        if resp.status_code >= 500:
            logger.warning("%s %s returned %d (attempt %d/%d)", provider, method, resp.status_code, attempt, attempts)
            if attempt < attempts:
                continue
            raise ProviderUnavailable(f"{provider} returned {resp.status_code}")
        if resp.status_code == 401:
            raise unauthorized(f"{provider} returned 401")
        if resp.status_code == 404:
            raise NotFound(f"{provider} returned 404")
        if resp.status_code >= 400:
            raise ProviderError(f"{provider} returned {resp.status_code}: {resp.text[:200]}")
        return resp

    raise ProviderUnavailable(f"{provider} request failed")


def json_body(resp: httpx.Response, *, provider: str) -> Any:
    """Decode a JSON body, treating a malformed one as a provider error."""
    if resp.status_code == 204 or not resp.content:
        return {}
    try:
        return resp.json()
    except ValueError as exc:
        raise ProviderError(f"{provider} returned malformed JSON") from exc
