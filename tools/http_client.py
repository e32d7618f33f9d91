# tools/http_client.py
from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

import config

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class ProviderHTTPError(Exception):
    """Raised when a provider answers with a non-retryable HTTP error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _is_retryable_error(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS
    return False


async def _send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kw: Any,
) -> httpx.Response:
    r = await client.request(method, url, **kw)
    if r.status_code in RETRYABLE_STATUS:
        raise httpx.HTTPStatusError("retryable", request=r.request, response=r)
    return r


async def request_json(
    method: str,
    url: str,
    *,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    json: Any = None,
    timeout_s: Optional[float] = None,
    client: Optional[httpx.AsyncClient] = None,
    attempts: int = 3,
) -> Any:
    """Send a request with retries on 429/5xx and transport errors; return JSON."""
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=timeout_s or config.HTTP_TIMEOUT_S)
    try:
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(_is_retryable_error),
                wait=wait_exponential(min=0.5, max=6),
                stop=stop_after_attempt(attempts),
                reraise=True,
            ):
                with attempt:
                    r = await _send(client, method, url, params=params, headers=headers, json=json)
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise ProviderHTTPError(f"{method} {url} -> {status} after {attempts} attempts", status) from exc
        if r.status_code >= 400:
            raise ProviderHTTPError(f"{method} {url} -> {r.status_code}: {r.text[:400]}", r.status_code)
        return r.json()
    finally:
        if owns_client:
            await client.aclose()
