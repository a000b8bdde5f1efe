"""HTTP request executor with bounded retries and a one-shot proxy bypass."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

import httpx

from newapi_chat.errors import (
    CancellationError,
    ChatError,
    ClientError,
    ServerError,
    TransportError,
)
from newapi_chat.types import CancelFlag, is_cancelled

_logger = logging.getLogger(__name__)

# Retry configuration
_MAX_RETRIES = 3
_BACKOFF_BASE = 1.0  # seconds -- exponential: 1, 2, 4
_CANCEL_POLL_INTERVAL = 0.1

_PROXY_VARS = ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY")


def _proxy_configured() -> bool:
    """True when any proxy variable is set, in upper or lower case."""
    return any(
        os.environ.get(name) or os.environ.get(name.lower())
        for name in _PROXY_VARS
    )


class RequestExecutor:
    """Sends one HTTP request and hands back the open streaming response.

    4xx answers raise :class:`ClientError` straight away.  5xx answers and
    transport failures are retried up to ``max_retries`` times with
    exponential backoff.  When a proxy is configured in the environment, the
    first transport failure is retried once more on a client that ignores
    it, without using up a retry.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout: float = 120.0,
        max_retries: int = _MAX_RETRIES,
        backoff_base: float = _BACKOFF_BASE,
        direct_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._timeout = httpx.Timeout(timeout, connect=30)
        self._client = client or httpx.AsyncClient(timeout=self._timeout)
        self._direct_client = direct_client
        self.max_retries = max_retries
        self.backoff_base = backoff_base

    async def send(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        headers: dict[str, str] | None = None,
        cancel: CancelFlag | None = None,
        max_retries: int | None = None,
    ) -> httpx.Response:
        """Return an open 2xx response; the caller must close it."""
        retries = self.max_retries if max_retries is None else max_retries
        client = self._client
        bypass_used = False
        last_error: ChatError | None = None

        attempt = 0
        while attempt <= retries:
            self._check_cancel(cancel)
            try:
                request = client.build_request(method, url, json=json, headers=headers)
                response = await client.send(request, stream=True)
            except httpx.TransportError as e:
                if not bypass_used and _proxy_configured():
                    bypass_used = True
                    _logger.warning(
                        "Request via proxy failed (%s), retrying without proxy", e,
                    )
                    client = self._get_direct_client()
                    continue
                last_error = TransportError(f"{type(e).__name__}: {e}")
            else:
                if response.status_code < 400:
                    return response
                body = await self._read_body(response)
                if response.status_code < 500:
                    raise ClientError(response.status_code, body, url)
                last_error = ServerError(response.status_code, body, url)

            if attempt < retries:
                delay = self.backoff_base * (2 ** attempt)
                _logger.warning(
                    "%s (attempt %d/%d), retrying in %.1fs...",
                    last_error, attempt + 1, retries + 1, delay,
                )
                await self._wait(delay, cancel)
            attempt += 1

        assert last_error is not None
        raise last_error

    async def aclose(self) -> None:
        await self._client.aclose()
        if self._direct_client is not None:
            await self._direct_client.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_direct_client(self) -> httpx.AsyncClient:
        if self._direct_client is None:
            self._direct_client = httpx.AsyncClient(
                timeout=self._timeout, trust_env=False,
            )
        return self._direct_client

    @staticmethod
    def _check_cancel(cancel: CancelFlag | None) -> None:
        if is_cancelled(cancel):
            raise CancellationError("Request cancelled")

    async def _wait(self, delay: float, cancel: CancelFlag | None) -> None:
        """Sleep for *delay* seconds in short slices, watching *cancel*."""
        remaining = delay
        while remaining > 0:
            self._check_cancel(cancel)
            step = min(_CANCEL_POLL_INTERVAL, remaining)
            await asyncio.sleep(step)
            remaining -= step
        self._check_cancel(cancel)

    @staticmethod
    async def _read_body(response: httpx.Response) -> str:
        try:
            await response.aread()
            return response.text
        except httpx.HTTPError:
            return ""
        finally:
            await response.aclose()
