"""Fetcher interface and the default httpx adapter.

The pipeline never opens connections itself; it awaits a fetcher that
returns the response body and its content type, or raises FetchError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from geodata.config import settings
from geodata.errors import FetchError

logger = logging.getLogger(__name__)


@dataclass
class FetchResponse:
    body: str | bytes
    content_type: str = ""

    @property
    def text(self) -> str:
        if isinstance(self.body, bytes):
            return self.body.decode("utf-8", errors="replace")
        return self.body


class Fetcher(Protocol):
    async def fetch_text(
        self, url: str, username: str | None = None, password: str | None = None
    ) -> FetchResponse: ...

    async def fetch_bytes(self, url: str) -> FetchResponse: ...


class HttpxFetcher:
    """Fetcher over httpx.AsyncClient.

    Use as an async context manager to share one client across requests,
    or call directly and a short-lived client is opened per request.
    """

    def __init__(
        self,
        timeout: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = settings.fetch_timeout if timeout is None else timeout
        self.transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _make_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout, transport=self.transport, follow_redirects=True
        )

    async def __aenter__(self):
        self._client = self._make_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch_text(
        self, url: str, username: str | None = None, password: str | None = None
    ) -> FetchResponse:
        auth = (username, password) if username else None
        response = await self._get(url, auth)
        return FetchResponse(response.text, response.headers.get("content-type", ""))

    async def fetch_bytes(self, url: str) -> FetchResponse:
        response = await self._get(url, None)
        return FetchResponse(response.content, response.headers.get("content-type", ""))

    async def _get(self, url: str, auth) -> httpx.Response:
        if self._client is not None:
            return await self._send(self._client, url, auth)
        async with self._make_client() as client:
            return await self._send(client, url, auth)

    async def _send(self, client: httpx.AsyncClient, url: str, auth) -> httpx.Response:
        try:
            response = await client.get(url, auth=auth)
        except httpx.HTTPError as e:
            logger.warning(f"Request to {url} failed: {e}")
            raise FetchError(0, str(e), url=url) from e
        if response.is_error:
            logger.warning(f"Request to {url} returned HTTP {response.status_code}")
            raise FetchError(response.status_code, response.text, url=url)
        return response
