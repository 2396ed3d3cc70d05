"""HTTP client service: managed httpx.AsyncClient with connection pooling."""
from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlsplit

import httpx

logger = logging.getLogger(__name__)

# Headers to mimic a browser request
HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                  "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
    "Connection": "keep-alive",
}

DEFAULT_TIMEOUT = httpx.Timeout(connect=30.0, read=600.0, write=30.0, pool=30.0)


def redact_url(url: str) -> str:
    """Drop query string and userinfo, which often carry provider credentials."""
    parts = urlsplit(url)
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return f"{parts.scheme}://{host}{parts.path}" if parts.scheme else parts.path


class HttpClientService:
    """Manages a global httpx.AsyncClient with connection pooling.

    *transport* is forwarded to every client this service creates, which lets
    tests plug in an ``httpx.MockTransport`` instead of the network.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._client: Optional[httpx.AsyncClient] = None
        self._transport = transport

    async def get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers=HEADERS,
                timeout=DEFAULT_TIMEOUT,
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def new_client(self, timeout: httpx.Timeout = DEFAULT_TIMEOUT, **kwargs) -> httpx.AsyncClient:
        """A dedicated client the caller owns and must ``aclose()``.

        Used by the stream proxy so a client disconnect can tear down exactly
        one upstream connection.
        """
        return httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            transport=self._transport,
            **kwargs,
        )

    async def close(self):
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
            logger.info("Global HTTP client closed")
