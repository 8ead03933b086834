"""Rate-limited async HTTP access to the Brønnøysund hosts.

All network traffic except the headless browser goes through
:class:`HttpClient`, a thin wrapper around ``httpx.AsyncClient`` that:

- enforces a minimum interval between consecutive requests to one host,
- applies per-kind timeouts (metadata, api, page, document, page_action),
- maps timeouts, transport errors, 429 and 5xx to ``TransientFetchError``,
- maps redirect loops and undecodable document bodies to
  ``MalformedResponseError`` so one bad URL fails only its own year,
- treats 404 (and other client errors) on lookups as absence (``None``).

Notes
-----
Workers share one connection pool but each gets its own host limiter through
:meth:`HttpClient.worker_view`, so unrelated organizations are never
serialized behind each other.
"""

from __future__ import annotations

import asyncio
import copy
import json
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

import httpx

from brreg_reports.config import setup_logging
from brreg_reports.errors import (
    DocumentRetrievalError,
    FetchTimeoutError,
    MalformedResponseError,
    TransientFetchError,
)

if TYPE_CHECKING:
    from types import TracebackType

logger = setup_logging(__name__)

DEFAULT_TIMEOUTS = {
    "metadata": 10.0,
    "api": 15.0,
    "page": 20.0,
    "document": 60.0,
    "page_action": 120.0,
}


class HostRateLimiter:
    """Enforce a minimum delay between request starts to the same host."""

    def __init__(self, min_interval: float = 0.1) -> None:
        self.min_interval = min_interval
        self._last_request: dict[str, float] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def wait(self, url: str) -> None:
        if self.min_interval <= 0:
            return
        host = urlsplit(url).netloc
        lock = self._locks.setdefault(host, asyncio.Lock())
        loop = asyncio.get_running_loop()
        async with lock:
            last = self._last_request.get(host)
            if last is not None:
                remaining = self.min_interval - (loop.time() - last)
                if remaining > 0:
                    await asyncio.sleep(remaining)
            self._last_request[host] = loop.time()


class HttpClient:
    """Async HTTP client with host rate limiting and typed failures.

    Parameters
    ----------
    config : dict[str, Any]
        Full project configuration; the ``http`` and ``documents`` sections
        are read.
    transport : httpx.AsyncBaseTransport | None, optional
        Injected transport (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        config: dict[str, Any],
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        http_config = config.get("http", {})
        self._timeouts = {
            kind: float(http_config.get(f"{kind}_timeout_seconds", default))
            for kind, default in DEFAULT_TIMEOUTS.items()
        }
        self._max_document_bytes = int(config.get("documents", {}).get("max_pdf_bytes", 50 * 1024 * 1024))
        self._limiter = HostRateLimiter(float(http_config.get("min_request_interval_seconds", 0.1)))
        self._client = httpx.AsyncClient(
            follow_redirects=True,
            transport=transport,
            headers={
                "User-Agent": http_config.get("user_agent", "brreg-reports"),
                "Accept-Language": http_config.get("accept_language", "nb-NO,nb;q=0.9"),
            },
        )
        self._owns_client = True

    async def __aenter__(self) -> HttpClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def worker_view(self) -> HttpClient:
        """Return a client sharing this connection pool with its own host limiter."""
        view = copy.copy(self)
        view._limiter = HostRateLimiter(self._limiter.min_interval)
        view._owns_client = False
        return view

    def timeout_for(self, kind: str) -> float:
        return self._timeouts.get(kind, DEFAULT_TIMEOUTS["api"])

    async def request(
        self,
        method: str,
        url: str,
        *,
        kind: str = "api",
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        content: str | bytes | None = None,
    ) -> httpx.Response:
        """Send one request; raise ``TransientFetchError`` on retryable failures.

        Returns
        -------
        httpx.Response
            Any non-retryable response, including 4xx.
        """
        await self._limiter.wait(url)
        logger.debug("%s %s (%s)", method, url, kind)

        try:
            response = await self._client.request(
                method,
                url,
                params=params,
                headers=headers,
                content=content,
                timeout=self.timeout_for(kind),
            )
        except httpx.TimeoutException as e:
            msg = f"Timeout after {self.timeout_for(kind)}s: {url}"
            if kind == "document":
                raise FetchTimeoutError(msg, url=url) from e
            raise TransientFetchError(msg, url=url) from e
        except (httpx.TooManyRedirects, httpx.DecodingError) as e:
            msg = f"Malformed response from {url}: {e}"
            if kind == "document":
                raise MalformedResponseError(msg, url=url) from e
            raise TransientFetchError(msg, url=url) from e
        except httpx.RequestError as e:
            msg = f"Transport error for {url}: {e}"
            raise TransientFetchError(msg, url=url) from e

        if response.status_code == 429 or response.status_code >= 500:
            msg = f"HTTP {response.status_code} from {url}"
            raise TransientFetchError(msg, url=url, status_code=response.status_code)

        return response

    async def get_json(
        self,
        url: str,
        *,
        kind: str = "api",
        params: dict[str, Any] | None = None,
    ) -> Any | None:
        """GET a JSON document; ``None`` on 404, other 4xx, or invalid JSON."""
        response = await self.request(
            "GET", url, kind=kind, params=params, headers={"Accept": "application/json"}
        )
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.warning("HTTP %s from %s", response.status_code, url)
            return None
        try:
            return response.json()
        except json.JSONDecodeError:
            logger.warning("Invalid JSON from %s", url)
            return None

    async def get_text(self, url: str, *, kind: str = "page") -> str | None:
        """GET an HTML page; ``None`` when the page does not exist."""
        response = await self.request("GET", url, kind=kind, headers={"Accept": "text/html"})
        if response.status_code >= 400:
            logger.debug("HTTP %s from %s", response.status_code, url)
            return None
        return response.text

    async def head_ok(self, url: str) -> bool:
        """Return True when a HEAD request answers 200 with a PDF content type."""
        response = await self.request("HEAD", url, kind="metadata")
        content_type = response.headers.get("content-type", "")
        return response.status_code == 200 and "pdf" in content_type.lower()

    async def fetch_document(self, url: str) -> bytes:
        """Download a document body.

        Raises
        ------
        FetchTimeoutError
            If the download exceeds the document timeout.
        TransientFetchError
            On transport errors, 429 or 5xx.
        MalformedResponseError
            On redirect loops or bodies that cannot be decoded.
        DocumentRetrievalError
            On other 4xx responses or bodies above the size limit.
        """
        response = await self.request("GET", url, kind="document")
        if response.status_code >= 400:
            msg = f"HTTP {response.status_code} for document {url}"
            raise DocumentRetrievalError(msg, url=url)

        body = response.content
        if len(body) > self._max_document_bytes:
            msg = f"Document exceeds {self._max_document_bytes} bytes: {url}"
            raise DocumentRetrievalError(msg, url=url, byte_size=len(body))
        return body
