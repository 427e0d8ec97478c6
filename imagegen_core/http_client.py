"""
imagegen_core - Async HTTP Client
=================================

Thin wrapper around ``httpx.AsyncClient`` shared by all backend adapters.

Features:
- HTTP/2 and connection pooling from settings
- Transport failures mapped to ``NetworkError``
- Non-2xx responses mapped to ``UpstreamRejectedError`` with the body verbatim
- Retried byte downloads for idempotent GETs
- Injectable transport (``httpx.MockTransport`` in tests)

Usage:
    async with AsyncHttpClient(base_url="http://localhost:8188") as client:
        response = await client.get("/history/abc")
        data = client.json(response, "GET /history/abc")
"""

from typing import Any

import httpx

from .config import Settings, get_settings
from .exceptions import NetworkError, UpstreamRejectedError
from .logging_config import get_logger
from .retry import async_retrying

logger = get_logger(__name__)

__all__ = [
    "AsyncHttpClient",
    "ensure_ok",
]


def ensure_ok(response: httpx.Response, endpoint: str) -> httpx.Response:
    """Raise ``UpstreamRejectedError`` for any non-2xx response."""
    if response.is_success:
        return response
    try:
        body = response.text
    except (UnicodeDecodeError, httpx.ResponseNotRead):
        body = ""
    raise UpstreamRejectedError(endpoint, response.status_code, body)


class AsyncHttpClient:
    """
    Async HTTP client using httpx.

    Usage:
        async with AsyncHttpClient(base_url="https://api.example.com") as client:
            response = await client.post("/generate", json={...})

    Absolute URLs passed to any method bypass ``base_url`` (used to fetch
    images from CDN links returned by a backend).
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float | None = None,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize async HTTP client.

        Args:
            base_url: Base URL for relative endpoints
            timeout: Default read timeout in seconds
            headers: Headers sent with every request
            transport: Custom httpx transport (tests)
            settings: Settings to read pool/timeout/retry values from
        """
        self.settings = settings or get_settings()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or self.settings.http.read_timeout
        self.headers = dict(headers or {})
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        logger.debug("AsyncHttpClient initialized", extra={"base_url": self.base_url})

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazy-initialize the underlying async client."""
        if self._client is None:
            http = self.settings.http
            kwargs: dict[str, Any] = {
                "base_url": self.base_url,
                "headers": self.headers,
                "timeout": httpx.Timeout(
                    connect=http.connect_timeout,
                    read=self.timeout,
                    write=http.write_timeout,
                    pool=http.pool_timeout,
                ),
                "follow_redirects": True,
            }
            if self._transport is not None:
                kwargs["transport"] = self._transport
            else:
                kwargs["http2"] = http.http2
                kwargs["limits"] = httpx.Limits(
                    max_connections=http.max_connections,
                    max_keepalive_connections=http.max_keepalive_connections,
                    keepalive_expiry=http.keepalive_expiry,
                )
            self._client = httpx.AsyncClient(**kwargs)
        return self._client

    def _describe(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.base_url}{endpoint}"

    async def request(
        self, method: str, endpoint: str, timeout: float | None = None, **kwargs
    ) -> httpx.Response:
        """Make a request; transport failures become ``NetworkError``."""
        if timeout is not None:
            kwargs["timeout"] = timeout
        url = self._describe(endpoint)
        try:
            return await self.client.request(method, endpoint, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(
                f"network timeout talking to {url}: {type(e).__name__}", url=url, cause=e
            )
        except httpx.TransportError as e:
            raise NetworkError(
                f"network error talking to {url}: {e or type(e).__name__}", url=url, cause=e
            )

    async def get(self, endpoint: str, **kwargs) -> httpx.Response:
        """Make a GET request."""
        return await self.request("GET", endpoint, **kwargs)

    async def post(self, endpoint: str, **kwargs) -> httpx.Response:
        """Make a POST request."""
        return await self.request("POST", endpoint, **kwargs)

    @staticmethod
    def json(response: httpx.Response, endpoint: str) -> Any:
        """Parse a JSON body, raising ``UpstreamRejectedError`` when it is not JSON."""
        try:
            return response.json()
        except ValueError:
            raise UpstreamRejectedError(
                endpoint,
                response.status_code,
                response.text[:500],
                message=f"{endpoint} returned a non-JSON body: {response.text[:200]}",
            )

    async def fetch_bytes(
        self, endpoint: str, *, params: dict | None = None, timeout: float | None = None
    ) -> tuple[bytes, str | None]:
        """
        GET a binary resource, retrying transport failures.

        Returns:
            (body, content_type) where content_type is ``None`` if absent
        """
        retrying = async_retrying(self.settings.retry, exceptions=NetworkError)
        response = await retrying(self.get, endpoint, params=params, timeout=timeout)
        ensure_ok(response, f"GET {self._describe(endpoint)}")
        content_type = response.headers.get("content-type")
        if content_type:
            content_type = content_type.split(";")[0].strip() or None
        return response.content, content_type

    async def aclose(self):
        """Close the underlying client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False
