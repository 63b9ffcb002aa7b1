"""
Async HTTP Client

httpx wrapper for the dashboard's outbound JSON calls (the engineering-metrics
users API). TLS verification is always on, every request has a timeout, and a
429 surfaces as RateLimitedError so callers can feed it to a RateLimitSignal.

Usage:
    from eng_dashboard.async_http_client import AsyncSecureHTTPClient

    async with AsyncSecureHTTPClient(timeout=10) as client:
        payload = await client.get_json(url)
"""

from typing import Any

import httpx

from eng_dashboard.utils.error_handling import RateLimitedError

USER_AGENT = "eng-dashboard/1.0"


class AsyncSecureHTTPClient:
    """
    Pooled httpx.AsyncClient with JSON defaults.

    Use as an async context manager; the pool is closed on exit.
    """

    DEFAULT_TIMEOUT = 30.0  # seconds
    LIMITS = httpx.Limits(max_connections=20, max_keepalive_connections=5)

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        headers: dict[str, str] | None = None,
        http2: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Args:
            timeout: Per-request timeout in seconds
            headers: Extra headers merged over the JSON defaults
            http2: Negotiate HTTP/2 when the server offers it
            transport: Replacement transport (httpx.MockTransport in tests)
        """
        self.timeout = httpx.Timeout(timeout)
        self.headers = {"Accept": "application/json", "User-Agent": USER_AGENT, **(headers or {})}
        self.http2 = http2
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "AsyncSecureHTTPClient":
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            headers=self.headers,
            limits=self.LIMITS,
            verify=True,
            http2=self.http2,
            follow_redirects=True,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    async def get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        """
        GET ``url`` and decode the JSON body.

        Raises:
            RateLimitedError: HTTP 429
            httpx.HTTPStatusError: Any other non-2xx status
            httpx.TransportError: Network failure or timeout
            ValueError: Body is not valid JSON
        """
        if self._client is None:
            raise RuntimeError("AsyncSecureHTTPClient used outside 'async with'")

        response = await self._client.get(url, params=params)
        if response.status_code == 429:
            raise RateLimitedError(f"Rate limited (HTTP 429) by {response.url.host}")
        response.raise_for_status()
        return response.json()
