"""Remote Store HTTP client — the only code that talks to the BizCoin API.

Wraps httpx.AsyncClient with the conventions every call site relies on:
- JSON request bodies, JSON responses (empty body → None)
- "Authorization: Bearer <token>" whenever TokenStorage holds a token
- non-2xx → ApiRequestError("<status>: <body-text>")
- transport failure → NetworkError
- per-call 401 behaviour for reads: raise, or return None

Logs method, path, status and duration for every request. Never logs
bodies or the Authorization header.

Tier 2 service: imports from bizcoin.cache.keys, bizcoin.errors (Tier 1)
and bizcoin.hooks (Tier 1/2).

Usage:
    async with RemoteStoreClient("http://localhost:5000") as remote:
        client = QueryClient(remote.query_fn())
        await remote.request("POST", "/api/tokens/award", {"studentId": "s1", "amount": 5})
"""

from __future__ import annotations

import logging
import time
from typing import Any, Literal

import httpx

from bizcoin.cache.client import QueryFn
from bizcoin.cache.keys import QueryKey, key_to_url
from bizcoin.errors import ApiRequestError, NetworkError
from bizcoin.hooks.interfaces import TokenStorage
from bizcoin.hooks.token_storage import InMemoryTokenStorage

logger = logging.getLogger("bizcoin.remote")

UnauthorizedBehavior = Literal["return_null", "throw"]


def _raise_for_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    body = response.text or response.reason_phrase
    raise ApiRequestError(response.status_code, body)


def _json_or_none(response: httpx.Response) -> Any:
    if not response.content:
        return None
    return response.json()


class RemoteStoreClient:
    """Async JSON client for the Remote Store.

    Args:
        base_url: Root URL of the API, e.g. "http://localhost:5000".
        token_storage: Where the bearer token is read from on every request.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (ASGITransport, MockTransport)
            for tests and the in-process stub.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token_storage: TokenStorage | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token_storage = token_storage or InMemoryTokenStorage()
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
        )

    @property
    def token_storage(self) -> TokenStorage:
        return self._token_storage

    def _headers(self) -> dict[str, str]:
        token = self._token_storage.get_token()
        if not token:
            return {}
        return {"Authorization": f"Bearer {token}"}

    async def _send(self, method: str, path: str, data: Any = None) -> httpx.Response:
        start = time.monotonic()
        try:
            response = await self._http.request(
                method,
                path,
                json=data,
                headers=self._headers(),
            )
        except httpx.TransportError as exc:
            logger.warning("%s %s transport error: %s", method, path, exc)
            raise NetworkError(f"{method} {path} failed: {exc}") from exc

        duration_ms = (time.monotonic() - start) * 1000
        logger.debug(
            "%s %s %d %.1fms",
            method,
            path,
            response.status_code,
            duration_ms,
            extra={
                "method": method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response

    async def request(self, method: str, path: str, data: Any = None) -> Any:
        """Sends a mutation (or any request) and returns the parsed JSON.

        Args:
            method: HTTP method ("POST", "PUT", "PATCH", "DELETE", "GET").
            path: Path relative to base_url, e.g. "/api/store/purchase".
            data: JSON-serialisable body, or None for no body.

        Returns:
            The decoded JSON response, or None for an empty body.

        Raises:
            ApiRequestError: On a non-2xx response.
            NetworkError: If the request never completed.
        """
        response = await self._send(method, path, data)
        _raise_for_status(response)
        return _json_or_none(response)

    async def fetch_query(
        self,
        key: QueryKey,
        on_unauthorized: UnauthorizedBehavior = "throw",
    ) -> Any:
        """GETs the data for a cache key (segments joined with "/").

        Args:
            key: The cache key; its URL form is the request path.
            on_unauthorized: "return_null" turns a 401 into None,
                "throw" raises it like any other error.

        Raises:
            ApiRequestError: On a non-2xx response (except a tolerated 401).
            NetworkError: If the request never completed.
        """
        response = await self._send("GET", key_to_url(key))
        if on_unauthorized == "return_null" and response.status_code == 401:
            return None
        _raise_for_status(response)
        return _json_or_none(response)

    def query_fn(self, on_unauthorized: UnauthorizedBehavior = "throw") -> QueryFn:
        """Builds a QueryClient fetcher bound to this client."""

        async def fetch(key: QueryKey) -> Any:
            return await self.fetch_query(key, on_unauthorized)

        return fetch

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> RemoteStoreClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
