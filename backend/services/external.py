"""
Shared plumbing for outbound HTTP clients (Neynar, Dune, CoinGecko)
"""
from typing import Any, Dict, Optional
import logging

import httpx

logger = logging.getLogger(__name__)


class ExternalServiceError(Exception):
    """Upstream call failed (network error, timeout, rate limit, non-2xx)"""

    def __init__(self, service: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.status_code = status_code


class HttpServiceClient:
    """
    Thin httpx.AsyncClient wrapper.

    The client is created lazily so instances can be built at import time;
    tests pass their own AsyncClient (usually over httpx.MockTransport).
    """

    service_name = "external"

    def __init__(
        self,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.headers = headers or {}
        self.timeout = timeout
        self._client = client

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(headers=self.headers, timeout=self.timeout)
        return self._client

    async def close(self):
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        """
        GET {base_url}{path} and decode JSON.

        Returns:
            Decoded body, or None on 404

        Raises:
            ExternalServiceError: on transport errors and other non-2xx responses
        """
        client = self._ensure_client()
        url = f"{self.base_url}{path}"
        try:
            response = await client.get(url, params=params, headers=self.headers)
        except httpx.HTTPError as e:
            raise ExternalServiceError(self.service_name, f"request to {path} failed: {e!r}")

        if response.status_code == 404:
            return None
        if response.status_code == 429:
            raise ExternalServiceError(self.service_name, "rate limited", status_code=429)
        if response.status_code >= 400:
            raise ExternalServiceError(
                self.service_name,
                f"{path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ExternalServiceError(self.service_name, f"invalid JSON from {path}: {e}")
