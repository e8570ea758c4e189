"""Company data source over an HTTP enrichment API.

Implements the CompanyDataSource port used by the enrichment workflow.

Environment:
    ENRICHMENT_API_BASE_URL: API base URL
    ENRICHMENT_API_KEY:      bearer token

The API answers ``GET /companies/find?domain=<domain>`` with a JSON company
profile, or 404 when the domain is unknown.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from . import config, settings
from .errors import ProviderError, ProviderTimeout

logger = logging.getLogger(__name__)


class HttpCompanyDataSource:
    """Async company lookup client.

    Args:
        api_key: Bearer token. Falls back to ENRICHMENT_API_KEY.
        base_url: API base URL. Falls back to ENRICHMENT_API_BASE_URL.
        timeout: HTTP request timeout in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key if api_key is not None else config.ENRICHMENT_API_KEY
        self._base_url = (base_url or config.ENRICHMENT_API_BASE_URL).rstrip("/")
        self._timeout = timeout or settings.ENRICHMENT_HTTP_TIMEOUT
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Accept": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def lookup(self, domain: str) -> Optional[Dict[str, Any]]:
        if not self._base_url:
            raise ProviderError("Company data API is not configured")

        client = await self._get_client()
        try:
            resp = await client.get("/companies/find", params={"domain": domain})
        except httpx.TimeoutException as e:
            raise ProviderTimeout(f"Company data lookup timed out for {domain}") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Company data connection error: {e}") from e

        if resp.status_code == 404:
            logger.info(f"No company data for domain {domain}")
            return None
        if resp.status_code != 200:
            raise ProviderError(
                f"Company data API error {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderError(f"Unexpected company data response: {resp.text[:200]}") from e
        if not isinstance(data, dict):
            raise ProviderError(f"Unexpected company data response: {resp.text[:200]}")
        return data
