"""Push channel over HTTP.

Publishes UI snapshots and run progress events to the API server, which fans
them out to connected form clients (Turbo/SSE streams).
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from .config import PUSH_API_BASE_URL
from .errors import DeliveryError
from .logging_config import get_push_logger
from .settings import PUSH_HTTP_MAX_CONNECTIONS, PUSH_HTTP_MAX_KEEPALIVE, PUSH_HTTP_TIMEOUT

# Shared httpx client with connection pooling, reused across pushes.
_http_client: Optional[httpx.AsyncClient] = None


async def _get_http_client() -> httpx.AsyncClient:
    """Get or create the shared httpx client."""
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            timeout=PUSH_HTTP_TIMEOUT,
            limits=httpx.Limits(
                max_connections=PUSH_HTTP_MAX_CONNECTIONS,
                max_keepalive_connections=PUSH_HTTP_MAX_KEEPALIVE,
            ),
        )
    return _http_client


class HttpPushChannel:
    """PushChannel port that POSTs payloads to ``{base_url}/api/internal/events/{target}``.

    Args:
        base_url: API server base URL. Falls back to PUSH_API_BASE_URL.
        client: Optional preconfigured client (defaults to the shared pooled client).
    """

    def __init__(self, base_url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.base_url = (base_url or PUSH_API_BASE_URL).rstrip("/")
        self._client = client

    async def publish(self, target: str, payload: Dict[str, Any]) -> None:
        if not target:
            raise DeliveryError("Cannot publish without a target")

        url = f"{self.base_url}/api/internal/events/{target}"
        event_type = payload.get("event_type") or payload.get("action") or "update"
        logger = get_push_logger()
        logger.info(f"Pushing event: {event_type} to {url}")

        client = self._client or await _get_http_client()
        try:
            resp = await client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise DeliveryError(f"Push to {target} failed: {e}") from e

        if resp.status_code >= 400:
            raise DeliveryError(f"Push to {target} rejected with status {resp.status_code}")
        logger.info(f"Response: {resp.status_code}")
