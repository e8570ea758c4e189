"""Generative-model provider over an OpenAI-compatible chat completions API.

Implements the ModelProvider port used by LlmCall steps.

Environment:
    LLM_API_BASE_URL: API base URL (default https://api.openai.com/v1)
    LLM_API_KEY:      bearer token

Usage:
    provider = HttpModelProvider()
    completion = await provider.complete(prompt, CompletionOptions(model="gpt-4o-mini"))
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from . import config, settings
from .errors import ProviderError, ProviderTimeout
from .ports import Completion, CompletionOptions

logger = logging.getLogger(__name__)


class HttpModelProvider:
    """Async chat-completions client.

    Args:
        api_key: Bearer token. Falls back to LLM_API_KEY.
        base_url: API base URL. Falls back to LLM_API_BASE_URL.
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
        self._api_key = api_key if api_key is not None else config.LLM_API_KEY
        self._base_url = (base_url or config.LLM_API_BASE_URL).rstrip("/")
        self._timeout = timeout or settings.LLM_CALL_TIMEOUT
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=self._timeout,
                transport=self._transport,
                limits=httpx.Limits(
                    max_connections=settings.LLM_HTTP_MAX_CONNECTIONS,
                    max_keepalive_connections=settings.LLM_HTTP_MAX_CONNECTIONS,
                ),
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def complete(self, prompt: str, options: CompletionOptions) -> Completion:
        body = self._request_body(prompt, options)
        client = await self._get_client()
        try:
            resp = await client.post("/chat/completions", json=body)
        except httpx.TimeoutException as e:
            raise ProviderTimeout(f"Model provider timeout ({options.model})") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Model provider connection error: {e}") from e

        if resp.status_code == 429:
            raise ProviderError("Model provider rate limit exceeded", status_code=429)
        if resp.status_code != 200:
            raise ProviderError(
                f"Model provider error {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
            text = data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"Unexpected model provider response: {resp.text[:200]}") from e

        usage = data.get("usage") or {}
        completion = Completion(
            text=text,
            model=data.get("model") or options.model,
            usage={
                "input_tokens": usage.get("prompt_tokens", 0),
                "output_tokens": usage.get("completion_tokens", 0),
            } if usage else {},
        )
        logger.info(f"complete: model={completion.model}, usage={completion.usage or 'n/a'}")
        return completion

    @staticmethod
    def _request_body(prompt: str, options: CompletionOptions) -> Dict[str, Any]:
        messages: List[Dict[str, str]] = []
        if options.system_prompt:
            messages.append({"role": "system", "content": options.system_prompt})
        messages.append({"role": "user", "content": prompt})

        body: Dict[str, Any] = {
            "model": options.model,
            "messages": messages,
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }
        if options.response_format == "json":
            body["response_format"] = {"type": "json_object"}
        return body
