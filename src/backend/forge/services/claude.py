"""
Claude Service — handles all communication with the Anthropic Messages API.

Supports two connection modes:
  1. Direct — the API key is attached here and the request goes straight
     to api.anthropic.com
  2. Proxied — the request goes to a proxy worker that injects the key
     server-side; no credential leaves this process

All agents that need Claude go through this service.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from forge.config import settings
from forge.models.schemas import (
    CompletionResult,
    ConnectionConfig,
    ConnectionMode,
    MessageResponse,
)
from forge.services.response import MalformedResponseError, decode_response, extract_text
from forge.services.usage import UsageAccumulator

logger = logging.getLogger(__name__)

WEB_SEARCH_TOOL_TYPE = "web_search_20250305"
WEB_SEARCH_BETA = "web-search-2025-03-05"


class ClaudeAPIError(Exception):
    """A Messages API call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientAPIError(ClaudeAPIError):
    """Network failure, overload or rate limiting that survived the retry."""


class PermanentAPIError(ClaudeAPIError):
    """Client errors and malformed envelopes. Never retried."""


def uses_web_search(payload: Dict[str, Any]) -> bool:
    return any(
        isinstance(t, dict) and t.get("type") == WEB_SEARCH_TOOL_TYPE
        for t in payload.get("tools") or []
    )


def build_headers(connection: ConnectionConfig, payload: Dict[str, Any]) -> Dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "anthropic-version": settings.anthropic_version,
    }
    if uses_web_search(payload):
        headers["anthropic-beta"] = WEB_SEARCH_BETA
    if connection.mode == ConnectionMode.DIRECT:
        headers["x-api-key"] = connection.api_key or ""
        headers["anthropic-dangerous-direct-browser-access"] = "true"
    return headers


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return f"API error: {response.status_code}"


def _is_transient(status_code: int) -> bool:
    return status_code >= 500 or status_code == 429


class ClaudeService:
    """
    One logical Messages API call per `create_message`, with a bounded retry.

    Usage:
        service = ClaudeService(connection, usage)
        response = await service.create_message({"model": ..., "messages": [...]})
        result = await service.complete("system prompt", "user message")
    """

    def __init__(
        self,
        connection: ConnectionConfig,
        usage: Optional[UsageAccumulator] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_delay: Optional[float] = None,
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self.connection = connection
        self.usage = usage if usage is not None else UsageAccumulator()
        self.retry_delay = settings.retry_delay_seconds if retry_delay is None else retry_delay
        self.max_retries = settings.max_retries if max_retries is None else max_retries
        self.timeout = timeout or settings.request_timeout_seconds
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def url(self) -> str:
        return self.connection.endpoint(settings.anthropic_api_url)

    async def _get_client(self) -> httpx.AsyncClient:
        """Lazy-initialize the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "ClaudeService":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def create_message(self, payload: Dict[str, Any], step_name: str = "") -> MessageResponse:
        """
        POST one request and return the decoded response.

        Network errors, 5xx and 429 are retried `max_retries` times after a
        fixed delay. Any other non-2xx status fails immediately.

        Raises:
            TransientAPIError: retries exhausted
            PermanentAPIError: other 4xx, or a body that isn't a response envelope
        """
        client = await self._get_client()
        headers = build_headers(self.connection, payload)
        url = self.url

        attempt = 0
        while True:
            t0 = time.monotonic()
            try:
                response = await client.post(url, headers=headers, json=payload)
            except httpx.TransportError as e:
                if attempt < self.max_retries:
                    attempt += 1
                    logger.warning(
                        f"Network error calling Claude ({e!r}); "
                        f"retrying in {self.retry_delay:.0f}s (attempt {attempt}/{self.max_retries})"
                    )
                    await asyncio.sleep(self.retry_delay)
                    continue
                logger.error(f"Network error calling Claude: {e!r}")
                raise TransientAPIError(f"Network error: {e}") from e

            if response.is_success:
                break

            message = _error_message(response)
            if _is_transient(response.status_code):
                if attempt < self.max_retries:
                    attempt += 1
                    logger.warning(
                        f"Claude API {response.status_code}: {message}; "
                        f"retrying in {self.retry_delay:.0f}s (attempt {attempt}/{self.max_retries})"
                    )
                    await asyncio.sleep(self.retry_delay)
                    continue
                logger.error(f"Claude API {response.status_code} after retry: {message}")
                raise TransientAPIError(message, response.status_code)

            logger.error(f"Claude API {response.status_code}: {message}")
            raise PermanentAPIError(message, response.status_code)

        try:
            decoded = decode_response(response.json())
        except (ValueError, MalformedResponseError) as e:
            raise PermanentAPIError(f"Malformed response: {e}", response.status_code) from e

        self.usage.add_usage(
            decoded.usage,
            step_name=step_name,
            model=str(payload.get("model", "")),
            latency_ms=int((time.monotonic() - t0) * 1000),
        )
        return decoded

    async def complete(
        self,
        system_prompt: str,
        user_message: str,
        model: Optional[str] = None,
        max_tokens: int = 0,
        tools: Optional[List[Dict[str, Any]]] = None,
        step_name: str = "",
    ) -> CompletionResult:
        """Single-turn call returning the narrative text and usage."""
        payload: Dict[str, Any] = {
            "model": model or settings.model,
            "max_tokens": max_tokens or settings.max_tokens,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_message}],
        }
        if tools:
            payload["tools"] = tools
        response = await self.create_message(payload, step_name=step_name)
        return CompletionResult(text=extract_text(response), usage=response.usage)


def describe_error(exc: BaseException) -> str:
    """Human-readable message for status events and tool results."""
    return str(exc) or type(exc).__name__
