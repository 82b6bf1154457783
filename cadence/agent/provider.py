"""Model provider -- streams Anthropic Messages API responses via httpx.

The provider is a plain object handed to the orchestrator, one per
application, so tests can swap in a scripted fake with the same
``stream()`` signature.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from cadence.config import Settings

logger = logging.getLogger(__name__)

# Anthropic API version header
_API_VERSION = "2023-06-01"

# Statuses worth one retry before any body has been read
_RETRY_STATUSES = frozenset({429, 500, 529})
_MAX_RETRY_AFTER = 30.0


class ProviderError(RuntimeError):
    """The model provider failed: HTTP error, in-stream error or timeout."""


@dataclass
class StreamEvent:
    """A single signal from the provider's streamed response."""

    type: str  # block_start, text_delta, input_delta, block_stop, message_delta, message_stop, error
    block_kind: str = ""  # for block_start: tool_use, text, ...
    text: str = ""  # text delta, partial tool input JSON, or error message
    tool_id: str = ""
    tool_name: str = ""
    stop_reason: str = ""
    index: int = 0


class ModelProvider(Protocol):
    def stream(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[StreamEvent]: ...


def parse_sse_event(data: dict[str, Any]) -> StreamEvent | None:
    """Parse one decoded SSE ``data:`` payload into a StreamEvent.

    Pings and event types we do not act on return None. The stop reason
    lives in message_delta.delta, not in message_start.
    """
    event_type = data.get("type")

    if event_type == "ping":
        return None

    if event_type == "error":
        error = data.get("error", {})
        return StreamEvent(
            type="error",
            text=f"{error.get('type', 'unknown')}: {error.get('message', '')}",
        )

    if event_type == "content_block_start":
        block = data.get("content_block", {})
        return StreamEvent(
            type="block_start",
            block_kind=block.get("type", ""),
            tool_id=block.get("id", ""),
            tool_name=block.get("name", ""),
            index=data.get("index", 0),
        )

    if event_type == "content_block_delta":
        delta = data.get("delta", {})
        index = data.get("index", 0)
        if delta.get("type") == "text_delta":
            return StreamEvent(type="text_delta", text=delta.get("text", ""), index=index)
        if delta.get("type") == "input_json_delta":
            return StreamEvent(type="input_delta", text=delta.get("partial_json", ""), index=index)
        return None

    if event_type == "content_block_stop":
        return StreamEvent(type="block_stop", index=data.get("index", 0))

    if event_type == "message_delta":
        stop_reason = data.get("delta", {}).get("stop_reason") or ""
        return StreamEvent(type="message_delta", stop_reason=stop_reason)

    if event_type == "message_stop":
        return StreamEvent(type="message_stop")

    return None


def build_auth_headers(api_key: str, auth_token: str) -> dict[str, str]:
    """Auth headers for the Messages API.

    OAT tokens (sk-ant-oat*) require Bearer auth plus beta headers;
    regular API keys use x-api-key. An explicit auth token wins.
    """
    headers: dict[str, str] = {}
    token = auth_token or (api_key if "sk-ant-oat" in api_key else "")
    if token:
        headers["authorization"] = f"Bearer {token}"
        if "sk-ant-oat" in token:
            headers["anthropic-beta"] = "oauth-2025-04-20"
            headers["anthropic-dangerous-direct-browser-access"] = "true"
    elif api_key:
        headers["x-api-key"] = api_key
    return headers


class AnthropicProvider:
    """Streaming client for the Anthropic Messages API."""

    def __init__(self, settings: Settings, http: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._http = http

    async def start(self) -> None:
        """Initialize the httpx client with auth and timeout settings."""
        if self._http is not None:
            return
        settings = self._settings

        headers = {
            "anthropic-version": _API_VERSION,
            "content-type": "application/json",
            **build_auth_headers(settings.anthropic_api_key, settings.anthropic_auth_token),
        }
        if "x-api-key" not in headers and "authorization" not in headers:
            logger.warning(
                "Neither ANTHROPIC_API_KEY nor ANTHROPIC_AUTH_TOKEN is set -- "
                "API calls will fail"
            )

        timeout = httpx.Timeout(
            connect=settings.api_timeout_connect,
            read=settings.api_timeout_read,
            write=10.0,
            pool=10.0,
        )
        limits = httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        )
        self._http = httpx.AsyncClient(
            base_url=settings.api_base_url,
            headers=headers,
            timeout=timeout,
            limits=limits,
        )
        logger.info("Provider client initialized (%s)", settings.api_base_url)

    async def close(self) -> None:
        """Clean up httpx client."""
        if self._http:
            await self._http.aclose()
            self._http = None

    def build_payload(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Messages API request body for a streamed call."""
        payload: dict[str, Any] = {
            "model": self._settings.model,
            "max_tokens": self._settings.max_tokens,
            "system": system_prompt,
            "messages": messages,
            "stream": True,
        }
        if tools:
            payload["tools"] = tools
        return payload

    async def stream(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Yield StreamEvents for one streamed response.

        Raises ProviderError on HTTP errors and in-stream error events.
        One retry on 429/500/529, only before any body has been consumed.
        """
        if not self._http:
            raise RuntimeError("httpx client not initialized -- call start() first")

        payload = self.build_payload(system_prompt, messages, tools)
        try:
            async with aclosing(self._stream_events(self._http, payload)) as events:
                async for event in events:
                    yield event
        except httpx.HTTPError as e:
            raise ProviderError(f"HTTP error talking to provider: {e}") from e

    async def _stream_events(
        self, http: httpx.AsyncClient, payload: dict[str, Any]
    ) -> AsyncIterator[StreamEvent]:
        for attempt in range(2):
            async with http.stream("POST", "/v1/messages", json=payload) as response:
                if response.status_code != 200:
                    body = (await response.aread()).decode(errors="replace")[:500]
                    if response.status_code in _RETRY_STATUSES and attempt == 0:
                        retry_after = _parse_retry_after(response.headers.get("retry-after"))
                        logger.warning(
                            "Provider returned %d, retrying in %.1fs: %s",
                            response.status_code, retry_after, body,
                        )
                        await asyncio.sleep(retry_after)
                        continue
                    raise ProviderError(f"Anthropic API error ({response.status_code}): {body}")

                async for line in response.aiter_lines():
                    if not line.startswith("data: "):
                        continue
                    try:
                        data = json.loads(line[6:])
                    except json.JSONDecodeError as e:
                        raise ProviderError(f"Malformed stream payload: {line[:200]}") from e
                    event = parse_sse_event(data)
                    if event is None:
                        continue
                    if event.type == "error":
                        raise ProviderError(event.text)
                    yield event
                    if event.type == "message_stop":
                        return
                return


def _parse_retry_after(value: str | None) -> float:
    try:
        delay = float(value) if value else 1.0
    except ValueError:
        delay = 1.0
    return min(max(delay, 0.0), _MAX_RETRY_AFTER)
