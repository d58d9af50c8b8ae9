"""
llm_proxy.py
============
Forward chat-completion payloads to an OpenAI-compatible API.

The request body sent upstream is exactly ``{messages, model, stream}``.
Responses are relayed untouched:

  • buffered: the upstream JSON body is returned as-is;
  • streamed: raw event-stream bytes are yielded chunk by chunk.

The SDK's automatic retries are disabled; a failed call surfaces once as an
UpstreamError carrying the upstream status and error payload.
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import openai
from openai import AsyncOpenAI

from backend.config import Settings, get_settings
from backend.errors import UpstreamError, ValidationError
from rag_pipeline.embedder import upstream_error_from_openai

logger = logging.getLogger(__name__)

STREAM_HEADERS: Dict[str, str] = {
    "Content-Type":  "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection":    "keep-alive",
}

_proxy: Optional["CompletionProxy"] = None


def check_preconditions(api_key: Optional[str], messages: Any, app_id: Any) -> None:
    """
    Validate a completion request.  Order is fixed (API key, messages, appId)
    and the first failure wins.
    """
    checks = [
        (api_key,  "LLM API key not configured"),
        (messages, 'Missing "messages" in request body'),
        (app_id,   'Missing "appId" in request body'),
    ]
    for value, error in checks:
        if not value:
            raise ValidationError(error)


def build_payload(messages: List[Dict[str, Any]], model: str, stream: bool) -> Dict[str, Any]:
    return {"messages": messages, "model": model, "stream": stream}


class CompletionProxy:
    """Thin relay over ``AsyncOpenAI`` that never parses completion bodies."""

    def __init__(self, client: Optional[AsyncOpenAI], default_model: str = "gpt-4o-mini"):
        self._client = client
        self.default_model = default_model

    @classmethod
    def from_settings(cls, settings: Settings) -> "CompletionProxy":
        client = None
        if settings.llm_api_key:
            client = AsyncOpenAI(
                api_key     = settings.llm_api_key,
                base_url    = settings.llm_base_url,
                max_retries = 0,
            )
        return cls(client, settings.default_model)

    @property
    def api_key(self) -> Optional[str]:
        return self._client.api_key if self._client is not None else None

    # ------------------------------------------------------------------
    # Buffered
    # ------------------------------------------------------------------

    async def complete(self, payload: Dict[str, Any]) -> Any:
        """Send ``payload`` and return the upstream JSON body verbatim."""
        client = self._require_client()
        try:
            raw = await client.chat.completions.with_raw_response.create(**payload)
        except openai.APIError as exc:
            logger.error("LLM proxy error: %s", exc)
            raise upstream_error_from_openai(exc, "LLM API") from exc
        return raw.http_response.json()

    # ------------------------------------------------------------------
    # Streamed
    # ------------------------------------------------------------------

    async def open_stream(self, payload: Dict[str, Any]) -> AsyncIterator[bytes]:
        """
        Open an upstream stream and return an iterator over its raw chunks.

        The first chunk is read here, before the caller has sent anything,
        so an early failure can still become an HTTP 500.  Failures after
        that are logged and re-raised, which aborts the caller's connection.
        """
        client = self._require_client()
        stack = AsyncExitStack()
        try:
            response = await stack.enter_async_context(
                client.chat.completions.with_streaming_response.create(**payload)
            )
        except openai.APIError as exc:
            await stack.aclose()
            logger.error("LLM proxy error: %s", exc)
            raise upstream_error_from_openai(exc, "LLM API") from exc

        chunks = response.iter_bytes()
        try:
            first = await chunks.__anext__()
        except StopAsyncIteration:
            first = b""
        except (httpx.HTTPError, openai.APIError) as exc:
            await stack.aclose()
            logger.error("Stream error: %s", exc)
            raise UpstreamError("Stream error") from exc

        return self._relay(stack, first, chunks)

    @staticmethod
    async def _relay(stack: AsyncExitStack, first: bytes, chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        # Each yield is awaited by the ASGI send, so a slow reader throttles the upstream read.
        try:
            if first:
                yield first
            async for chunk in chunks:
                yield chunk
        except (httpx.HTTPError, openai.APIError) as exc:
            # Raising here aborts the half-sent response.
            logger.error("Stream error: %s", exc)
            raise
        finally:
            await stack.aclose()

    # ------------------------------------------------------------------

    def _require_client(self) -> AsyncOpenAI:
        if self._client is None:
            raise ValidationError("LLM API key not configured")
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()


def get_completion_proxy() -> CompletionProxy:
    """Return (or lazily create) the singleton completion proxy."""
    global _proxy
    if _proxy is None:
        _proxy = CompletionProxy.from_settings(get_settings())
    return _proxy


async def close_completion_proxy() -> None:
    global _proxy
    if _proxy is not None:
        await _proxy.close()
        _proxy = None
