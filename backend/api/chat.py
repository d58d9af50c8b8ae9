"""
api/chat.py
===========
POST /chat/completions
----------------------
Proxies a chat-completion request to the LLM API.

Body: ``{messages, model?, stream?, appId, queryRag?}``

  1. Check preconditions (API key, messages, appId, in that order) → 400,
     then the shape of each message → 400
  2. If ``queryRag``: insert one retrieved-context system message before the
     last message.  Retrieval problems are logged and the request goes on
     without context.
  3. Forward ``{messages, model, stream}`` upstream and relay the answer,
     buffered JSON or a raw event stream.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List

from fastapi import APIRouter
from fastapi.responses import JSONResponse, StreamingResponse

from backend.schemas.request import ChatCompletionRequest
from rag_pipeline.context import assemble_context
from rag_pipeline.llm_proxy import (
    STREAM_HEADERS,
    build_payload,
    check_preconditions,
    get_completion_proxy,
)
from rag_pipeline.vector_client import get_vector_store

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/chat/completions")
async def chat_completions(body: ChatCompletionRequest):
    """Relay a chat completion, optionally grounded in stored records."""
    proxy = get_completion_proxy()
    check_preconditions(proxy.api_key, body.messages, body.app_id)

    messages = body.message_dicts()
    model = body.model_name(proxy.default_model)
    stream = bool(body.stream)
    if body.query_rag:
        messages = await _with_context(messages)

    payload = build_payload(messages, model, stream)

    if stream:
        chunks = await proxy.open_stream(payload)
        return StreamingResponse(chunks, headers=STREAM_HEADERS)

    data = await proxy.complete(payload)
    return JSONResponse(status_code=200, content=data)


async def _with_context(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    try:
        store = await asyncio.to_thread(get_vector_store)
    except Exception as exc:
        logger.error("Error retrieving records: %s", exc)
        logger.info("Proceeding without context due to error")
        return messages

    result = await asyncio.to_thread(assemble_context, messages, store)
    if result.error is not None:
        logger.error("Error retrieving records: %s", result.error)
        logger.info("Proceeding without context due to error")
        return result.messages

    logger.info("Added context to messages (%d records).", result.records_used)
    return result.messages
