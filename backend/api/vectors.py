"""
api/vectors.py
==============
Record maintenance endpoints under /rag/pinecone.

  POST   /rag/pinecone/store      {text, id?, timestamp?} → 201 {success, id}
  POST   /rag/pinecone/query      {query, options?: {limit?}} → [QueryResult]
  DELETE /rag/pinecone/clear/all  → {success, message}
  DELETE /rag/pinecone/{id}       → {success, message}
  POST   /rag/pinecone/embed      {text} → {embedding}

Store and embedding calls are blocking SDK calls and run in a worker thread.
/embed only needs the embedding service, never the vector index.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List

from fastapi import APIRouter, status

from backend.errors import ValidationError
from backend.schemas.request import EmbedRequest, QueryRequest, StoreRequest
from backend.schemas.response import EmbedResponse, MessageResponse, QueryResultModel, StoreResponse
from rag_pipeline.embedder import get_embedder
from rag_pipeline.vector_client import DEFAULT_QUERY_LIMIT, get_vector_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rag/pinecone", tags=["records"])


@router.post("/store", status_code=status.HTTP_201_CREATED, response_model=StoreResponse)
async def store_record(body: StoreRequest):
    if not body.text:
        raise ValidationError("Missing required fields")

    store = await asyncio.to_thread(get_vector_store)
    record_id = await asyncio.to_thread(store.store, body.text, body.id, body.timestamp)
    return StoreResponse(success=True, id=record_id)


@router.post("/query", response_model=List[QueryResultModel])
async def query_records(body: QueryRequest):
    if not body.query:
        raise ValidationError("Query is required")

    limit = body.options.limit if body.options else None
    if not limit or limit < 1:
        limit = DEFAULT_QUERY_LIMIT

    store = await asyncio.to_thread(get_vector_store)
    results = await asyncio.to_thread(store.query, body.query, limit)
    return [r.to_dict() for r in results]


# Registered before "/{record_id}" so the literal path always wins.
@router.delete("/clear/all", response_model=MessageResponse)
async def clear_all_records():
    store = await asyncio.to_thread(get_vector_store)
    await asyncio.to_thread(store.clear_all)
    return MessageResponse(success=True, message="All records cleared successfully")


@router.delete("/{record_id}", response_model=MessageResponse)
async def delete_record(record_id: str):
    store = await asyncio.to_thread(get_vector_store)
    await asyncio.to_thread(store.delete, record_id)
    return MessageResponse(success=True, message=f"Record {record_id} deleted successfully")


@router.post("/embed", response_model=EmbedResponse)
async def embed_text(body: EmbedRequest):
    if not body.text:
        raise ValidationError("Text is required")

    embedder = await asyncio.to_thread(get_embedder)
    embedding = await asyncio.to_thread(embedder.embed, body.text)
    return EmbedResponse(embedding=embedding)
