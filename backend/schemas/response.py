"""
schemas/response.py
===================
Pydantic v2 models for the JSON bodies the proxy returns.

Completion responses are not modelled: the upstream body is relayed as-is.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field


def _utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


class QueryResultModel(BaseModel):
    id: str
    text: str
    timestamp: int
    similarity: float


class StoreResponse(BaseModel):
    success: bool = True
    id: str


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class EmbedResponse(BaseModel):
    embedding: List[float]


class HealthResponse(BaseModel):
    status: str
    vector_backend: str
    embedding_backend: str
    llm_configured: bool
    missing_config: List[str] = Field(default_factory=list)
    api_version: str


# ---------------------------------------------------------------------------
# Error response
# ---------------------------------------------------------------------------

class ErrorResponse(BaseModel):
    error: Any                      # message string, or the upstream's error object
    detail: Optional[str] = None    # error class name
    timestamp: str = Field(default_factory=_utc_now)
