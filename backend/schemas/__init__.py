# backend/schemas/__init__.py
from backend.schemas.request import (
    ChatCompletionRequest,
    ChatMessage,
    EmbedRequest,
    QueryOptions,
    QueryRequest,
    StoreRequest,
)
from backend.schemas.response import (
    EmbedResponse,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    QueryResultModel,
    StoreResponse,
)

__all__ = [
    "ChatCompletionRequest", "ChatMessage", "EmbedRequest", "QueryOptions",
    "QueryRequest", "StoreRequest",
    "EmbedResponse", "ErrorResponse", "HealthResponse", "MessageResponse",
    "QueryResultModel", "StoreResponse",
]
