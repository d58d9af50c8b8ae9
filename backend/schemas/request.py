"""
schemas/request.py
==================
Request bodies.  Required fields are declared Optional on purpose: the route
handlers check them in a fixed order and answer 400 with a specific message,
instead of FastAPI's generic 422.

The chat body is typed loosely so a malformed ``messages`` list cannot jump
ahead of the API-key check; its shape is validated by ``message_dicts`` once
the preconditions have passed.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as SchemaError

from backend.errors import ValidationError


class ChatMessage(BaseModel):
    # Extra provider fields (name, tool_call_id, …) are forwarded untouched.
    model_config = ConfigDict(extra="allow")

    role: Literal["system", "user", "assistant"]
    content: str


_MESSAGE_LIST = TypeAdapter(List[ChatMessage])


def describe_error(exc: SchemaError) -> str:
    """First pydantic error as ``"<loc>: <msg>"`` (or just the message at top level)."""
    first = exc.errors()[0]
    loc = ".".join(str(part) for part in first.get("loc", ()))
    return f"{loc}: {first['msg']}" if loc else first["msg"]


class ChatCompletionRequest(BaseModel):
    # channel, userId and any other caller fields are accepted and dropped.
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    messages: Optional[Any] = None
    model: Optional[Any] = None
    stream: Any = False
    app_id: Optional[Any] = Field(None, alias="appId")
    query_rag: Any = Field(False, alias="queryRag")

    def message_dicts(self) -> List[Dict[str, Any]]:
        try:
            messages = _MESSAGE_LIST.validate_python(self.messages or [])
        except SchemaError as exc:
            raise ValidationError(f'Malformed "messages" in request body: {describe_error(exc)}') from exc
        return [m.model_dump() for m in messages]

    def model_name(self, default: str) -> str:
        if self.model is None or self.model == "":
            return default
        if not isinstance(self.model, str):
            raise ValidationError('Malformed "model" in request body: expected a string')
        return self.model


class StoreRequest(BaseModel):
    text: Optional[str] = None
    id: Optional[str] = None
    timestamp: Optional[int] = None


class QueryOptions(BaseModel):
    # 0 or a negative limit falls back to the default in the route.
    limit: Optional[int] = Field(None, le=10_000)


class QueryRequest(BaseModel):
    query: Optional[str] = None
    options: Optional[QueryOptions] = None


class EmbedRequest(BaseModel):
    text: Optional[str] = None
