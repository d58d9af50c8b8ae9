"""
context.py
==========
Decide what, if anything, to tell the model about stored records.

Given a conversation, the last message is used as the retrieval query.  The
top matches are rendered oldest-first into one system message inserted just
before that last message.  When nothing matches, a fallback system message
names the query and asks the model to answer from its own knowledge.

Retrieval failures never escape: the conversation comes back unchanged and
the error is handed to the caller to log.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from rag_pipeline.vector_client import QueryResult, VectorStoreClient

logger = logging.getLogger(__name__)

CONTEXT_LIMIT = 5

_RECORDS_PREAMBLE = "Here are some records from the database that may help answer your query:\n\n"
_RECORDS_POSTAMBLE = (
    "\nUse the above information to answer the user's question. "
    "If you don't have enough information to answer completely, "
    "acknowledge what you know and what you don't know."
)
_NO_RECORDS_TEMPLATE = (
    'We were not able to find information in our database concerning this user\'s query: "{query}". '
    "Try to answer if you know the answer; otherwise explain that you don't have that information."
)

Message = Dict[str, Any]


@dataclass
class ContextResult:
    messages: List[Message]
    records_used: int = 0
    error: Optional[Exception] = None


def render_context(query: str, records: List[QueryResult]) -> Message:
    """Build the single system message for ``query`` from retrieved ``records``."""
    if not records:
        return {"role": "system", "content": _NO_RECORDS_TEMPLATE.format(query=query)}

    # sorted() is stable: equal timestamps keep retrieval order
    ordered = sorted(records, key=lambda r: r.timestamp)
    lines = "".join(f"- {record.text}\n" for record in ordered)
    return {"role": "system", "content": _RECORDS_PREAMBLE + lines + _RECORDS_POSTAMBLE}


def insert_before_last(messages: List[Message], message: Message) -> List[Message]:
    """Return a new list with ``message`` placed immediately before the final element."""
    return [*messages[:-1], message, *messages[-1:]]


def assemble_context(
    messages: List[Message],
    store: VectorStoreClient,
    limit: int = CONTEXT_LIMIT,
) -> ContextResult:
    """
    Augment ``messages`` with retrieved context.

    Returns a ContextResult whose ``messages`` is either the augmented copy
    or, on any retrieval failure, the original list untouched.
    """
    if not messages:
        return ContextResult(messages=messages)

    query = messages[-1].get("content") or ""
    try:
        records = store.query(str(query), limit=limit)
    except Exception as exc:
        return ContextResult(messages=messages, error=exc)

    system_message = render_context(str(query), records)
    logger.debug("Context built from %d records.", len(records))
    return ContextResult(
        messages     = insert_before_last(messages, system_message),
        records_used = len(records),
    )
